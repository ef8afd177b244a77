"""Allow ``python -m forward_manager``."""

from forward_manager.cmd.cli import app

app(prog_name="forward-manager")
