"""Command-line interface for the forward manager.

This module provides the main command-line interface, handling:
- Command-line and environment option parsing
- Logging setup
- Signal handler installation
- Supervisor lifecycle and process exit status

The CLI is built using Typer and provides:
- ``run``: serve every rule of the forwards file in the foreground
- ``check``: validate a forwards file without binding any port

The process never daemonizes. It exits 0 after a clean shutdown and 1 when
the forwards file cannot be read, so an external supervisor such as systemd
can restart it.

Example:
    # Run from command line:
    $ forward-manager run --config /etc/socat/forwards.conf --grace-period 5
"""

from pathlib import Path

import typer
from loguru import logger
from rich.console import Console

from forward_manager import __version__
from forward_manager.core.config import (
    DEFAULT_BUFFER_SIZE,
    DEFAULT_CONFIG_PATH,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_GRACE_PERIOD,
    Settings,
)
from forward_manager.core.exceptions import ConfigError
from forward_manager.core.rules import load_rules
from forward_manager.core.signals import SignalCoordinator
from forward_manager.core.supervisor import Supervisor
from forward_manager.core.utils.display import rules_table, warnings_table, workers_table
from forward_manager.core.utils.log_config import configure_logging

console = Console()
app = typer.Typer(help="Declarative TCP port forwarding supervisor")

CONFIG_ENVVAR = "FORWARD_MANAGER_CONFIG"


@app.callback(invoke_without_command=True)
def version_callback(ctx: typer.Context):
    """Show version information."""
    if ctx.invoked_subcommand is None:
        console.print(f"[cyan]Forward Manager v{__version__}[/cyan]")
        typer.echo(ctx.get_help())


@app.command(name="run")
def run_forwarder(
    config: Path = typer.Option(
        DEFAULT_CONFIG_PATH, "--config", "-c", envvar=CONFIG_ENVVAR, help="Forwards file to serve"
    ),
    grace_period: float = typer.Option(
        DEFAULT_GRACE_PERIOD,
        "--grace-period",
        envvar="FORWARD_MANAGER_GRACE_PERIOD",
        help="Seconds to let open connections finish on shutdown",
    ),
    connect_timeout: float = typer.Option(
        DEFAULT_CONNECT_TIMEOUT,
        "--connect-timeout",
        envvar="FORWARD_MANAGER_CONNECT_TIMEOUT",
        help="Seconds allowed for connecting to a target",
    ),
    buffer_size: int = typer.Option(DEFAULT_BUFFER_SIZE, "--buffer-size", help="Relay read size in bytes"),
    log_file: Path | None = typer.Option(None, "--log-file", help="Also write logs to this file"),
    debug: bool = typer.Option(
        default=False,
        help="Enable debug logging",
    ),
):
    """Serve every rule of the forwards file until SIGINT or SIGTERM."""
    configure_logging(debug=debug, log_file=log_file)

    try:
        settings = Settings(
            config_path=config,
            grace_period=grace_period,
            connect_timeout=connect_timeout,
            buffer_size=buffer_size,
        ).validate()
    except ConfigError as e:
        logger.error(f"Invalid settings: {e}")
        raise typer.Exit(code=1) from e

    logger.info(f"Starting forward manager v{__version__}")
    supervisor = Supervisor(settings)
    coordinator = SignalCoordinator(supervisor).install()
    try:
        supervisor.start()
        if supervisor.workers:
            console.print(workers_table(supervisor.workers))
        supervisor.serve()
    except ConfigError as e:
        logger.error(f"Fatal configuration error: {e}")
        raise typer.Exit(code=1) from e
    except Exception as e:
        logger.exception("Forward manager crashed")
        supervisor.shutdown()
        raise typer.Exit(code=1) from e
    finally:
        coordinator.restore()

    logger.info("Forward manager stopped")


@app.command(name="check")
def check_config(
    config: Path = typer.Option(
        DEFAULT_CONFIG_PATH, "--config", "-c", envvar=CONFIG_ENVVAR, help="Forwards file to check"
    ),
):
    """Validate a forwards file without binding any port."""
    try:
        ruleset = load_rules(config)
    except ConfigError as e:
        console.print(f"[red]Error: {e}")
        raise typer.Exit(code=1) from e

    console.print(rules_table(ruleset))
    if ruleset.warnings:
        console.print(warnings_table(ruleset.warnings))
    console.print(
        f"[green]{len(ruleset)} rule(s) valid[/green], "
        f"[yellow]{len(ruleset.warnings)} line(s) skipped[/yellow]"
    )


if __name__ == "__main__":
    app()
