"""Rich tables for rules and workers."""

from rich.console import Console
from rich.table import Table

from ..lib.forward_server import ForwardWorker, WorkerState
from ..rules import RuleSet, RuleWarning
from .utils import format_bytes, format_duration, format_endpoint

console = Console()

STATE_STYLES = {
    WorkerState.STARTING: "yellow",
    WorkerState.RUNNING: "green",
    WorkerState.STOPPING: "yellow",
    WorkerState.STOPPED: "red",
}


def rules_table(ruleset: RuleSet) -> Table:
    """Generate a table listing every loaded rule."""
    table = Table(title="Forwarding rules", padding=(0, 1))
    table.add_column("Line", style="dim", justify="right")
    table.add_column("Listen", style="cyan", no_wrap=True)
    table.add_column("Forward", style="green", no_wrap=True)

    for rule in ruleset.rules:
        table.add_row(
            str(rule.line_number),
            format_endpoint(rule.listen_endpoint),
            format_endpoint(rule.forward_endpoint),
        )
    return table


def warnings_table(warnings: tuple[RuleWarning, ...]) -> Table:
    """Generate a table of skipped lines."""
    table = Table(title="Skipped lines", padding=(0, 1), title_style="yellow")
    table.add_column("Line", style="dim", justify="right")
    table.add_column("Kind", style="yellow")
    table.add_column("Reason", style="white")

    for warning in warnings:
        table.add_row(str(warning.line_number), warning.kind.value, warning.reason)
    return table


def workers_table(workers: list[ForwardWorker]) -> Table:
    """Generate a status table for live workers."""
    table = Table(title="Workers", padding=(0, 1))
    table.add_column("Listen", style="cyan", no_wrap=True)
    table.add_column("Forward", style="green", no_wrap=True)
    table.add_column("State", no_wrap=True)
    table.add_column("Active", justify="right")
    table.add_column("Accepted", justify="right")
    table.add_column("Transferred", justify="right")
    table.add_column("Uptime", justify="right")

    for worker in workers:
        snapshot = worker.stats.snapshot()
        style = STATE_STYLES.get(worker.state, "white")
        table.add_row(
            format_endpoint(worker.listen_address or worker.rule.listen_endpoint),
            format_endpoint(worker.rule.forward_endpoint),
            f"[{style}]{worker.state.value}[/{style}]",
            str(snapshot.active),
            str(snapshot.accepted),
            format_bytes(snapshot.total_bytes),
            format_duration(snapshot.uptime),
        )
    return table
