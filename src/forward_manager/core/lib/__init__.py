"""Core forwarding library components."""

from .forward_server import ForwardHandler, ForwardServer, ForwardWorker, WorkerState
from .forward_stats import ForwardStats, StatsSnapshot
from .relay import Relay, RelayOutcome, open_target

__all__ = [
    "ForwardHandler",
    "ForwardServer",
    "ForwardStats",
    "ForwardWorker",
    "open_target",
    "Relay",
    "RelayOutcome",
    "StatsSnapshot",
    "WorkerState",
]
