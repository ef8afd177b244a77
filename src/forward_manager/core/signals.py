"""Translate process signals into supervisor requests.

SIGINT and SIGTERM become exactly one shutdown request no matter how many of
them arrive. SIGHUP, where the platform has it, becomes a reload request.
The handlers only notify the supervisor. They do not log, close sockets or
join threads; the supervisor does all of that on its own thread.
"""

import signal
from collections.abc import Callable
from typing import Any

from .supervisor import Supervisor

TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM)
RELOAD_SIGNAL = getattr(signal, "SIGHUP", None)


class SignalCoordinator:
    """Install signal handlers that forward to a supervisor."""

    def __init__(self, supervisor: Supervisor) -> None:
        self.supervisor = supervisor
        self.received: list[int] = []
        self._notified = False
        self._previous: dict[int, Callable[..., Any] | int | None] = {}

    @property
    def notified(self) -> bool:
        """Whether a shutdown request has been delivered."""
        return self._notified

    def handle_termination(self, signum: int, frame=None) -> None:
        self.received.append(signum)
        if self._notified:
            return
        self._notified = True
        self.supervisor.request_shutdown(f"received {signal.Signals(signum).name}")

    def handle_reload(self, signum: int, frame=None) -> None:
        self.received.append(signum)
        if not self._notified:
            self.supervisor.request_reload(f"received {signal.Signals(signum).name}")

    def install(self) -> "SignalCoordinator":
        """Register the handlers. Must run on the main thread."""
        for signum in TERMINATION_SIGNALS:
            self._previous[signum] = signal.signal(signum, self.handle_termination)
        if RELOAD_SIGNAL is not None:
            self._previous[RELOAD_SIGNAL] = signal.signal(RELOAD_SIGNAL, self.handle_reload)
        return self

    def restore(self) -> None:
        """Put back the handlers that were active before ``install``."""
        for signum, handler in self._previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
        self._previous.clear()
