"""Forward worker: one listening socket bridged to one target.

This module implements the worker that serves a single forwarding rule:
- Binding and listening on the rule's listen endpoint
- A dedicated accept loop thread
- One handler thread per accepted connection, running a Relay
- Tracking of live relays and pending target connects so shutdown can drain
  or force-close them
- Per-worker traffic statistics

The accept loop blocks in ``accept`` and is cancelled by shutting down and
closing the listening socket; no polling is involved. A target that cannot
be reached only costs the connection that was being relayed, the worker keeps
accepting.

Example:
    worker = ForwardWorker(rule, settings)
    worker.start()
    ...
    worker.stop(grace_period=5.0)
"""

import contextlib
import socket
import socketserver
import threading
import time
from enum import Enum
from typing import Final

from loguru import logger

from ..config import Settings
from ..exceptions import BindError, ConnectError, ForwardError
from ..rules import Endpoint, Rule
from ..utils.utils import format_bytes
from .forward_stats import ForwardStats
from .relay import Relay, RelayOutcome, open_target

# Constants
ACCEPT_JOIN_TIMEOUT: Final = 1.0  # Seconds
ACCEPT_ERROR_DELAY: Final = 0.1  # Seconds to back off after a failed accept
FORCE_CLOSE_TIMEOUT: Final = 1.0  # Seconds to wait for force-closed relays


class WorkerState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class ForwardServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    """Listening socket of a forward worker.

    Only SO_REUSEADDR is set. A port held by another listener fails to bind.
    """

    allow_reuse_address = True
    daemon_threads = True
    block_on_close = False

    def __init__(self, worker: "ForwardWorker", backlog: int) -> None:
        self.worker = worker
        self.request_queue_size = backlog
        super().__init__(worker.rule.listen_endpoint, ForwardHandler)


class ForwardHandler(socketserver.BaseRequestHandler):
    """Hand an accepted connection over to the owning worker."""

    def handle(self) -> None:
        self.server.worker.handle_connection(self.request, self.client_address)


class ForwardWorker:
    """Serve one forwarding rule until stopped."""

    def __init__(self, rule: Rule, settings: Settings | None = None) -> None:
        self.rule = rule
        self.settings = settings or Settings()
        self.state = WorkerState.STARTING
        self.stats = ForwardStats()
        self._server: ForwardServer | None = None
        self._accept_thread: threading.Thread | None = None
        self._relays: set[Relay] = set()
        self._pending: set[socket.socket] = set()
        self._lock = threading.Lock()
        self._relays_changed = threading.Condition(self._lock)

    def __repr__(self) -> str:
        return f"<ForwardWorker {self.rule} {self.state.value}>"

    @property
    def listen_address(self) -> Endpoint | None:
        """Address the listening socket is bound to, None before binding."""
        if self._server is None:
            return None
        return self._server.server_address[:2]

    @property
    def active_relays(self) -> int:
        with self._lock:
            return len(self._relays)

    @property
    def relays(self) -> list[Relay]:
        with self._lock:
            return list(self._relays)

    @property
    def pending_connects(self) -> int:
        """Accepted connections still waiting for the target to answer."""
        with self._lock:
            return len(self._pending)

    def start(self) -> None:
        """Bind the listen endpoint and start accepting connections.

        Raises:
            BindError: If the listen endpoint cannot be bound
            ForwardError: If the worker was already started
        """
        with self._lock:
            if self.state is not WorkerState.STARTING or self._server is not None:
                raise ForwardError(f"worker for {self.rule} was already started")

        try:
            server = ForwardServer(self, self.settings.backlog)
        except OSError as e:
            with self._lock:
                self.state = WorkerState.STOPPED
            raise BindError(self.rule.listen_endpoint, e.strerror or str(e)) from e

        with self._lock:
            self._server = server
            if self.state is not WorkerState.STARTING:
                # Stopped while binding
                server.server_close()
                return
            self.state = WorkerState.RUNNING

        self._accept_thread = threading.Thread(
            target=self._accept_loop,
            name=f"accept-{self.rule.listen_ip}:{self.rule.listen_port}",
            daemon=True,
        )
        self._accept_thread.start()
        logger.info(f"Forwarding {self.rule}")

    def _accept_loop(self) -> None:
        server = self._server
        while self.state is WorkerState.RUNNING:
            try:
                request, client_address = server.get_request()
            except OSError as e:
                if self.state is not WorkerState.RUNNING:
                    break
                logger.warning(f"{self.rule}: accept failed: {e}")
                time.sleep(ACCEPT_ERROR_DELAY)
                continue

            if self.state is not WorkerState.RUNNING:
                server.shutdown_request(request)
                break

            self.stats.connection_accepted()
            try:
                server.process_request(request, client_address)
            except Exception:
                logger.exception(f"{self.rule}: cannot start relay thread")
                server.shutdown_request(request)

        logger.debug(f"{self.rule}: accept loop finished")

    def handle_connection(self, inbound: socket.socket, client_address: Endpoint) -> None:
        """Bridge one accepted connection to the rule's target.

        Runs on the connection's own thread. While the target is being dialled
        the inbound socket counts as pending, so ``stop`` waits for it and can
        shut it down.
        """
        client = f"{client_address[0]}:{client_address[1]}"
        if not self._begin_connect(inbound):
            return

        try:
            outbound = open_target(self.rule, self.settings.connect_timeout)
        except ConnectError as e:
            self._end_connect(inbound)
            self.stats.connect_failed()
            logger.warning(f"{self.rule}: dropping {client} ({RelayOutcome.CONNECT_FAILURE.value}): {e}")
            return

        relay = Relay(inbound, outbound, client_address, self.stats, self.settings.buffer_size)
        if not self._track(relay):
            # Worker stopped while the target was being dialled
            for sock in (outbound, inbound):
                with contextlib.suppress(OSError):
                    sock.close()
            return

        logger.debug(f"{self.rule}: relaying {client}")
        try:
            outcome = relay.run()
        finally:
            self._untrack(relay)
        logger.debug(f"{self.rule}: {client} finished ({outcome.value})")

    def _begin_connect(self, inbound: socket.socket) -> bool:
        with self._lock:
            if self.state is not WorkerState.RUNNING:
                return False
            self._pending.add(inbound)
            return True

    def _end_connect(self, inbound: socket.socket) -> None:
        with self._relays_changed:
            self._pending.discard(inbound)
            self._relays_changed.notify_all()

    def _track(self, relay: Relay) -> bool:
        with self._relays_changed:
            self._pending.discard(relay.inbound)
            self._relays_changed.notify_all()
            if self.state is not WorkerState.RUNNING:
                return False
            self._relays.add(relay)
            self.stats.connection_started()
            return True

    def _untrack(self, relay: Relay) -> None:
        with self._relays_changed:
            if relay in self._relays:
                self._relays.discard(relay)
                self.stats.connection_ended()
            self._relays_changed.notify_all()

    def _idle(self) -> bool:
        return not self._relays and not self._pending

    def _close_listener(self) -> None:
        server = self._server
        if server is None:
            return
        # Wakes the accept loop blocked on this socket
        with contextlib.suppress(OSError):
            server.socket.shutdown(socket.SHUT_RDWR)
        server.server_close()

    def stop(self, grace_period: float | None = None) -> None:
        """Stop accepting, drain relays, force-close whatever is left.

        Args:
            grace_period: Seconds to wait for relays and pending connects to
                finish on their own, defaults to the configured grace period
        """
        grace = self.settings.grace_period if grace_period is None else grace_period
        with self._lock:
            if self.state in (WorkerState.STOPPING, WorkerState.STOPPED):
                return
            self.state = WorkerState.STOPPING

        logger.debug(f"{self.rule}: stopping")
        self._close_listener()
        if self._accept_thread is not None:
            self._accept_thread.join(timeout=ACCEPT_JOIN_TIMEOUT)

        with self._relays_changed:
            drained = self._relays_changed.wait_for(self._idle, timeout=grace)
            pending = list(self._pending)

        if not drained:
            leftovers = self.relays
            logger.warning(
                f"{self.rule}: grace period expired, closing {len(leftovers)} relay(s) "
                f"and {len(pending)} pending connection(s)"
            )
            for relay in leftovers:
                relay.close()
            for inbound in pending:
                with contextlib.suppress(OSError):
                    inbound.shutdown(socket.SHUT_RDWR)
            with self._relays_changed:
                self._relays_changed.wait_for(self._idle, timeout=FORCE_CLOSE_TIMEOUT)

        with self._lock:
            self.state = WorkerState.STOPPED

        snapshot = self.stats.snapshot()
        logger.info(
            f"Stopped {self.rule}: {snapshot.accepted} connection(s), "
            f"{snapshot.connect_failures} connect failure(s), "
            f"{format_bytes(snapshot.total_bytes)} transferred"
        )
