"""Bidirectional byte relay between an accepted client and its target.

A relay owns two connected sockets and copies raw bytes between them until
both directions are done:
- client -> target ("upstream")
- target -> client ("downstream")

Each direction runs on its own thread with blocking ``recv``/``sendall``, so a
peer that stops reading only stalls the direction writing to it. When one
side reaches end of stream the relay half-closes the opposite socket and the
other direction keeps copying. A socket error in either direction ends the
whole relay; it never propagates further than the relay itself.

A relay can be force-closed from another thread. Shutting the sockets down
wakes both copy threads, which then finish and the relay closes both sockets
and records the outcome.

Example:
    outbound = open_target(rule, timeout=5.0)
    relay = Relay(inbound, outbound, client_address, stats)
    relay.run()
"""

import contextlib
import socket
import threading
from enum import Enum

from loguru import logger

from ..config import DEFAULT_BUFFER_SIZE
from ..exceptions import ConnectError, RelayError
from ..rules import Endpoint, Rule
from .forward_stats import ForwardStats


class RelayOutcome(str, Enum):
    """How a relay ended."""

    CLOSED_BY_PEER = "closed-by-peer"
    CLOSED_BY_SHUTDOWN = "closed-by-shutdown"
    CONNECT_FAILURE = "connect-failure"


def open_target(rule: Rule, timeout: float) -> socket.socket:
    """Connect to the target endpoint of a rule.

    Args:
        rule: Rule whose forward endpoint is dialled
        timeout: Seconds allowed for the connection to be established

    Returns:
        socket.socket: Connected blocking socket

    Raises:
        ConnectError: If the target cannot be reached in time
    """
    try:
        outbound = socket.create_connection(rule.forward_endpoint, timeout=timeout)
    except OSError as e:
        raise ConnectError(rule.forward_endpoint, str(e) or type(e).__name__) from e
    outbound.settimeout(None)
    return outbound


class Relay:
    """Copy bytes between two connected sockets until both directions close."""

    def __init__(
        self,
        inbound: socket.socket,
        outbound: socket.socket,
        client_address: Endpoint,
        stats: ForwardStats | None = None,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ) -> None:
        self.inbound = inbound
        self.outbound = outbound
        self.client_address = client_address
        self.upstream_open = True
        self.downstream_open = True
        self.outcome: RelayOutcome | None = None
        self._stats = stats
        self._buffer_size = buffer_size
        self._closing = False
        self._lock = threading.Lock()
        self._finished = threading.Event()

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the relay finished. Returns False on timeout."""
        return self._finished.wait(timeout)

    def _copy(self, source: socket.socket, destination: socket.socket) -> bool:
        """Move one chunk from source to destination.

        Returns:
            bool: False once the source reached end of stream

        Raises:
            RelayError: On any socket error in either direction
        """
        try:
            data = source.recv(self._buffer_size)
        except OSError as e:
            raise RelayError(f"receive failed: {e}") from e
        if not data:
            return False

        try:
            destination.sendall(data)
        except OSError as e:
            raise RelayError(f"send failed: {e}") from e

        if self._stats is not None:
            if source is self.inbound:
                self._stats.update_bytes(upstream=len(data))
            else:
                self._stats.update_bytes(downstream=len(data))
        return True

    def _pump(self, source: socket.socket, destination: socket.socket) -> None:
        """Copy one direction until end of stream, error or close."""
        try:
            while not self._closing and self._copy(source, destination):
                pass
        except RelayError as e:
            if not self._closing:
                logger.debug(f"Relay for {self.client_address[0]}:{self.client_address[1]} ended: {e}")
            # The other direction must not outlive a broken connection
            self._shutdown_sockets()
        finally:
            self._half_close(source, destination)

    def _half_close(self, source: socket.socket, destination: socket.socket) -> None:
        if source is self.inbound:
            self.upstream_open = False
        else:
            self.downstream_open = False
        # Peer may already be gone
        with contextlib.suppress(OSError):
            destination.shutdown(socket.SHUT_WR)

    def _shutdown_sockets(self) -> None:
        for sock in (self.inbound, self.outbound):
            with contextlib.suppress(OSError):
                sock.shutdown(socket.SHUT_RDWR)

    def run(self) -> RelayOutcome:
        """Relay traffic until both directions stop or the relay is closed.

        Upstream is copied on the calling thread, downstream on a helper
        thread that is joined before returning.
        """
        downstream = threading.Thread(
            target=self._pump,
            args=(self.outbound, self.inbound),
            name=f"relay-{self.client_address[0]}:{self.client_address[1]}",
            daemon=True,
        )
        try:
            downstream.start()
            self._pump(self.inbound, self.outbound)
            downstream.join()
        finally:
            self._finish()
        return self.outcome

    def close(self) -> None:
        """Force the relay to end regardless of in-flight data."""
        with self._lock:
            if self._closing or self.finished:
                return
            self._closing = True
        self._shutdown_sockets()

    def _finish(self) -> None:
        with self._lock:
            self.outcome = (
                RelayOutcome.CLOSED_BY_SHUTDOWN if self._closing else RelayOutcome.CLOSED_BY_PEER
            )
        self.upstream_open = False
        self.downstream_open = False
        for sock in (self.inbound, self.outbound):
            with contextlib.suppress(OSError):
                sock.close()
        self._finished.set()
