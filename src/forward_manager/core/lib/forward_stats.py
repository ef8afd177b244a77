"""Traffic statistics for forward workers.

Every worker owns one ForwardStats instance that its relays update. It tracks:
- Accepted connections
- Currently active relays
- Failed connection attempts to the target
- Bytes copied in each direction

All operations are thread-safe, since relays update the counters from their
own threads while the supervisor reads them from the main thread.

Example:
    stats = ForwardStats()
    stats.connection_started()
    stats.update_bytes(upstream=1024, downstream=2048)
    stats.connection_ended()
"""

import threading
import time
from dataclasses import dataclass


@dataclass(frozen=True)
class StatsSnapshot:
    """Point-in-time copy of a worker's counters."""

    accepted: int
    active: int
    connect_failures: int
    bytes_upstream: int
    bytes_downstream: int
    uptime: float

    @property
    def total_bytes(self) -> int:
        return self.bytes_upstream + self.bytes_downstream


class ForwardStats:
    """Thread-safe statistics tracker for one forward worker.

    ``upstream`` counts bytes copied from the accepted client towards the
    target, ``downstream`` counts bytes copied from the target back to the
    client.
    """

    def __init__(self) -> None:
        self.accepted = 0
        self.active = 0
        self.connect_failures = 0
        self.bytes_upstream = 0
        self.bytes_downstream = 0
        self.start_time = time.monotonic()
        self._lock = threading.Lock()

    def update_bytes(self, upstream: int = 0, downstream: int = 0) -> None:
        """Add transferred byte counts.

        Args:
            upstream: Bytes sent from client to target
            downstream: Bytes sent from target to client
        """
        with self._lock:
            self.bytes_upstream += upstream
            self.bytes_downstream += downstream

    def connection_accepted(self) -> None:
        with self._lock:
            self.accepted += 1

    def connect_failed(self) -> None:
        with self._lock:
            self.connect_failures += 1

    def connection_started(self) -> None:
        """Increment the active relay counter."""
        with self._lock:
            self.active += 1

    def connection_ended(self) -> None:
        """Decrement the active relay counter."""
        with self._lock:
            self.active -= 1

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                accepted=self.accepted,
                active=self.active,
                connect_failures=self.connect_failures,
                bytes_upstream=self.bytes_upstream,
                bytes_downstream=self.bytes_downstream,
                uptime=time.monotonic() - self.start_time,
            )
