"""Supervisor owning every forward worker of the process.

The supervisor drives the whole service lifecycle:
- Loading the forwards file into rules
- Starting one worker per rule, in file order
- Collecting per-rule bind failures without aborting startup
- Reloading (stop everything, load again, start again)
- Stopping all workers concurrently on shutdown

Requests arrive through ``request_shutdown`` and ``request_reload``. Both only
enqueue a message and are safe to call from signal handlers; the actual work
happens on the thread running ``run``.

Example:
    supervisor = Supervisor(Settings(config_path=Path("/etc/socat/forwards.conf")))
    SignalCoordinator(supervisor).install()
    supervisor.run()
"""

import queue
from concurrent.futures import ThreadPoolExecutor
from enum import Enum

from loguru import logger

from .config import Settings
from .exceptions import BindError
from .lib.forward_server import ForwardWorker
from .rules import Endpoint, RuleSet, load_rules


class SupervisorState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"


class Request(str, Enum):
    SHUTDOWN = "shutdown"
    RELOAD = "reload"


class Supervisor:
    """Own the worker registry and coordinate startup, reload and shutdown."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or Settings()
        self.state = SupervisorState.IDLE
        self.ruleset = RuleSet()
        self.bind_failures: list[BindError] = []
        self._workers: dict[Endpoint, ForwardWorker] = {}
        self._requests: queue.SimpleQueue[tuple[Request, str]] = queue.SimpleQueue()
        self._shutdown_requested = False

    @property
    def workers(self) -> list[ForwardWorker]:
        """Registered workers in rule order."""
        return list(self._workers.values())

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def request_shutdown(self, reason: str = "shutdown requested") -> bool:
        """Ask the supervisor to shut down.

        Safe to call from a signal handler: it only enqueues a message and
        never logs or blocks. Only the first call has an effect.

        Args:
            reason: Logged by the supervisor thread when it acts on the request

        Returns:
            bool: True if this call queued the shutdown
        """
        if self._shutdown_requested:
            return False
        self._shutdown_requested = True
        self._requests.put((Request.SHUTDOWN, reason))
        return True

    def request_reload(self, reason: str = "reload requested") -> None:
        """Ask the supervisor to reload its rules. Safe in signal handlers."""
        if not self._shutdown_requested:
            self._requests.put((Request.RELOAD, reason))

    def start(self) -> None:
        """Load the rules and start one worker per rule.

        Raises:
            ConfigError: If the forwards file cannot be read
        """
        self.state = SupervisorState.LOADING
        logger.info(f"Loading forwarding rules from {self.settings.config_path}")
        self.ruleset = load_rules(self.settings.config_path)
        self.bind_failures = []

        for rule in self.ruleset.rules:
            worker = ForwardWorker(rule, self.settings)
            try:
                worker.start()
            except BindError as e:
                logger.error(f"Rule on line {rule.line_number} ({rule}) not started: {e}")
                self.bind_failures.append(e)
                continue
            self._workers[rule.listen_endpoint] = worker

        if not self.ruleset.rules:
            logger.warning("No forwarding rules configured, idling")
        logger.info(
            f"Running {len(self._workers)} of {len(self.ruleset.rules)} rule(s), "
            f"{len(self.bind_failures)} failed to bind"
        )
        self.state = SupervisorState.RUNNING

    def _stop_workers(self) -> None:
        workers = self.workers
        if workers:
            # One slow worker must not hold up the others
            with ThreadPoolExecutor(max_workers=len(workers), thread_name_prefix="stop") as pool:
                futures = {pool.submit(worker.stop, self.settings.grace_period): worker for worker in workers}
            for future, worker in futures.items():
                error = future.exception()
                if error is not None:
                    logger.opt(exception=error).error(f"Failed to stop {worker.rule}")
        self._workers.clear()

    def reload(self) -> None:
        """Replace every worker with ones built from a fresh load.

        Raises:
            ConfigError: If the forwards file can no longer be read
        """
        logger.info("Reloading forwarding rules")
        self.state = SupervisorState.SHUTTING_DOWN
        self._stop_workers()
        self.start()

    def shutdown(self) -> None:
        """Stop all workers and terminate. Idempotent."""
        if self.state in (SupervisorState.SHUTTING_DOWN, SupervisorState.TERMINATED):
            return
        self._shutdown_requested = True
        self.state = SupervisorState.SHUTTING_DOWN
        logger.info(f"Shutting down {len(self._workers)} worker(s)")
        try:
            self._stop_workers()
        finally:
            self.state = SupervisorState.TERMINATED
        logger.info("All workers stopped")

    def run(self) -> None:
        """Start, then serve requests until a shutdown is requested.

        Raises:
            ConfigError: If the forwards file cannot be read at startup or
                on reload
        """
        self.start()
        self.serve()

    def serve(self) -> None:
        """Block on the request queue, then shut down.

        Raises:
            ConfigError: If the forwards file cannot be read on reload
        """
        try:
            while True:
                request, reason = self._requests.get()
                if request is Request.SHUTDOWN:
                    logger.info(f"Shutdown: {reason}")
                    break
                if not self._shutdown_requested:
                    logger.info(f"Reload: {reason}")
                    self.reload()
        finally:
            self.shutdown()
