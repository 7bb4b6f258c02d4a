"""Worker lifecycle: shared cancellation, concurrent workers, graceful exit."""

import logging
import signal
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .notify import Notifier

logger = logging.getLogger(__name__)

DAEMON_NAME = "sysmond"

Worker = Callable[[], object]


class CancellationToken:
    """Process-wide stop signal handed to every worker."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()

    def cancel(self) -> bool:
        """
        Set the signal.

        Returns:
            True only for the call that actually set it
        """
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
            return True

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or ``timeout`` elapses; returns the cancel state."""
        return self._event.wait(timeout)


class OrchestratorState(Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    DRAINED = "drained"
    EXITED = "exited"


class WorkerOrchestrator:
    """
    Run named workers concurrently until they all finish.

    The first interrupt cancels the shared token and lets workers drain. Once
    every worker has joined, an interrupt during the exit grace window exits
    immediately with status 0, but only for the instance-lock holder.
    """

    def __init__(
        self,
        workers: List[Tuple[str, Worker]],
        token: CancellationToken,
        notifier: Notifier,
        owns_instance_lock: bool = True,
        exit_grace: float = 3.0,
        join_poll: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.workers = list(workers)
        self.token = token
        self.notifier = notifier
        self.owns_instance_lock = owns_instance_lock
        self.exit_grace = exit_grace
        self.join_poll = join_poll
        self.sleep = sleep
        self.state = OrchestratorState.STARTING
        self.results = {}

    def install_signal_handlers(self) -> None:
        """Route SIGINT/SIGTERM to ``handle_interrupt`` (main thread only)."""
        signal.signal(signal.SIGINT, self.handle_interrupt)
        signal.signal(signal.SIGTERM, self.handle_interrupt)

    def handle_interrupt(self, signum=None, frame=None) -> None:
        """Two-stage interrupt policy."""
        if self.state == OrchestratorState.DRAINED:
            if self.owns_instance_lock:
                logger.info("Interrupted during exit grace, exiting now")
                self.state = OrchestratorState.EXITED
                raise SystemExit(0)
            return

        if self.state in (OrchestratorState.STARTING, OrchestratorState.RUNNING):
            if self.token.cancel():
                logger.info(f"Received signal {signum}, stopping workers...")
                self.state = OrchestratorState.STOPPING

    def run(self) -> int:
        """Start all workers, join them, wait the exit grace, return the exit code."""
        self.notifier.notify(DAEMON_NAME, "Running...", include_timestamp=True)

        with ThreadPoolExecutor(
            max_workers=max(1, len(self.workers)), thread_name_prefix=DAEMON_NAME
        ) as pool:
            futures = {pool.submit(fn): name for name, fn in self.workers}

            if self.state == OrchestratorState.STARTING:
                self.state = OrchestratorState.RUNNING
            logger.info(f"Started workers: {', '.join(futures.values())}")

            pending = set(futures)
            while pending:
                # Short timeouts keep the main thread responsive to signals
                done, pending = wait(pending, timeout=self.join_poll)
                for future in done:
                    self._record(futures[future], future)

        self.notifier.notify(
            DAEMON_NAME,
            "All workers have finished, exiting.",
            include_timestamp=True,
        )

        self.state = OrchestratorState.DRAINED
        if self.exit_grace > 0:
            self.sleep(self.exit_grace)

        self.state = OrchestratorState.EXITED
        return 0

    def _record(self, name: str, future) -> None:
        error = future.exception()
        if error is not None:
            logger.error(f"Worker {name} crashed: {error!r}")
            self.results[name] = error
            return

        result = future.result()
        self.results[name] = result
        logger.info(f"Worker {name} finished: {result}")


def exit_grace_delay(seconds: float, sleep: Callable[[float], None] = time.sleep) -> None:
    """Early-exit grace wait; interrupts are ignored while it runs."""
    if seconds <= 0:
        return

    previous = signal.signal(signal.SIGINT, signal.SIG_IGN)
    try:
        sleep(seconds)
    finally:
        signal.signal(signal.SIGINT, previous)
