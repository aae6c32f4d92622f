import logging
import threading
import time
from typing import List, Optional

from src.execution.worker.command_worker import CommandWorker

logger = logging.getLogger(__name__)


class WorkerPool:
    """
    Fixed set of worker threads with an optional watchdog that restarts a
    thread which died unexpectedly.
    """

    def __init__(self, workers: List[CommandWorker]):
        if not workers:
            raise ValueError("WorkerPool needs at least one worker")
        self.workers = workers
        self._threads: List[threading.Thread] = []
        self._watchdog_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._threads:
                return
            self._threads = [self._spawn(worker) for worker in self.workers]

    def _spawn(self, worker: CommandWorker) -> threading.Thread:
        thread = threading.Thread(target=worker.run_forever, name=worker.config.worker_id, daemon=True)
        thread.start()
        return thread

    @property
    def started(self) -> bool:
        with self._lock:
            return bool(self._threads)

    def alive_count(self) -> int:
        with self._lock:
            return sum(1 for thread in self._threads if thread.is_alive())

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for worker loops to exit on their own. Returns True when all did."""
        self._stop_event.set()
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(timeout=remaining)
        if self._watchdog_thread:
            self._watchdog_thread.join(timeout=1.0)
        stuck = [thread.name for thread in threads if thread.is_alive()]
        if stuck:
            logger.warning("Workers still busy after grace period: %s", ", ".join(stuck))
        return not stuck

    def stop(self) -> None:
        """Tell every worker to leave its loop after the entry it is running."""
        for worker in self.workers:
            worker.stop()

    def run_watchdog(self, interval_seconds: float = 1.0) -> None:
        while not self._stop_event.wait(interval_seconds):
            with self._lock:
                for idx, thread in enumerate(self._threads):
                    if thread.is_alive() or self._stop_event.is_set():
                        continue
                    worker = self.workers[idx]
                    if worker.queue.finished:
                        continue
                    logger.warning("Restarting dead worker %s", worker.config.worker_id)
                    self._threads[idx] = self._spawn(worker)

    def start_watchdog(self, interval_seconds: float = 1.0) -> None:
        self._watchdog_thread = threading.Thread(
            target=self.run_watchdog,
            kwargs={"interval_seconds": interval_seconds},
            name="worker-watchdog",
            daemon=True,
        )
        self._watchdog_thread.start()
