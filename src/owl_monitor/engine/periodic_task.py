"""Fixed-delay periodic task on one worker thread."""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger('owl-monitor.engine')


class PeriodicTask:
    """
    Run ``target`` repeatedly with ``interval`` seconds between the end of
    one run and the start of the next.

    All runs happen on a single thread, so two runs never overlap. cancel()
    interrupts the idle wait at once; a run already in progress finishes
    first (the owner is responsible for unblocking it).
    """

    def __init__(self, target: Callable[[], None], interval: float, name: str = "PeriodicTask"):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.target = target
        self.interval = interval
        self.name = name
        self.runs = 0
        self._cancelled = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def start(self):
        if self._thread is not None:
            raise RuntimeError(f"{self.name} already started")
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def cancel(self):
        """Request the loop to stop before its next run."""
        self._cancelled.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker thread. Returns True once it has exited."""
        if self._thread is None:
            return True
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        return not self._thread.is_alive()

    def _run(self):
        logger.debug(f"{self.name} thread started")
        while not self._cancelled.is_set():
            try:
                self.target()
            except Exception as e:
                logger.exception(f"{self.name} error: {e}")
            self.runs += 1
            if self._cancelled.wait(self.interval):
                break
        logger.debug(f"{self.name} thread stopped")
