"""Interval tasks that drive the pollers.

Each poller gets its own ScheduledTask: one background thread, a short
initial delay, a fixed interval and an Event used as cancellation handle.
Tasks share nothing, so a slow drive run never delays the mailbox.
``run_now()`` triggers a run on demand from the caller's thread.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Run ``func`` every ``interval`` seconds in a background thread.

    Args:
        name: Task name for logs and the thread name.
        func: Callable run on every tick. Exceptions are logged, never
            propagated, so one failed tick does not stop the schedule.
        interval: Seconds between the end of one run and the start of the next.
        initial_delay: Seconds before the first run.
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], Any],
        interval: float,
        initial_delay: float = 10.0,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.name = name
        self.func = func
        self.interval = interval
        self.initial_delay = max(0.0, initial_delay)
        self._cancelled = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0
        self.last_result: Any = None
        self.last_error: Optional[BaseException] = None

    def start(self) -> None:
        """Start the background thread. Calling start twice is a no-op."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._cancelled.clear()
        self._thread = threading.Thread(target=self._loop, name=f"sched-{self.name}", daemon=True)
        self._thread.start()
        logger.info(
            "Scheduled %s every %.0fs (first run in %.0fs)",
            self.name,
            self.interval,
            self.initial_delay,
        )

    def cancel(self, timeout: float = 30.0) -> None:
        """Stop scheduling. A run already in progress completes first."""
        self._cancelled.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("Stopped %s", self.name)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_now(self) -> Any:
        """Run the task immediately in the calling thread.

        Returns:
            Whatever ``func`` returned, or None if it raised.
        """
        self.runs += 1
        try:
            self.last_result = self.func()
            self.last_error = None
        except Exception as e:
            logger.exception("Scheduled task %s failed", self.name)
            self.last_result = None
            self.last_error = e
        return self.last_result

    def _loop(self) -> None:
        if self._cancelled.wait(timeout=self.initial_delay):
            return
        while not self._cancelled.is_set():
            self.run_now()
            self._cancelled.wait(timeout=self.interval)
