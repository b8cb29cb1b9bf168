"""Cancellable background sweep thread.

A PeriodicTask calls ``func`` every ``interval`` seconds on a daemon thread
until stop() is called. Between ticks the thread waits on its stop event, so
stop() returns promptly instead of waiting out the interval.

Exceptions raised by ``func`` are logged and the next tick still runs; a
failing sweep must not kill the thread that owns it.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

from obsguard.utils.logger import get_logger

logger = get_logger(__name__)


class PeriodicTask:
    def __init__(self, name: str, interval: float, func: Callable[[], object]) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.name = name
        self.interval = interval
        self._func = func
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stopped = False

    def start(self) -> None:
        with self._lock:
            if self._thread is not None or self._stopped:
                return
            self._thread = threading.Thread(
                target=self._run, name=f"obsguard-{self.name}", daemon=True
            )
            self._thread.start()
        logger.debug("Periodic task started", task=self.name, interval_s=self.interval)

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self._func()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Periodic task failed", task=self.name, error=str(exc))

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the task. Idempotent and safe to call from several threads."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            thread = self._thread
        self._stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.debug("Periodic task stopped", task=self.name)

    @property
    def running(self) -> bool:
        return self._thread is not None and not self._stopped
