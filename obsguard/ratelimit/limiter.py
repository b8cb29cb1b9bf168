"""Token-bucket rate limiter with an optional global ceiling.

Per client:
  - a ClientLimiter is created lazily with ``tokens = burst_size``,
    ``max_tokens = refill_rate = requests_per_minute``
  - refill is recomputed at most once per second:
        tokens += floor(elapsed_minutes * refill_rate), capped at max_tokens
    and last_refill only advances when at least one token was added
  - a request is denied while tokens <= 0

Global ceiling (enable_global_limit):
  A shared sliding window records the time of every allowed request. A
  request is denied while the window already holds
  ``global_requests_per_minute`` entries from the trailing 60 seconds, so the
  total allowed across all clients in any 60 s span never exceeds the limit.

Idle clients (last_refill older than the idle interval) are evicted by a
PeriodicTask running every ``cleanup_interval``.
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Optional

from obsguard.config import RateLimitConfig
from obsguard.constants import (
    ACTIVE_CLIENT_WINDOW_S,
    MIN_REFILL_INTERVAL_S,
    RATE_LIMIT_WINDOW_S,
)
from obsguard.utils.logger import get_logger
from obsguard.utils.periodic import PeriodicTask

logger = get_logger(__name__)


@dataclass
class ClientLimiter:
    tokens: int
    last_refill: float
    max_tokens: int
    refill_rate: int
    refill_period: float = float(RATE_LIMIT_WINDOW_S)

    def refill(self, now: float) -> None:
        elapsed = now - self.last_refill
        if elapsed < MIN_REFILL_INTERVAL_S:
            return
        to_add = math.floor(elapsed / self.refill_period * self.refill_rate)
        if to_add > 0:
            self.tokens = min(self.tokens + to_add, self.max_tokens)
            self.last_refill = now


class RateLimiter:
    """Per-client token buckets behind a single lock.

    Args:
        config: Rate limit configuration.
        clock:  Monotonic seconds. Injected by tests.
        start_cleanup: Start the idle-client sweep thread.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        clock: Callable[[], float] = time.monotonic,
        start_cleanup: bool = True,
    ) -> None:
        self.config = config
        self._clock = clock
        self._clients: dict[str, ClientLimiter] = {}
        self._window: deque[float] = deque()
        self._lock = threading.Lock()
        self._cleanup_task: Optional[PeriodicTask] = None

        if start_cleanup:
            interval = config.cleanup_interval.total_seconds()
            self._cleanup_task = PeriodicTask(
                "ratelimit-cleanup", interval, lambda: self.cleanup(interval)
            )
            self._cleanup_task.start()

    def allow(self, client_id: str) -> bool:
        now = self._clock()
        with self._lock:
            client = self._clients.get(client_id)
            if client is None:
                client = ClientLimiter(
                    tokens=self.config.burst_size,
                    last_refill=now,
                    max_tokens=self.config.requests_per_minute,
                    refill_rate=self.config.requests_per_minute,
                )
                self._clients[client_id] = client

            client.refill(now)
            if client.tokens <= 0:
                return False

            if self.config.enable_global_limit:
                self._trim_window(now)
                if len(self._window) >= self.config.global_requests_per_minute:
                    return False
                self._window.append(now)

            client.tokens -= 1
            return True

    def _trim_window(self, now: float) -> None:
        cutoff = now - RATE_LIMIT_WINDOW_S
        while self._window and self._window[0] <= cutoff:
            self._window.popleft()

    def cleanup(self, idle: float) -> int:
        """Evict clients whose last refill is older than ``idle`` seconds."""
        now = self._clock()
        cutoff = now - idle
        with self._lock:
            stale = [cid for cid, c in self._clients.items() if c.last_refill < cutoff]
            for cid in stale:
                del self._clients[cid]
            self._trim_window(now)
        if stale:
            logger.debug("Evicted idle rate-limit clients", count=len(stale))
        return len(stale)

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        cutoff = now - ACTIVE_CLIENT_WINDOW_S
        with self._lock:
            self._trim_window(now)
            return {
                "total_clients": len(self._clients),
                "active_clients": sum(1 for c in self._clients.values() if c.last_refill > cutoff),
                "total_tokens": sum(c.tokens for c in self._clients.values()),
                "global_limit": self.config.global_requests_per_minute,
                "global_window_requests": len(self._window),
            }

    def stop(self) -> None:
        """Stop the cleanup sweep. Idempotent and thread-safe."""
        if self._cleanup_task is not None:
            self._cleanup_task.stop()


def stop_limiter(limiter: Optional[RateLimiter]) -> None:
    """Stop ``limiter`` if there is one."""
    if limiter is not None:
        limiter.stop()
