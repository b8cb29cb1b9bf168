"""obsguard rate limiting package.

Public API:
  - RateLimiter          — per-client token buckets + global sliding window
  - ClientLimiter        — one client's bucket
  - stop_limiter()       — stop a limiter that may be None
  - extract_client_id()  — ip / token / user-agent / header identification
  - RateLimitMiddleware  — 429 on denial, X-RateLimit-* headers on success
"""

from __future__ import annotations

from obsguard.ratelimit.identity import extract_client_id
from obsguard.ratelimit.limiter import ClientLimiter, RateLimiter, stop_limiter
from obsguard.ratelimit.middleware import RateLimitMiddleware

__all__ = [
    "ClientLimiter",
    "RateLimiter",
    "RateLimitMiddleware",
    "extract_client_id",
    "stop_limiter",
]
