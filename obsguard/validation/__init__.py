"""obsguard request validation package.

Public API:
  - RequestValidator              — path-dispatched query / time-range / pattern checks
  - calculate_complexity_score()  — heuristic PromQL cost
  - parse_time_parameter()        — RFC 3339 or Unix seconds
  - resolve_time_range()          — start/end or duration → timedelta
  - ValidationMiddleware          — 400 VALIDATION_ERROR on rejection
"""

from __future__ import annotations

from obsguard.validation.complexity import calculate_complexity_score
from obsguard.validation.middleware import ValidationMiddleware
from obsguard.validation.timerange import parse_time_parameter, resolve_time_range
from obsguard.validation.validator import RequestValidator

__all__ = [
    "RequestValidator",
    "ValidationMiddleware",
    "calculate_complexity_score",
    "parse_time_parameter",
    "resolve_time_range",
]
