"""RequestValidator — bounds the cost of metrics queries before they run.

Dispatch on the request path (first match wins):
  contains "/query"      → query checks; "query_range" paths add the time range
  contains "/historical" → metric checks + time range
  contains "/analysis"   → metric checks; "/anomaly" paths add sensitivity
  anything else          → method + body size checks

Metric patterns are compiled once with google-re2 (linear-time matching, no
catastrophic backtracking on operator-supplied patterns) and applied with
search semantics. The block list is checked first; an empty allow list
admits nothing.

IMPORT RULES:
  - `import re2` ONLY for user-supplied patterns.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

import re2  # google-re2

from obsguard.config import ValidationConfig
from obsguard.constants import (
    MAX_ANOMALY_SENSITIVITY,
    MAX_REQUEST_BODY_BYTES,
    MIN_ANOMALY_SENSITIVITY,
)
from obsguard.errors import ConfigError, RequestValidationError
from obsguard.utils.durations import format_duration
from obsguard.validation.complexity import calculate_complexity_score
from obsguard.validation.timerange import resolve_time_range

_ALLOWED_METHODS: frozenset[str] = frozenset({"GET", "POST", "DELETE"})


def _compile_patterns(patterns: tuple[str, ...], kind: str) -> list[tuple[str, Any]]:
    compiled = []
    for pattern in patterns:
        try:
            compiled.append((pattern, re2.compile(pattern)))
        except re2.error as exc:
            raise ConfigError(f"invalid {kind} metric pattern '{pattern}': {exc}") from exc
    return compiled


class RequestValidator:
    """Stateless per request; all state is the compiled configuration.

    Raises:
        ConfigError: a configured pattern is not a valid re2 expression.
    """

    def __init__(self, config: ValidationConfig) -> None:
        self.config = config
        self._blocked = _compile_patterns(config.blocked_metric_patterns, "blocked")
        self._allowed = _compile_patterns(config.allowed_metric_patterns, "allowed")

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def validate(
        self,
        method: str,
        path: str,
        params: Mapping[str, str],
        content_length: Optional[int] = None,
    ) -> None:
        """Raise RequestValidationError if the request must be rejected."""
        if "/query" in path:
            self._validate_query(path, params)
        elif "/historical" in path:
            self._validate_historical(params)
        elif "/analysis" in path:
            self._validate_analysis(path, params)
        else:
            self._validate_generic(method, content_length)

    # ── Endpoint checks ───────────────────────────────────────────────────────

    def _validate_query(self, path: str, params: Mapping[str, str]) -> None:
        query = params.get("query", "")
        if not query:
            raise RequestValidationError("query parameter is required", "missing_parameter")
        if len(query) > self.config.max_query_length:
            raise RequestValidationError(
                f"query length exceeds maximum ({self.config.max_query_length} characters)",
                "query_too_long",
            )
        self.check_metric(query)
        if self.config.enable_complexity_validation:
            self.check_complexity(query)
        if "query_range" in path:
            self.check_time_range(params)

    def _validate_historical(self, params: Mapping[str, str]) -> None:
        metric = params.get("metric", "")
        if not metric:
            raise RequestValidationError("metric parameter is required", "missing_parameter")
        self.check_metric(metric)
        self.check_time_range(params)

    def _validate_analysis(self, path: str, params: Mapping[str, str]) -> None:
        metric = params.get("metric", "")
        if not metric:
            raise RequestValidationError("metric parameter is required", "missing_parameter")
        self.check_metric(metric)
        if "/anomaly" in path:
            self.check_sensitivity(params)

    def _validate_generic(self, method: str, content_length: Optional[int]) -> None:
        if method.upper() not in _ALLOWED_METHODS:
            raise RequestValidationError(f"unsupported HTTP method: {method}", "unsupported_method")
        # Declared size only. A chunked body without Content-Length is not
        # bounded here; the handler that reads the body owns that case.
        if method.upper() == "POST" and content_length is not None and content_length > MAX_REQUEST_BODY_BYTES:
            raise RequestValidationError("request body too large (max 1MB)", "body_too_large")

    # ── Individual checks ─────────────────────────────────────────────────────

    def check_metric(self, metric: str) -> None:
        for pattern, regex in self._blocked:
            if regex.search(metric):
                raise RequestValidationError(
                    f"metric '{metric}' matches blocked pattern '{pattern}'", "metric_blocked"
                )
        for _, regex in self._allowed:
            if regex.search(metric):
                return
        raise RequestValidationError(
            f"metric '{metric}' does not match any allowed patterns", "metric_not_allowed"
        )

    def check_complexity(self, query: str) -> None:
        score = calculate_complexity_score(query)
        if score > self.config.max_complexity_score:
            raise RequestValidationError(
                f"query complexity score ({score}) exceeds maximum "
                f"({self.config.max_complexity_score})",
                "query_too_complex",
            )

    def check_time_range(self, params: Mapping[str, str]) -> None:
        window = resolve_time_range(params)
        if window > self.config.max_time_range:
            raise RequestValidationError(
                f"time range ({format_duration(window)}) exceeds maximum allowed "
                f"({format_duration(self.config.max_time_range)})",
                "time_range_too_large",
            )

    def check_sensitivity(self, params: Mapping[str, str]) -> None:
        raw = params.get("sensitivity", "")
        if not raw:
            return
        try:
            sensitivity = float(raw)
        except ValueError as exc:
            raise RequestValidationError(
                f"invalid sensitivity value: {raw}", "invalid_sensitivity"
            ) from exc
        if not MIN_ANOMALY_SENSITIVITY <= sensitivity <= MAX_ANOMALY_SENSITIVITY:
            raise RequestValidationError(
                f"sensitivity must be between {MIN_ANOMALY_SENSITIVITY} and {MAX_ANOMALY_SENSITIVITY}",
                "invalid_sensitivity",
            )

    def stats(self) -> dict[str, Any]:
        return {
            "validation_enabled": self.config.enabled,
            "max_query_length": self.config.max_query_length,
            "max_time_range": format_duration(self.config.max_time_range),
            "allowed_metric_patterns": list(self.config.allowed_metric_patterns),
            "blocked_metric_patterns": list(self.config.blocked_metric_patterns),
            "max_time_series": self.config.max_time_series,
            "complexity_validation": self.config.enable_complexity_validation,
            "max_complexity_score": self.config.max_complexity_score,
        }
