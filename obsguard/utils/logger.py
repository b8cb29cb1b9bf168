"""Structured logging for obsguard.

Operational logs go through structlog to stderr. The security audit trail is
a separate NDJSON stream owned by ``obsguard.audit.logger`` and never passes
through here.

Never pass secret values or master-key material as log fields.
"""

import logging
import sys
import time
from typing import Any, Optional

import structlog
from structlog.types import Processor


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog once per process.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
        json_output: JSON lines when True, coloured console output otherwise.
    """
    processors: list[Processor] = [
        # request_id is bound here by the audit middleware
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        # stdout is reserved for the default audit stream
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "obsguard") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_id(request_id: str) -> None:
    """Attach request_id to every log line emitted in the current context."""
    structlog.contextvars.bind_contextvars(request_id=request_id)


def clear_request_id() -> None:
    structlog.contextvars.unbind_contextvars("request_id")


class PerformanceLogger:
    """Times a block and logs it at warning when it runs past warn_after_ms.

    Wraps the secret store's startup load, so a slow disk shows up in the
    logs instead of silently delaying readiness.
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
        warn_after_ms: float = 50.0,
    ):
        self.operation = operation
        self.logger = logger or get_logger()
        self.warn_after_ms = warn_after_ms
        self._start = 0.0

    def __enter__(self) -> "PerformanceLogger":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        elapsed_ms = (time.perf_counter() - self._start) * 1000
        if exc_type is not None:
            self.logger.error(
                f"{self.operation} failed",
                duration_ms=elapsed_ms,
                error_type=exc_type.__name__,
            )
        elif elapsed_ms > self.warn_after_ms:
            self.logger.warning(f"{self.operation} slow", duration_ms=elapsed_ms)
        else:
            self.logger.debug(f"{self.operation} completed", duration_ms=elapsed_ms)


configure_logging()
