"""Request validation middleware.

Any RequestValidationError becomes HTTP 400:
    {"status": "error", "error": <message>, "code": "VALIDATION_ERROR", "reason": <kind>}
and, when an AuditLogger is supplied, a ``validation`` audit event.

A disabled validator passes every request through. /health is exempt.
"""

from __future__ import annotations

from typing import Optional

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from obsguard.audit.logger import AuditLogger
from obsguard.errors import RequestValidationError
from obsguard.utils.logger import get_logger
from obsguard.validation.validator import RequestValidator

logger = get_logger(__name__)

_EXEMPT_PATHS: frozenset[str] = frozenset({"/health"})


def validation_error_body(exc: RequestValidationError) -> dict:
    return {
        "status": "error",
        "error": exc.message,
        "code": "VALIDATION_ERROR",
        "reason": exc.reason,
    }


def _content_length(request: Request) -> Optional[int]:
    header = request.headers.get("content-length")
    if header is None:
        return None
    try:
        return int(header)
    except ValueError:
        return None


class ValidationMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        validator: RequestValidator,
        audit_logger: Optional[AuditLogger] = None,
    ) -> None:
        super().__init__(app)
        self.validator = validator
        self.audit_logger = audit_logger

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        if not self.validator.enabled or request.url.path in _EXEMPT_PATHS:
            return await call_next(request)

        try:
            self.validator.validate(
                request.method,
                request.url.path,
                request.query_params,
                _content_length(request),
            )
        except RequestValidationError as exc:
            logger.info(
                "Request rejected by validator",
                path=request.url.path,
                reason=exc.reason,
            )
            if self.audit_logger is not None:
                await run_in_threadpool(
                    self.audit_logger.log_validation_failure, request, exc.message, exc.reason
                )
            return JSONResponse(status_code=400, content=validation_error_body(exc))

        return await call_next(request)
