"""Audit middleware — one api_access event per request.

Registered outermost (see obsguard.chain) so requests rejected by auth,
rate limiting or validation are still recorded with their 401/429/400.

A handler exception is recorded as status 500 with the exception type and
message, then re-raised unchanged so the server's own error handling applies.
"""

from __future__ import annotations

import time

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from obsguard.audit.logger import AuditLogger
from obsguard.utils.logger import clear_request_id, get_logger, set_request_id
from obsguard.utils.ulid import generate_ulid

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class AuditMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, audit_logger: AuditLogger) -> None:
        super().__init__(app)
        self.audit_logger = audit_logger

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        request_id = request.headers.get(REQUEST_ID_HEADER) or generate_ulid()
        request.state.request_id = request_id
        set_request_id(request_id)
        start = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception as exc:
                duration_ms = (time.perf_counter() - start) * 1000
                logger.error(
                    "Unhandled exception in request handler",
                    path=request.url.path,
                    method=request.method,
                    error_type=type(exc).__name__,
                )
                await run_in_threadpool(
                    self.audit_logger.log_api_request,
                    request,
                    500,
                    duration_ms,
                    f"{type(exc).__name__}: {exc}",
                )
                raise

            duration_ms = (time.perf_counter() - start) * 1000
            await run_in_threadpool(
                self.audit_logger.log_api_request, request, response.status_code, duration_ms
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_request_id()
