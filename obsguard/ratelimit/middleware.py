"""Rate limit middleware.

Denied  → HTTP 429 with the JSON body below; an audit ``rate_limit`` event
          is written when an AuditLogger is supplied.
Allowed → X-RateLimit-Limit / X-RateLimit-Window headers on the response.

/health is never rate limited.
"""

from __future__ import annotations

from typing import Optional

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from obsguard.audit.events import extract_user_id
from obsguard.audit.logger import AuditLogger
from obsguard.constants import RATE_LIMIT_WINDOW_S
from obsguard.ratelimit.identity import client_ip, extract_client_id
from obsguard.ratelimit.limiter import RateLimiter
from obsguard.utils.logger import get_logger

logger = get_logger(__name__)

_RATE_LIMITED_BODY: dict = {
    "status": "error",
    "error": "Rate limit exceeded",
    "code": "RATE_LIMIT_EXCEEDED",
}

_EXEMPT_PATHS: frozenset[str] = frozenset({"/health"})


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        rate_limiter: RateLimiter,
        audit_logger: Optional[AuditLogger] = None,
    ) -> None:
        super().__init__(app)
        self.rate_limiter = rate_limiter
        self.audit_logger = audit_logger

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        if request.url.path in _EXEMPT_PATHS:
            return await call_next(request)

        config = self.rate_limiter.config
        client_id = extract_client_id(request, config)

        if not self.rate_limiter.allow(client_id):
            logger.warning(
                "Rate limit exceeded",
                path=request.url.path,
                method=config.client_id_method,
            )
            if self.audit_logger is not None:
                await run_in_threadpool(
                    self.audit_logger.log_rate_limit,
                    client_ip(request),
                    extract_user_id(request.headers.get("authorization")),
                    config.client_id_method,
                )
            return JSONResponse(status_code=429, content=_RATE_LIMITED_BODY)

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(config.requests_per_minute)
        response.headers["X-RateLimit-Window"] = str(RATE_LIMIT_WINDOW_S)
        return response
