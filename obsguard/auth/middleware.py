"""Bearer-token authentication middleware for the metrics API.

A single shared API token guards every route except /health. The token is
resolved once at startup (directly from config or from the Secret Store via
``auth.token_secret_ref``) and handed to the middleware.

  token == ""                          → authentication disabled
  no Authorization header              → 401 "Authorization header required"
  header without the "Bearer " prefix  → 401 "Invalid authorization header format"
  wrong token                          → 401 "Invalid token"

Token comparison is constant-time (hmac.compare_digest). Each decision is
written to the audit trail as an ``authentication`` event when an
AuditLogger is supplied.
"""

from __future__ import annotations

import hmac
from typing import Optional

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from obsguard.audit.events import extract_client_ip, extract_user_id
from obsguard.audit.logger import AuditLogger
from obsguard.utils.logger import get_logger

logger = get_logger(__name__)

_BEARER_PREFIX = "Bearer "

_EXEMPT_PATHS: frozenset[str] = frozenset({"/health"})


def _unauthorized_body(message: str) -> dict:
    return {"status": "error", "error": message, "code": "UNAUTHORIZED"}


class BearerAuthMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        token: str,
        audit_logger: Optional[AuditLogger] = None,
    ) -> None:
        super().__init__(app)
        self._token = token
        self.audit_logger = audit_logger

    @property
    def enabled(self) -> bool:
        return bool(self._token)

    def check(self, auth_header: Optional[str]) -> Optional[str]:
        """Return None when authorised, else the rejection message."""
        if not auth_header:
            return "Authorization header required"
        if not auth_header.startswith(_BEARER_PREFIX):
            return "Invalid authorization header format"
        presented = auth_header[len(_BEARER_PREFIX):]
        if not hmac.compare_digest(presented.encode("utf-8"), self._token.encode("utf-8")):
            return "Invalid token"
        return None

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        if not self.enabled or request.url.path in _EXEMPT_PATHS:
            return await call_next(request)

        auth_header = request.headers.get("authorization")
        error = self.check(auth_header)

        if self.audit_logger is not None:
            await run_in_threadpool(
                self.audit_logger.log_authentication_attempt,
                extract_client_ip(request),
                extract_user_id(auth_header),
                error is None,
                error,
            )

        if error is not None:
            logger.warning("Authentication failed", path=request.url.path, reason=error)
            return JSONResponse(status_code=401, content=_unauthorized_body(error))

        return await call_next(request)
