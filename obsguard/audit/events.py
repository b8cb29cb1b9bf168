"""Constructors for well-formed AuditEvents.

Request-derived fields:
  client_ip — X-Forwarded-For (first entry) → X-Real-IP → connection host
  user_id   — "token:<first 8 chars>" for a Bearer header, "unknown" for any
              other Authorization scheme, absent without the header
  headers   — only names on the configured allow-list, only when non-empty
  sensitive — path matches a sensitive prefix or contains "secret"
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional

from starlette.requests import Request

from obsguard.audit.models import AuditEvent
from obsguard.constants import AUDIT_USER_ID_TOKEN_PREFIX

SENSITIVE_PATHS: tuple[str, ...] = (
    "/api/v1/subscriptions",
    "/api/v1/status",
    "/api/v1/analysis",
)

_BEARER_PREFIX = "Bearer "


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ─── Request helpers ──────────────────────────────────────────────────────────


def extract_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else ""


def is_sensitive_path(path: str) -> bool:
    return any(p in path for p in SENSITIVE_PATHS) or "secret" in path


def extract_user_id(auth_header: Optional[str]) -> Optional[str]:
    if not auth_header:
        return None
    if auth_header.startswith(_BEARER_PREFIX):
        token = auth_header[len(_BEARER_PREFIX):]
        return f"token:{token[:AUDIT_USER_ID_TOKEN_PREFIX]}"
    return "unknown"


def extract_headers(request: Request, names: Iterable[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for name in names:
        value = request.headers.get(name)
        if value:
            headers[name] = value
    return headers


# ─── Event constructors ───────────────────────────────────────────────────────


def api_access_event(
    request: Request,
    status_code: int,
    duration_ms: float,
    log_headers: Iterable[str] = (),
    error: Optional[str] = None,
) -> AuditEvent:
    path = request.url.path
    return AuditEvent(
        timestamp=_now(),
        event_type="api_access",
        client_ip=extract_client_ip(request),
        method=request.method,
        path=path,
        query=request.url.query,
        status_code=status_code,
        duration_ms=duration_ms,
        user_id=extract_user_id(request.headers.get("authorization")),
        error=error,
        headers=extract_headers(request, log_headers),
        sensitive=is_sensitive_path(path),
    )


def secret_access_event(
    secret_id: str,
    operation: str,
    user_id: Optional[str],
    success: bool,
    error: Optional[str] = None,
) -> AuditEvent:
    return AuditEvent(
        timestamp=_now(),
        event_type="secret_access",
        user_id=user_id,
        error=error,
        sensitive=True,
        metadata={"secret_id": secret_id, "operation": operation, "success": success},
    )


def authentication_event(
    client_ip: str,
    user_id: Optional[str],
    success: bool,
    error: Optional[str] = None,
) -> AuditEvent:
    return AuditEvent(
        timestamp=_now(),
        event_type="authentication",
        client_ip=client_ip,
        user_id=user_id,
        error=error,
        sensitive=True,
        metadata={"success": success},
    )


def rate_limit_event(client_ip: str, user_id: Optional[str], limit_type: str) -> AuditEvent:
    return AuditEvent(
        timestamp=_now(),
        event_type="rate_limit",
        client_ip=client_ip,
        user_id=user_id,
        status_code=429,
        sensitive=True,
        metadata={"rate_limit_type": limit_type},
    )


def validation_event(
    request: Request,
    error: str,
    log_headers: Iterable[str] = (),
    reason: Optional[str] = None,
) -> AuditEvent:
    return AuditEvent(
        timestamp=_now(),
        event_type="validation",
        client_ip=extract_client_ip(request),
        method=request.method,
        path=request.url.path,
        query=request.url.query,
        status_code=400,
        error=error,
        headers=extract_headers(request, log_headers),
        sensitive=True,
        metadata={"reason": reason} if reason else {},
    )
