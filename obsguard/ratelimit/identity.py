"""Client identification for rate limiting.

Methods (RateLimitConfig.client_id_method):
  ip         — first X-Forwarded-For entry, else the connection's host
  token      — the Bearer token, else "anonymous"
  user-agent — the User-Agent header, else "unknown-agent"
  header     — the configured header, else "unknown-header"
Anything else falls back to ip.
"""

from __future__ import annotations

from starlette.requests import Request

from obsguard.config import RateLimitConfig

_BEARER_PREFIX = "Bearer "


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


def extract_client_id(request: Request, config: RateLimitConfig) -> str:
    method = config.client_id_method

    if method == "token":
        auth = request.headers.get("authorization", "")
        if auth.startswith(_BEARER_PREFIX):
            return auth[len(_BEARER_PREFIX):]
        return "anonymous"

    if method == "user-agent":
        return request.headers.get("user-agent") or "unknown-agent"

    if method == "header":
        if config.client_id_header:
            value = request.headers.get(config.client_id_header)
            if value:
                return value
        return "unknown-header"

    return client_ip(request)
