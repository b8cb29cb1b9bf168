"""Health and security status endpoints.

Implements:
  GET /health          — component health (503 before ready, 200 after).
                         Exempt from auth, rate limiting and validation.
  GET /security/status — limiter / validator / audit stats and the list of
                         stored secret references. Never returns a value.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

router = APIRouter(tags=["health"])


class SecretReferenceModel(BaseModel):
    name: str
    type: str
    source: str


class SecurityStatusResponse(BaseModel):
    rate_limiter: dict[str, Any]
    validator: dict[str, Any]
    audit: dict[str, Any]
    secrets: Optional[list[SecretReferenceModel]] = None


def _components(request: Request):
    return getattr(request.app.state, "security", None)


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(status_code=503, detail={"status": "starting"})

    components = _components(request)
    if components is None:
        return {"status": "ok"}

    store = components.secret_store
    return {
        "status": "ok",
        "secrets": store.health() if store is not None else None,
        "global_rate_limit": components.rate_limiter.config.enable_global_limit,
        "validation_enabled": components.validator.enabled,
        "audit_enabled": components.audit_logger.config.enabled,
    }


@router.get("/security/status", response_model=SecurityStatusResponse)
async def security_status(request: Request) -> SecurityStatusResponse:
    components = _components(request)
    if components is None:
        raise HTTPException(status_code=503, detail={"status": "starting"})

    secrets = None
    if components.secret_store is not None:
        secrets = [
            SecretReferenceModel(**ref.to_dict())
            for ref in components.secret_store.list_secrets()
        ]
    return SecurityStatusResponse(
        rate_limiter=components.rate_limiter.stats(),
        validator=components.validator.stats(),
        audit=components.audit_logger.stats(),
        secrets=secrets,
    )
