"""obsguard FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app() — testable application factory
  - lifespan     — @asynccontextmanager readiness + shutdown sequence

Construction sequence (inside create_app, before the app can serve):
  1. load_config()                → app.state.config (unless a config is passed)
  2. build_components()           → app.state.security
  3. resolve_secret()             → API auth token (direct or Secret Store ref)
  4. install_security_middleware  → Audit → Auth → RateLimit → Validation
  5. routers                      → /health, /security/status, external routers

Starlette rejects add_middleware() once the app has started, which is why
components are built here rather than in the lifespan. A configuration error
therefore surfaces from create_app() before any server socket is opened.

Shutdown: app.state.ready = False → SecurityComponents.close()

Dev server:
  uvicorn obsguard.main:create_app --factory --host 127.0.0.1 --port 8080
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Iterable, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from obsguard.chain import SecurityComponents, build_components, install_security_middleware
from obsguard.config import SecurityConfig, load_config
from obsguard.health import router as health_router
from obsguard.secrets.resolver import resolve_secret
from obsguard.utils.logger import configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    app.state.ready = True
    logger.info("obsguard ready")

    yield

    logger.info("obsguard shutting down...")
    app.state.ready = False
    components: SecurityComponents = app.state.security
    components.close()
    logger.info("obsguard shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app(
    config: Optional[SecurityConfig] = None,
    routers: Iterable[APIRouter] = (),
    start_background: bool = True,
) -> FastAPI:
    """Create and configure the obsguard FastAPI application.

    Args:
        config:  Resolved configuration. Loaded with load_config() when None.
        routers: Metrics-query routers to place behind the security chain.
        start_background: Start the rotation / cleanup sweep threads.

    Raises:
        ConfigError: invalid configuration or master key.
        SecretError: auth.token_secret_ref names a missing or expired secret.
    """
    if config is None:
        config = load_config()

    application = FastAPI(
        title="obsguard",
        description="Security middleware for a metrics-query API",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if DEBUG else None,
        redoc_url="/redoc" if DEBUG else None,
        openapi_url="/openapi.json" if DEBUG else None,
    )
    application.state.ready = False
    application.state.config = config

    components = build_components(config, start_background=start_background)
    application.state.security = components

    try:
        auth_token = resolve_secret(
            config.auth.token, config.auth.token_secret_ref, components.secret_store
        )
    except Exception:
        components.close()
        raise

    install_security_middleware(
        application,
        validator=components.validator,
        rate_limiter=components.rate_limiter,
        audit_logger=components.audit_logger,
        auth_token=auth_token,
    )
    logger.info("Security middleware installed", auth_enabled=bool(auth_token))

    application.include_router(health_router)
    for router in routers:
        application.include_router(router)

    @application.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    return application


# ─── Dev Entrypoint ───────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn

    logger.info("Starting obsguard (dev mode)")
    uvicorn.run(
        "obsguard.main:create_app",
        factory=True,
        host=os.getenv("OBSGUARD_HOST", "127.0.0.1"),
        port=int(os.getenv("OBSGUARD_PORT", "8080")),
        reload=DEBUG,
        log_level=LOG_LEVEL.lower(),
    )
