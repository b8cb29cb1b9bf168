"""Security component construction and middleware composition.

Request path, outermost first:

    Audit → Auth → Rate Limit → Validation → handler

NOTE: In Starlette the LAST-added middleware is OUTERMOST, so
install_security_middleware() adds them in reverse order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI

from obsguard.audit.logger import AuditLogger
from obsguard.audit.middleware import AuditMiddleware
from obsguard.auth.middleware import BearerAuthMiddleware
from obsguard.config import SecurityConfig
from obsguard.ratelimit.limiter import RateLimiter, stop_limiter
from obsguard.ratelimit.middleware import RateLimitMiddleware
from obsguard.secrets.store import SecretStore
from obsguard.utils.logger import get_logger
from obsguard.validation.middleware import ValidationMiddleware
from obsguard.validation.validator import RequestValidator

logger = get_logger(__name__)


@dataclass
class SecurityComponents:
    """The four security services for one application instance."""

    rate_limiter: RateLimiter
    validator: RequestValidator
    audit_logger: AuditLogger
    secret_store: Optional[SecretStore] = None

    def close(self) -> None:
        """Stop background sweeps and close the audit file. Idempotent."""
        stop_limiter(self.rate_limiter)
        if self.secret_store is not None:
            self.secret_store.close()
        self.audit_logger.close()


def build_components(config: SecurityConfig, start_background: bool = True) -> SecurityComponents:
    """Construct every component from ``config``.

    Configuration errors propagate. Anything already started when a later
    component fails is stopped before the error is re-raised.

    Args:
        config: Resolved security configuration.
        start_background: Start the rotation and cleanup sweep threads.
    """
    secret_store: Optional[SecretStore] = None
    rate_limiter: Optional[RateLimiter] = None
    audit_logger: Optional[AuditLogger] = None
    try:
        # Pure construction first: nothing to tear down if a pattern is invalid.
        validator = RequestValidator(config.validation)
        audit_logger = AuditLogger(config.audit)
        if config.secrets is not None:
            secret_store = SecretStore(config.secrets, start_sweep=start_background)
        rate_limiter = RateLimiter(config.rate_limit, start_cleanup=start_background)
    except Exception:
        stop_limiter(rate_limiter)
        if secret_store is not None:
            secret_store.close()
        if audit_logger is not None:
            audit_logger.close()
        raise

    logger.info(
        "Security components ready",
        secrets_enabled=secret_store is not None,
        validation_enabled=config.validation.enabled,
        audit_enabled=config.audit.enabled,
        global_limit=config.rate_limit.enable_global_limit,
    )
    return SecurityComponents(
        rate_limiter=rate_limiter,
        validator=validator,
        audit_logger=audit_logger,
        secret_store=secret_store,
    )


def install_security_middleware(
    app: FastAPI,
    *,
    validator: Optional[RequestValidator] = None,
    rate_limiter: Optional[RateLimiter] = None,
    audit_logger: Optional[AuditLogger] = None,
    auth_token: str = "",
) -> None:
    """Register the security middleware on ``app``. None components are skipped."""
    if validator is not None:
        app.add_middleware(ValidationMiddleware, validator=validator, audit_logger=audit_logger)
    if rate_limiter is not None:
        app.add_middleware(RateLimitMiddleware, rate_limiter=rate_limiter, audit_logger=audit_logger)
    if auth_token:
        app.add_middleware(BearerAuthMiddleware, token=auth_token, audit_logger=audit_logger)
    if audit_logger is not None:
        app.add_middleware(AuditMiddleware, audit_logger=audit_logger)
