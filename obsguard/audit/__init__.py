"""obsguard audit trail package.

Re-exports the public API for ergonomic imports:

    from obsguard.audit import AuditEvent, AuditLogger, AuditMiddleware

Layout:
    models.py     — AuditEvent + EventType alias
    events.py     — event constructors and request helpers (client IP, user id)
    logger.py     — AuditLogger (NDJSON writer, filters, rotation)
    middleware.py — AuditMiddleware (one api_access event per request)
"""

from obsguard.audit.events import (
    extract_client_ip,
    extract_user_id,
    is_sensitive_path,
)
from obsguard.audit.logger import AuditLogger
from obsguard.audit.middleware import AuditMiddleware
from obsguard.audit.models import EVENT_TYPES, AuditEvent, EventType

__all__ = [
    "EventType",
    "EVENT_TYPES",
    "AuditEvent",
    "AuditLogger",
    "AuditMiddleware",
    "extract_client_ip",
    "extract_user_id",
    "is_sensitive_path",
]
