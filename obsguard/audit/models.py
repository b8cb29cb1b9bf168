"""AuditEvent dataclass and event type alias for the obsguard audit trail.

Every line in the audit stream is one AuditEvent serialised by to_json().

IMPORTANT: AuditEvent MUST NEVER carry a secret value. Secrets are named
in ``metadata["secret_id"]`` only. There is no request/response body field.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional

# ─── Type Aliases ─────────────────────────────────────────────────────────────

EventType = Literal[
    "api_access",
    "authentication",
    "authorization",
    "secret_access",
    "rate_limit",
    "validation",
    "error",
]

EVENT_TYPES: frozenset[str] = frozenset({
    "api_access",
    "authentication",
    "authorization",
    "secret_access",
    "rate_limit",
    "validation",
    "error",
})


# ─── AuditEvent ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AuditEvent:
    """Immutable audit record.

    Serialisation (to_dict):
        user_id, query, error, headers and metadata are omitted when empty.
        duration is written as ``duration_ms`` (float milliseconds).
        timestamp is RFC 3339 with offset.
    """

    timestamp: datetime
    event_type: EventType
    client_ip: str = ""
    method: str = ""
    path: str = ""
    query: str = ""
    status_code: int = 0
    duration_ms: float = 0.0
    user_id: Optional[str] = None
    error: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict)
    sensitive: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "client_ip": self.client_ip,
            "method": self.method,
            "path": self.path,
            "status_code": self.status_code,
            "duration_ms": round(self.duration_ms, 3),
            "sensitive": self.sensitive,
        }
        if self.user_id:
            data["user_id"] = self.user_id
        if self.query:
            data["query"] = self.query
        if self.error:
            data["error"] = self.error
        if self.headers:
            data["headers"] = dict(self.headers)
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str, separators=(",", ":"))
