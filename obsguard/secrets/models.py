"""Secret, SecretReference and SecretAccess records.

IMPORTANT: Secret.value is always plaintext in memory. It is excluded from
repr() and from to_reference(); the only place it is serialised is the
on-disk record built by the store (where it may be ciphertext).
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class SecretType(str, Enum):
    API_TOKEN = "api_token"
    BASIC_AUTH = "basic_auth"
    BEARER_TOKEN = "bearer_token"
    TLS_CERT = "tls_cert"
    TLS_KEY = "tls_key"
    DATABASE = "database"
    ENCRYPTION_KEY = "encryption_key"


class SecretSource(str, Enum):
    ENVIRONMENT = "environment"
    FILE = "file"
    VAULT = "vault"
    KUBERNETES = "kubernetes"
    INLINE = "inline"


ROTATABLE_TYPES: frozenset[SecretType] = frozenset({
    SecretType.API_TOKEN,
    SecretType.BEARER_TOKEN,
    SecretType.ENCRYPTION_KEY,
    SecretType.TLS_CERT,
    SecretType.TLS_KEY,
})


def is_rotatable(secret_type: SecretType) -> bool:
    return secret_type in ROTATABLE_TYPES


@dataclass
class Secret:
    """A named credential held by the SecretStore.

    Callers always receive copies (see ``copy()``); mutating one does not
    affect the store.
    """

    name: str
    type: SecretType
    value: str = field(repr=False)
    source: SecretSource
    created_at: datetime
    updated_at: datetime
    expires_at: Optional[datetime] = None
    metadata: dict[str, str] = field(default_factory=dict)
    encrypted: bool = False
    rotatable: bool = False

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def to_reference(self) -> "SecretReference":
        return SecretReference(name=self.name, type=self.type, source=self.source)

    def copy(self) -> "Secret":
        dup = copy.copy(self)
        dup.metadata = dict(self.metadata)
        return dup


@dataclass(frozen=True)
class SecretReference:
    """Redacted projection of a Secret used for listing. Never carries a value."""

    name: str
    type: SecretType
    source: SecretSource

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "type": self.type.value, "source": self.source.value}


@dataclass(frozen=True)
class SecretAccess:
    """One row of the store's internal access trail.

    operation is one of: store, retrieve, delete, rotate, auto_rotation_needed.
    """

    secret_name: str
    operation: str
    success: bool
    timestamp: datetime
    error: Optional[str] = None
