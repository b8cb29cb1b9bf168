"""obsguard Secret Store package.

Public API:
  - SecretStore        — encrypted, file-persisted credential store with rotation
  - resolve_secret()   — direct value or Secret Store reference
  - encrypt_value() / decrypt_value() — AES-GCM at-rest format
  - load_master_key()  — environment / file master key acquisition
  - Secret, SecretReference, SecretAccess, SecretType, SecretSource
"""

from __future__ import annotations

from obsguard.secrets.crypto import decrypt_value, encrypt_value, load_master_key
from obsguard.secrets.models import (
    Secret,
    SecretAccess,
    SecretReference,
    SecretSource,
    SecretType,
    is_rotatable,
)
from obsguard.secrets.resolver import resolve_secret
from obsguard.secrets.store import SecretStore, validate_secret_value

__all__ = [
    "Secret",
    "SecretAccess",
    "SecretReference",
    "SecretSource",
    "SecretType",
    "SecretStore",
    "decrypt_value",
    "encrypt_value",
    "is_rotatable",
    "load_master_key",
    "resolve_secret",
    "validate_secret_value",
]
