"""Exception taxonomy for obsguard.

Configuration problems are raised once, at construction. Secret errors are
raised to the caller of the store operation. Validation errors are raised
per request and turned into HTTP 400 by the validation middleware.

Messages name secrets by name only — a secret value must never appear in
an exception message.
"""

from __future__ import annotations


class ObsguardError(Exception):
    """Base class for every error raised by obsguard."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigError(ObsguardError):
    """Invalid configuration: bad value, bad regex, unusable master key."""


# ─── Secret Store ─────────────────────────────────────────────────────────────


class SecretError(ObsguardError):
    """Base class for Secret Store failures."""


class SecretNotFoundError(SecretError):
    """No secret with the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"secret '{name}' not found")
        self.name = name


class SecretExpiredError(SecretError):
    """The secret exists but its expires_at is in the past."""

    def __init__(self, name: str) -> None:
        super().__init__(f"secret '{name}' has expired")
        self.name = name


class SecretValidationError(SecretError):
    """Empty name/value or a value that fails its type's format rules."""


class SecretPolicyError(SecretError):
    """Operation refused by store policy (inline secrets, non-rotatable)."""


class SecretPersistenceError(SecretError):
    """Writing or removing the secret file failed."""


class EncryptionError(SecretError):
    """Encrypting or decrypting a secret value failed."""


# ─── Request Validator ────────────────────────────────────────────────────────


class RequestValidationError(ObsguardError):
    """A request rejected by the validator.

    ``reason`` is a stable machine-readable kind (e.g. ``query_too_long``)
    returned alongside the human-readable message in the 400 body.
    """

    def __init__(self, message: str, reason: str = "invalid_request") -> None:
        super().__init__(message)
        self.reason = reason
