"""SecretStore — encrypted, file-persisted credential store.

One JSON file per secret (``<name>.secret``, mode 0600) inside a 0700
storage directory. Every mutation is persisted before it is committed to
memory; if the write fails, the in-memory map is left exactly as it was.

Locking:
  _lock         — RLock over the secret map (and the file it mirrors)
  _access_lock  — Lock over the access-log ring
The two are never held in the opposite order, so they cannot deadlock.

SECURITY: secret values never appear in log lines, exception messages or
SecretAccess rows. Only names are recorded.
"""

from __future__ import annotations

import base64
import binascii
import json
import os
import threading
from collections import deque
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from obsguard.config import SecretStoreConfig
from obsguard.constants import (
    ACCESS_LOG_MAX_ENTRIES,
    MIN_ENCRYPTION_KEY_BYTES,
    MIN_TOKEN_LENGTH,
    ROTATION_CHECK_INTERVAL_S,
    SECRET_FILE_MODE,
    SECRET_FILE_SUFFIX,
    STORAGE_DIR_MODE,
)
from obsguard.errors import (
    ConfigError,
    EncryptionError,
    SecretExpiredError,
    SecretNotFoundError,
    SecretPersistenceError,
    SecretPolicyError,
    SecretValidationError,
)
from obsguard.secrets.crypto import decrypt_value, encrypt_value, load_master_key
from obsguard.secrets.models import (
    Secret,
    SecretAccess,
    SecretReference,
    SecretSource,
    SecretType,
    is_rotatable,
)
from obsguard.utils.logger import PerformanceLogger, get_logger
from obsguard.utils.periodic import PeriodicTask

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_secret_value(secret_type: SecretType, value: str) -> None:
    """Type-specific format rules. Raises SecretValidationError."""
    if secret_type in (SecretType.API_TOKEN, SecretType.BEARER_TOKEN):
        if len(value) < MIN_TOKEN_LENGTH:
            raise SecretValidationError(
                f"API tokens must be at least {MIN_TOKEN_LENGTH} characters long"
            )
    elif secret_type == SecretType.BASIC_AUTH:
        username, sep, password = value.partition(":")
        if not sep:
            raise SecretValidationError("basic auth must be in format 'username:password'")
        if not username or not password:
            raise SecretValidationError("username and password cannot be empty")
    elif secret_type == SecretType.ENCRYPTION_KEY:
        try:
            decoded = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise SecretValidationError("encryption key must be base64 encoded") from exc
        if len(decoded) < MIN_ENCRYPTION_KEY_BYTES:
            raise SecretValidationError(
                f"encryption key must be at least {MIN_ENCRYPTION_KEY_BYTES * 8} bits "
                f"({MIN_ENCRYPTION_KEY_BYTES} bytes)"
            )


class SecretStore:
    """Thread-safe owner of the secret map.

    Args:
        config: Store configuration.
        clock:  Returns the current aware UTC datetime. Injected by tests.
        start_sweep: Start the hourly expired-secret sweep when rotation is
                     enabled. Tests pass False and call check_expired().

    Raises:
        ConfigError: master key problems or an unusable storage directory.
    """

    def __init__(
        self,
        config: SecretStoreConfig,
        clock: Optional[Clock] = None,
        start_sweep: bool = True,
    ) -> None:
        self.config = config
        self._clock: Clock = clock or _utcnow
        self._encrypt = config.encrypt_at_rest or config.require_encryption
        self._dir = Path(config.storage_dir)
        self._secrets: dict[str, Secret] = {}
        self._lock = threading.RLock()
        self._access_log: deque[SecretAccess] = deque(maxlen=ACCESS_LOG_MAX_ENTRIES)
        self._access_lock = threading.Lock()
        self._sweep: Optional[PeriodicTask] = None

        try:
            self._dir.mkdir(mode=STORAGE_DIR_MODE, parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigError(
                f"could not create secret storage directory {self._dir}: {exc.strerror}"
            ) from exc

        # The key is always acquired so that encrypted files written under a
        # different policy can still be read back.
        self._master_key = load_master_key(config)

        with PerformanceLogger("secret store load", logger, warn_after_ms=500.0):
            self._load_all()

        if config.enable_rotation and start_sweep:
            self._sweep = PeriodicTask("secret-rotation", ROTATION_CHECK_INTERVAL_S, self.check_expired)
            self._sweep.start()

        logger.info(
            "Secret store ready",
            storage_dir=str(self._dir),
            secrets=len(self._secrets),
            encryption=self._encrypt,
            rotation=config.enable_rotation,
        )

    # ── Public API ────────────────────────────────────────────────────────────

    def store(
        self,
        name: str,
        secret_type: SecretType | str,
        value: str,
        source: SecretSource | str,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        """Validate, persist and then commit a secret.

        Replaces an existing secret of the same name. On any failure the
        store is unchanged and the error is raised.
        """
        try:
            self._store(name, secret_type, value, source, metadata)
        except Exception as exc:
            self._record(name, "store", False, str(exc))
            raise
        self._record(name, "store", True)

    def _store(self, name, secret_type, value, source, metadata) -> None:
        if not name:
            raise SecretValidationError("secret name cannot be empty")
        if "/" in name or "\\" in name or name.startswith("."):
            raise SecretValidationError(f"invalid secret name '{name}'")
        if not value:
            raise SecretValidationError("secret value cannot be empty")
        try:
            secret_type = SecretType(secret_type)
            source = SecretSource(source)
        except ValueError as exc:
            raise SecretValidationError(str(exc)) from exc
        if source == SecretSource.INLINE and not self.config.allow_inline_secrets:
            raise SecretPolicyError("inline secrets are not allowed by policy")
        validate_secret_value(secret_type, value)

        now = self._clock()
        rotatable = is_rotatable(secret_type)
        secret = Secret(
            name=name,
            type=secret_type,
            value=value,
            source=source,
            created_at=now,
            updated_at=now,
            metadata=dict(metadata or {}),
            encrypted=self._encrypt,
            rotatable=rotatable,
        )
        if self.config.enable_rotation and rotatable:
            secret.expires_at = now + self.config.rotation_interval

        with self._lock:
            self._persist(secret)
            self._secrets[name] = secret
        logger.info("Secret stored", name=name, type=secret_type.value, source=source.value)

    def retrieve(self, name: str) -> Secret:
        """Return a copy of the named secret.

        Raises:
            SecretNotFoundError: no such secret.
            SecretExpiredError:  expires_at is in the past (checked now).
        """
        with self._lock:
            secret = self._secrets.get(name)
            found = secret.copy() if secret is not None else None

        if found is None:
            self._record(name, "retrieve", False, "secret not found")
            raise SecretNotFoundError(name)
        if found.is_expired(self._clock()):
            self._record(name, "retrieve", False, "secret expired")
            raise SecretExpiredError(name)
        self._record(name, "retrieve", True)
        return found

    def get_value(self, name: str) -> str:
        return self.retrieve(name).value

    def delete(self, name: str) -> None:
        with self._lock:
            secret = self._secrets.pop(name, None)
            if secret is None:
                self._record(name, "delete", False, "secret not found")
                raise SecretNotFoundError(name)
            try:
                self._secret_path(name).unlink(missing_ok=True)
            except OSError as exc:
                self._secrets[name] = secret
                self._record(name, "delete", False, exc.strerror or str(exc))
                raise SecretPersistenceError(
                    f"failed to remove secret file for '{name}': {exc.strerror}"
                ) from exc
        self._record(name, "delete", True)
        logger.info("Secret deleted", name=name)

    def list_secrets(self) -> list[SecretReference]:
        with self._lock:
            return [secret.to_reference() for secret in self._secrets.values()]

    def rotate(self, name: str, new_value: str) -> None:
        """Replace the value of a rotatable secret.

        updated_at always moves strictly forward; expires_at is refreshed
        when rotation is enabled. The new value is re-encrypted with a fresh
        salt and nonce.
        """
        try:
            self._rotate(name, new_value)
        except Exception as exc:
            self._record(name, "rotate", False, str(exc))
            raise
        self._record(name, "rotate", True)

    def _rotate(self, name: str, new_value: str) -> None:
        if not new_value:
            raise SecretValidationError("secret value cannot be empty")
        with self._lock:
            current = self._secrets.get(name)
            if current is None:
                raise SecretNotFoundError(name)
            if not current.rotatable:
                raise SecretPolicyError(f"secret '{name}' is not rotatable")
            validate_secret_value(current.type, new_value)

            now = self._clock()
            if now <= current.updated_at:
                now = current.updated_at + timedelta(microseconds=1)
            rotated = current.copy()
            rotated.value = new_value
            rotated.updated_at = now
            if self.config.enable_rotation:
                rotated.expires_at = now + self.config.rotation_interval

            self._persist(rotated)
            self._secrets[name] = rotated
        logger.info("Secret rotated", name=name)

    def check_expired(self) -> list[str]:
        """Flag rotatable secrets past expiry. Never rotates anything."""
        now = self._clock()
        with self._lock:
            expired = [
                s.name for s in self._secrets.values() if s.rotatable and s.is_expired(now)
            ]
        for name in expired:
            self._record(name, "auto_rotation_needed", True, "secret expired and needs rotation")
        if expired:
            logger.warning("Secrets need rotation", count=len(expired), names=expired)
        return expired

    def health(self) -> dict[str, Any]:
        now = self._clock()
        with self._lock:
            total = len(self._secrets)
            expired = sum(1 for s in self._secrets.values() if s.is_expired(now))
        return {
            "total_secrets": total,
            "expired_secrets": expired,
            "encryption_enabled": self._encrypt,
            "rotation_enabled": self.config.enable_rotation,
            "storage_directory": str(self._dir),
        }

    def get_access_log(self) -> list[SecretAccess]:
        with self._access_lock:
            return list(self._access_log)

    def close(self) -> None:
        """Stop the rotation sweep. Idempotent."""
        if self._sweep is not None:
            self._sweep.stop()

    # ── Persistence ───────────────────────────────────────────────────────────

    def _secret_path(self, name: str) -> Path:
        return self._dir / f"{name}{SECRET_FILE_SUFFIX}"

    def _persist(self, secret: Secret) -> None:
        """Write the secret's file atomically. Raises SecretPersistenceError."""
        value = encrypt_value(secret.value, self._master_key) if secret.encrypted else secret.value
        record: dict[str, Any] = {
            "name": secret.name,
            "type": secret.type.value,
            "value": value,
            "source": secret.source.value,
            "created_at": secret.created_at.isoformat(),
            "updated_at": secret.updated_at.isoformat(),
            "encrypted": secret.encrypted,
            "rotatable": secret.rotatable,
        }
        if secret.expires_at is not None:
            record["expires_at"] = secret.expires_at.isoformat()
        if secret.metadata:
            record["metadata"] = secret.metadata

        path = self._secret_path(secret.name)
        tmp = path.with_name(path.name + ".tmp")
        try:
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, SECRET_FILE_MODE)
            with os.fdopen(fd, "w") as fh:
                json.dump(record, fh, indent=2)
            os.replace(tmp, path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise SecretPersistenceError(
                f"failed to persist secret '{secret.name}': {exc.strerror}"
            ) from exc

    def _load_all(self) -> None:
        for path in sorted(self._dir.glob(f"*{SECRET_FILE_SUFFIX}")):
            try:
                secret = self._read_secret_file(path)
            except (OSError, ValueError, KeyError, TypeError, EncryptionError) as exc:
                # One bad file must not block the whole store.
                logger.warning(
                    "Skipping unreadable secret file",
                    path=str(path),
                    error_type=type(exc).__name__,
                )
                continue
            self._secrets[secret.name] = secret

    def _read_secret_file(self, path: Path) -> Secret:
        with open(path) as fh:
            record = json.load(fh)
        if not isinstance(record, dict):
            raise ValueError("secret file is not a JSON object")
        value = record["value"]
        if not isinstance(value, str):
            raise ValueError("secret value is not a string")
        encrypted = bool(record.get("encrypted", False))
        if encrypted:
            value = decrypt_value(value, self._master_key)
        expires_at = record.get("expires_at")
        return Secret(
            name=record["name"],
            type=SecretType(record["type"]),
            value=value,
            source=SecretSource(record["source"]),
            created_at=datetime.fromisoformat(record["created_at"]),
            updated_at=datetime.fromisoformat(record["updated_at"]),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            metadata=dict(record.get("metadata") or {}),
            encrypted=encrypted,
            rotatable=bool(record.get("rotatable", False)),
        )

    # ── Access trail ──────────────────────────────────────────────────────────

    def _record(self, name: str, operation: str, success: bool, error: Optional[str] = None) -> None:
        row = SecretAccess(
            secret_name=name,
            operation=operation,
            success=success,
            timestamp=self._clock(),
            error=error,
        )
        with self._access_lock:
            self._access_log.append(row)
