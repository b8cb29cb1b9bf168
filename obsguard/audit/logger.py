"""AuditLogger — append-only NDJSON audit trail with size-based rotation.

Filters, applied in order by log_event():
  1. disabled            → nothing is written
  2. sensitive_only      → events with sensitive=False are dropped
  3. log_level "error"   → only events with an error
     log_level "warn"    → events with an error or status_code >= 400
     log_level "info"    → everything

Rotation (file output only), checked under the writer lock before each write:
  file.N is removed, file.(i) → file.(i+1) for i = N-1..1, file → file.1,
  then file is reopened empty. A failed reopen is retried before the next write.

Failures never propagate into the request path: serialisation, write and
rotation errors are reported through structlog at warning and the event is
dropped.
"""

from __future__ import annotations

import os
import sys
import threading
from pathlib import Path
from typing import IO, Any, Optional

from starlette.requests import Request

from obsguard.audit.events import (
    api_access_event,
    authentication_event,
    rate_limit_event,
    secret_access_event,
    validation_event,
)
from obsguard.audit.models import AuditEvent
from obsguard.config import AuditConfig
from obsguard.constants import BYTES_PER_MB
from obsguard.errors import ConfigError
from obsguard.utils.logger import get_logger

logger = get_logger(__name__)


class AuditLogger:
    """Thread-safe audit writer.

    Args:
        config: Audit configuration. An empty log_file writes to ``stream``.
        stream: Output used when log_file is empty (defaults to sys.stdout).

    Raises:
        ConfigError: the log directory or file cannot be opened.
    """

    def __init__(self, config: AuditConfig, stream: Optional[IO[str]] = None) -> None:
        self.config = config
        self._lock = threading.Lock()
        self._file: Optional[IO[str]] = None
        self._stream: Optional[IO[str]] = None
        self._closed = False

        if not config.enabled:
            return

        if not config.log_file:
            self._stream = stream if stream is not None else sys.stdout
            return

        try:
            Path(config.log_file).parent.mkdir(parents=True, exist_ok=True)
            self._file = self._open()
        except OSError as exc:
            raise ConfigError(
                f"failed to open audit log file {config.log_file}: {exc.strerror}"
            ) from exc
        logger.info("Audit log opened", path=config.log_file)

    def _open(self) -> IO[str]:
        return open(self.config.log_file, "a", encoding="utf-8")

    # ── Filtering ─────────────────────────────────────────────────────────────

    def should_log(self, event: AuditEvent) -> bool:
        level = self.config.log_level
        if level == "error":
            return bool(event.error)
        if level == "warn":
            return bool(event.error) or event.status_code >= 400
        return True

    # ── Writing ───────────────────────────────────────────────────────────────

    def log_event(self, event: AuditEvent) -> None:
        if not self.config.enabled:
            return
        if self.config.sensitive_only and not event.sensitive:
            return
        if not self.should_log(event):
            return

        try:
            line = event.to_json()
        except (TypeError, ValueError) as exc:
            logger.warning("Audit event serialisation failed", event_type=event.event_type, error=str(exc))
            return

        with self._lock:
            if self._closed:
                return
            if self._file is None and self.config.log_file:
                self._reopen()
            if self._file is not None:
                self._rotate_if_needed()
            writer = self._file if self._file is not None else self._stream
            if writer is None:
                return
            try:
                writer.write(line + "\n")
                writer.flush()
            except (OSError, ValueError) as exc:
                logger.warning("Audit write failed", event_type=event.event_type, error=str(exc))

    def _rotate_if_needed(self) -> None:
        """Caller holds self._lock."""
        max_bytes = self.config.max_file_size_mb * BYTES_PER_MB
        if self._file is None or max_bytes <= 0:
            return
        try:
            self._file.flush()
            size = os.fstat(self._file.fileno()).st_size
        except (OSError, ValueError) as exc:
            logger.warning("Audit log stat failed", error=str(exc))
            return
        if size < max_bytes:
            return

        self._file.close()
        try:
            self._shift_files()
        except OSError as exc:
            logger.warning("Audit log rotation failed", path=self.config.log_file, error=exc.strerror)
        self._file = None
        if self._reopen():
            logger.info("Audit log rotated", path=self.config.log_file, size=size)

    def _reopen(self) -> bool:
        """Caller holds self._lock. Retried on every write until it succeeds."""
        try:
            self._file = self._open()
        except OSError as exc:
            logger.warning("Audit log reopen failed", path=self.config.log_file, error=exc.strerror)
            return False
        return True

    def _shift_files(self) -> None:
        base = self.config.log_file
        n = self.config.max_files
        Path(f"{base}.{n}").unlink(missing_ok=True)
        for i in range(n - 1, 0, -1):
            src = Path(f"{base}.{i}")
            if src.exists():
                os.replace(src, f"{base}.{i + 1}")
        os.replace(base, f"{base}.1")

    # ── Convenience constructors ──────────────────────────────────────────────

    def log_api_request(
        self,
        request: Request,
        status_code: int,
        duration_ms: float,
        error: Optional[str] = None,
    ) -> None:
        self.log_event(api_access_event(
            request, status_code, duration_ms, self.config.log_headers, error
        ))

    def log_secret_access(
        self,
        secret_id: str,
        operation: str,
        user_id: Optional[str],
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        self.log_event(secret_access_event(secret_id, operation, user_id, success, error))

    def log_authentication_attempt(
        self,
        client_ip: str,
        user_id: Optional[str],
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        self.log_event(authentication_event(client_ip, user_id, success, error))

    def log_rate_limit(self, client_ip: str, user_id: Optional[str], limit_type: str) -> None:
        self.log_event(rate_limit_event(client_ip, user_id, limit_type))

    def log_validation_failure(
        self, request: Request, error: str, reason: Optional[str] = None
    ) -> None:
        self.log_event(validation_event(request, error, self.config.log_headers, reason))

    # ── Introspection / lifecycle ─────────────────────────────────────────────

    def stats(self) -> dict[str, Any]:
        with self._lock:
            data: dict[str, Any] = {
                "enabled": self.config.enabled,
                "log_file": self.config.log_file,
                "log_level": self.config.log_level,
                "sensitive_only": self.config.sensitive_only,
                "include_bodies": self.config.include_bodies,
                "max_file_size": self.config.max_file_size_mb,
                "max_files": self.config.max_files,
            }
            if self._file is not None and not self._file.closed:
                try:
                    data["current_file_size"] = os.fstat(self._file.fileno()).st_size
                except OSError:
                    pass
            return data

    def close(self) -> None:
        """Close the log file. Idempotent; the stream writer is never closed."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._file is not None:
                try:
                    self._file.close()
                finally:
                    self._file = None
