"""Root test configuration for obsguard.

Every test runs in its own temporary working directory with a fixed master
key in OBSERVABILITY_MASTER_KEY, so no test reads a developer's
.obsguard/config.yaml or generates an ephemeral key by accident.

Tests that exercise config discovery or key generation override these with
their own monkeypatch calls (which run after these fixtures and win).
"""

from __future__ import annotations

import base64
from datetime import datetime, timedelta, timezone

import pytest

from obsguard.config import SecretStoreConfig

TEST_MASTER_KEY: bytes = bytes(range(32))
TEST_MASTER_KEY_B64: str = base64.b64encode(TEST_MASTER_KEY).decode("ascii")


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Pin the master key and clear every obsguard override variable."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("OBSERVABILITY_MASTER_KEY", TEST_MASTER_KEY_B64)
    for var in ("OBSGUARD_CONFIG", "OBSGUARD_AUDIT_LOG_FILE", "OBSGUARD_AUTH_TOKEN"):
        monkeypatch.delenv(var, raising=False)


class FakeClock:
    """Manually advanced clock. Call it for monotonic seconds; use .now() for UTC."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.value = start
        self._epoch = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds

    def now(self) -> datetime:
        return self._epoch + timedelta(seconds=self.value)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def storage_dir(tmp_path):
    return tmp_path / "secrets"


@pytest.fixture()
def secret_config(storage_dir) -> SecretStoreConfig:
    return SecretStoreConfig(storage_dir=str(storage_dir))


@pytest.fixture()
def master_key() -> bytes:
    """The raw key behind OBSERVABILITY_MASTER_KEY in every test."""
    return TEST_MASTER_KEY
