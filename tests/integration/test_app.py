"""Integration tests for obsguard.main.create_app — the full security chain.

Covers:
  - 503 from /health before the lifespan marks the app ready
  - /health and /security/status bodies once ready
  - external routers placed behind Audit → Auth → RateLimit → Validation
  - API token resolved from the Secret Store (reference wins over direct value)
  - startup failures: invalid pattern, unresolvable secret reference
  - shutdown closes the components
"""

from __future__ import annotations

import json
from dataclasses import replace

import pytest
from fastapi import APIRouter, FastAPI
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from obsguard.config import (
    AuditConfig,
    AuthConfig,
    RateLimitConfig,
    SecretStoreConfig,
    SecurityConfig,
    ValidationConfig,
)
from obsguard.errors import ConfigError, SecretNotFoundError
from obsguard.main import create_app
from obsguard.secrets import SecretSource, SecretStore, SecretType

# ─── Helpers ──────────────────────────────────────────────────────────────────


def _metrics_router() -> APIRouter:
    router = APIRouter()

    @router.get("/api/v1/query")
    async def query(query: str = "") -> dict:
        return {"status": "success", "data": {"query": query}}

    @router.get("/api/v1/status")
    async def status() -> dict:
        return {"status": "success"}

    return router


@pytest.fixture()
def audit_path(tmp_path):
    return tmp_path / "logs" / "audit.log"


@pytest.fixture()
def config(tmp_path, audit_path) -> SecurityConfig:
    return SecurityConfig(
        secrets=SecretStoreConfig(storage_dir=str(tmp_path / "secrets")),
        rate_limit=RateLimitConfig(burst_size=5),
        validation=ValidationConfig(max_query_length=50, blocked_metric_patterns=(".*secret.*",)),
        audit=AuditConfig(log_file=str(audit_path), sensitive_only=False),
    )


def _app(config: SecurityConfig) -> FastAPI:
    return create_app(config, routers=[_metrics_router()], start_background=False)


def _audit_lines(audit_path) -> list[dict]:
    return [json.loads(line) for line in audit_path.read_text().splitlines()]


# ─── Readiness ────────────────────────────────────────────────────────────────


class TestReadiness:
    @pytest.mark.asyncio
    async def test_health_503_before_lifespan(self, config) -> None:
        application = _app(config)
        # ASGITransport does not run the lifespan, so ready stays False.
        transport = ASGITransport(app=application)  # type: ignore[arg-type]
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")
        assert response.status_code == 503
        assert response.json() == {"error": {"status": "starting"}}
        application.state.security.close()

    def test_health_after_startup(self, config, tmp_path) -> None:
        with TestClient(_app(config)) as client:
            response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "secrets": {
                "total_secrets": 0,
                "expired_secrets": 0,
                "encryption_enabled": True,
                "rotation_enabled": True,
                "storage_directory": str(tmp_path / "secrets"),
            },
            "global_rate_limit": True,
            "validation_enabled": True,
            "audit_enabled": True,
        }

    def test_health_with_secrets_disabled(self, config) -> None:
        with TestClient(_app(replace(config, secrets=None))) as client:
            body = client.get("/health").json()
        assert body["secrets"] is None

    def test_shutdown_closes_components(self, config, audit_path) -> None:
        application = _app(config)
        with TestClient(application) as client:
            client.get("/api/v1/status")
        assert application.state.ready is False

        size = audit_path.stat().st_size
        application.state.security.audit_logger.log_rate_limit("1.1.1.1", None, "ip")
        assert audit_path.stat().st_size == size

    def test_default_config_when_none_given(self) -> None:
        application = create_app(start_background=False)
        with TestClient(application) as client:
            assert client.get("/health").status_code == 200
        assert application.state.config.path is None


# ─── Security status ──────────────────────────────────────────────────────────


class TestSecurityStatus:
    def test_status_lists_references_never_values(self, config) -> None:
        store = SecretStore(config.secrets, start_sweep=False)
        store.store("prom-creds", SecretType.BASIC_AUTH, "bob:hunter22", SecretSource.FILE)
        store.close()

        with TestClient(_app(config)) as client:
            response = client.get("/security/status")

        assert response.status_code == 200
        body = response.json()
        assert body["secrets"] == [{"name": "prom-creds", "type": "basic_auth", "source": "file"}]
        assert "hunter22" not in response.text
        assert body["rate_limiter"]["global_limit"] == 1000
        assert body["validator"]["blocked_metric_patterns"] == [".*secret.*"]
        assert body["audit"]["log_file"] == config.audit.log_file


# ─── Request chain ────────────────────────────────────────────────────────────


class TestRequestChain:
    def test_valid_request_reaches_router(self, config, audit_path) -> None:
        with TestClient(_app(config)) as client:
            response = client.get("/api/v1/query", params={"query": "up"})
        assert response.status_code == 200
        assert response.json()["data"] == {"query": "up"}

        access = [e for e in _audit_lines(audit_path) if e["event_type"] == "api_access"]
        assert access[-1]["path"] == "/api/v1/query"
        assert access[-1]["status_code"] == 200

    def test_blocked_metric_rejected(self, config) -> None:
        with TestClient(_app(config)) as client:
            response = client.get("/api/v1/query", params={"query": "db_secret_total"})
        assert response.status_code == 400
        assert response.json()["reason"] == "metric_blocked"

    def test_rate_limit_applies_to_router(self, config) -> None:
        with TestClient(_app(config)) as client:
            codes = [client.get("/api/v1/status").status_code for _ in range(6)]
            health = client.get("/health").status_code
        assert codes == [200] * 5 + [429]
        assert health == 200

    def test_direct_token_enables_auth(self, config, audit_path) -> None:
        config = replace(config, auth=AuthConfig(token="direct-token-123"))
        with TestClient(_app(config)) as client:
            denied = client.get("/api/v1/status")
            allowed = client.get("/api/v1/status", headers={"Authorization": "Bearer direct-token-123"})
            health = client.get("/health")
        assert denied.status_code == 401
        assert allowed.status_code == 200
        assert health.status_code == 200

        statuses = [e["status_code"] for e in _audit_lines(audit_path) if e["event_type"] == "api_access"]
        assert 401 in statuses


# ─── Secret-backed configuration ──────────────────────────────────────────────


class TestSecretReferences:
    def test_token_reference_wins_over_direct_value(self, config) -> None:
        store = SecretStore(config.secrets, start_sweep=False)
        store.store("api-token", SecretType.BEARER_TOKEN, "from-store-token", SecretSource.FILE)
        store.close()

        config = replace(config, auth=AuthConfig(token="direct-token-123", token_secret_ref="api-token"))
        with TestClient(_app(config)) as client:
            direct = client.get("/api/v1/status", headers={"Authorization": "Bearer direct-token-123"})
            stored = client.get("/api/v1/status", headers={"Authorization": "Bearer from-store-token"})
        assert direct.status_code == 401
        assert stored.status_code == 200

    def test_missing_reference_fails_startup(self, config) -> None:
        config = replace(config, auth=AuthConfig(token_secret_ref="absent"))
        with pytest.raises(SecretNotFoundError, match="absent"):
            _app(config)


# ─── Startup failures ─────────────────────────────────────────────────────────


class TestStartupFailures:
    def test_invalid_pattern_fails_startup(self, config) -> None:
        config = replace(config, validation=ValidationConfig(allowed_metric_patterns=("(",)))
        with pytest.raises(ConfigError, match="invalid allowed metric pattern"):
            _app(config)

    def test_short_master_key_fails_startup(self, config, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OBSERVABILITY_MASTER_KEY", "c2hvcnQ=")
        with pytest.raises(ConfigError, match="at least 16 bytes"):
            _app(config)
