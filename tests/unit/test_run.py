"""Unit tests for obsguard/run.py — uvicorn entry point settings."""

from __future__ import annotations

from typing import Any

import pytest

from obsguard import run


@pytest.fixture()
def captured(monkeypatch: pytest.MonkeyPatch) -> dict[str, Any]:
    calls: dict[str, Any] = {}

    def fake_run(target: str, **kwargs: Any) -> None:
        calls["target"] = target
        calls.update(kwargs)

    monkeypatch.setattr(run.uvicorn, "run", fake_run)
    return calls


def test_defaults(captured: dict[str, Any], monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OBSGUARD_HOST", raising=False)
    monkeypatch.delenv("OBSGUARD_PORT", raising=False)
    run.main()
    assert captured["target"] == "obsguard.main:create_app"
    assert captured["factory"] is True
    assert captured["host"] == "127.0.0.1"
    assert captured["port"] == 8080
    assert captured["limit_concurrency"] == run.UVICORN_LIMIT_CONCURRENCY
    assert captured["backlog"] == run.UVICORN_BACKLOG
    assert captured["timeout_keep_alive"] == run.UVICORN_TIMEOUT_KEEP_ALIVE


def test_env_binding(captured: dict[str, Any], monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OBSGUARD_HOST", "0.0.0.0")
    monkeypatch.setenv("OBSGUARD_PORT", "9100")
    run.main()
    assert captured["host"] == "0.0.0.0"
    assert captured["port"] == 9100
