"""Unit tests for obsguard/ratelimit — token buckets, global window, client identity."""

from __future__ import annotations

import pytest
from starlette.requests import Request

from obsguard.config import RateLimitConfig
from obsguard.ratelimit import RateLimiter, extract_client_id, stop_limiter
from obsguard.ratelimit.identity import client_ip
from obsguard.ratelimit.limiter import ClientLimiter


def _limiter(clock, **overrides) -> RateLimiter:
    config = RateLimitConfig(**overrides)
    return RateLimiter(config, clock=clock, start_cleanup=False)


def _request(headers: dict[str, str] | None = None, client=("10.0.0.7", 5000)) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/v1/query",
        "query_string": b"",
        "headers": raw,
        "client": client,
    }
    return Request(scope)


# ─── Per-client token bucket ──────────────────────────────────────────────────


class TestTokenBucket:
    def test_burst_then_deny(self, clock) -> None:
        limiter = _limiter(clock, requests_per_minute=100, burst_size=3, enable_global_limit=False)
        assert [limiter.allow("a") for _ in range(4)] == [True, True, True, False]

    def test_clients_are_independent(self, clock) -> None:
        limiter = _limiter(clock, burst_size=1, enable_global_limit=False)
        assert limiter.allow("a") is True
        assert limiter.allow("a") is False
        assert limiter.allow("b") is True

    def test_refill_after_time_passes(self, clock) -> None:
        limiter = _limiter(clock, requests_per_minute=60, burst_size=1, enable_global_limit=False)
        assert limiter.allow("a") is True
        assert limiter.allow("a") is False
        clock.advance(0.5)
        assert limiter.allow("a") is False
        clock.advance(0.6)
        assert limiter.allow("a") is True

    def test_refill_capped_at_requests_per_minute(self, clock) -> None:
        limiter = _limiter(clock, requests_per_minute=5, burst_size=2, enable_global_limit=False)
        limiter.allow("a")
        clock.advance(3600)
        assert sum(limiter.allow("a") for _ in range(10)) == 5

    def test_sub_second_refill_not_recomputed(self) -> None:
        bucket = ClientLimiter(tokens=0, last_refill=100.0, max_tokens=600, refill_rate=600)
        bucket.refill(100.5)
        assert bucket.tokens == 0
        assert bucket.last_refill == 100.0
        bucket.refill(130.0)
        assert bucket.tokens == 300
        assert bucket.last_refill == 130.0

    def test_last_refill_unchanged_when_nothing_added(self) -> None:
        bucket = ClientLimiter(tokens=0, last_refill=0.0, max_tokens=1, refill_rate=1)
        bucket.refill(30.0)
        assert bucket.tokens == 0
        assert bucket.last_refill == 0.0
        bucket.refill(60.0)
        assert bucket.tokens == 1


# ─── Global ceiling ───────────────────────────────────────────────────────────


class TestGlobalLimit:
    def test_global_ceiling_across_clients(self, clock) -> None:
        limiter = _limiter(clock, burst_size=10, global_requests_per_minute=25)
        allowed = sum(limiter.allow(f"client-{i}") for i in range(50))
        assert allowed == 25

    def test_global_window_slides(self, clock) -> None:
        limiter = _limiter(clock, burst_size=10, requests_per_minute=600, global_requests_per_minute=2)
        assert limiter.allow("a") is True
        clock.advance(30)
        assert limiter.allow("b") is True
        assert limiter.allow("c") is False
        clock.advance(31)
        assert limiter.allow("c") is True
        assert limiter.allow("d") is False

    def test_global_denial_does_not_consume_client_token(self, clock) -> None:
        limiter = _limiter(clock, burst_size=1, global_requests_per_minute=1)
        assert limiter.allow("a") is True
        assert limiter.allow("b") is False
        assert limiter.stats()["total_tokens"] == 1
        clock.advance(61)
        assert limiter.allow("b") is True

    def test_disabled_global_limit(self, clock) -> None:
        limiter = _limiter(clock, burst_size=10, global_requests_per_minute=1, enable_global_limit=False)
        assert sum(limiter.allow(f"c{i}") for i in range(5)) == 5


# ─── Cleanup / stats / stop ───────────────────────────────────────────────────


class TestLifecycle:
    def test_cleanup_evicts_idle_clients(self, clock) -> None:
        limiter = _limiter(clock)
        limiter.allow("old")
        clock.advance(700)
        limiter.allow("fresh")
        assert limiter.cleanup(600) == 1
        assert limiter.stats()["total_clients"] == 1

    def test_evicted_client_starts_with_full_burst(self, clock) -> None:
        limiter = _limiter(clock, requests_per_minute=1, burst_size=2, enable_global_limit=False)
        limiter.allow("a")
        limiter.allow("a")
        clock.advance(30)
        limiter.cleanup(10)
        assert [limiter.allow("a") for _ in range(3)] == [True, True, False]

    def test_stats(self, clock) -> None:
        limiter = _limiter(clock, burst_size=5, global_requests_per_minute=1000)
        limiter.allow("a")
        limiter.allow("a")
        limiter.allow("b")
        assert limiter.stats() == {
            "total_clients": 2,
            "active_clients": 2,
            "total_tokens": 7,
            "global_limit": 1000,
            "global_window_requests": 3,
        }

    def test_stats_active_window(self, clock) -> None:
        limiter = _limiter(clock)
        limiter.allow("a")
        clock.advance(301)
        limiter.allow("b")
        stats = limiter.stats()
        assert stats["total_clients"] == 2
        assert stats["active_clients"] == 1

    def test_stop_is_idempotent(self) -> None:
        limiter = RateLimiter(RateLimitConfig(), start_cleanup=True)
        limiter.stop()
        limiter.stop()

    def test_stop_limiter_accepts_none(self) -> None:
        stop_limiter(None)


# ─── Client identity ──────────────────────────────────────────────────────────


class TestClientIdentity:
    def test_ip_prefers_first_forwarded_entry(self) -> None:
        request = _request({"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})
        assert extract_client_id(request, RateLimitConfig()) == "203.0.113.9"

    def test_ip_falls_back_to_connection(self) -> None:
        assert client_ip(_request()) == "10.0.0.7"

    def test_ip_without_client(self) -> None:
        assert client_ip(_request(client=None)) == "unknown"

    def test_token_method(self) -> None:
        config = RateLimitConfig(client_id_method="token")
        assert extract_client_id(_request({"Authorization": "Bearer abc"}), config) == "abc"
        assert extract_client_id(_request({"Authorization": "Basic xyz"}), config) == "anonymous"
        assert extract_client_id(_request(), config) == "anonymous"

    def test_user_agent_method(self) -> None:
        config = RateLimitConfig(client_id_method="user-agent")
        assert extract_client_id(_request({"User-Agent": "grafana/10"}), config) == "grafana/10"
        assert extract_client_id(_request(), config) == "unknown-agent"

    @pytest.mark.parametrize("headers,expected", [
        ({"X-Tenant": "team-a"}, "team-a"),
        ({}, "unknown-header"),
    ])
    def test_header_method(self, headers, expected) -> None:
        config = RateLimitConfig(client_id_method="header", client_id_header="X-Tenant")
        assert extract_client_id(_request(headers), config) == expected
