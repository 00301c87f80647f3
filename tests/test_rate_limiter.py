"""Tests for the fixed-window rate limiter and its HTTP helpers."""

from unittest.mock import patch

import pytest
from fastapi import HTTPException
from starlette.requests import Request

from chainwise.api.rate_limit import check_rate_limit, create_rate_limit_headers, get_client_id, rate_limit
from chainwise.config import settings
from chainwise.services.rate_limiter import RateLimiter, RateLimitResult


def make_request(headers: dict[str, str] | None = None) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw, "query_string": b""})


class TestFixedWindow:
    def test_first_call_opens_window(self, limiter, clock):
        result = limiter.check(5, "k")
        assert result.is_rate_limited is False
        assert result.remaining == 4
        assert result.reset == clock.now + 60_000

    def test_remaining_counts_down_then_limits(self, limiter):
        results = [limiter.check(5, "k") for _ in range(5)]
        assert [r.is_rate_limited for r in results] == [False] * 5
        assert [r.remaining for r in results] == [4, 3, 2, 1, 0]

        sixth = limiter.check(5, "k")
        assert sixth.is_rate_limited is True
        assert sixth.remaining == 0

    def test_window_resets_after_reset_time(self, limiter, clock):
        for _ in range(6):
            limiter.check(5, "k")

        clock.advance(60_001)
        seventh = limiter.check(5, "k")

        assert seventh.is_rate_limited is False
        assert seventh.remaining == 4
        assert seventh.reset == clock.now + 60_000

    def test_window_not_reset_at_exact_reset_time(self, limiter, clock):
        for _ in range(6):
            limiter.check(5, "k")
        clock.advance(60_000)
        assert limiter.check(5, "k").is_rate_limited is True

    def test_keys_are_independent(self, limiter):
        for _ in range(6):
            limiter.check(5, "a")
        assert limiter.check(5, "b").is_rate_limited is False

    def test_limiters_do_not_share_tables(self, clock):
        one = RateLimiter(clock=clock)
        two = RateLimiter(clock=clock)
        for _ in range(3):
            one.check(2, "k")
        assert two.check(2, "k").is_rate_limited is False

    def test_reset_forgets_keys(self, limiter):
        for _ in range(6):
            limiter.check(5, "k")
        limiter.reset("k")
        assert limiter.check(5, "k").is_rate_limited is False
        limiter.reset()
        assert len(limiter) == 0


class TestSweep:
    def test_expired_entries_swept_when_table_overflows(self, clock):
        limiter = RateLimiter(interval_ms=1_000, unique_token_per_interval=3, clock=clock)
        for key in ("a", "b", "c", "d"):
            limiter.check(10, key)
        assert len(limiter) == 4

        clock.advance(1_001)
        limiter.check(10, "e")

        assert len(limiter) == 1

    def test_live_entries_survive_sweep(self, clock):
        limiter = RateLimiter(interval_ms=1_000, unique_token_per_interval=2, clock=clock)
        limiter.check(10, "old")
        clock.advance(1_001)
        limiter.check(10, "live1")
        limiter.check(10, "live2")

        limiter.check(10, "new")

        assert len(limiter) == 3
        assert limiter.check(10, "live1").remaining == 8

    def test_no_sweep_below_bound(self, clock):
        limiter = RateLimiter(interval_ms=1_000, unique_token_per_interval=10, clock=clock)
        limiter.check(10, "a")
        clock.advance(5_000)
        limiter.check(10, "b")
        # Expired "a" lingers until the next overflow or its own next access
        assert len(limiter) == 2


class TestClientId:
    def test_auth_header_is_hashed(self):
        client_id = get_client_id(make_request({"Authorization": "Bearer secret-token-value"}))
        assert client_id.startswith("auth:")
        assert "secret" not in client_id
        assert len(client_id) == len("auth:") + 16

    def test_different_credentials_different_ids(self):
        a = get_client_id(make_request({"Authorization": "Bearer aaa"}))
        b = get_client_id(make_request({"Authorization": "Bearer bbb"}))
        assert a != b

    def test_first_forwarded_address(self):
        req = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
        assert get_client_id(req) == "ip:203.0.113.7"

    def test_real_ip_fallback(self):
        assert get_client_id(make_request({"X-Real-IP": "198.51.100.2"})) == "ip:198.51.100.2"

    def test_unknown_bucket(self):
        assert get_client_id(make_request()) == "ip:unknown"


class TestHeaders:
    def test_headers_report_limit_and_reset(self):
        result = RateLimitResult(is_rate_limited=False, remaining=7, reset=1_700_000_060_000)
        headers = create_rate_limit_headers(result, 10, now_ms=1_700_000_000_000)
        assert headers == {
            "X-RateLimit-Limit": "10",
            "X-RateLimit-Remaining": "7",
            "X-RateLimit-Reset": "2023-11-14T22:14:20.000Z",
        }

    def test_retry_after_when_limited(self):
        result = RateLimitResult(is_rate_limited=True, remaining=0, reset=1_700_000_060_000)
        headers = create_rate_limit_headers(result, 10, now_ms=1_700_000_000_500)
        assert headers["Retry-After"] == "60"

    def test_check_rate_limit_decision(self, limiter):
        req = make_request({"X-Forwarded-For": "203.0.113.7"})
        decisions = [check_rate_limit(req, 2, limiter) for _ in range(3)]
        assert [d.allowed for d in decisions] == [True, True, False]
        assert decisions[-1].headers["X-RateLimit-Remaining"] == "0"
        assert "Retry-After" in decisions[-1].headers


class TestRateLimitDependency:
    @pytest.mark.asyncio
    async def test_explicit_zero_limit_is_not_replaced_by_default(self, limiter):
        dependency = rate_limit(0, limiter)
        with pytest.raises(HTTPException) as exc:
            await dependency(make_request({"X-Forwarded-For": "203.0.113.8"}))
        assert exc.value.status_code == 429
        assert exc.value.headers["X-RateLimit-Limit"] == "0"

    @pytest.mark.asyncio
    async def test_default_limit_from_settings(self, limiter):
        with patch.object(settings, "api_rate_limit", 1):
            dependency = rate_limit(limiter=limiter)
            req = make_request({"X-Forwarded-For": "203.0.113.9"})
            decision = await dependency(req)
            with pytest.raises(HTTPException):
                await dependency(req)
        assert decision.headers["X-RateLimit-Limit"] == "1"
