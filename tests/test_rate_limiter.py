# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Tests for the token bucket, per-user windows and plan tables."""

import pytest
from chat_runtime.exceptions import EntitlementDenied
from chat_runtime.models import UserType
from chat_runtime.services.entitlements import (
    DEFAULT_RATE_LIMITS,
    check_model_entitlement,
    get_entitlements,
    get_rate_limits,
)
from chat_runtime.services.rate_limiter import DAY, RateLimiter, TokenBucket


def _limiter(clock, capacity: int = 10_000) -> RateLimiter:
    return RateLimiter(global_capacity=capacity, global_interval=60, clock=clock)


# ---------------------------------------------------------------------------
# Token bucket
# ---------------------------------------------------------------------------


class TestTokenBucket:
    def test_consumes_until_empty(self, clock):
        bucket = TokenBucket(capacity=3, interval=60, clock=clock)
        assert [bucket.allow_request() for _ in range(4)] == [True, True, True, False]

    def test_refills_proportionally(self, clock):
        bucket = TokenBucket(capacity=6, interval=60, clock=clock)
        for _ in range(6):
            bucket.allow_request()
        clock.advance(10)  # one token per 10 s
        assert bucket.tokens == pytest.approx(1.0)
        assert bucket.allow_request()
        assert not bucket.allow_request()

    def test_never_exceeds_capacity(self, clock):
        bucket = TokenBucket(capacity=2, interval=1, clock=clock)
        clock.advance(1000)
        assert bucket.tokens == 2


# ---------------------------------------------------------------------------
# Per-user windows
# ---------------------------------------------------------------------------


class TestRateLimiter:
    def test_per_second_limit(self, clock):
        limiter = _limiter(clock)
        assert limiter.check_rate_limit("u", UserType.GUEST).allowed

        rejected = limiter.check_rate_limit("u", UserType.GUEST)
        assert not rejected.allowed
        assert rejected.reason == "Rate limit exceeded: 1 requests per second"
        assert rejected.reset_time == clock() + 1

        clock.advance(1)
        assert limiter.check_rate_limit("u", UserType.GUEST).allowed

    def test_per_minute_limit(self, clock):
        limiter = _limiter(clock)
        for _ in range(6):
            assert limiter.check_rate_limit("u", UserType.GUEST).allowed
            clock.advance(1)

        rejected = limiter.check_rate_limit("u", UserType.GUEST)
        assert not rejected.allowed
        assert "6 requests per minute" in rejected.reason

        clock.advance(60)
        assert limiter.check_rate_limit("u", UserType.GUEST).allowed

    def test_per_hour_limit(self, clock):
        limiter = _limiter(clock)
        for _ in range(200):
            assert limiter.check_rate_limit("u", UserType.REGULAR).allowed
            clock.advance(4)  # 15 per minute

        rejected = limiter.check_rate_limit("u", UserType.REGULAR)
        assert not rejected.allowed
        assert rejected.reason == "Rate limit exceeded: 200 requests per hour"

    def test_users_are_isolated(self, clock):
        limiter = _limiter(clock)
        assert limiter.check_rate_limit("a", UserType.GUEST).allowed
        assert limiter.check_rate_limit("b", UserType.GUEST).allowed
        assert not limiter.check_rate_limit("a", UserType.GUEST).allowed

    def test_regular_daily_limit(self, clock):
        """The 201st request of a regular user within a day is rejected."""
        limiter = _limiter(clock)
        for _ in range(200):
            assert limiter.check_rate_limit("u", UserType.REGULAR).allowed
            clock.advance(20)  # 180 per hour, 3 per minute

        rejected = limiter.check_rate_limit("u", UserType.REGULAR)
        assert not rejected.allowed
        assert "Daily message limit" in rejected.reason
        assert rejected.reset_time == RateLimiter.next_day_reset(clock())
        assert rejected.reset_time > clock()

    def test_daily_window_rolls(self, clock):
        limiter = _limiter(clock)
        for _ in range(20):
            assert limiter.check_rate_limit("u", UserType.GUEST).allowed
            clock.advance(200)
        assert not limiter.check_rate_limit("u", UserType.GUEST).allowed

        clock.advance(DAY)
        assert limiter.check_rate_limit("u", UserType.GUEST).allowed

    def test_global_bucket_rejects_everyone(self, clock):
        limiter = _limiter(clock, capacity=2)
        assert limiter.check_rate_limit("a").allowed
        assert limiter.check_rate_limit("b").allowed

        rejected = limiter.check_rate_limit("c")
        assert not rejected.allowed
        assert rejected.reason == "Global rate limit exceeded. Please try again later."
        assert rejected.reset_time == clock() + 60

    def test_rejection_is_not_recorded(self, clock):
        limiter = _limiter(clock)
        limiter.check_rate_limit("u", UserType.GUEST)
        limiter.check_rate_limit("u", UserType.GUEST)
        assert limiter.get_status("u", UserType.GUEST)["usage"]["per_day"] == 1

    def test_remaining_after_accept(self, clock):
        limiter = _limiter(clock)
        result = limiter.check_rate_limit("u", UserType.REGULAR)
        assert result.remaining == {
            "per_second": 1,
            "per_minute": 19,
            "per_hour": 199,
            "per_day": 199,
        }

    def test_clear_user_limits(self, clock):
        limiter = _limiter(clock)
        assert limiter.check_rate_limit("u", UserType.GUEST).allowed
        assert not limiter.check_rate_limit("u", UserType.GUEST).allowed

        limiter.clear_user_limits("u")
        assert limiter.check_rate_limit("u", UserType.GUEST).allowed

    def test_status(self, clock):
        limiter = _limiter(clock)
        limiter.check_rate_limit("u", UserType.GUEST)

        status = limiter.get_status("u", UserType.GUEST)
        assert status["user_id"] == "u"
        assert status["user_type"] == "guest"
        assert status["limits"]["requests_per_day"] == 20
        assert status["usage"]["per_minute"] == 1
        assert status["daily_entitlement"] == {"used": 1, "total": 20, "remaining": 19}
        assert status["reset_times"]["hourly"] == clock() + 3600
        assert status["reset_times"]["daily"] == RateLimiter.next_day_reset(clock())

    def test_cleanup_sweeps_expired_counters(self, clock):
        limiter = _limiter(clock)
        limiter.check_rate_limit("u", UserType.GUEST)
        clock.advance(2)
        # the per-second counter has a 1 s TTL
        assert limiter.cleanup() == 1

    def test_next_day_reset_is_utc_midnight(self):
        # 2023-11-14T22:13:20Z
        assert RateLimiter.next_day_reset(1_700_000_000) == 1_700_006_400


# ---------------------------------------------------------------------------
# Plan tables
# ---------------------------------------------------------------------------


class TestEntitlements:
    def test_tiers(self):
        assert get_entitlements(UserType.GUEST).max_messages_per_day == 20
        assert get_entitlements("regular").max_messages_per_day == 200

    def test_unknown_tier_falls_back(self):
        assert get_entitlements("enterprise") == get_entitlements(UserType.GUEST)
        assert get_rate_limits("enterprise") == DEFAULT_RATE_LIMITS

    def test_model_allowed(self):
        check_model_entitlement("chat-model", UserType.GUEST)
        check_model_entitlement("gemma-3-27b-it", UserType.REGULAR)

    def test_model_denied(self):
        with pytest.raises(EntitlementDenied) as exc_info:
            check_model_entitlement("gemma-3-27b-it", UserType.GUEST)
        assert exc_info.value.model_id == "gemma-3-27b-it"
        assert exc_info.value.user_type == "guest"
        assert "chat-model" in exc_info.value.allowed_model_ids
