# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Two-layer request rate limiting.

  Layer 1: global token bucket
      One bucket shared by every caller, refilled continuously.

  Layer 2: per-user sliding windows
      Second / minute / hour / day counters of accepted request timestamps,
      plus the tier's daily entitlement quota.

Counters are deques stored in a TTL cache: timestamps older than the
window are popped from the left on every read, so each counter holds at
most one window's worth of accepted requests.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Deque, Dict, Optional, Tuple, Union

from chat_runtime.models import UserType
from chat_runtime.services.cache import TTLCache
from chat_runtime.services.entitlements import RateLimitConfig, get_entitlements, get_rate_limits

logger = logging.getLogger(__name__)

SECOND = 1.0
MINUTE = 60.0
HOUR = 3600.0
DAY = 86400.0

# (counter name, window seconds)
_WINDOWS: Tuple[Tuple[str, float], ...] = (
    ("second", SECOND),
    ("minute", MINUTE),
    ("hour", HOUR),
    ("day", DAY),
)


class TokenBucket:
    """Continuously refilled token bucket.

    ``capacity`` tokens accrue over ``interval`` seconds, proportionally to
    elapsed time, and each allowed request consumes one.
    """

    def __init__(
        self,
        capacity: float,
        interval: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.capacity = capacity
        self.interval = interval
        self._clock = clock
        self._tokens = float(capacity)
        self._last_refill = clock()

    @property
    def tokens(self) -> float:
        """Tokens currently available, after refilling."""
        self._refill()
        return self._tokens

    def allow_request(self) -> bool:
        """Consume one token if available."""
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self.capacity, self._tokens + elapsed / self.interval * self.capacity)
        self._last_refill = now


@dataclass
class RateLimitResult:
    """Outcome of a rate limit check.

    Attributes:
        allowed (bool): Whether the request may proceed.
        reason (Optional[str]): Human-readable rejection reason.
        reset_time (Optional[float]): Epoch seconds after which a retry can
            succeed.
        remaining (Optional[Dict[str, int]]): Remaining requests per window
            after an accepted request.
    """

    allowed: bool
    reason: Optional[str] = None
    reset_time: Optional[float] = None
    remaining: Optional[Dict[str, int]] = None


def _window_limits(limits: RateLimitConfig) -> Tuple[Tuple[str, float, int, str], ...]:
    return (
        ("second", SECOND, limits.requests_per_second, "per second"),
        ("minute", MINUTE, limits.requests_per_minute, "per minute"),
        ("hour", HOUR, limits.requests_per_hour, "per hour"),
    )


class RateLimiter:
    """Global token bucket plus per-user multi-window counters."""

    def __init__(
        self,
        global_capacity: int = 10,
        global_interval: float = MINUTE,
        counter_cache: Optional[TTLCache[Deque[float]]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            global_capacity (int): Requests the global bucket admits per
                ``global_interval``.
            global_interval (float): Seconds to refill the global bucket.
            counter_cache (Optional[TTLCache]): Store for per-user counters.
                A 24 h / 5000-entry cache sharing ``clock`` is created if
                None.
            clock (Callable[[], float]): Wall-clock source in epoch seconds.
        """
        self._clock = clock
        self.global_bucket = TokenBucket(global_capacity, global_interval, clock=clock)
        self.counters: TTLCache[Deque[float]] = (
            counter_cache
            if counter_cache is not None
            else TTLCache(ttl=DAY, max_size=5000, clock=clock)
        )

    @staticmethod
    def _key(user_id: str, window: str) -> str:
        return f"{user_id}:{window}"

    def check_rate_limit(
        self,
        user_id: str,
        user_type: Union[UserType, str] = UserType.GUEST,
    ) -> RateLimitResult:
        """Check and, when allowed, record a request.

        Checks run in order (global bucket, per-second, per-minute,
        per-hour, daily entitlement) and the first failure short-circuits.

        Args:
            user_id (str): Caller identity.
            user_type (Union[UserType, str]): Caller tier.

        Returns:
            RateLimitResult: Decision with reason and reset time on
                rejection, or remaining counts on success.
        """
        limits = get_rate_limits(user_type)
        now = self._clock()

        if not self.global_bucket.allow_request():
            logger.warning("Global rate limit exceeded (user=%s)", user_id)
            return RateLimitResult(
                allowed=False,
                reason="Global rate limit exceeded. Please try again later.",
                reset_time=now + self.global_bucket.interval,
            )

        for name, window, limit, label in _window_limits(limits):
            if self._count(self._key(user_id, name), window, now) >= limit:
                logger.warning("Rate limit %s exceeded (user=%s)", label, user_id)
                return RateLimitResult(
                    allowed=False,
                    reason=f"Rate limit exceeded: {limit} requests {label}",
                    reset_time=now + window,
                )

        max_daily = get_entitlements(user_type).max_messages_per_day
        if self._count(self._key(user_id, "day"), DAY, now) >= max_daily:
            logger.warning("Daily message limit reached (user=%s, limit=%d)", user_id, max_daily)
            return RateLimitResult(
                allowed=False,
                reason=f"Daily message limit reached ({max_daily} messages per day)",
                reset_time=self.next_day_reset(now),
            )

        self._record(user_id, now)
        return RateLimitResult(allowed=True, remaining=self._remaining(user_id, user_type, now))

    def _count(self, key: str, window: float, now: float) -> int:
        """Number of timestamps newer than ``now - window``; prunes the rest."""
        requests = self.counters.get(key)
        if not requests:
            return 0
        while requests and now - requests[0] >= window:
            requests.popleft()
        return len(requests)

    def _record(self, user_id: str, now: float) -> None:
        """Append ``now`` to every window counter of the user."""
        for name, window in _WINDOWS:
            key = self._key(user_id, name)
            requests = self.counters.get(key)
            if requests is None:
                requests = deque()
            requests.append(now)
            while now - requests[0] >= window:
                requests.popleft()
            self.counters.set(key, requests, ttl=window)

    def _usage(self, user_id: str, now: float) -> Dict[str, int]:
        return {
            f"per_{name}": self._count(self._key(user_id, name), window, now)
            for name, window in _WINDOWS
        }

    def _remaining(
        self,
        user_id: str,
        user_type: Union[UserType, str],
        now: float,
    ) -> Dict[str, int]:
        limits = get_rate_limits(user_type)
        usage = self._usage(user_id, now)
        max_daily = get_entitlements(user_type).max_messages_per_day
        return {
            "per_second": max(0, limits.requests_per_second - usage["per_second"]),
            "per_minute": max(0, limits.requests_per_minute - usage["per_minute"]),
            "per_hour": max(0, limits.requests_per_hour - usage["per_hour"]),
            "per_day": max(0, max_daily - usage["per_day"]),
        }

    @staticmethod
    def next_day_reset(now: float) -> float:
        """Epoch seconds of the next UTC midnight after ``now``."""
        current = datetime.fromtimestamp(now, tz=timezone.utc)
        midnight = (current + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
        return midnight.timestamp()

    def get_status(
        self,
        user_id: str,
        user_type: Union[UserType, str] = UserType.GUEST,
    ) -> Dict[str, Any]:
        """Usage, remaining quota and reset times for a user.

        Args:
            user_id (str): Caller identity.
            user_type (Union[UserType, str]): Caller tier.

        Returns:
            Dict[str, Any]: Limits, per-window usage and remaining counts,
                the daily entitlement split and reset times.
        """
        limits = get_rate_limits(user_type)
        now = self._clock()
        usage = self._usage(user_id, now)
        max_daily = get_entitlements(user_type).max_messages_per_day
        return {
            "user_id": user_id,
            "user_type": user_type.value if isinstance(user_type, UserType) else user_type,
            "limits": {
                "requests_per_second": limits.requests_per_second,
                "requests_per_minute": limits.requests_per_minute,
                "requests_per_hour": limits.requests_per_hour,
                "requests_per_day": max_daily,
            },
            "usage": usage,
            "remaining": self._remaining(user_id, user_type, now),
            "daily_entitlement": {
                "used": usage["per_day"],
                "total": max_daily,
                "remaining": max(0, max_daily - usage["per_day"]),
            },
            "reset_times": {
                "daily": self.next_day_reset(now),
                "hourly": now + HOUR,
                "minute": now + MINUTE,
            },
            "global_tokens": self.global_bucket.tokens,
        }

    def clear_user_limits(self, user_id: str) -> None:
        """Purge all counters of a user (administrative reset)."""
        for name, _ in _WINDOWS:
            self.counters.delete(self._key(user_id, name))
        logger.info("Cleared rate limit counters for user %s", user_id)

    def cleanup(self) -> int:
        """Sweep expired counters."""
        return self.counters.cleanup()
