"""Tests for sliding-window rate limiting."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from insurance_gateway.models import RateLimitPolicy
from insurance_gateway.rate_limiter import RateLimiter

T0 = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_limiter(per_minute: int = 3, per_hour: int = 10) -> RateLimiter:
    return RateLimiter(
        "testpayer",
        RateLimitPolicy(requests_per_minute=per_minute, requests_per_hour=per_hour),
    )


class TestRateLimiter:
    def test_admits_up_to_minute_budget(self):
        limiter = make_limiter(per_minute=3)

        assert limiter.try_acquire(T0)
        assert limiter.try_acquire(T0 + timedelta(seconds=1))
        assert limiter.try_acquire(T0 + timedelta(seconds=2))
        assert not limiter.try_acquire(T0 + timedelta(seconds=3))

    def test_denied_attempt_is_not_recorded(self):
        limiter = make_limiter(per_minute=1)

        assert limiter.try_acquire(T0)
        assert not limiter.try_acquire(T0 + timedelta(seconds=1))
        assert len(limiter) == 1

    def test_minute_window_slides(self):
        limiter = make_limiter(per_minute=2)
        limiter.try_acquire(T0)
        limiter.try_acquire(T0 + timedelta(seconds=10))

        assert not limiter.can_send(T0 + timedelta(seconds=59))
        # The first permit is exactly 60s old and no longer counts
        assert limiter.can_send(T0 + timedelta(seconds=60))

    def test_hour_budget_applies_across_minutes(self):
        limiter = make_limiter(per_minute=5, per_hour=3)
        for minute in range(3):
            assert limiter.try_acquire(T0 + timedelta(minutes=minute))

        assert not limiter.try_acquire(T0 + timedelta(minutes=10))
        assert limiter.try_acquire(T0 + timedelta(minutes=60))

    def test_can_send_is_pure(self):
        limiter = make_limiter(per_minute=1)

        for _ in range(5):
            assert limiter.can_send(T0)
        assert len(limiter) == 0

    def test_never_more_than_budget_in_any_window(self):
        limiter = make_limiter(per_minute=4, per_hour=50)
        granted = []
        for second in range(0, 300, 5):
            now = T0 + timedelta(seconds=second)
            if limiter.try_acquire(now):
                granted.append(now)

        for start in granted:
            in_window = [t for t in granted if start <= t < start + timedelta(seconds=60)]
            assert len(in_window) <= 4

    def test_old_entries_pruned(self):
        limiter = make_limiter(per_minute=10, per_hour=10)
        limiter.record_send(T0)
        limiter.record_send(T0 + timedelta(minutes=1))

        limiter.record_send(T0 + timedelta(minutes=61))

        assert len(limiter) == 1

    def test_snapshot(self):
        limiter = make_limiter(per_minute=10, per_hour=10)
        limiter.record_send(T0)
        limiter.record_send(T0 + timedelta(minutes=5))

        snapshot = limiter.snapshot(T0 + timedelta(minutes=5, seconds=30))

        assert snapshot == {"last_minute": 1, "last_hour": 2}

    def test_reset(self):
        limiter = make_limiter(per_minute=1)
        limiter.try_acquire(T0)

        limiter.reset()

        assert limiter.try_acquire(T0)
