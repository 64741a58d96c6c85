"""Sliding-window rate limiting for provider requests.

Each provider gets one ``RateLimiter`` holding the timestamps of the
requests sent during the trailing hour. Network call sites go through
``try_acquire`` so the admission check and the recording of the permit
happen in a single step.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timedelta

from .models import RateLimitPolicy

logger = logging.getLogger(__name__)

MINUTE_WINDOW = timedelta(seconds=60)
HOUR_WINDOW = timedelta(seconds=3600)


class RateLimiter:
    """Per-provider request admission over minute and hour windows."""

    def __init__(self, provider_id: str, policy: RateLimitPolicy) -> None:
        self.provider_id = provider_id
        self.policy = policy
        self._history: deque[datetime] = deque()

    def can_send(self, now: datetime) -> bool:
        """Check admission without mutating the window.

        Args:
            now: Current time

        Returns:
            True if both the minute and the hour budgets have room
        """
        in_hour = 0
        in_minute = 0
        for sent_at in self._history:
            age = now - sent_at
            if age >= HOUR_WINDOW:
                continue
            in_hour += 1
            if age < MINUTE_WINDOW:
                in_minute += 1

        return (
            in_minute < self.policy.requests_per_minute
            and in_hour < self.policy.requests_per_hour
        )

    def record_send(self, now: datetime) -> None:
        """Record a request and prune entries older than one hour."""
        self._history.append(now)
        self._prune(now)

    def try_acquire(self, now: datetime) -> bool:
        """Admit and record a request in one step.

        Args:
            now: Current time

        Returns:
            True if the permit was granted and recorded
        """
        self._prune(now)
        if not self.can_send(now):
            logger.debug(f"[{self.provider_id}] Rate limit denied admission")
            return False
        self.record_send(now)
        return True

    def snapshot(self, now: datetime) -> dict[str, int]:
        """Return request counts for the current windows."""
        in_hour = [t for t in self._history if now - t < HOUR_WINDOW]
        return {
            "last_minute": sum(1 for t in in_hour if now - t < MINUTE_WINDOW),
            "last_hour": len(in_hour),
        }

    def reset(self) -> None:
        self._history.clear()

    def __len__(self) -> int:
        return len(self._history)

    def _prune(self, now: datetime) -> None:
        while self._history and now - self._history[0] >= HOUR_WINDOW:
            self._history.popleft()
