"""Retry queue for failed idempotent-safe operations.

Operations that failed on infrastructure errors are queued per provider
and re-executed later, either by the background scheduler (due entries
only) or by an explicit forced drain. Each failed re-execution doubles the
backoff; once the attempt ceiling is reached the entry is moved to the
permanently-failed list and reported instead of being retried forever.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from .config import (
    RETRY_BASE_DELAY_SECONDS,
    RETRY_FAILED_HISTORY_LIMIT,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_DELAY_SECONDS,
)
from .errors import InsuranceError, NoActiveSession, NoActiveToken, RateLimitExceeded
from .models import Claim, Credentials, RetryKind
from .transport.session import utcnow

logger = logging.getLogger(__name__)

# Failures that may clear up once the provider is reachable or re-authenticated
RECOVERABLE_ERRORS = (NoActiveToken, NoActiveSession)


@dataclass(frozen=True)
class RetryOperation:
    """One retryable action against a provider."""

    kind: RetryKind
    provider_id: str
    claim: Claim | None = None
    claim_id: str | None = None
    credentials: Credentials | None = None

    @classmethod
    def authenticate(cls, provider_id: str, credentials: Credentials) -> "RetryOperation":
        return cls(RetryKind.AUTHENTICATE, provider_id, credentials=credentials)

    @classmethod
    def submit_claim(cls, claim: Claim, provider_id: str) -> "RetryOperation":
        return cls(RetryKind.SUBMIT_CLAIM, provider_id, claim=claim)

    @classmethod
    def get_claim_status(cls, claim_id: str, provider_id: str) -> "RetryOperation":
        return cls(RetryKind.GET_CLAIM_STATUS, provider_id, claim_id=claim_id)

    @property
    def key(self) -> tuple[str, str, str]:
        """Identity of the logical action, used for deduplication."""
        if self.kind is RetryKind.AUTHENTICATE:
            subject = self.credentials.client_id if self.credentials else ""
        elif self.kind is RetryKind.SUBMIT_CLAIM:
            subject = self.claim.claim_id if self.claim else ""
        else:
            subject = self.claim_id or ""
        return (self.kind.value, self.provider_id, subject)


@dataclass
class RetryEntry:
    operation: RetryOperation
    enqueued_at: datetime
    next_attempt_at: datetime
    attempts: int = 0
    last_error: str | None = None


@dataclass
class DrainReport:
    """Outcome of one pass over a provider's retry queue."""

    provider_id: str
    succeeded: list[RetryOperation] = field(default_factory=list)
    requeued: list[RetryEntry] = field(default_factory=list)
    deferred: list[RetryEntry] = field(default_factory=list)
    permanently_failed: list[RetryEntry] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return (
            len(self.succeeded)
            + len(self.requeued)
            + len(self.deferred)
            + len(self.permanently_failed)
        )


RetryExecutor = Callable[[RetryOperation], Awaitable[Any]]


class RetryQueue:
    """FIFO queue of pending retries for one provider."""

    def __init__(
        self,
        provider_id: str,
        max_attempts: int = RETRY_MAX_ATTEMPTS,
        base_delay: float = RETRY_BASE_DELAY_SECONDS,
        max_delay: float = RETRY_MAX_DELAY_SECONDS,
        clock: Callable[[], datetime] = utcnow,
        failed_history: int = RETRY_FAILED_HISTORY_LIMIT,
    ) -> None:
        self.provider_id = provider_id
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._clock = clock
        self._entries: OrderedDict[tuple[str, str, str], RetryEntry] = OrderedDict()
        # Newest permanently-failed entries; older ones are only in the logs
        self._failed: deque[RetryEntry] = deque(maxlen=failed_history)
        self._drain_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def pending(self) -> list[RetryEntry]:
        return list(self._entries.values())

    @property
    def permanently_failed(self) -> list[RetryEntry]:
        return list(self._failed)

    def backoff_delay(self, attempts: int) -> float:
        """Exponential delay in seconds, capped at max_delay."""
        return min(self.base_delay * (2**attempts), self.max_delay)

    def enqueue(self, operation: RetryOperation, error: BaseException | None = None) -> bool:
        """Queue an operation unless the same logical action is already pending.

        Args:
            operation: Operation to retry
            error: The failure that triggered the retry

        Returns:
            True if a new entry was added
        """
        if operation.key in self._entries:
            logger.debug(f"[{self.provider_id}] Retry already pending: {operation.key}")
            return False

        now = self._clock()
        self._entries[operation.key] = RetryEntry(
            operation=operation,
            enqueued_at=now,
            next_attempt_at=now + timedelta(seconds=self.backoff_delay(0)),
            last_error=str(error) if error else None,
        )
        logger.info(f"[{self.provider_id}] Queued {operation.kind.value} for retry")
        return True

    def due(self, now: datetime | None = None) -> list[RetryEntry]:
        now = now or self._clock()
        return [e for e in self._entries.values() if e.next_attempt_at <= now]

    def clear(self) -> None:
        self._entries.clear()
        self._failed.clear()

    async def drain(self, executor: RetryExecutor, force: bool = False) -> DrainReport:
        """Re-execute pending operations in FIFO order.

        Args:
            executor: Coroutine function that re-runs one operation
            force: Run every pending entry, not only those whose backoff elapsed

        Returns:
            DrainReport describing what happened to each attempted entry
        """
        report = DrainReport(provider_id=self.provider_id)

        async with self._drain_lock:
            start = self._clock()
            batch = [e for e in self._entries.values() if force or e.next_attempt_at <= start]

            for entry in batch:
                key = entry.operation.key
                if key not in self._entries:
                    continue

                try:
                    await executor(entry.operation)
                except RateLimitExceeded as e:
                    # Permit budget exhausted: keep the attempt, stop this pass
                    entry.last_error = str(e)
                    entry.next_attempt_at = self._clock() + timedelta(
                        seconds=self.backoff_delay(entry.attempts)
                    )
                    report.deferred.append(entry)
                    break
                except InsuranceError as e:
                    entry.last_error = str(e)
                    if e.transient or isinstance(e, RECOVERABLE_ERRORS):
                        entry.attempts += 1
                        if entry.attempts >= self.max_attempts:
                            self._fail(entry)
                            report.permanently_failed.append(entry)
                        else:
                            entry.next_attempt_at = self._clock() + timedelta(
                                seconds=self.backoff_delay(entry.attempts)
                            )
                            report.requeued.append(entry)
                    else:
                        self._fail(entry)
                        report.permanently_failed.append(entry)
                else:
                    del self._entries[key]
                    report.succeeded.append(entry.operation)

        if report.attempted:
            logger.info(
                f"[{self.provider_id}] Retry drain: {len(report.succeeded)} succeeded, "
                f"{len(report.requeued)} requeued, {len(report.deferred)} deferred, "
                f"{len(report.permanently_failed)} permanently failed"
            )
        return report

    def _fail(self, entry: RetryEntry) -> None:
        self._entries.pop(entry.operation.key, None)
        self._failed.append(entry)
        logger.error(
            f"[{self.provider_id}] {entry.operation.kind.value} permanently failed "
            f"after {entry.attempts} attempt(s): {entry.last_error}"
        )
