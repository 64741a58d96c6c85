"""Incremental data synchronization with providers.

Each provider keeps a watermark: the time of its last successful sync.
Requests carry the watermark so the provider only returns newer data; the
watermark advances only after a sync succeeds.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from .config import SYNC_INTERVAL_SECONDS
from .context import ProviderContext
from .errors import InsuranceError
from .events import EventSinks
from .models import DataType, SyncResult, SyncStatus
from .transport.session import utcnow

logger = logging.getLogger(__name__)


class SyncService:
    """Synchronization operations against registered providers."""

    def __init__(
        self,
        lookup: Callable[[str], ProviderContext],
        sinks: EventSinks,
        clock: Callable[[], datetime] = utcnow,
        sync_interval: float = SYNC_INTERVAL_SECONDS,
    ) -> None:
        self._lookup = lookup
        self._sinks = sinks
        self._clock = clock
        self.sync_interval = timedelta(seconds=sync_interval)

    async def synchronize(
        self, provider_id: str, data_types: list[DataType] | None = None
    ) -> SyncResult:
        """Pull data changed since the provider's watermark.

        Args:
            provider_id: Provider to sync
            data_types: Entity types to request (default: all)

        Returns:
            SyncResult with the returned payload

        Raises:
            ProviderNotFound, NoActiveToken, NoActiveSession,
            RateLimitExceeded, InvalidResponse, NetworkError, EncryptionError
        """
        ctx = self._lookup(provider_id)
        requested = list(data_types) if data_types else list(DataType)
        watermark = ctx.last_sync

        try:
            response = await ctx.call(
                "synchronize",
                lambda session, token: session.synchronize(requested, watermark, token),
            )
        except InsuranceError as e:
            self._sinks.report_error(e, provider_id, "data_sync")
            raise

        now = self._clock()
        result = SyncResult(
            provider_id=provider_id,
            data=response.data,
            timestamp=now,
            data_types=response.data_types or requested,
        )

        ctx.cache.put_sync_data(result.data)
        ctx.last_sync = now
        ctx.sync_history.appendleft(result)

        self._sinks.audit(
            "data_synchronized",
            provider_id,
            data_types=[t.value for t in result.data_types],
            incremental=watermark is not None,
        )
        self._sinks.metric("data_sync", provider_id)
        logger.info(
            f"[{provider_id}] Synchronized {len(result.data)} key(s) "
            f"({'incremental' if watermark else 'full'})"
        )
        return result

    def status(self, provider_id: str) -> SyncStatus:
        """Report connection, token and watermark state without network calls."""
        ctx = self._lookup(provider_id)
        last_sync = ctx.last_sync
        return SyncStatus(
            provider_id=provider_id,
            is_connected=ctx.auth.is_connected,
            has_valid_token=ctx.auth.has_valid_token(),
            last_sync=last_sync,
            next_sync=last_sync + self.sync_interval if last_sync else None,
        )

    def history(self, provider_id: str, limit: int = 100) -> list[SyncResult]:
        """Most recent sync results first."""
        ctx = self._lookup(provider_id)
        return list(ctx.sync_history)[:limit]
