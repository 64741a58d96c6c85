"""Per-provider cache of claim statuses, claim responses and sync payloads."""

from __future__ import annotations

import logging
from typing import Any

from .models import CacheStatistics, ClaimResponse, ClaimStatus

logger = logging.getLogger(__name__)


class CacheStore:
    """Last-known claim data for one provider.

    Entries are overwritten on every write (last write wins) and never
    merged.
    """

    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        self._statuses: dict[str, ClaimStatus] = {}
        self._responses: dict[str, ClaimResponse] = {}
        self._sync_data: dict[str, Any] | None = None
        self._hits = 0
        self._misses = 0

    def get_claim_status(self, claim_id: str) -> ClaimStatus | None:
        status = self._statuses.get(claim_id)
        if status is None:
            self._misses += 1
        else:
            self._hits += 1
        return status

    def put_claim_status(self, status: ClaimStatus) -> None:
        self._statuses[status.claim_id] = status

    def put_claim_response(self, response: ClaimResponse) -> None:
        """Store a submission/update answer and the status it carries."""
        self._responses[response.claim_id] = response
        self._statuses[response.claim_id] = response.status

    def get_claim_response(self, claim_id: str) -> ClaimResponse | None:
        return self._responses.get(claim_id)

    def put_sync_data(self, data: dict[str, Any]) -> None:
        self._sync_data = dict(data)

    def get_sync_data(self) -> dict[str, Any] | None:
        return self._sync_data

    def clear(self) -> None:
        """Drop every cached entry for the provider."""
        self._statuses.clear()
        self._responses.clear()
        self._sync_data = None
        logger.info(f"[{self.provider_id}] Cache cleared")

    def statistics(self) -> CacheStatistics:
        return CacheStatistics(
            provider_id=self.provider_id,
            claim_statuses=len(self._statuses),
            claim_responses=len(self._responses),
            has_sync_data=self._sync_data is not None,
            hits=self._hits,
            misses=self._misses,
        )
