"""Claim submission, status tracking and updates.

All operations follow the same path: look up the provider, validate the
input locally, take a fresh token and a rate-limit permit, send, validate
the answer, write it to the provider's cache. Infrastructure failures on
submission and status fetches are queued for retry before being raised.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from .context import ProviderContext
from .errors import EncryptionError, InsuranceError, InvalidClaim, InvalidResponse, NetworkError
from .events import EventSinks
from .models import BatchSubmissionResult, Claim, ClaimResponse, ClaimStatus
from .retry import RetryOperation
from .transport.session import utcnow

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (NetworkError, EncryptionError)


def validate_claim(claim: Claim, provider_id: str) -> None:
    """Check a claim before anything is sent.

    Raises:
        InvalidClaim: If the claim id is blank or the amount is not positive
    """
    if not claim.claim_id.strip():
        raise InvalidClaim("Claim ID cannot be empty", provider_id)
    if claim.amount <= 0:
        raise InvalidClaim("Claim amount must be greater than 0", provider_id)


def validate_claim_response(response: ClaimResponse, provider_id: str) -> ClaimResponse:
    if not response.claim_id.strip():
        raise InvalidResponse("Claim ID in response cannot be empty", provider_id)
    return response


class ClaimsService:
    """Claim operations against registered providers."""

    def __init__(
        self,
        lookup: Callable[[str], ProviderContext],
        sinks: EventSinks,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the service.

        Args:
            lookup: Resolves a provider id to its context (raises ProviderNotFound)
            sinks: Audit/metrics reporting
            clock: Source of the current time
        """
        self._lookup = lookup
        self._sinks = sinks
        self._clock = clock

    async def submit(self, claim: Claim, provider_id: str) -> ClaimResponse:
        """Submit a new claim.

        Raises:
            ProviderNotFound, InvalidClaim, NoActiveToken, NoActiveSession,
            RateLimitExceeded, InvalidResponse, NetworkError, EncryptionError
        """
        ctx = self._lookup(provider_id)

        try:
            validate_claim(claim, provider_id)
            response = await ctx.call(
                "submit_claim", lambda session, token: session.submit_claim(claim, token)
            )
            response = validate_claim_response(response, provider_id)
        except RETRYABLE_ERRORS as e:
            ctx.retry_queue.enqueue(RetryOperation.submit_claim(claim, provider_id), e)
            self._sinks.report_error(e, provider_id, "claim_submission")
            raise
        except InsuranceError as e:
            self._sinks.report_error(e, provider_id, "claim_submission")
            raise

        ctx.cache.put_claim_response(response)
        self._sinks.audit("claim_submitted", provider_id, claim_id=claim.claim_id)
        self._sinks.metric("claim_submission", provider_id)
        return response

    async def get_status(self, claim_id: str, provider_id: str) -> ClaimStatus:
        """Return a claim's status, from cache when available.

        Raises:
            ProviderNotFound, InvalidClaim, NoActiveToken, NoActiveSession,
            RateLimitExceeded, InvalidResponse, NetworkError, EncryptionError
        """
        ctx = self._lookup(provider_id)

        if not claim_id.strip():
            error = InvalidClaim("Claim ID cannot be empty", provider_id)
            self._sinks.report_error(error, provider_id, "claim_status_retrieval")
            raise error

        cached = ctx.cache.get_claim_status(claim_id)
        if cached is not None:
            self._sinks.metric("claim_status_cache_hit", provider_id)
            return cached

        try:
            response = await ctx.call(
                "get_claim_status",
                lambda session, token: session.get_claim_status(claim_id, token),
            )
            if not response.claim_id.strip():
                raise InvalidResponse(
                    "Claim ID in status response cannot be empty", provider_id
                )
        except RETRYABLE_ERRORS as e:
            ctx.retry_queue.enqueue(RetryOperation.get_claim_status(claim_id, provider_id), e)
            self._sinks.report_error(e, provider_id, "claim_status_retrieval")
            raise
        except InsuranceError as e:
            self._sinks.report_error(e, provider_id, "claim_status_retrieval")
            raise

        status = ClaimStatus(
            claim_id=response.claim_id,
            status=response.status,
            last_updated=response.last_updated,
            next_update=response.next_update,
        )
        ctx.cache.put_claim_status(status)
        self._sinks.audit("claim_status_retrieved", provider_id, claim_id=claim_id)
        self._sinks.metric("claim_status_retrieval", provider_id)
        return status

    async def update(self, claim: Claim, provider_id: str) -> ClaimResponse:
        """Overwrite an existing claim. Never served from cache."""
        ctx = self._lookup(provider_id)

        try:
            validate_claim(claim, provider_id)
            response = await ctx.call(
                "update_claim", lambda session, token: session.update_claim(claim, token)
            )
            response = validate_claim_response(response, provider_id)
        except InsuranceError as e:
            self._sinks.report_error(e, provider_id, "claim_update")
            raise

        ctx.cache.put_claim_response(response)
        self._sinks.audit("claim_updated", provider_id, claim_id=claim.claim_id)
        self._sinks.metric("claim_update", provider_id)
        return response

    async def submit_batch(
        self, claims: list[Claim], provider_id: str
    ) -> list[BatchSubmissionResult]:
        """Submit claims one after another, collecting per-claim outcomes.

        Raises:
            ProviderNotFound: Before any claim is sent
        """
        self._lookup(provider_id)

        results = []
        for claim in claims:
            try:
                response = await self.submit(claim, provider_id)
            except InsuranceError as e:
                results.append(
                    BatchSubmissionResult(
                        claim_id=claim.claim_id,
                        success=False,
                        error_code=e.code,
                        error_message=e.message,
                    )
                )
            else:
                results.append(
                    BatchSubmissionResult(
                        claim_id=claim.claim_id, success=True, response=response
                    )
                )

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"[{provider_id}] Batch submission: {succeeded}/{len(results)} accepted")
        return results

    async def track(self, claim_ids: list[str], provider_id: str) -> dict[str, ClaimStatus]:
        """Fetch the status of several claims."""
        return {
            claim_id: await self.get_status(claim_id, provider_id)
            for claim_id in claim_ids
        }
