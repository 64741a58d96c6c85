"""Provider registry: the gateway's composition root and public contract.

The registry owns one ``ProviderContext`` per registered provider and
routes every public operation to the claims, sync and retry machinery for
that provider. There is no lock across providers; each context carries its
own.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable
from urllib.parse import urlparse

from .auth.session_manager import AuthSessionManager
from .cache import CacheStore
from .claims import ClaimsService
from .config import (
    REQUEST_TIMEOUT_SECONDS,
    RETRY_BASE_DELAY_SECONDS,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_DELAY_SECONDS,
    SYNC_INTERVAL_SECONDS,
)
from .config_loader import PROVIDER_PRESETS
from .context import ProviderContext
from .errors import (
    EncryptionError,
    InsuranceError,
    InvalidProviderConfig,
    NetworkError,
    ProviderNotFound,
)
from .events import EventSinks
from .models import (
    APIMetrics,
    AuthToken,
    BatchSubmissionResult,
    CacheStatistics,
    Claim,
    ClaimResponse,
    ClaimStatus,
    ComplianceStatus,
    Credentials,
    DataType,
    ErrorStatistics,
    ProviderConfig,
    RetryKind,
    SyncResult,
    SyncStatus,
)
from .rate_limiter import RateLimiter
from .retry import DrainReport, RetryOperation, RetryQueue
from .security.encryption import PayloadCipher
from .sync import SyncService
from .transport.http import HTTPTransport, Transport
from .transport.session import ProviderSession, utcnow

logger = logging.getLogger(__name__)

TransportFactory = Callable[[ProviderConfig], Transport]


def validate_provider_config(config: ProviderConfig) -> None:
    """Check the registration contract.

    Raises:
        InvalidProviderConfig: Empty provider id or non-HTTPS endpoint
    """
    if not config.provider_id:
        raise InvalidProviderConfig("Provider ID cannot be empty")

    parsed = urlparse(config.base_url)
    if parsed.scheme != "https":
        raise InvalidProviderConfig("Base URL must use HTTPS", config.provider_id)
    if not parsed.netloc:
        raise InvalidProviderConfig("Base URL must include a host", config.provider_id)


class ProviderRegistry:
    """Registry of insurance providers and entry point for all operations."""

    def __init__(
        self,
        cipher: PayloadCipher,
        transport_factory: TransportFactory | None = None,
        sinks: EventSinks | None = None,
        clock: Callable[[], datetime] = utcnow,
        request_timeout: float = REQUEST_TIMEOUT_SECONDS,
        retry_max_attempts: int = RETRY_MAX_ATTEMPTS,
        retry_base_delay: float = RETRY_BASE_DELAY_SECONDS,
        retry_max_delay: float = RETRY_MAX_DELAY_SECONDS,
        sync_interval: float = SYNC_INTERVAL_SECONDS,
    ) -> None:
        """Initialize the registry.

        Args:
            cipher: Payload encryption shared by all sessions
            transport_factory: Builds a transport per provider (default: HTTPTransport)
            sinks: Audit/metrics/error/compliance reporting
            clock: Source of the current time
            request_timeout: Bound on every remote call, in seconds
            retry_max_attempts: Retry ceiling before an entry is permanently failed
            retry_base_delay: Base of the exponential retry backoff, in seconds
            retry_max_delay: Cap on the retry backoff, in seconds
            sync_interval: Spacing used to report the next expected sync
        """
        self._cipher = cipher
        self._transport_factory = transport_factory or (
            lambda config: HTTPTransport(config, timeout=request_timeout)
        )
        self._clock = clock
        self.sinks = sinks or EventSinks(clock=clock)
        self.request_timeout = request_timeout
        self._retry_settings = {
            "max_attempts": retry_max_attempts,
            "base_delay": retry_base_delay,
            "max_delay": retry_max_delay,
        }
        self._providers: dict[str, ProviderContext] = {}

        self.claims = ClaimsService(self.get_context, self.sinks, clock)
        self.sync = SyncService(self.get_context, self.sinks, clock, sync_interval)

    # --- Provider management ---

    def get_context(self, provider_id: str) -> ProviderContext:
        """Resolve a provider's context.

        Raises:
            ProviderNotFound: If the provider is not registered
        """
        ctx = self._providers.get(provider_id)
        if ctx is None:
            raise ProviderNotFound(provider_id)
        return ctx

    def is_registered(self, provider_id: str) -> bool:
        return provider_id in self._providers

    async def register_provider(self, config: ProviderConfig) -> None:
        """Register a provider and build its state.

        Raises:
            InvalidProviderConfig: Validation failure or duplicate id
        """
        try:
            validate_provider_config(config)
            if config.provider_id in self._providers:
                raise InvalidProviderConfig(
                    f"Provider already registered: {config.provider_id}",
                    config.provider_id,
                )
        except InvalidProviderConfig as e:
            self.sinks.report_error(e, config.provider_id or "<unknown>", "provider_registration")
            raise

        ctx = self._build_context(config)
        self._providers[config.provider_id] = ctx

        self.sinks.audit("provider_registered", config.provider_id, name=config.name)
        self.sinks.metric("provider_registration", config.provider_id)
        logger.info(f"Registered insurance provider: {config.provider_id} ({config.name})")

        if config.auto_connect:
            ctx.auth.open_session()

    async def register_default_providers(self) -> list[str]:
        """Register the built-in presets that are not registered yet."""
        registered = []
        for provider_id, config in PROVIDER_PRESETS.items():
            if provider_id in self._providers:
                continue
            await self.register_provider(config)
            registered.append(provider_id)
        return registered

    async def remove_provider(self, provider_id: str) -> None:
        """Remove a provider and purge its session, cache, rate window and retries.

        Raises:
            ProviderNotFound: If the provider is not registered
        """
        ctx = self._providers.pop(provider_id, None)
        if ctx is None:
            raise ProviderNotFound(provider_id)

        await ctx.reset()

        self.sinks.audit("provider_removed", provider_id)
        self.sinks.metric("provider_removal", provider_id)
        self.sinks.forget(provider_id)
        logger.info(f"Removed insurance provider: {provider_id}")

    def list_providers(self) -> list[ProviderConfig]:
        return [ctx.config for ctx in self._providers.values()]

    # --- Authentication ---

    async def authenticate(self, provider_id: str, credentials: Credentials) -> AuthToken:
        """Exchange credentials for a token.

        Infrastructure failures are queued for retry. Rejected credentials
        are not.

        Raises:
            ProviderNotFound, InvalidCredentials, RateLimitExceeded,
            InvalidAuthResponse, NetworkError, EncryptionError
        """
        ctx = self.get_context(provider_id)
        try:
            return await ctx.auth.authenticate(credentials)
        except (NetworkError, EncryptionError) as e:
            ctx.retry_queue.enqueue(RetryOperation.authenticate(provider_id, credentials), e)
            self.sinks.report_error(e, provider_id, "authentication")
            raise
        except InsuranceError as e:
            self.sinks.report_error(e, provider_id, "authentication")
            raise

    async def refresh_token(self, provider_id: str) -> AuthToken:
        """Refresh the provider's token when it is inside the refresh margin.

        Raises:
            ProviderNotFound, NoActiveToken, NoActiveSession,
            InvalidAuthResponse, NetworkError, EncryptionError
            RateLimitExceeded: The refresh exchange needs a permit and none is left
        """
        ctx = self.get_context(provider_id)
        try:
            return await ctx.auth.refresh()
        except InsuranceError as e:
            self.sinks.report_error(e, provider_id, "token_refresh")
            raise

    async def revoke_token(self, provider_id: str) -> None:
        ctx = self.get_context(provider_id)
        try:
            await ctx.auth.revoke()
        except InsuranceError as e:
            self.sinks.report_error(e, provider_id, "token_revocation")
            raise

    # --- Claims ---

    async def submit_claim(self, claim: Claim, provider_id: str) -> ClaimResponse:
        return await self.claims.submit(claim, provider_id)

    async def submit_claims(
        self, claims: list[Claim], provider_id: str
    ) -> list[BatchSubmissionResult]:
        return await self.claims.submit_batch(claims, provider_id)

    async def get_claim_status(self, claim_id: str, provider_id: str) -> ClaimStatus:
        return await self.claims.get_status(claim_id, provider_id)

    async def track_claims(
        self, claim_ids: list[str], provider_id: str
    ) -> dict[str, ClaimStatus]:
        return await self.claims.track(claim_ids, provider_id)

    async def update_claim(self, claim: Claim, provider_id: str) -> ClaimResponse:
        return await self.claims.update(claim, provider_id)

    # --- Synchronization ---

    async def synchronize_data(
        self, provider_id: str, data_types: list[DataType] | None = None
    ) -> SyncResult:
        return await self.sync.synchronize(provider_id, data_types)

    def get_sync_status(self, provider_id: str) -> SyncStatus:
        return self.sync.status(provider_id)

    def get_sync_history(self, provider_id: str, limit: int = 100) -> list[SyncResult]:
        return self.sync.history(provider_id, limit)

    # --- Retries ---

    async def retry_failed_operations(self, provider_id: str) -> DrainReport:
        """Re-run every pending retry for a provider now, regardless of backoff.

        Returns:
            DrainReport; ``permanently_failed`` lists entries that hit the ceiling
        """
        ctx = self.get_context(provider_id)
        return await ctx.retry_queue.drain(self._execute_retry, force=True)

    async def drain_due_retries(self) -> list[DrainReport]:
        """Drain entries whose backoff elapsed, for every provider in parallel."""
        contexts = [ctx for ctx in self._providers.values() if len(ctx.retry_queue)]
        if not contexts:
            return []
        return list(
            await asyncio.gather(
                *(ctx.retry_queue.drain(self._execute_retry) for ctx in contexts)
            )
        )

    def get_permanently_failed(self, provider_id: str) -> list[RetryOperation]:
        ctx = self.get_context(provider_id)
        return [entry.operation for entry in ctx.retry_queue.permanently_failed]

    async def _execute_retry(self, operation: RetryOperation) -> Any:
        if operation.kind is RetryKind.AUTHENTICATE:
            return await self.get_context(operation.provider_id).auth.authenticate(
                operation.credentials
            )
        if operation.kind is RetryKind.SUBMIT_CLAIM:
            return await self.claims.submit(operation.claim, operation.provider_id)
        return await self.claims.get_status(operation.claim_id, operation.provider_id)

    # --- Cache ---

    def clear_cache(self, provider_id: str) -> None:
        self.get_context(provider_id).cache.clear()

    def get_cache_statistics(self, provider_id: str) -> CacheStatistics:
        return self.get_context(provider_id).cache.statistics()

    # --- Monitoring ---

    def get_metrics(self, provider_id: str) -> APIMetrics:
        return self.sinks.metrics.get_metrics(provider_id)

    def get_error_stats(self, provider_id: str) -> ErrorStatistics:
        return self.sinks.errors.get_statistics(provider_id)

    def get_compliance_status(self, provider_id: str) -> ComplianceStatus:
        return self.sinks.compliance.get_status(provider_id, self._clock())

    async def aclose(self) -> None:
        """Close every provider session."""
        for ctx in list(self._providers.values()):
            await ctx.auth.close()

    # --- Internals ---

    def _build_context(self, config: ProviderConfig) -> ProviderContext:
        provider_id = config.provider_id
        lock = asyncio.Lock()
        rate_limiter = RateLimiter(provider_id, config.rate_limit)

        def session_factory() -> ProviderSession:
            return ProviderSession(
                config,
                self._transport_factory(config),
                self._cipher,
                timeout=self.request_timeout,
                clock=self._clock,
                observer=self.sinks.call_observer(provider_id),
            )

        auth = AuthSessionManager(
            provider_id,
            rate_limiter,
            session_factory,
            lock,
            self.sinks,
            self._clock,
        )
        return ProviderContext(
            config=config,
            lock=lock,
            rate_limiter=rate_limiter,
            auth=auth,
            cache=CacheStore(provider_id),
            retry_queue=RetryQueue(provider_id, clock=self._clock, **self._retry_settings),
        )
