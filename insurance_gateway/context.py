"""Per-provider state container.

A ``ProviderContext`` bundles everything the gateway keeps for one
provider: configuration, rate limiter, auth/session manager, cache, retry
queue and sync watermark, plus the lock that serializes access to them.
Nothing in here is shared across providers.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, TypeVar

from .auth.session_manager import AuthSessionManager
from .cache import CacheStore
from .config import SYNC_HISTORY_LIMIT
from .errors import NetworkError, NoActiveToken
from .models import AuthToken, ProviderConfig, SyncResult
from .rate_limiter import RateLimiter
from .retry import RetryQueue
from .transport.session import ProviderSession

logger = logging.getLogger(__name__)

T = TypeVar("T")

RemoteCall = Callable[[ProviderSession, AuthToken], Awaitable[T]]


@dataclass
class ProviderContext:
    config: ProviderConfig
    lock: asyncio.Lock
    rate_limiter: RateLimiter
    auth: AuthSessionManager
    cache: CacheStore
    retry_queue: RetryQueue
    last_sync: datetime | None = None
    sync_history: deque[SyncResult] = field(
        default_factory=lambda: deque(maxlen=SYNC_HISTORY_LIMIT)
    )

    @property
    def provider_id(self) -> str:
        return self.config.provider_id

    async def call(self, operation: str, send: RemoteCall[T]) -> T:
        """Run one authenticated remote call.

        Takes a fresh token and a permit, then sends outside the provider
        lock. If the provider rejects the token, one forced refresh and one
        re-send are attempted before the token is dropped.

        Args:
            operation: Operation name, for logging
            send: Coroutine function issuing the request

        Raises:
            NoActiveToken: No usable token, or rejected again after refresh
            RateLimitExceeded: No permit available
            NetworkError / EncryptionError: Infrastructure failure
        """
        session, token = await self.auth.checkout()
        try:
            return await send(session, token)
        except NetworkError as e:
            if not e.auth_rejected:
                raise
            logger.warning(
                f"[{self.provider_id}] {operation} rejected token, refreshing once",
                extra={"provider_id": self.provider_id},
            )

        await self.auth.recover_rejected(token)
        session, token = await self.auth.checkout()
        try:
            return await send(session, token)
        except NetworkError as e:
            if not e.auth_rejected:
                raise
            await self.auth.invalidate(f"{operation} rejected after refresh")
            raise NoActiveToken(self.provider_id) from e

    async def reset(self) -> None:
        """Close the session and purge all provider state."""
        await self.auth.close()
        self.cache.clear()
        self.rate_limiter.reset()
        self.retry_queue.clear()
        self.sync_history.clear()
        self.last_sync = None
