"""Provider session: typed operations over an encrypted transport.

A ``ProviderSession`` builds the versioned request envelope for each
operation, encrypts it, sends it with a bounded timeout, then decrypts and
validates the answer into the matching response model.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ValidationError

from ..config import REQUEST_TIMEOUT_SECONDS
from ..errors import InsuranceError, InvalidAuthResponse, InvalidResponse, NetworkError
from ..models import (
    AuthRequest,
    AuthResponse,
    AuthToken,
    Claim,
    ClaimRequest,
    ClaimResponse,
    ClaimStatusRequest,
    ClaimStatusResponse,
    Credentials,
    DataType,
    ProviderConfig,
    SyncRequest,
    SyncResponse,
    TokenRefreshRequest,
    TokenRevocationRequest,
)
from ..security.encryption import PayloadCipher
from .http import Transport

logger = logging.getLogger(__name__)

ResponseT = TypeVar("ResponseT", bound=BaseModel)

# (operation, success, duration_ms)
CallObserver = Callable[[str, bool, float], None]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProviderSession:
    """Open channel to one provider."""

    def __init__(
        self,
        config: ProviderConfig,
        transport: Transport,
        cipher: PayloadCipher,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utcnow,
        observer: CallObserver | None = None,
    ) -> None:
        self.config = config
        self.timeout = timeout
        self._transport = transport
        self._cipher = cipher
        self._clock = clock
        self._observer = observer
        self._closed = False

    @property
    def provider_id(self) -> str:
        return self.config.provider_id

    @property
    def is_open(self) -> bool:
        return not self._closed

    def _envelope(self) -> dict[str, object]:
        return {
            "provider_id": self.provider_id,
            "request_id": str(uuid4()),
            "timestamp": self._clock(),
        }

    async def _exchange(
        self,
        operation: str,
        request: BaseModel,
        response_model: type[ResponseT] | None,
        invalid_error: type[InsuranceError] = InvalidResponse,
    ) -> ResponseT | None:
        """Encrypt, send and decode one request.

        Raises:
            NetworkError: Transport failure or timeout
            EncryptionError: Payload could not be encrypted/decrypted
            InvalidResponse / InvalidAuthResponse: Malformed answer
        """
        if self._closed:
            raise NetworkError(f"Session closed, cannot {operation}", self.provider_id)

        payload = self._cipher.encode(request.model_dump(mode="json"))
        start = time.perf_counter()
        success = False

        try:
            try:
                raw = await asyncio.wait_for(
                    self._transport.send(operation, payload), timeout=self.timeout
                )
            except asyncio.TimeoutError as e:
                raise NetworkError(
                    f"{operation} timed out after {self.timeout}s",
                    self.provider_id,
                    timed_out=True,
                ) from e

            if response_model is None:
                success = True
                return None

            data = self._cipher.decode(raw)
            try:
                parsed = response_model.model_validate(data)
            except ValidationError as e:
                raise invalid_error(
                    f"Malformed {operation} response: {e.error_count()} error(s)",
                    self.provider_id,
                ) from e

            success = True
            return parsed
        finally:
            if self._observer is not None:
                self._observer(operation, success, (time.perf_counter() - start) * 1000)

    async def authenticate(self, credentials: Credentials) -> AuthResponse:
        request = AuthRequest(
            **self._envelope(),
            client_id=credentials.client_id,
            client_secret=credentials.client_secret.get_secret_value(),
            scope=credentials.scope,
        )
        return await self._exchange(
            "authenticate", request, AuthResponse, InvalidAuthResponse
        )

    async def refresh_token(self, refresh_token: str) -> AuthResponse:
        request = TokenRefreshRequest(**self._envelope(), refresh_token=refresh_token)
        return await self._exchange(
            "refresh_token", request, AuthResponse, InvalidAuthResponse
        )

    async def revoke_token(self, access_token: str) -> None:
        request = TokenRevocationRequest(**self._envelope(), access_token=access_token)
        await self._exchange("revoke_token", request, None)

    async def submit_claim(self, claim: Claim, token: AuthToken) -> ClaimResponse:
        request = ClaimRequest(
            **self._envelope(), access_token=token.access_token, claim=claim
        )
        return await self._exchange("submit_claim", request, ClaimResponse)

    async def get_claim_status(
        self, claim_id: str, token: AuthToken
    ) -> ClaimStatusResponse:
        request = ClaimStatusRequest(
            **self._envelope(), access_token=token.access_token, claim_id=claim_id
        )
        return await self._exchange("get_claim_status", request, ClaimStatusResponse)

    async def update_claim(self, claim: Claim, token: AuthToken) -> ClaimResponse:
        request = ClaimRequest(
            **self._envelope(), access_token=token.access_token, claim=claim
        )
        return await self._exchange("update_claim", request, ClaimResponse)

    async def synchronize(
        self,
        data_types: list[DataType],
        last_sync: datetime | None,
        token: AuthToken,
    ) -> SyncResponse:
        request = SyncRequest(
            **self._envelope(),
            access_token=token.access_token,
            data_types=data_types,
            last_sync=last_sync,
        )
        return await self._exchange("synchronize", request, SyncResponse)

    async def close(self) -> None:
        """Close the session and its transport."""
        if self._closed:
            return
        self._closed = True
        await self._transport.aclose()
        logger.info(f"[{self.provider_id}] Session closed")
