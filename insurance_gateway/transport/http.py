"""HTTPS transport for provider APIs.

Posts encrypted payloads to per-operation endpoints under
``{base_url}/{api_version}`` and maps HTTP failures onto the gateway's
error taxonomy:

- connection errors, timeouts, 429 and 5xx: ``NetworkError`` (retryable)
- 401/403: ``NetworkError`` with ``auth_rejected`` set
- other 4xx: ``InvalidResponse`` (not retried)
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from ..config import CONNECT_TIMEOUT_SECONDS, REQUEST_TIMEOUT_SECONDS
from ..errors import InvalidResponse, NetworkError
from ..models import ProviderConfig

logger = logging.getLogger(__name__)

OPERATION_PATHS: dict[str, str] = {
    "authenticate": "/auth/token",
    "refresh_token": "/auth/refresh",
    "revoke_token": "/auth/revoke",
    "submit_claim": "/claims",
    "get_claim_status": "/claims/status",
    "update_claim": "/claims/update",
    "synchronize": "/sync",
}


class Transport(Protocol):
    """Sends encrypted request bytes and returns encrypted response bytes."""

    async def send(self, operation: str, payload: bytes) -> bytes:
        ...

    async def aclose(self) -> None:
        ...


class HTTPTransport:
    """httpx-based transport bound to one provider."""

    def __init__(
        self,
        config: ProviderConfig,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            config: Provider configuration (base_url, api_version)
            timeout: Read/write timeout in seconds
            http_transport: Optional httpx transport (e.g. MockTransport)
        """
        self.config = config
        self.timeout = timeout
        self._http_transport = http_transport
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/{self.config.api_version}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout, connect=CONNECT_TIMEOUT_SECONDS),
                headers={
                    "Content-Type": "application/octet-stream",
                    "Accept": "application/octet-stream",
                },
                transport=self._http_transport,
            )
            logger.info(f"[{self.config.provider_id}] Opened HTTPS client: {self.base_url}")
        return self._client

    async def send(self, operation: str, payload: bytes) -> bytes:
        """POST an encrypted payload to the operation's endpoint.

        Args:
            operation: Operation name (see OPERATION_PATHS)
            payload: Encrypted request bytes

        Returns:
            Encrypted response bytes

        Raises:
            NetworkError: On transport failure or retryable HTTP status
            InvalidResponse: On non-retryable client errors
        """
        path = OPERATION_PATHS.get(operation)
        if path is None:
            raise ValueError(f"Unknown operation: {operation}")

        provider_id = self.config.provider_id
        client = self._get_client()

        try:
            response = await client.post(path, content=payload)
        except httpx.TimeoutException as e:
            raise NetworkError(
                f"{operation} timed out: {e}", provider_id, timed_out=True
            ) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"{operation} failed: {e}", provider_id) from e

        status = response.status_code

        if status == 429:
            retry_after = response.headers.get("Retry-After", "unknown")
            raise NetworkError(
                f"Provider throttled {operation}, retry after {retry_after}s",
                provider_id,
                status_code=status,
            )

        if status >= 500:
            raise NetworkError(f"Server error: {status}", provider_id, status_code=status)

        if status in (401, 403):
            raise NetworkError(
                f"Provider rejected credentials for {operation}: {status}",
                provider_id,
                status_code=status,
            )

        if status >= 400:
            raise InvalidResponse(
                f"Client error: {status} - {response.text[:200]}", provider_id
            )

        return response.content

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
