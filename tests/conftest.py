"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest

from insurance_gateway import (
    Claim,
    ClaimType,
    Credentials,
    FernetPayloadCipher,
    ProviderConfig,
    ProviderRegistry,
    RateLimitPolicy,
)
from insurance_gateway.security.encryption import PayloadCipher

PROVIDER_ID = "testpayer"


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeProvider:
    """In-memory provider API speaking the encrypted wire format.

    Records every request, can be told to fail or answer specially on the
    next call of an operation, and can hold requests until ``gate`` is set.
    """

    def __init__(self, cipher: PayloadCipher, clock: ManualClock) -> None:
        self.cipher = cipher
        self.clock = clock
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.failures: dict[str, list[BaseException]] = defaultdict(list)
        self.responses: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.gate: asyncio.Event | None = None
        self.expires_in = 3600
        self.transports: list[FakeTransport] = []
        self._tokens = 0

    def transport_for(self, config: ProviderConfig) -> "FakeTransport":
        transport = FakeTransport(self)
        self.transports.append(transport)
        return transport

    def fail_next(self, operation: str, error: BaseException, times: int = 1) -> None:
        self.failures[operation].extend([error] * times)

    def respond_next(self, operation: str, payload: dict[str, Any]) -> None:
        self.responses[operation].append(payload)

    def count(self, operation: str | None = None) -> int:
        if operation is None:
            return len(self.calls)
        return sum(1 for op, _ in self.calls if op == operation)

    def requests(self, operation: str) -> list[dict[str, Any]]:
        return [request for op, request in self.calls if op == operation]

    def handle(self, operation: str, request: dict[str, Any]) -> dict[str, Any] | None:
        now = self.clock().isoformat()

        if operation in ("authenticate", "refresh_token"):
            self._tokens += 1
            return {
                "access_token": f"access-{self._tokens}",
                "refresh_token": f"refresh-{self._tokens}",
                "expires_in": self.expires_in,
                "token_type": "Bearer",
            }

        if operation == "revoke_token":
            return None

        if operation in ("submit_claim", "update_claim"):
            claim_id = request["claim"]["claim_id"]
            status = "submitted" if operation == "submit_claim" else "updated"
            return {
                "claim_id": claim_id,
                "status": {"claim_id": claim_id, "status": status, "last_updated": now},
                "response_date": now,
            }

        if operation == "get_claim_status":
            return {
                "claim_id": request["claim_id"],
                "status": "processing",
                "last_updated": now,
            }

        if operation == "synchronize":
            return {
                "data": {t: [{"id": f"{t}-1"}] for t in request["data_types"]},
                "data_types": request["data_types"],
            }

        raise AssertionError(f"Unexpected operation: {operation}")


class FakeTransport:
    def __init__(self, provider: FakeProvider) -> None:
        self.provider = provider
        self.closed = False

    async def send(self, operation: str, payload: bytes) -> bytes:
        provider = self.provider
        request = provider.cipher.decode(payload)
        provider.calls.append((operation, request))

        if provider.gate is not None:
            await provider.gate.wait()

        if provider.failures[operation]:
            raise provider.failures[operation].pop(0)

        if provider.responses[operation]:
            response = provider.responses[operation].pop(0)
        else:
            response = provider.handle(operation, request)

        if response is None:
            return b""
        return provider.cipher.encode(response)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def cipher() -> FernetPayloadCipher:
    return FernetPayloadCipher(FernetPayloadCipher.generate_key())


@pytest.fixture
def fake_provider(cipher: FernetPayloadCipher, clock: ManualClock) -> FakeProvider:
    return FakeProvider(cipher, clock)


@pytest.fixture
def registry(
    cipher: FernetPayloadCipher, fake_provider: FakeProvider, clock: ManualClock
) -> ProviderRegistry:
    return ProviderRegistry(
        cipher=cipher,
        transport_factory=fake_provider.transport_for,
        clock=clock,
        request_timeout=1.0,
        retry_base_delay=1.0,
        retry_max_delay=60.0,
    )


def make_config(
    provider_id: str = PROVIDER_ID,
    per_minute: int = 10,
    per_hour: int = 100,
    base_url: str = "https://api.testpayer.example",
    auto_connect: bool = False,
) -> ProviderConfig:
    return ProviderConfig(
        provider_id=provider_id,
        name="Test Payer",
        base_url=base_url,
        api_version="v1",
        rate_limit=RateLimitPolicy(requests_per_minute=per_minute, requests_per_hour=per_hour),
        auto_connect=auto_connect,
    )


def make_claim(claim_id: str = "C1", amount: str = "50.00") -> Claim:
    return Claim(
        claim_id=claim_id,
        patient_id="P-100",
        provider_id="NPI-1234567890",
        amount=Decimal(amount),
        description="Office visit",
        date_of_service=date(2026, 1, 10),
        claim_type=ClaimType.MEDICAL,
    )


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(client_id="gateway-client", client_secret="s3cret", scope="claims")


@pytest.fixture
async def provider(registry: ProviderRegistry) -> str:
    """A registered provider with a generous rate limit."""
    await registry.register_provider(make_config())
    return PROVIDER_ID


@pytest.fixture
async def authenticated(
    registry: ProviderRegistry, provider: str, credentials: Credentials
) -> str:
    """A registered and authenticated provider."""
    await registry.authenticate(provider, credentials)
    return provider
