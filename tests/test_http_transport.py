"""Tests for the httpx transport and the encrypted provider session."""

from __future__ import annotations

from datetime import timedelta

import httpx
import pytest

from insurance_gateway import AuthToken, EncryptionError, InvalidResponse, NetworkError
from insurance_gateway.transport import HTTPTransport, ProviderSession

from .conftest import make_config


def make_transport(handler) -> HTTPTransport:
    return HTTPTransport(make_config(), timeout=5, http_transport=httpx.MockTransport(handler))


class TestHTTPTransport:
    @pytest.mark.asyncio
    async def test_posts_to_versioned_operation_path(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=b"encrypted-answer")

        transport = make_transport(handler)
        body = await transport.send("get_claim_status", b"encrypted-request")
        await transport.aclose()

        assert body == b"encrypted-answer"
        [request] = seen
        assert request.method == "POST"
        assert str(request.url) == "https://api.testpayer.example/v1/claims/status"
        assert request.content == b"encrypted-request"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    async def test_retryable_statuses(self, status):
        transport = make_transport(lambda request: httpx.Response(status))

        with pytest.raises(NetworkError) as exc_info:
            await transport.send("submit_claim", b"x")

        assert exc_info.value.status_code == status
        assert exc_info.value.transient
        assert not exc_info.value.auth_rejected

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_rejections(self, status):
        transport = make_transport(lambda request: httpx.Response(status))

        with pytest.raises(NetworkError) as exc_info:
            await transport.send("submit_claim", b"x")

        assert exc_info.value.auth_rejected

    @pytest.mark.asyncio
    async def test_client_error_is_invalid_response(self):
        transport = make_transport(lambda request: httpx.Response(422, text="bad claim"))

        with pytest.raises(InvalidResponse, match="422"):
            await transport.send("submit_claim", b"x")

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NetworkError) as exc_info:
            await make_transport(handler).send("synchronize", b"x")

        assert not exc_info.value.timed_out

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        with pytest.raises(NetworkError) as exc_info:
            await make_transport(handler).send("synchronize", b"x")

        assert exc_info.value.timed_out

    @pytest.mark.asyncio
    async def test_unknown_operation(self):
        transport = make_transport(lambda request: httpx.Response(200))

        with pytest.raises(ValueError):
            await transport.send("delete_everything", b"x")


class TestProviderSession:
    @pytest.mark.asyncio
    async def test_round_trip_through_http(self, cipher, clock):
        def handler(request: httpx.Request) -> httpx.Response:
            payload = cipher.decode(request.content)
            answer = {
                "claim_id": payload["claim_id"],
                "status": "approved",
                "last_updated": clock().isoformat(),
            }
            return httpx.Response(200, content=cipher.encode(answer))

        observed = []
        session = ProviderSession(
            make_config(),
            make_transport(handler),
            cipher,
            clock=clock,
            observer=lambda op, ok, ms: observed.append((op, ok)),
        )
        token = _token(clock)

        response = await session.get_claim_status("C1", token)
        await session.close()

        assert response.status == "approved"
        assert observed == [("get_claim_status", True)]
        assert not session.is_open

    @pytest.mark.asyncio
    async def test_undecryptable_answer(self, cipher, clock):
        session = ProviderSession(
            make_config(),
            make_transport(lambda request: httpx.Response(200, content=b"plaintext")),
            cipher,
            clock=clock,
        )

        with pytest.raises(EncryptionError):
            await session.get_claim_status("C1", _token(clock))

    @pytest.mark.asyncio
    async def test_closed_session_refuses(self, cipher, clock):
        session = ProviderSession(
            make_config(), make_transport(lambda request: httpx.Response(200)), cipher
        )
        await session.close()

        with pytest.raises(NetworkError):
            await session.get_claim_status("C1", _token(clock))


def _token(clock):
    return AuthToken(access_token="abc", expires_at=clock() + timedelta(hours=1))
