"""
Unit tests for AuthentikIdentityProvider.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from service_identity.app.providers import AuthentikIdentityProvider
from service_identity.app.providers.authentik import first_non_empty
from shared.circuit_breaker import CircuitBreaker
from shared.errors import ExternalServiceError, NotFound
from shared.test_helpers import AccessDataFactory

BASE_URL = "http://authentik.test"


def make_provider(handler, **kwargs) -> AuthentikIdentityProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AuthentikIdentityProvider(BASE_URL, "api-token", client=client, **kwargs)


class TestAuthentikIdentityProvider:
    """Test cases for AuthentikIdentityProvider."""

    @pytest.mark.asyncio
    async def test_fetch_maps_first_result(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"results": [AccessDataFactory.authentik_user("u1")]})

        provider = make_provider(handler)

        identity = await provider.fetch_by_id("u1")

        assert identity.id == "u1"
        assert identity.username == "user-u1"
        assert identity.display_name == "User U1"
        assert identity.email == "u1@254carbon.com"
        assert identity.avatar_url.endswith("/u1.png")
        assert identity.last_synced_at is None

        request = seen[0]
        assert request.url.path == "/api/v3/core/users/"
        assert request.url.params["uuid"] == "u1"
        assert request.headers["Authorization"] == "Bearer api-token"

    @pytest.mark.asyncio
    async def test_display_name_falls_back_to_username(self):
        user = AccessDataFactory.authentik_user("u1", name="", avatar="")
        provider = make_provider(lambda request: httpx.Response(200, json={"results": [user]}))

        identity = await provider.fetch_by_id("u1")

        assert identity.display_name == "user-u1"
        assert identity.avatar_url is None

    @pytest.mark.asyncio
    async def test_empty_results_raise_not_found(self):
        provider = make_provider(lambda request: httpx.Response(200, json={"results": []}))

        with pytest.raises(NotFound):
            await provider.fetch_by_id("ghost")

    @pytest.mark.asyncio
    async def test_404_raises_not_found(self):
        provider = make_provider(lambda request: httpx.Response(404))

        with pytest.raises(NotFound):
            await provider.fetch_by_id("ghost")

    @pytest.mark.asyncio
    async def test_server_error_raises_external_service_error(self):
        provider = make_provider(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(ExternalServiceError) as exc_info:
            await provider.fetch_by_id("u1")

        assert exc_info.value.service == "authentik"

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"results": [AccessDataFactory.authentik_user("u1")]})

        provider = make_provider(handler)

        with patch("shared.retry.asyncio.sleep", new_callable=AsyncMock):
            identity = await provider.fetch_by_id("u1")

        assert identity.id == "u1"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_external_service_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider = make_provider(handler)

        with patch("shared.retry.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(ExternalServiceError):
                await provider.fetch_by_id("u1")

    @pytest.mark.asyncio
    async def test_open_breaker_short_circuits(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        breaker = CircuitBreaker(
            failure_threshold=2,
            recovery_timeout=60.0,
            expected_exception=httpx.HTTPError,
            name="authentik-test"
        )
        provider = make_provider(handler, circuit_breaker=breaker)

        for _ in range(3):
            with pytest.raises(ExternalServiceError):
                await provider.fetch_by_id("u1")

        assert breaker.is_open()
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_aclose_closes_client(self):
        provider = make_provider(lambda request: httpx.Response(200, json={"results": []}))

        await provider.aclose()

        assert provider._client.is_closed


class TestFirstNonEmpty:

    def test_returns_first_truthy_value(self):
        assert first_non_empty(None, "", "b", "c") == "b"

    def test_returns_empty_when_nothing_set(self):
        assert first_non_empty(None, "") == ""
