"""
Tests for the ABDM session token manager.
"""

import asyncio

import httpx
import pytest

from core.exceptions import UpstreamAuthError
from helpers import FakeClock, GatewayStub
from services.session_token_service import SessionTokenManager
from shared_types.abha import SessionToken

SESSION_URL = "https://gateway.test/gateway/v3/sessions"


def make_manager(stub: GatewayStub, clock: FakeClock, **kwargs) -> SessionTokenManager:
    return SessionTokenManager(
        session_url=SESSION_URL,
        client_id=kwargs.pop("client_id", "client"),
        client_secret=kwargs.pop("client_secret", "secret"),
        environment="sbx",
        timeout=5,
        clock=clock,
        transport=stub.transport(),
        **kwargs,
    )


class TestSessionTokenManager:
    """Test session token caching and refresh."""

    @pytest.mark.asyncio
    async def test_first_call_exchanges_credentials(self):
        """Test the first call performs the client-credentials exchange."""
        stub = GatewayStub()
        manager = make_manager(stub, FakeClock())

        token = await manager.get_valid_token()

        assert token == "session-1"
        [request] = stub.requests_to("/sessions")
        assert GatewayStub.body(request) == {
            "clientId": "client",
            "clientSecret": "secret",
            "grantType": "client_credentials",
        }
        assert request.headers["X-CM-ID"] == "sbx"
        assert "REQUEST-ID" in request.headers

    @pytest.mark.asyncio
    async def test_cached_token_reused(self):
        """Test a valid cached token is returned without a new exchange."""
        stub = GatewayStub()
        manager = make_manager(stub, FakeClock())

        assert await manager.get_valid_token() == "session-1"
        assert await manager.get_valid_token() == "session-1"
        assert stub.session_calls == 1

    @pytest.mark.asyncio
    async def test_expiry_includes_safety_margin(self):
        """Test the cached expiry is one minute before the upstream expiry."""
        clock = FakeClock()
        manager = make_manager(GatewayStub(), clock)

        await manager.get_valid_token()

        assert manager.cached_session.expiry_timestamp == clock.now + 1800 - 60

    @pytest.mark.asyncio
    async def test_refresh_inside_safety_margin(self):
        """Test the token is refreshed once inside the last minute of its lifetime."""
        stub = GatewayStub()
        clock = FakeClock()
        manager = make_manager(stub, clock)

        await manager.get_valid_token()
        clock.advance(1800 - 60)

        assert await manager.get_valid_token() == "session-2"
        assert stub.session_calls == 2

    @pytest.mark.asyncio
    async def test_just_expired_token_triggers_exactly_one_exchange(self):
        """Test a token that expired one millisecond ago is never returned."""
        stub = GatewayStub()
        clock = FakeClock()
        manager = make_manager(stub, clock)
        manager._session = SessionToken(access_token="stale", expiry_timestamp=clock.now - 0.001)

        token = await manager.get_valid_token()

        assert token == "session-1"
        assert stub.session_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_exchange(self):
        """Test concurrent callers past expiry coalesce into a single exchange."""
        stub = GatewayStub()
        release = asyncio.Event()

        async def slow_session(request: httpx.Request) -> httpx.Response:
            stub.session_calls += 1
            await release.wait()
            return httpx.Response(200, json={"accessToken": "shared", "expiresIn": 1800})

        manager = SessionTokenManager(
            session_url=SESSION_URL, client_id="client", client_secret="secret",
            environment="sbx", timeout=5, clock=FakeClock(),
            transport=httpx.MockTransport(slow_session),
        )

        tasks = [asyncio.create_task(manager.get_valid_token()) for _ in range(5)]
        await asyncio.sleep(0)
        release.set()
        tokens = await asyncio.gather(*tasks)

        assert tokens == ["shared"] * 5
        assert stub.session_calls == 1

    @pytest.mark.asyncio
    async def test_failed_exchange_raises_and_keeps_no_token(self):
        """Test a rejected exchange raises UpstreamAuthError and caches nothing."""
        stub = GatewayStub()
        stub.respond("/sessions", 401, {"message": "bad credentials"})
        manager = make_manager(stub, FakeClock())

        with pytest.raises(UpstreamAuthError) as exc_info:
            await manager.get_valid_token()

        assert exc_info.value.status == 401
        assert manager.cached_session is None

    @pytest.mark.asyncio
    async def test_failed_refresh_never_returns_stale_token(self):
        """Test an expired token is not returned when its refresh fails."""
        stub = GatewayStub()
        clock = FakeClock()
        manager = make_manager(stub, clock)
        await manager.get_valid_token()

        stub.respond("/sessions", 500, {"message": "down"})
        clock.advance(3600)

        with pytest.raises(UpstreamAuthError):
            await manager.get_valid_token()

    @pytest.mark.asyncio
    async def test_malformed_response_raises(self):
        """Test a response without accessToken raises UpstreamAuthError."""
        stub = GatewayStub()
        stub.respond("/sessions", 200, {"expiresIn": 1800})
        manager = make_manager(stub, FakeClock())

        with pytest.raises(UpstreamAuthError):
            await manager.get_valid_token()

    @pytest.mark.asyncio
    async def test_missing_credentials_raise_without_request(self):
        """Test missing client credentials fail before any request is sent."""
        stub = GatewayStub()
        manager = make_manager(stub, FakeClock(), client_id="", client_secret="")

        with pytest.raises(UpstreamAuthError):
            await manager.get_valid_token()

        assert stub.requests == []

    @pytest.mark.asyncio
    async def test_invalidate_forces_new_exchange(self):
        """Test invalidate drops the cached token."""
        stub = GatewayStub()
        manager = make_manager(stub, FakeClock())
        await manager.get_valid_token()

        manager.invalidate()

        assert await manager.get_valid_token() == "session-2"

    @pytest.mark.asyncio
    async def test_fetch_and_cache_always_exchanges(self):
        """Test fetch_and_cache replaces a still-valid token."""
        stub = GatewayStub()
        manager = make_manager(stub, FakeClock())
        await manager.get_valid_token()

        session = await manager.fetch_and_cache()

        assert session.access_token == "session-2"
        assert manager.cached_session is session
