"""
Tests for ABDM HTTP helpers: headers, environment resolution and error mapping.
"""

import uuid
from datetime import timedelta

import httpx
import pytest

from core.exceptions import UpstreamAuthError, UpstreamError
from services.abha_http import (
    build_abha_headers,
    parse_upstream,
    resolve_environment,
    send_json,
    validate_timestamp_drift,
)
from shared_types.abha import AbhaEnvironment, OtpResponse
from utils.datetime_utils import isoformat_utc, parse_iso_datetime, utc_now


class TestHeaders:
    """Test mandatory ABDM header construction."""

    def test_mandatory_headers_present(self):
        """Test REQUEST-ID, TIMESTAMP and X-CM-ID are always set."""
        headers = build_abha_headers("sbx")

        uuid.UUID(headers["REQUEST-ID"])
        parse_iso_datetime(headers["TIMESTAMP"])
        assert headers["X-CM-ID"] == "sbx"
        assert headers["Content-Type"] == "application/json"
        assert "Authorization" not in headers

    def test_bearer_token_added(self):
        """Test a token is sent as a bearer Authorization header."""
        headers = build_abha_headers(AbhaEnvironment.PRODUCTION, "tok")

        assert headers["Authorization"] == "Bearer tok"
        assert headers["X-CM-ID"] == "abdm"

    def test_request_id_unique_per_call(self):
        """Test each call gets a fresh correlation id."""
        assert build_abha_headers("sbx")["REQUEST-ID"] != build_abha_headers("sbx")["REQUEST-ID"]


class TestEnvironment:
    def test_resolve_known_environments(self):
        assert resolve_environment("sbx") is AbhaEnvironment.SANDBOX
        assert resolve_environment("abdm") is AbhaEnvironment.PRODUCTION
        assert resolve_environment(AbhaEnvironment.SANDBOX) is AbhaEnvironment.SANDBOX

    def test_unknown_environment_rejected(self):
        """Test an unknown discriminator raises ValueError."""
        with pytest.raises(ValueError, match="Unknown ABDM environment"):
            resolve_environment("prod")


class TestTimestampDrift:
    def test_recent_timestamp_accepted(self):
        now = utc_now()
        assert validate_timestamp_drift(isoformat_utc(now - timedelta(seconds=30)), now=now)

    def test_stale_timestamp_rejected(self):
        now = utc_now()
        assert not validate_timestamp_drift(isoformat_utc(now - timedelta(minutes=6)), now=now)

    def test_garbage_rejected(self):
        assert not validate_timestamp_drift("yesterday")


class TestSendJson:
    """Test request sending and failure translation."""

    @pytest.mark.asyncio
    async def test_returns_decoded_body(self):
        """Test a 2xx response returns the JSON body."""
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"txnId": "T1"}))

        body = await send_json("POST", "https://gw.test/x", headers={}, payload={}, timeout=5, transport=transport)

        assert body == {"txnId": "T1"}

    @pytest.mark.asyncio
    async def test_non_2xx_raises_upstream_error(self):
        """Test a non-2xx response raises UpstreamError with status and body."""
        transport = httpx.MockTransport(lambda request: httpx.Response(422, json={"message": "Invalid OTP"}))

        with pytest.raises(UpstreamError) as exc_info:
            await send_json("POST", "https://gw.test/x", headers={}, timeout=5, transport=transport)

        assert exc_info.value.status == 422
        assert exc_info.value.body == {"message": "Invalid OTP"}

    @pytest.mark.asyncio
    async def test_timeout_maps_to_upstream_error(self):
        """Test a timeout raises UpstreamError with no status."""
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(UpstreamError) as exc_info:
            await send_json("GET", "https://gw.test/x", headers={}, timeout=5, transport=httpx.MockTransport(handler))

        assert exc_info.value.status is None

    @pytest.mark.asyncio
    async def test_connection_error_uses_error_class(self):
        """Test transport failures raise the requested error class."""
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UpstreamAuthError):
            await send_json(
                "POST", "https://gw.test/x", headers={}, timeout=5,
                transport=httpx.MockTransport(handler), error_cls=UpstreamAuthError,
            )


class TestParseUpstream:
    def test_valid_body(self):
        assert parse_upstream(OtpResponse, {"txnId": "T1", "message": "sent"}).txn_id == "T1"

    def test_missing_field_raises_with_body(self):
        """Test a body missing required fields raises UpstreamError carrying the body."""
        with pytest.raises(UpstreamError) as exc_info:
            parse_upstream(OtpResponse, {"message": "sent"})

        assert exc_info.value.body == {"message": "sent"}
