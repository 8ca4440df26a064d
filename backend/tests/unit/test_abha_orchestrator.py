"""
Tests for the ABHA flow orchestrator.
"""

from unittest.mock import AsyncMock, patch

import pytest

from core.exceptions import CryptoError, StoreError, UpstreamAuthError, UpstreamError
from services.abha_orchestrator import (
    CODE_ENCRYPTION_ERROR,
    CODE_INTERNAL_ERROR,
    CODE_INVALID_REQUEST,
    CODE_STORE_ERROR,
    CODE_UPSTREAM_AUTH_ERROR,
    CODE_UPSTREAM_ERROR,
    CODE_UPSTREAM_TIMEOUT,
    AbhaOrchestrator,
)
from shared_types.abha import DocumentEnrollment, EnrollmentResponse, LoginHint, OtpResponse


@pytest.fixture
def client():
    return AsyncMock()


@pytest.fixture
def orchestrator(client):
    return AbhaOrchestrator(client=client)


class TestAadhaarFlow:
    """Test ABHA creation via Aadhaar OTP."""

    @pytest.mark.asyncio
    async def test_initiate_returns_txn_id(self, orchestrator, client):
        client.request_otp.return_value = OtpResponse(txnId="T1")

        result = await orchestrator.initiate_aadhaar_enrollment("123412341234")

        assert result.success
        assert result.txn_id == "T1"
        assert result.message == "OTP sent successfully to Aadhaar-linked mobile"
        client.request_otp.assert_awaited_once_with(LoginHint.AADHAAR, "123412341234", ["abha-enrol"], None)

    @pytest.mark.asyncio
    async def test_complete_returns_profile(self, orchestrator, client, sample_profile):
        client.enrol_by_aadhaar.return_value = EnrollmentResponse.model_validate(
            {"ABHAProfile": sample_profile, "txnId": "T1"}
        )

        result = await orchestrator.complete_aadhaar_enrollment("T1", "123456", mobile="9876543210", env="sbx")

        assert result.success
        assert result.data["ABHAProfile"]["ABHANumber"] == "12-3456-7890-1234"
        client.enrol_by_aadhaar.assert_awaited_once_with(
            "T1", "123456", "abha-enrollment", "1.4", "sbx", mobile="9876543210"
        )

    @pytest.mark.asyncio
    async def test_gateway_message_surfaced(self, orchestrator, client):
        """Test the gateway's own error message is used when present."""
        client.enrol_by_aadhaar.side_effect = UpstreamError(400, {"message": "Invalid OTP"})

        result = await orchestrator.complete_aadhaar_enrollment("T1", "000000")

        assert not result.success
        assert result.message == "Invalid OTP"
        assert result.code == CODE_UPSTREAM_ERROR

    @pytest.mark.asyncio
    async def test_nested_error_message_surfaced(self, orchestrator, client):
        client.request_otp.side_effect = UpstreamError(400, {"error": {"message": "Aadhaar not found"}})

        result = await orchestrator.initiate_aadhaar_enrollment("123412341234")

        assert result.message == "Aadhaar not found"

    @pytest.mark.asyncio
    async def test_fallback_message_without_body(self, orchestrator, client):
        client.request_otp.side_effect = UpstreamError(500, "gateway exploded")

        result = await orchestrator.initiate_aadhaar_enrollment("123412341234")

        assert result.message == "Failed to send OTP"
        assert result.code == CODE_UPSTREAM_ERROR


class TestFailureCodes:
    """Test each failure kind maps to its machine code."""

    @pytest.mark.parametrize("error,code", [
        (UpstreamError(None, None), CODE_UPSTREAM_TIMEOUT),
        (UpstreamAuthError(401, None), CODE_UPSTREAM_AUTH_ERROR),
        (CryptoError("bad key"), CODE_ENCRYPTION_ERROR),
        (StoreError("Failed to persist ABHA link"), CODE_STORE_ERROR),
        (ValueError("Unknown ABDM environment: x"), CODE_INVALID_REQUEST),
        (RuntimeError("boom"), CODE_INTERNAL_ERROR),
    ])
    @pytest.mark.asyncio
    async def test_failure_code(self, orchestrator, client, error, code):
        client.request_otp.side_effect = error

        result = await orchestrator.initiate_mobile_verification("9876543210")

        assert not result.success
        assert result.code == code

    @pytest.mark.asyncio
    async def test_value_error_message_kept(self, orchestrator, client):
        client.request_otp.side_effect = ValueError("Unknown ABDM environment: x")

        result = await orchestrator.find_abha_by_mobile("9876543210", env="x")

        assert result.message == "Unknown ABDM environment: x"


class TestMobileAndRecoveryFlows:
    @pytest.mark.asyncio
    async def test_mobile_verification(self, orchestrator, client):
        client.request_otp.return_value = OtpResponse(txnId="M1")
        client.auth_by_abdm.return_value = {"txnId": "M2", "authResult": "success"}

        started = await orchestrator.initiate_mobile_verification("9876543210")
        verified = await orchestrator.complete_mobile_verification("M1", "123456", "9876543210")

        assert started.txn_id == "M1"
        client.request_otp.assert_awaited_once_with(LoginHint.MOBILE, "9876543210", ["mobile-verify"], None)
        assert verified.success
        assert verified.data == {"txnId": "M2", "authResult": "success"}

    @pytest.mark.asyncio
    async def test_find_abha_by_mobile_uses_search_scope(self, orchestrator, client):
        client.request_otp.return_value = OtpResponse(txnId="S1")

        result = await orchestrator.find_abha_by_mobile("9876543210")

        assert result.txn_id == "S1"
        client.request_otp.assert_awaited_once_with(LoginHint.MOBILE, "9876543210", ["abha-search"], None)


class TestDrivingLicenceFlow:
    @pytest.mark.asyncio
    async def test_full_flow(self, orchestrator, client):
        """Test OTP, verification and enrollment chain through txnIds."""
        client.request_otp.return_value = OtpResponse(txnId="D1")
        client.auth_by_abdm.return_value = {"txnId": "D2"}
        client.enrol_by_document.return_value = {"ABHAProfile": {"ABHANumber": "91-0000-0000-0001"}}

        started = await orchestrator.initiate_dl_enrollment("MH1420110062821")
        verified = await orchestrator.verify_dl_otp(started.txn_id, "123456", "MH1420110062821")
        document = DocumentEnrollment(
            txn_id=verified.txn_id, document_id="MH1420110062821", first_name="Asha", last_name="Rao",
            dob="1990-01-31", gender="F", front_side_photo="ZnJvbnQ=", address="12 MG Road",
            state="Maharashtra", district="Pune", pin_code="411001", document_type="OTHER",
        )
        enrolled = await orchestrator.complete_dl_enrollment(document)

        assert verified.txn_id == "D2"
        assert enrolled.success
        assert enrolled.data["ABHAProfile"]["ABHANumber"] == "91-0000-0000-0001"
        sent_document = client.enrol_by_document.await_args.args[0]
        assert sent_document.document_type == "DRIVING_LICENCE"
        assert sent_document.txn_id == "D2"


class TestIdempotentRetry:
    """Test retry is opt-in and limited to QR/card generation."""

    @pytest.mark.asyncio
    async def test_no_retry_by_default(self, orchestrator, client):
        client.generate_qr.side_effect = UpstreamError(503, None)

        result = await orchestrator.generate_abha_qr("ravi.kumar@sbx")

        assert not result.success
        assert client.generate_qr.await_count == 1

    @pytest.mark.asyncio
    async def test_retry_until_success(self, orchestrator, client):
        client.generate_qr.side_effect = [UpstreamError(503, None), UpstreamError(None, None), {"qrCode": "png"}]

        with patch("services.abha_orchestrator.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await orchestrator.generate_abha_qr("ravi.kumar@sbx", max_attempts=3)

        assert result.success
        assert result.data == {"qrCode": "png"}
        assert client.generate_qr.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_retry_gives_up_after_max_attempts(self, orchestrator, client):
        client.generate_abha_card.side_effect = UpstreamError(503, None)

        with patch("services.abha_orchestrator.asyncio.sleep", new=AsyncMock()):
            result = await orchestrator.generate_abha_card("ravi.kumar@sbx", max_attempts=3)

        assert result.code == CODE_UPSTREAM_ERROR
        assert client.generate_abha_card.await_count == 3

    @pytest.mark.asyncio
    async def test_auth_errors_not_retried(self, orchestrator, client):
        client.generate_abha_card.side_effect = UpstreamAuthError(401, None)

        result = await orchestrator.generate_abha_card("ravi.kumar@sbx", max_attempts=3)

        assert result.code == CODE_UPSTREAM_AUTH_ERROR
        assert client.generate_abha_card.await_count == 1

    @pytest.mark.asyncio
    async def test_non_dict_result_wrapped(self, orchestrator, client):
        client.generate_abha_card.return_value = "base64-pdf"

        result = await orchestrator.generate_abha_card("ravi.kumar@sbx")

        assert result.data == {"content": "base64-pdf"}
