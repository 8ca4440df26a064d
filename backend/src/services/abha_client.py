"""
ABHA V3 gateway client.

Encodes each ABDM operation into the exact header and payload shape the
gateway expects. Identifying fields (OTPs, Aadhaar/mobile/DL numbers,
demographic document fields) are RSA-encrypted under the public key of the
same environment the request is sent to; transaction ids, consent metadata
and already-base64 attachments pass through unencrypted.

The client performs no retries. Any non-2xx response, timeout or transport
failure surfaces as UpstreamError.
"""

import logging
from typing import Any, Callable, Optional, Union

import httpx

from core.config import ABHA_ENV, ABHA_HTTP_TIMEOUT_SECONDS
from core.constants import (
    ENDPOINT_AUTH_BY_ABDM,
    ENDPOINT_ENROL_BY_AADHAAR,
    ENDPOINT_ENROL_BY_DOCUMENT,
    ENDPOINT_GENERATE_CARD,
    ENDPOINT_GENERATE_QR,
    ENDPOINT_LINK_BENEFIT,
    ENDPOINT_REQUEST_OTP,
    ENDPOINT_TOKEN_REFRESH,
)
from core.exceptions import UpstreamAuthError
from services.abha_http import (
    build_abha_headers,
    default_base_urls,
    parse_upstream,
    resolve_environment,
    send_json,
)
from services.encryption_service import encrypt_field, is_oaep_sha1
from services.public_key_cache import PublicKeyCache
from services.session_token_service import SessionTokenManager, get_session_token_manager
from shared_types.abha import (
    AbhaEnvironment,
    DocumentEnrollment,
    EnrollmentResponse,
    LoginHint,
    OtpResponse,
    RefreshedTokens,
    TokenRefreshResponse,
)

logger = logging.getLogger(__name__)

EnvArg = Union[str, AbhaEnvironment, None]


class AbhaClient:
    """
    Client for ABHA V3 enrollment, authentication and profile endpoints.

    Attributes:
        session_tokens: Source of the service-level bearer token
        public_keys: Per-environment gateway public key cache
        base_urls: Base URL for each environment
        default_environment: Environment used when a call does not specify one
    """

    def __init__(
        self,
        session_tokens: Optional[SessionTokenManager] = None,
        public_keys: Optional[PublicKeyCache] = None,
        base_urls: Optional[dict[AbhaEnvironment, str]] = None,
        default_environment: Union[str, AbhaEnvironment] = ABHA_ENV,
        timeout: float = ABHA_HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.session_tokens = session_tokens or get_session_token_manager()
        self.base_urls = base_urls or default_base_urls()
        self.public_keys = public_keys or PublicKeyCache(
            self.session_tokens, base_urls=self.base_urls, timeout=timeout, transport=transport
        )
        self.default_environment = resolve_environment(default_environment)
        self.timeout = timeout
        self._transport = transport

    def _env(self, env: EnvArg) -> AbhaEnvironment:
        return self.default_environment if env is None else resolve_environment(env)

    def base_url(self, env: EnvArg = None) -> str:
        return self.base_urls[self._env(env)]

    async def _request(
        self,
        method: str,
        endpoint: str,
        payload: Optional[dict[str, Any]],
        env: AbhaEnvironment,
    ) -> Any:
        """Send a request with the mandatory ABDM headers and a session bearer token."""
        token = await self.session_tokens.get_valid_token()
        return await send_json(
            method,
            f"{self.base_urls[env]}{endpoint}",
            headers=build_abha_headers(env, token),
            payload=payload,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _encryptor(self, env: AbhaEnvironment) -> Callable[[str], str]:
        """Resolve the key for env and return a field encryptor bound to it."""
        key = await self.public_keys.get(env)
        if not is_oaep_sha1(key.encryption_algorithm):
            logger.warning(
                f"Gateway advertised {key.encryption_algorithm} for {env.value}; encrypting with OAEP SHA-1"
            )

        def encrypt(value: str) -> str:
            return encrypt_field(key.pem, value)

        return encrypt

    async def request_otp(
        self,
        login_hint: Union[str, LoginHint],
        login_id: str,
        scope: list[str],
        env: EnvArg = None,
        otp_system: Optional[str] = None,
    ) -> OtpResponse:
        """Request an OTP for the Aadhaar, mobile or DL flows. login_id is encrypted."""
        environment = self._env(env)
        hint = LoginHint(login_hint).value
        encrypt = await self._encryptor(environment)

        payload = {
            "txnId": "",
            "scope": scope,
            "loginHint": hint,
            "loginId": encrypt(login_id),
            "otpSystem": otp_system or hint,
        }
        body = await self._request("POST", ENDPOINT_REQUEST_OTP, payload, environment)
        return parse_upstream(OtpResponse, body)

    async def enrol_by_aadhaar(
        self,
        txn_id: str,
        otp: str,
        consent_code: str,
        consent_version: str,
        env: EnvArg = None,
        mobile: Optional[str] = None,
    ) -> EnrollmentResponse:
        """Enrol an ABHA after Aadhaar OTP verification. OTP and mobile are encrypted."""
        environment = self._env(env)
        encrypt = await self._encryptor(environment)

        otp_block: dict[str, Any] = {"txnId": txn_id, "otpValue": encrypt(otp)}
        if mobile:
            otp_block["mobile"] = encrypt(mobile)

        payload = {
            "authData": {"authMethods": ["otp"], "otp": otp_block},
            "consent": {"code": consent_code, "version": consent_version},
        }
        body = await self._request("POST", ENDPOINT_ENROL_BY_AADHAAR, payload, environment)
        return parse_upstream(EnrollmentResponse, body)

    async def auth_by_abdm(
        self,
        txn_id: str,
        otp: str,
        login_hint: Union[str, LoginHint],
        login_id: str,
        env: EnvArg = None,
    ) -> dict[str, Any]:
        """Generic OTP verification (mobile, Aadhaar, DL). OTP and login_id are encrypted."""
        environment = self._env(env)
        encrypt = await self._encryptor(environment)

        payload = {
            "authData": {
                "authMethods": ["otp"],
                "otp": {"txnId": txn_id, "otpValue": encrypt(otp)},
                "loginHint": LoginHint(login_hint).value,
                "loginId": encrypt(login_id),
            },
        }
        return await self._request("POST", ENDPOINT_AUTH_BY_ABDM, payload, environment)

    async def enrol_by_document(
        self,
        document: DocumentEnrollment,
        consent_code: str,
        consent_version: str,
        env: EnvArg = None,
    ) -> dict[str, Any]:
        """
        Enrol by document (driving licence).

        Identity and demographic fields are encrypted; the document type,
        transaction id and base64 photos are sent as-is.
        """
        environment = self._env(env)
        encrypt = await self._encryptor(environment)

        payload: dict[str, Any] = {
            "txnId": document.txn_id,
            "documentType": document.document_type,
            "documentId": encrypt(document.document_id),
            "firstName": encrypt(document.first_name),
            "lastName": encrypt(document.last_name),
            "dob": encrypt(document.dob),
            "gender": encrypt(document.gender),
            "frontSidePhoto": document.front_side_photo,
            "address": encrypt(document.address),
            "state": encrypt(document.state),
            "district": encrypt(document.district),
            "pinCode": encrypt(document.pin_code),
            "consent": {"code": consent_code, "version": consent_version},
        }
        if document.back_side_photo:
            payload["backSidePhoto"] = document.back_side_photo

        return await self._request("POST", ENDPOINT_ENROL_BY_DOCUMENT, payload, environment)

    async def generate_qr(self, abha_address: str, env: EnvArg = None) -> Any:
        """Generate the QR code for an ABHA address."""
        environment = self._env(env)
        await self.public_keys.get(environment)
        return await self._request("POST", ENDPOINT_GENERATE_QR, {"abhaAddress": abha_address}, environment)

    async def generate_abha_card(self, abha_address: str, env: EnvArg = None) -> Any:
        """Generate the ABHA card for an ABHA address."""
        environment = self._env(env)
        await self.public_keys.get(environment)
        return await self._request("POST", ENDPOINT_GENERATE_CARD, {"abhaAddress": abha_address}, environment)

    async def link_benefit(
        self,
        abha_address: str,
        benefit_id: str,
        env: EnvArg = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Link a benefit programme to an ABHA address."""
        environment = self._env(env)
        await self.public_keys.get(environment)
        payload = {"abhaAddress": abha_address, **(extra or {})}
        endpoint = ENDPOINT_LINK_BENEFIT.format(benefit_id=benefit_id)
        return await self._request("POST", endpoint, payload, environment)

    async def refresh_patient_token(self, refresh_token: str, env: EnvArg = None) -> RefreshedTokens:
        """
        Exchange a patient's refresh token for a new access token.

        If the gateway does not rotate the refresh token, the one supplied is
        returned unchanged.

        Raises:
            UpstreamAuthError: If the refresh is rejected or the response is malformed
        """
        environment = self._env(env)
        body = await send_json(
            "POST",
            f"{self.base_urls[environment]}{ENDPOINT_TOKEN_REFRESH}",
            headers=build_abha_headers(environment),
            payload={"refreshToken": refresh_token},
            timeout=self.timeout,
            transport=self._transport,
            error_cls=UpstreamAuthError,
        )
        response = parse_upstream(TokenRefreshResponse, body, error_cls=UpstreamAuthError)
        return RefreshedTokens(
            access_token=response.access_token,
            refresh_token=response.refresh_token or refresh_token,
            expires_in=response.expires_in,
            refresh_expires_in=response.refresh_expires_in,
        )


# Global instance, created on first use
abha_client: Optional[AbhaClient] = None


def get_abha_client() -> AbhaClient:
    """Get the process-wide ABHA client."""
    global abha_client
    if abha_client is None:
        abha_client = AbhaClient()
    return abha_client
