"""
Orchestrator for ABHA V3 patient flows.

Sequences gateway calls (request OTP -> verify OTP -> enrol/link) into
single operations returning a uniform OrchestratorResult. Nothing here
raises to the caller: gateway, crypto and network failures become
success=False results with a message and a machine code.

Flows hold no server-side state between steps. The txnId returned by the
first step must be passed back by the caller to the next one.
"""

import asyncio
import dataclasses
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import BaseModel

from core.constants import ABHA_CONSENT_CODE, ABHA_CONSENT_VERSION, DRIVING_LICENCE_DOCUMENT_TYPE
from core.exceptions import AbhaServiceError, CryptoError, StoreError, UpstreamAuthError, UpstreamError
from services.abha_client import AbhaClient, get_abha_client
from shared_types.abha import AbhaEnvironment, DocumentEnrollment, LoginHint, OrchestratorResult

logger = logging.getLogger(__name__)

EnvArg = Union[str, AbhaEnvironment, None]

# Machine-readable failure codes
CODE_UPSTREAM_ERROR = "UPSTREAM_ERROR"
CODE_UPSTREAM_AUTH_ERROR = "UPSTREAM_AUTH_ERROR"
CODE_UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"
CODE_ENCRYPTION_ERROR = "ENCRYPTION_ERROR"
CODE_INVALID_REQUEST = "INVALID_REQUEST"
CODE_INTERNAL_ERROR = "INTERNAL_ERROR"
CODE_STORE_ERROR = "STORE_ERROR"


def _upstream_message(error: UpstreamError, fallback: str) -> str:
    """Prefer the gateway's own message when it sent one."""
    body = error.body
    if isinstance(body, dict):
        for key in ("message", "errorMessage", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"]
    return fallback


def failure_result(error: Exception, fallback: str) -> OrchestratorResult:
    """Map an exception to a failed result carrying its machine code."""
    if isinstance(error, UpstreamAuthError):
        return OrchestratorResult(False, fallback, code=CODE_UPSTREAM_AUTH_ERROR)
    if isinstance(error, UpstreamError):
        code = CODE_UPSTREAM_TIMEOUT if error.status is None else CODE_UPSTREAM_ERROR
        return OrchestratorResult(False, _upstream_message(error, fallback), code=code)
    if isinstance(error, CryptoError):
        return OrchestratorResult(False, fallback, code=CODE_ENCRYPTION_ERROR)
    if isinstance(error, StoreError):
        return OrchestratorResult(False, str(error) or fallback, code=CODE_STORE_ERROR)
    if isinstance(error, ValueError):
        return OrchestratorResult(False, str(error) or fallback, code=CODE_INVALID_REQUEST)
    return OrchestratorResult(False, fallback, code=CODE_INTERNAL_ERROR)


def _as_dict(value: Any) -> Optional[dict[str, Any]]:
    if value is None:
        return None
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, exclude_none=True)
    if isinstance(value, dict):
        return value
    return {"content": value}


class AbhaOrchestrator:
    """High-level ABHA enrollment, verification and recovery flows."""

    def __init__(self, client: Optional[AbhaClient] = None) -> None:
        self.client = client or get_abha_client()

    async def _run(
        self,
        flow: str,
        call: Callable[[], Awaitable[Any]],
        fallback_message: str,
        max_attempts: int = 1,
    ) -> tuple[Any, Optional[OrchestratorResult]]:
        """
        Run one gateway call, converting any failure into a result.

        max_attempts > 1 retries on upstream failures only; callers opt in
        per flow and only for idempotent operations.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await call(), None
            except UpstreamError as e:
                if attempt < max_attempts and not isinstance(e, UpstreamAuthError):
                    logger.warning(f"ABHA {flow} failed (attempt {attempt}/{max_attempts}), retrying")
                    await asyncio.sleep(0.5 * attempt)
                    continue
                logger.warning(f"ABHA {flow} failed: status={e.status}")
                return None, failure_result(e, fallback_message)
            except (AbhaServiceError, ValueError) as e:
                logger.warning(f"ABHA {flow} failed: {e.__class__.__name__}: {e}")
                return None, failure_result(e, fallback_message)
            except Exception as e:
                logger.exception(f"Unexpected error in ABHA {flow}: {e}")
                return None, failure_result(e, fallback_message)

    # Flow 1: ABHA creation via Aadhaar OTP

    async def initiate_aadhaar_enrollment(self, aadhaar: str, env: EnvArg = None) -> OrchestratorResult:
        """Step 1: request an OTP to the Aadhaar-linked mobile."""
        result, failure = await self._run(
            "aadhaar OTP request",
            lambda: self.client.request_otp(LoginHint.AADHAAR, aadhaar, ["abha-enrol"], env),
            "Failed to send OTP",
        )
        if failure:
            return failure
        return OrchestratorResult(True, "OTP sent successfully to Aadhaar-linked mobile", txn_id=result.txn_id)

    async def complete_aadhaar_enrollment(
        self, txn_id: str, otp: str, mobile: Optional[str] = None, env: EnvArg = None
    ) -> OrchestratorResult:
        """Step 2: verify the OTP and enrol the ABHA."""
        result, failure = await self._run(
            "aadhaar enrollment",
            lambda: self.client.enrol_by_aadhaar(
                txn_id, otp, ABHA_CONSENT_CODE, ABHA_CONSENT_VERSION, env, mobile=mobile
            ),
            "Failed to enrol ABHA",
        )
        if failure:
            return failure
        return OrchestratorResult(True, "ABHA enrolled successfully", data=_as_dict(result), txn_id=result.txn_id)

    # Flow 2: mobile verification (primary mobile differs from the Aadhaar mobile)

    async def initiate_mobile_verification(self, mobile: str, env: EnvArg = None) -> OrchestratorResult:
        result, failure = await self._run(
            "mobile OTP request",
            lambda: self.client.request_otp(LoginHint.MOBILE, mobile, ["mobile-verify"], env),
            "Failed to send mobile OTP",
        )
        if failure:
            return failure
        return OrchestratorResult(True, "OTP sent to mobile", txn_id=result.txn_id)

    async def complete_mobile_verification(
        self, txn_id: str, otp: str, mobile: str, env: EnvArg = None
    ) -> OrchestratorResult:
        result, failure = await self._run(
            "mobile verification",
            lambda: self.client.auth_by_abdm(txn_id, otp, LoginHint.MOBILE, mobile, env),
            "Failed to verify mobile",
        )
        if failure:
            return failure
        return OrchestratorResult(True, "Mobile verified successfully", data=_as_dict(result))

    # Flow 3: ABHA creation via driving licence

    async def initiate_dl_enrollment(self, dl_number: str, env: EnvArg = None) -> OrchestratorResult:
        result, failure = await self._run(
            "DL OTP request",
            lambda: self.client.request_otp(LoginHint.DRIVING_LICENCE, dl_number, ["dl-flow"], env),
            "Failed to send DL OTP",
        )
        if failure:
            return failure
        return OrchestratorResult(True, "OTP sent for DL verification", txn_id=result.txn_id)

    async def verify_dl_otp(self, txn_id: str, otp: str, dl_number: str, env: EnvArg = None) -> OrchestratorResult:
        result, failure = await self._run(
            "DL OTP verification",
            lambda: self.client.auth_by_abdm(txn_id, otp, LoginHint.DRIVING_LICENCE, dl_number, env),
            "Failed to verify DL OTP",
        )
        if failure:
            return failure
        next_txn_id = result.get("txnId") if isinstance(result, dict) else None
        return OrchestratorResult(True, "DL OTP verified", data=_as_dict(result), txn_id=next_txn_id)

    async def complete_dl_enrollment(self, document: DocumentEnrollment, env: EnvArg = None) -> OrchestratorResult:
        """Step 3: upload the DL details and enrol."""
        licence = dataclasses.replace(document, document_type=DRIVING_LICENCE_DOCUMENT_TYPE)
        result, failure = await self._run(
            "DL enrollment",
            lambda: self.client.enrol_by_document(licence, ABHA_CONSENT_CODE, ABHA_CONSENT_VERSION, env),
            "Failed to enrol via DL",
        )
        if failure:
            return failure
        return OrchestratorResult(True, "ABHA enrolled via DL successfully", data=_as_dict(result))

    # Flow 4: find/recover ABHA by mobile

    async def find_abha_by_mobile(self, mobile: str, env: EnvArg = None) -> OrchestratorResult:
        result, failure = await self._run(
            "ABHA search",
            lambda: self.client.request_otp(LoginHint.MOBILE, mobile, ["abha-search"], env),
            "Failed to initiate ABHA search",
        )
        if failure:
            return failure
        return OrchestratorResult(True, "OTP sent to mobile for ABHA search", txn_id=result.txn_id)

    # Flows 5 and 6: QR code and card (idempotent, retry is opt-in)

    async def generate_abha_qr(self, abha_address: str, env: EnvArg = None, max_attempts: int = 1) -> OrchestratorResult:
        result, failure = await self._run(
            "QR generation",
            lambda: self.client.generate_qr(abha_address, env),
            "Failed to generate QR",
            max_attempts=max_attempts,
        )
        if failure:
            return failure
        return OrchestratorResult(True, "QR code generated successfully", data=_as_dict(result))

    async def generate_abha_card(self, abha_address: str, env: EnvArg = None, max_attempts: int = 1) -> OrchestratorResult:
        result, failure = await self._run(
            "card generation",
            lambda: self.client.generate_abha_card(abha_address, env),
            "Failed to generate ABHA card",
            max_attempts=max_attempts,
        )
        if failure:
            return failure
        return OrchestratorResult(True, "ABHA card generated successfully", data=_as_dict(result))


# Global instance, created on first use
abha_orchestrator: Optional[AbhaOrchestrator] = None


def get_abha_orchestrator() -> AbhaOrchestrator:
    global abha_orchestrator
    if abha_orchestrator is None:
        abha_orchestrator = AbhaOrchestrator()
    return abha_orchestrator
