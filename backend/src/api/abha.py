# pyright: reportMissingTypeStubs=false
"""
ABHA API endpoints.

Thin routes over the ABHA orchestrator and link service: Aadhaar, mobile and
driving licence enrollment flows, ABHA recovery, QR/card generation, and the
patient's linked ABHA record.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from api.responses import AbhaLinkResponse, EnrollAndLinkResponse, TokenStatusResponse, flow_response
from core.constants import IDEMPOTENT_RETRY_ATTEMPTS
from core.database import get_db
from services.abha_link_service import AbhaLinkService, get_abha_link_service
from services.abha_orchestrator import AbhaOrchestrator, get_abha_orchestrator
from services.abha_token_service import PatientTokenStore, get_patient_token_store
from shared_types.abha import AbhaEnvironment, DocumentEnrollment, OrchestratorResult
from utils.abha_validators import validate_aadhaar, validate_mobile, validate_mobile_optional, validate_otp

logger = logging.getLogger(__name__)

router = APIRouter()


# ===== Request models =====

class _EnvRequest(BaseModel):
    env: Optional[AbhaEnvironment] = None


class AadhaarOtpRequest(_EnvRequest):
    """Request model for starting Aadhaar enrollment."""
    aadhaar: str

    @field_validator('aadhaar')
    @classmethod
    def validate_aadhaar_number(cls, v: str) -> str:
        return validate_aadhaar(v)


class OtpVerifyRequest(_EnvRequest):
    txn_id: str = Field(min_length=1)
    otp: str

    @field_validator('otp')
    @classmethod
    def validate_otp_value(cls, v: str) -> str:
        return validate_otp(v)


class AadhaarEnrolRequest(OtpVerifyRequest):
    """
    Request model for completing Aadhaar enrollment.

    When patient_id is given, the new ABHA is linked to that patient.
    """
    mobile: Optional[str] = None
    patient_id: Optional[str] = None

    @field_validator('mobile')
    @classmethod
    def validate_mobile_number(cls, v: Optional[str]) -> Optional[str]:
        return validate_mobile_optional(v)


class MobileRequest(_EnvRequest):
    mobile: str

    @field_validator('mobile')
    @classmethod
    def validate_mobile_number(cls, v: str) -> str:
        return validate_mobile(v)


class MobileVerifyRequest(OtpVerifyRequest):
    mobile: str

    @field_validator('mobile')
    @classmethod
    def validate_mobile_number(cls, v: str) -> str:
        return validate_mobile(v)


class DlOtpRequest(_EnvRequest):
    dl_number: str = Field(min_length=1, max_length=32)


class DlVerifyRequest(OtpVerifyRequest):
    dl_number: str = Field(min_length=1, max_length=32)


class DlEnrolRequest(_EnvRequest):
    """Request model for driving licence enrollment (after OTP verification)."""
    txn_id: str = Field(min_length=1)
    dl_number: str = Field(min_length=1, max_length=32)
    first_name: str = Field(min_length=1)
    last_name: str = ""
    dob: date
    gender: str
    front_side_photo: str = Field(min_length=1)  # base64
    back_side_photo: Optional[str] = None  # base64
    address: str = Field(min_length=1)
    state: str = Field(min_length=1)
    district: str = Field(min_length=1)
    pin_code: str

    @field_validator('gender')
    @classmethod
    def validate_gender(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in ('M', 'F', 'O'):
            raise ValueError('Gender must be M, F or O')
        return v

    @field_validator('pin_code')
    @classmethod
    def validate_pin_code(cls, v: str) -> str:
        v = v.strip()
        if not (v.isdigit() and len(v) == 6):
            raise ValueError('PIN code must be exactly 6 digits')
        return v


class AbhaAddressRequest(_EnvRequest):
    abha_address: str = Field(min_length=1)


# ===== Enrollment flows =====

@router.post("/aadhaar/otp", summary="Request Aadhaar OTP for ABHA enrollment")
async def request_aadhaar_otp(
    request: AadhaarOtpRequest,
    orchestrator: AbhaOrchestrator = Depends(get_abha_orchestrator),
) -> JSONResponse:
    result = await orchestrator.initiate_aadhaar_enrollment(request.aadhaar, request.env)
    return flow_response(result)


@router.post("/aadhaar/enrol", summary="Verify Aadhaar OTP and enrol ABHA")
async def enrol_with_aadhaar(
    request: AadhaarEnrolRequest,
    orchestrator: AbhaOrchestrator = Depends(get_abha_orchestrator),
    link_service: AbhaLinkService = Depends(get_abha_link_service),
    db: Session = Depends(get_db),
):
    """
    Complete Aadhaar enrollment.

    Without a patient_id this only enrols the ABHA; with one, the ABHA is
    also linked to the patient and the patient's ABDM tokens are stored.
    """
    if not request.patient_id:
        result = await orchestrator.complete_aadhaar_enrollment(
            request.txn_id, request.otp, request.mobile, request.env
        )
        return flow_response(result)

    enrollment = await link_service.enroll_and_link(
        db, request.patient_id, request.txn_id, request.otp, request.mobile, request.env
    )
    if not enrollment.success:
        return flow_response(OrchestratorResult(False, enrollment.error or "ABHA enrollment failed", code=enrollment.code))
    return EnrollAndLinkResponse(
        success=True,
        abhaNumber=enrollment.abha_number,
        abhaAddress=enrollment.abha_address,
        profile=enrollment.profile,
    )


@router.post("/mobile/otp", summary="Request OTP to verify a mobile number")
async def request_mobile_otp(
    request: MobileRequest,
    orchestrator: AbhaOrchestrator = Depends(get_abha_orchestrator),
) -> JSONResponse:
    result = await orchestrator.initiate_mobile_verification(request.mobile, request.env)
    return flow_response(result)


@router.post("/mobile/verify", summary="Verify mobile OTP")
async def verify_mobile(
    request: MobileVerifyRequest,
    orchestrator: AbhaOrchestrator = Depends(get_abha_orchestrator),
) -> JSONResponse:
    result = await orchestrator.complete_mobile_verification(request.txn_id, request.otp, request.mobile, request.env)
    return flow_response(result)


@router.post("/dl/otp", summary="Request OTP for driving licence enrollment")
async def request_dl_otp(
    request: DlOtpRequest,
    orchestrator: AbhaOrchestrator = Depends(get_abha_orchestrator),
) -> JSONResponse:
    result = await orchestrator.initiate_dl_enrollment(request.dl_number, request.env)
    return flow_response(result)


@router.post("/dl/verify", summary="Verify driving licence OTP")
async def verify_dl_otp(
    request: DlVerifyRequest,
    orchestrator: AbhaOrchestrator = Depends(get_abha_orchestrator),
) -> JSONResponse:
    result = await orchestrator.verify_dl_otp(request.txn_id, request.otp, request.dl_number, request.env)
    return flow_response(result)


@router.post("/dl/enrol", summary="Enrol ABHA with driving licence details")
async def enrol_with_dl(
    request: DlEnrolRequest,
    orchestrator: AbhaOrchestrator = Depends(get_abha_orchestrator),
) -> JSONResponse:
    document = DocumentEnrollment(
        txn_id=request.txn_id,
        document_id=request.dl_number,
        first_name=request.first_name,
        last_name=request.last_name,
        dob=request.dob.isoformat(),
        gender=request.gender,
        front_side_photo=request.front_side_photo,
        back_side_photo=request.back_side_photo,
        address=request.address,
        state=request.state,
        district=request.district,
        pin_code=request.pin_code,
    )
    result = await orchestrator.complete_dl_enrollment(document, request.env)
    return flow_response(result)


@router.post("/recover/mobile", summary="Find an existing ABHA by mobile number")
async def recover_by_mobile(
    request: MobileRequest,
    orchestrator: AbhaOrchestrator = Depends(get_abha_orchestrator),
) -> JSONResponse:
    result = await orchestrator.find_abha_by_mobile(request.mobile, request.env)
    return flow_response(result)


# ===== QR and card =====

@router.post("/qr", summary="Generate ABHA QR code")
async def generate_qr(
    request: AbhaAddressRequest,
    orchestrator: AbhaOrchestrator = Depends(get_abha_orchestrator),
) -> JSONResponse:
    result = await orchestrator.generate_abha_qr(
        request.abha_address, request.env, max_attempts=IDEMPOTENT_RETRY_ATTEMPTS
    )
    return flow_response(result)


@router.post("/card", summary="Generate ABHA card")
async def generate_card(
    request: AbhaAddressRequest,
    orchestrator: AbhaOrchestrator = Depends(get_abha_orchestrator),
) -> JSONResponse:
    result = await orchestrator.generate_abha_card(
        request.abha_address, request.env, max_attempts=IDEMPOTENT_RETRY_ATTEMPTS
    )
    return flow_response(result)


# ===== Patient link =====

@router.get("/patients/{patient_id}", summary="Get a patient's linked ABHA")
async def get_patient_abha(
    patient_id: str,
    link_service: AbhaLinkService = Depends(get_abha_link_service),
    db: Session = Depends(get_db),
) -> AbhaLinkResponse:
    details = link_service.get_patient_abha_details(db, patient_id)
    if details is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No ABHA linked to this patient",
        )
    return AbhaLinkResponse(**details.to_dict())


@router.get("/patients/{patient_id}/token-status", summary="Get a patient's ABDM token status")
async def get_token_status(
    patient_id: str,
    token_store: PatientTokenStore = Depends(get_patient_token_store),
) -> TokenStatusResponse:
    has_tokens = await token_store.has_valid_tokens(patient_id)
    expires_at = await token_store.get_token_expiry(patient_id) if has_tokens else None
    return TokenStatusResponse(hasValidTokens=has_tokens, expiresAt=expires_at)


@router.delete("/patients/{patient_id}/link", summary="Delink a patient's ABHA")
async def delink_patient_abha(
    patient_id: str,
    link_service: AbhaLinkService = Depends(get_abha_link_service),
    db: Session = Depends(get_db),
) -> JSONResponse:
    result = await link_service.delink_abha(db, patient_id)
    return flow_response(result)
