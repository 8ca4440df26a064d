# pyright: reportMissingTypeStubs=false
"""
Consent token API endpoints.

Issue, validate, revoke and list consent tokens granted by patients to
organizations. Typed consent errors raised by the service are rendered by
the application's exception handlers.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.responses import (
    ConsentTokenIssuedResponse,
    ConsentTokenListResponse,
    ConsentTokenSummary,
    RevocationResponse,
)
from core.database import get_db
from models.consent_token import ConsentToken
from services.consent_token_service import ConsentTokenService, get_consent_token_service
from shared_types.consent import ConsentAccessRequest
from utils.datetime_utils import ensure_utc

logger = logging.getLogger(__name__)

router = APIRouter()


class IssueTokenRequest(BaseModel):
    """
    Request model for issuing a consent token.

    valid_from defaults to now and valid_until to the default consent period.
    """
    consent_id: str = Field(min_length=1)
    patient_id: str = Field(min_length=1)
    patient_abha: str = Field(min_length=1)
    organization_id: str = Field(min_length=1)
    purpose_of_use: str
    allowed_resources: List[str] = Field(min_length=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


class ValidateTokenRequest(BaseModel):
    token: str = Field(min_length=1)
    resource_type: Optional[str] = None
    audience: Optional[str] = None


class RevokeRequest(BaseModel):
    reason: Optional[str] = None


class RevokeOrganizationRequest(BaseModel):
    patient_id: str = Field(min_length=1)
    organization_id: str = Field(min_length=1)
    reason: Optional[str] = None


class EvaluateAccessRequest(BaseModel):
    """Request model for an organization's data access check."""
    consent_token: Optional[str] = None
    patient_abha: str
    organization_id: str
    purpose_of_use: str
    resource_type: str


def _summary(record: ConsentToken) -> ConsentTokenSummary:
    return ConsentTokenSummary(
        consentId=record.consent_id,
        organizationId=record.organization_id,
        purposeOfUse=record.purpose_of_use,
        allowedResources=record.allowed_resources,
        issuedAt=ensure_utc(record.issued_at),
        expiresAt=ensure_utc(record.expires_at),
        revoked=record.revoked,
    )


@router.post("/tokens", summary="Issue a consent token")
async def issue_token(
    request: IssueTokenRequest,
    service: ConsentTokenService = Depends(get_consent_token_service),
    db: Session = Depends(get_db),
) -> ConsentTokenIssuedResponse:
    token, record = service.issue(
        db,
        consent_id=request.consent_id,
        patient_id=request.patient_id,
        patient_abha=request.patient_abha,
        organization_id=request.organization_id,
        purpose_of_use=request.purpose_of_use,
        allowed_resources=request.allowed_resources,
        valid_from=request.valid_from or service.clock(),
        valid_until=request.valid_until or service.default_expiration(),
    )
    return ConsentTokenIssuedResponse(
        token=token,
        consentId=record.consent_id,
        organizationId=record.organization_id,
        purposeOfUse=record.purpose_of_use,
        allowedResources=record.allowed_resources,
        issuedAt=ensure_utc(record.issued_at),
        expiresAt=ensure_utc(record.expires_at),
    )


@router.post("/tokens/validate", summary="Validate a consent token")
async def validate_token(
    request: ValidateTokenRequest,
    service: ConsentTokenService = Depends(get_consent_token_service),
    db: Session = Depends(get_db),
) -> dict[str, object]:
    """Validate a token, optionally for a specific FHIR resource type."""
    if request.resource_type:
        result = service.validate_for_resource(db, request.token, request.resource_type)
    else:
        result = service.validate(db, request.token, audience=request.audience)
    return result.to_dict()


@router.post("/tokens/{consent_id}/revoke", summary="Revoke a consent's tokens")
async def revoke_consent(
    consent_id: str,
    request: RevokeRequest,
    service: ConsentTokenService = Depends(get_consent_token_service),
    db: Session = Depends(get_db),
) -> RevocationResponse:
    count = service.revoke(db, consent_id, request.reason)
    return RevocationResponse(success=True, count=count, message=f"{count} access grant(s) revoked")


@router.post("/organizations/revoke", summary="Revoke all of an organization's grants for a patient")
async def revoke_organization(
    request: RevokeOrganizationRequest,
    service: ConsentTokenService = Depends(get_consent_token_service),
    db: Session = Depends(get_db),
) -> RevocationResponse:
    count = service.revoke_all_for_organization(db, request.patient_id, request.organization_id, request.reason)
    return RevocationResponse(success=True, count=count, message=f"{count} access grant(s) revoked")


@router.get("/patients/{patient_id}/tokens", summary="List a patient's active consent tokens")
async def list_patient_tokens(
    patient_id: str,
    service: ConsentTokenService = Depends(get_consent_token_service),
    db: Session = Depends(get_db),
) -> ConsentTokenListResponse:
    records = service.get_active_tokens_for_patient(db, patient_id)
    return ConsentTokenListResponse(tokens=[_summary(record) for record in records])


@router.post("/access/evaluate", summary="Check an organization's data access request")
async def evaluate_access(
    request: EvaluateAccessRequest,
    service: ConsentTokenService = Depends(get_consent_token_service),
    db: Session = Depends(get_db),
) -> dict[str, object]:
    decision = service.evaluate_access(
        db,
        ConsentAccessRequest(
            consent_token=request.consent_token,
            patient_abha=request.patient_abha,
            organization_id=request.organization_id,
            purpose_of_use=request.purpose_of_use,
            resource_type=request.resource_type,
        ),
    )
    response: dict[str, object] = {"allowed": decision.allowed}
    if decision.reason:
        response["reason"] = decision.reason
    if decision.payload is not None:
        response["consentId"] = decision.payload.consent_id
        response["allowedResources"] = decision.payload.allowed_resources
        response["validUntil"] = decision.payload.valid_until
    return response
