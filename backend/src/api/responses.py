"""
Shared response models for API endpoints.

This module contains Pydantic response models and the envelope helper that
are shared across the ABHA and consent routers to keep responses consistent.
"""

from datetime import datetime
from typing import Any, List, Optional

from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from services.abha_orchestrator import (
    CODE_ENCRYPTION_ERROR,
    CODE_INTERNAL_ERROR,
    CODE_INVALID_REQUEST,
    CODE_STORE_ERROR,
    CODE_UPSTREAM_AUTH_ERROR,
    CODE_UPSTREAM_ERROR,
    CODE_UPSTREAM_TIMEOUT,
)
from shared_types.abha import OrchestratorResult

# HTTP status for each orchestrator failure code
_FAILURE_STATUS = {
    CODE_INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    CODE_UPSTREAM_ERROR: status.HTTP_502_BAD_GATEWAY,
    CODE_UPSTREAM_AUTH_ERROR: status.HTTP_502_BAD_GATEWAY,
    CODE_UPSTREAM_TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    CODE_ENCRYPTION_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    CODE_INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    CODE_STORE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
}


def flow_response(result: OrchestratorResult) -> JSONResponse:
    """Render a flow result, using the failure code to pick the HTTP status."""
    if result.success:
        status_code = status.HTTP_200_OK
    else:
        status_code = _FAILURE_STATUS.get(result.code or "", status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(status_code=status_code, content=result.to_dict())


class AbhaLinkResponse(BaseModel):
    """Response model for a patient's linked ABHA."""
    abhaNumber: str
    abhaAddress: Optional[str] = None
    abhaStatus: str
    linkedAt: Optional[str] = None


class TokenStatusResponse(BaseModel):
    """Response model for a patient's ABDM token state."""
    hasValidTokens: bool
    expiresAt: Optional[datetime] = None


class EnrollAndLinkResponse(BaseModel):
    """Response model for enrollment that also links the ABHA to a patient."""
    success: bool
    abhaNumber: Optional[str] = None
    abhaAddress: Optional[str] = None
    profile: dict[str, Any] = {}


class ConsentTokenIssuedResponse(BaseModel):
    """Response model for a newly issued consent token."""
    token: str
    consentId: str
    organizationId: str
    purposeOfUse: str
    allowedResources: List[str]
    issuedAt: datetime
    expiresAt: datetime


class ConsentTokenSummary(BaseModel):
    """Response model for a stored consent token (without the token itself)."""
    consentId: str
    organizationId: str
    purposeOfUse: str
    allowedResources: List[str]
    issuedAt: datetime
    expiresAt: datetime
    revoked: bool


class ConsentTokenListResponse(BaseModel):
    """Response model for listing a patient's active consent tokens."""
    tokens: List[ConsentTokenSummary]


class RevocationResponse(BaseModel):
    """Response model for revocation requests."""
    success: bool
    count: int
    message: str
