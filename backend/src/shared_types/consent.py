"""
Shared types for consent tokens.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from core.exceptions import ConsentTokenError, ExpiredError, RevokedError, ScopeError


class ConsentTokenPayload(BaseModel):
    """Claims carried by a consent JWT (camelCase on the wire)."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    consent_id: str = Field(alias="consentId")
    patient_abha: str = Field(alias="patientAbha")
    patient_id: str = Field(alias="patientId")
    organization_id: str = Field(alias="organizationId")
    purpose_of_use: str = Field(alias="purposeOfUse")
    allowed_resources: list[str] = Field(alias="allowedResources")
    valid_from: str = Field(alias="validFrom")  # ISO timestamp
    valid_until: str = Field(alias="validUntil")  # ISO timestamp
    iat: Optional[int] = None  # Set by the consent token service
    exp: Optional[int] = None  # Set by the consent token service
    iss: Optional[str] = None
    aud: Optional[str] = None


class FailureCategory(str, Enum):
    """Why a consent token was rejected."""
    EXPIRED = "expired"
    REVOKED = "revoked"
    INVALID = "invalid"
    SCOPE = "scope"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass
class TokenValidationResult:
    valid: bool
    payload: Optional[ConsentTokenPayload] = None
    error: Optional[str] = None
    revoked: bool = False
    category: Optional[FailureCategory] = None
    requested_resource: Optional[str] = None

    def raise_for_failure(self) -> ConsentTokenPayload:
        """Return the payload of a valid result, raise the matching error otherwise."""
        if self.valid and self.payload is not None:
            return self.payload
        message = self.error or "Invalid consent token"
        if self.category == FailureCategory.EXPIRED:
            raise ExpiredError(message)
        if self.category == FailureCategory.REVOKED:
            raise RevokedError(message)
        if self.category == FailureCategory.SCOPE and self.payload is not None and self.requested_resource:
            raise ScopeError(self.requested_resource, self.payload.allowed_resources)
        raise ConsentTokenError(message)

    def to_dict(self) -> dict[str, object]:
        result: dict[str, object] = {"valid": self.valid}
        if self.payload is not None:
            result["payload"] = self.payload.model_dump(by_alias=True, exclude_none=True)
        if self.error is not None:
            result["error"] = self.error
        if self.revoked:
            result["revoked"] = True
        if self.category is not None:
            result["category"] = self.category.value
        return result


@dataclass
class ConsentAccessRequest:
    """A data access request from an organization, evaluated against its consent token."""
    consent_token: Optional[str]
    patient_abha: str
    organization_id: str
    purpose_of_use: str
    resource_type: str


@dataclass
class AccessDecision:
    allowed: bool
    reason: Optional[str] = None
    payload: Optional[ConsentTokenPayload] = None
