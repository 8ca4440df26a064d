"""
Shared types for the ABDM gateway integration.

Upstream JSON bodies are validated at the boundary with the pydantic models
below (camelCase aliases match the gateway's wire format). In-process values
exchanged between services are plain dataclasses.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class AbhaEnvironment(str, Enum):
    """ABDM environment discriminator, sent as the X-CM-ID header."""
    SANDBOX = "sbx"
    PRODUCTION = "abdm"


class LoginHint(str, Enum):
    AADHAAR = "aadhaar"
    MOBILE = "mobile"
    DRIVING_LICENCE = "dl"


# Upstream payloads

class _UpstreamModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class SessionTokenResponse(_UpstreamModel):
    """Body returned by the client-credentials session exchange."""
    access_token: str = Field(alias="accessToken", min_length=1)
    expires_in: int = Field(default=0, alias="expiresIn")
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")


class PublicKeyResponse(_UpstreamModel):
    """Body returned by the public certificate endpoint."""
    public_key: str = Field(alias="publicKey", min_length=1)
    encryption_algorithm: Optional[str] = Field(default=None, alias="encryptionAlgorithm")


class TokenRefreshResponse(_UpstreamModel):
    """Body returned by the patient token refresh endpoint."""
    access_token: str = Field(alias="accessToken", min_length=1)
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")
    expires_in: int = Field(alias="expiresIn")
    refresh_expires_in: Optional[int] = Field(default=None, alias="refreshExpiresIn")


class OtpResponse(_UpstreamModel):
    txn_id: str = Field(alias="txnId", min_length=1)
    message: Optional[str] = None


class AbhaProfile(_UpstreamModel):
    """Nested ABHAProfile object from enrollment/auth responses."""
    abha_number: str = Field(alias="ABHANumber", min_length=1)
    preferred_abha_address: Optional[str] = Field(default=None, alias="preferredAbhaAddress")
    legacy_abha_address: Optional[Any] = Field(default=None, alias="ABHAAddress")
    abha_status: Optional[str] = Field(default=None, alias="abhaStatus")

    @property
    def abha_address(self) -> Optional[str]:
        if self.preferred_abha_address:
            return self.preferred_abha_address
        if isinstance(self.legacy_abha_address, list):
            return self.legacy_abha_address[0] if self.legacy_abha_address else None
        return self.legacy_abha_address


class EnrollmentTokens(_UpstreamModel):
    """Patient tokens returned alongside a completed enrollment."""
    token: str = Field(min_length=1)
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")
    expires_in: int = Field(default=0, alias="expiresIn")
    refresh_expires_in: Optional[int] = Field(default=None, alias="refreshExpiresIn")


class EnrollmentResponse(_UpstreamModel):
    profile: AbhaProfile = Field(alias="ABHAProfile")
    tokens: Optional[EnrollmentTokens] = None
    message: Optional[str] = None
    txn_id: Optional[str] = Field(default=None, alias="txnId")


# In-process values

@dataclass
class SessionToken:
    """Service-level bearer token. expiry_timestamp already includes the safety margin."""
    access_token: str
    expiry_timestamp: float
    refresh_token: Optional[str] = None

    def is_valid(self, now: float) -> bool:
        return bool(self.access_token) and now < self.expiry_timestamp


@dataclass
class CachedPublicKey:
    pem: str
    expiry_timestamp: float
    encryption_algorithm: Optional[str] = None


@dataclass
class RefreshedTokens:
    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_in: Optional[int] = None


@dataclass
class DocumentEnrollment:
    """Document (driving licence) enrollment fields, all plain text."""
    txn_id: str
    document_id: str
    first_name: str
    last_name: str
    dob: str  # YYYY-MM-DD
    gender: str
    front_side_photo: str  # base64 image
    address: str
    state: str
    district: str
    pin_code: str
    back_side_photo: Optional[str] = None  # base64 image
    document_type: str = "DRIVING_LICENCE"


@dataclass
class OrchestratorResult:
    """Uniform envelope returned by every multi-step flow."""
    success: bool
    message: str
    data: Optional[dict[str, Any]] = None
    txn_id: Optional[str] = None
    code: Optional[str] = None  # Machine-readable failure code

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.data is not None:
            result["data"] = self.data
        if self.txn_id is not None:
            result["txnId"] = self.txn_id
        if self.code is not None:
            result["code"] = self.code
        return result


@dataclass
class AbhaLinkDetails:
    abha_number: str
    abha_address: Optional[str]
    abha_status: str
    linked_at: Optional[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "abhaNumber": self.abha_number,
            "abhaAddress": self.abha_address,
            "abhaStatus": self.abha_status,
            "linkedAt": self.linked_at,
        }


@dataclass
class AbhaEnrollmentResult:
    success: bool
    abha_number: Optional[str] = None
    abha_address: Optional[str] = None
    profile: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    code: Optional[str] = None
