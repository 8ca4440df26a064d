"""
Consent token service.

Issues, validates and revokes signed consent tokens: time-boxed,
purpose-scoped grants from a patient to an organization over a set of FHIR
resource types. Tokens are RS256 JWTs whose audience is the organization;
every issued token is also recorded in the consent_tokens table so it can be
revoked or listed without re-parsing it.

Token lifecycle: Issued -> Active -> Expired | Revoked. Both end states are
terminal.
"""

import hashlib
import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Optional

import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import CONSENT_JWT_ISSUER, CONSENT_JWT_PRIVATE_KEY, CONSENT_JWT_PUBLIC_KEY
from core.constants import CONSENT_JWT_ALGORITHM, DEFAULT_CONSENT_DURATION_DAYS, PURPOSES_OF_USE
from core.exceptions import ConfigurationError, InvalidPurposeError, InvalidWindowError, ScopeError, StoreError
from models.consent_token import ConsentToken
from shared_types.consent import (
    AccessDecision,
    ConsentAccessRequest,
    ConsentTokenPayload,
    FailureCategory,
    TokenValidationResult,
)
from utils.datetime_utils import ensure_utc, isoformat_utc, parse_iso_datetime, utc_now

logger = logging.getLogger(__name__)

DEFAULT_REVOKE_REASON = "Revoked by patient"
DEFAULT_BULK_REVOKE_REASON = "All consents revoked by patient"


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a token, used as its lookup key."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _load_private_key(pem: str) -> rsa.RSAPrivateKey:
    if not pem:
        raise ConfigurationError("CONSENT_JWT_PRIVATE_KEY is not set")
    try:
        key = serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ConfigurationError(f"CONSENT_JWT_PRIVATE_KEY is not a valid PEM private key: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ConfigurationError("CONSENT_JWT_PRIVATE_KEY must be an RSA key")
    return key


def _load_public_key(pem: str) -> rsa.RSAPublicKey:
    try:
        key = serialization.load_pem_public_key(pem.encode("utf-8"))
    except (ValueError, UnsupportedAlgorithm) as e:
        raise ConfigurationError(f"CONSENT_JWT_PUBLIC_KEY is not a valid PEM public key: {e}") from e
    if not isinstance(key, rsa.RSAPublicKey):
        raise ConfigurationError("CONSENT_JWT_PUBLIC_KEY must be an RSA key")
    return key


class ConsentTokenService:
    """
    Signs and checks consent tokens against the durable token table.

    Attributes:
        issuer: Value of the iss claim
        clock: Current UTC time; validity windows are checked against it
    """

    def __init__(
        self,
        private_key_pem: str = CONSENT_JWT_PRIVATE_KEY,
        public_key_pem: str = CONSENT_JWT_PUBLIC_KEY,
        issuer: str = CONSENT_JWT_ISSUER,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Raises:
            ConfigurationError: If the signing key is missing or unusable
        """
        self._private_key = _load_private_key(private_key_pem)
        # The verification key defaults to the signing key's public half
        self._public_key = _load_public_key(public_key_pem) if public_key_pem else self._private_key.public_key()
        self.issuer = issuer
        self.clock = clock

    @staticmethod
    def is_valid_purpose_of_use(purpose: str) -> bool:
        return purpose in PURPOSES_OF_USE

    def default_expiration(self) -> datetime:
        """End of the default consent period starting now."""
        return self.clock() + timedelta(days=DEFAULT_CONSENT_DURATION_DAYS)

    # Issuance

    def issue(
        self,
        db: Session,
        consent_id: str,
        patient_id: str,
        patient_abha: str,
        organization_id: str,
        purpose_of_use: str,
        allowed_resources: list[str],
        valid_from: datetime,
        valid_until: datetime,
    ) -> tuple[str, ConsentToken]:
        """
        Sign a consent token and record it.

        Returns:
            The signed token and its stored record

        Raises:
            InvalidPurposeError: If purpose_of_use is not a recognised purpose
            InvalidWindowError: If valid_until is not strictly in the future
            StoreError: If the record cannot be written
        """
        if not self.is_valid_purpose_of_use(purpose_of_use):
            raise InvalidPurposeError(
                f"Invalid purposeOfUse: {purpose_of_use}. Must be one of: {', '.join(PURPOSES_OF_USE)}"
            )

        now = self.clock()
        valid_from = ensure_utc(valid_from)
        valid_until = ensure_utc(valid_until)
        if valid_until <= now:
            raise InvalidWindowError("validUntil must be in the future")

        payload = ConsentTokenPayload(
            consent_id=consent_id,
            patient_abha=patient_abha,
            patient_id=patient_id,
            organization_id=organization_id,
            purpose_of_use=purpose_of_use,
            allowed_resources=list(allowed_resources),
            valid_from=isoformat_utc(valid_from),
            valid_until=isoformat_utc(valid_until),
        )
        claims = payload.model_dump(by_alias=True, exclude_none=True)
        claims.update({
            "iat": int(now.timestamp()),
            "exp": math.ceil(valid_until.timestamp()),
            "iss": self.issuer,
            "aud": organization_id,
        })
        token = jwt.encode(claims, self._private_key, algorithm=CONSENT_JWT_ALGORITHM)

        record = ConsentToken(
            consent_id=consent_id,
            patient_id=patient_id,
            organization_id=organization_id,
            purpose_of_use=purpose_of_use,
            allowed_resources=list(allowed_resources),
            token_jwt=token,
            token_hash_sha256=hash_token(token),
            valid_from=valid_from,
            issued_at=now,
            expires_at=valid_until,
            revoked=False,
        )
        try:
            db.add(record)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception(f"Failed to store consent token for consent {consent_id}: {e}")
            raise StoreError("Failed to store consent token") from e

        logger.info(f"Issued consent token for consent {consent_id} to organization {organization_id}")
        return token, record

    # Validation

    def validate(self, db: Session, token: str, audience: Optional[str] = None) -> TokenValidationResult:
        """
        Verify a consent token's signature, claims, revocation state and validity window.

        When audience is given, the token's aud claim must match it.
        Expiry is checked against the service clock after the revocation lookup,
        so a revoked token reports revoked for the rest of its life.
        """
        try:
            claims = jwt.decode(
                token,
                self._public_key,
                algorithms=[CONSENT_JWT_ALGORITHM],
                issuer=self.issuer,
                audience=audience,
                options={
                    "require": ["exp", "iat", "iss", "aud"],
                    "verify_aud": audience is not None,
                    "verify_exp": False,
                },
            )
        except jwt.InvalidTokenError as e:
            return TokenValidationResult(valid=False, error=f"Invalid token: {e}", category=FailureCategory.INVALID)

        try:
            payload = ConsentTokenPayload.model_validate(claims)
            valid_until = parse_iso_datetime(payload.valid_until)
        except (ValidationError, ValueError):
            return TokenValidationResult(
                valid=False, error="Invalid token: malformed consent claims", category=FailureCategory.INVALID
            )

        if payload.aud != payload.organization_id:
            return TokenValidationResult(
                valid=False, error="Invalid token: audience does not match organization", category=FailureCategory.INVALID
            )

        try:
            record = db.execute(
                select(ConsentToken).where(
                    ConsentToken.consent_id == payload.consent_id,
                    ConsentToken.token_hash_sha256 == hash_token(token),
                )
            ).scalars().first()
        except SQLAlchemyError as e:
            logger.error(f"Error checking consent token revocation: {e}")
            return TokenValidationResult(
                valid=False,
                error="Database error checking revocation status",
                category=FailureCategory.STORE_UNAVAILABLE,
            )

        if record is None:
            return TokenValidationResult(
                valid=False, error="Consent token not found", category=FailureCategory.INVALID
            )

        if record.revoked:
            return TokenValidationResult(
                valid=False,
                payload=payload,
                error=f"Token revoked: {record.revoked_reason or 'No reason provided'}",
                revoked=True,
                category=FailureCategory.REVOKED,
            )

        now = self.clock()
        if payload.exp is not None and payload.exp <= now.timestamp():
            return TokenValidationResult(valid=False, error="Token has expired", category=FailureCategory.EXPIRED)
        if valid_until <= now:
            return TokenValidationResult(valid=False, error="Consent period has expired", category=FailureCategory.EXPIRED)

        return TokenValidationResult(valid=True, payload=payload)

    def validate_for_resource(self, db: Session, token: str, resource_type: str) -> TokenValidationResult:
        """Validate a token and check that it covers resource_type."""
        result = self.validate(db, token)
        if not result.valid or result.payload is None:
            return result

        allowed = result.payload.allowed_resources
        if resource_type not in allowed:
            return TokenValidationResult(
                valid=False,
                payload=result.payload,
                error=str(ScopeError(resource_type, allowed)),
                category=FailureCategory.SCOPE,
                requested_resource=resource_type,
            )
        return result

    def evaluate_access(self, db: Session, request: ConsentAccessRequest) -> AccessDecision:
        """Decide whether an organization's data request is covered by its consent token."""
        if not request.consent_token:
            return AccessDecision(allowed=False, reason="No consent token provided")

        result = self.validate_for_resource(db, request.consent_token, request.resource_type)
        if not result.valid or result.payload is None:
            return AccessDecision(allowed=False, reason=result.error or "Invalid consent token")

        payload = result.payload
        if payload.patient_abha != request.patient_abha:
            return AccessDecision(allowed=False, reason="Token ABHA does not match requested patient")
        if payload.organization_id != request.organization_id:
            return AccessDecision(allowed=False, reason="Token organization does not match requesting organization")
        if payload.purpose_of_use != request.purpose_of_use:
            return AccessDecision(
                allowed=False,
                reason=f"Purpose mismatch: token allows {payload.purpose_of_use}, requested {request.purpose_of_use}",
            )
        if parse_iso_datetime(payload.valid_from) > self.clock():
            return AccessDecision(allowed=False, reason="Consent period has not started yet")

        return AccessDecision(allowed=True, payload=payload)

    # Revocation

    def _revoke_where(self, db: Session, *criteria, reason: str) -> int:
        statement = (
            update(ConsentToken)
            .where(ConsentToken.revoked.is_(False), *criteria)
            .values(revoked=True, revoked_at=self.clock(), revoked_reason=reason)
        )
        try:
            count = db.execute(statement).rowcount
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception(f"Failed to revoke consent tokens: {e}")
            raise StoreError("Failed to revoke consent tokens") from e
        return count

    def revoke(self, db: Session, consent_id: str, reason: Optional[str] = None) -> int:
        """
        Revoke every token issued for a consent.

        Already-revoked tokens keep their original revocation timestamp and
        reason; revoking an unknown consent is a no-op.

        Returns:
            Number of tokens newly revoked
        """
        count = self._revoke_where(db, ConsentToken.consent_id == consent_id, reason=reason or DEFAULT_REVOKE_REASON)
        logger.info(f"Revoked {count} consent token(s) for consent {consent_id}")
        return count

    def revoke_all_for_organization(
        self, db: Session, patient_id: str, organization_id: str, reason: Optional[str] = None
    ) -> int:
        """
        Revoke every active grant from a patient to an organization.

        Returns:
            Number of tokens newly revoked
        """
        count = self._revoke_where(
            db,
            ConsentToken.patient_id == patient_id,
            ConsentToken.organization_id == organization_id,
            reason=reason or DEFAULT_BULK_REVOKE_REASON,
        )
        logger.info(f"Revoked {count} consent token(s) for organization {organization_id}")
        return count

    # Queries

    def get_active_tokens_for_patient(self, db: Session, patient_id: str) -> list[ConsentToken]:
        """Unrevoked, unexpired grants for a patient, newest first."""
        return list(
            db.execute(
                select(ConsentToken)
                .where(
                    ConsentToken.patient_id == patient_id,
                    ConsentToken.revoked.is_(False),
                    ConsentToken.expires_at >= self.clock(),
                )
                .order_by(ConsentToken.issued_at.desc())
            ).scalars().all()
        )

    def get_token_by_consent_id(self, db: Session, consent_id: str) -> Optional[ConsentToken]:
        """Most recently issued token record for a consent."""
        return db.execute(
            select(ConsentToken)
            .where(ConsentToken.consent_id == consent_id)
            .order_by(ConsentToken.issued_at.desc())
        ).scalars().first()


# Global instance, created on first use
consent_token_service: Optional[ConsentTokenService] = None


def get_consent_token_service() -> ConsentTokenService:
    """
    Get the process-wide consent token service.

    Raises:
        ConfigurationError: If the signing keys are not configured
    """
    global consent_token_service
    if consent_token_service is None:
        consent_token_service = ConsentTokenService()
    return consent_token_service
