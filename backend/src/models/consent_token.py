"""
Consent token model for organization access grants.

Each row records one signed consent JWT issued to an organization on behalf
of a patient, so revocation and introspection never need to re-parse the
token itself.
"""

from typing import Optional
from datetime import datetime
from sqlalchemy import String, Text, TIMESTAMP, Boolean, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base
from utils.datetime_utils import ensure_utc, utc_now


class ConsentToken(Base):
    """Signed, purpose-scoped access grant from a patient to an organization."""

    __tablename__ = "consent_tokens"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    consent_id: Mapped[str] = mapped_column(String(255))
    """FHIR Consent resource identifier the token was issued for."""

    patient_id: Mapped[str] = mapped_column(String(255))
    organization_id: Mapped[str] = mapped_column(String(255))

    purpose_of_use: Mapped[str] = mapped_column(String(32))
    """One of TREATMENT, EMERGENCY, INSURANCE, RESEARCH."""

    allowed_resources: Mapped[list[str]] = mapped_column(JSON, default=list)
    """FHIR resource types the organization may read (e.g. ["Observation"])."""

    token_jwt: Mapped[str] = mapped_column(Text)
    token_hash_sha256: Mapped[str] = mapped_column(String(64))  # SHA-256 hash for O(1) lookup

    valid_from: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    issued_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))

    revoked: Mapped[bool] = mapped_column(Boolean, default=False)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    revoked_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (
        Index('idx_consent_tokens_consent_id', 'consent_id'),
        Index('idx_consent_tokens_lookup', 'consent_id', 'token_hash_sha256'),
        Index('idx_consent_tokens_patient_org', 'patient_id', 'organization_id', 'revoked'),
    )

    @property
    def is_active(self) -> bool:
        """Check if the grant is neither revoked nor past its end date."""
        expires_at = ensure_utc(self.expires_at)
        return not self.revoked and expires_at is not None and expires_at > utc_now()

    def revoke(self, reason: Optional[str] = None) -> None:
        """Revoke this grant. Already-revoked grants keep their original timestamp."""
        if self.revoked:
            return
        self.revoked = True
        self.revoked_at = utc_now()
        self.revoked_reason = reason

    def __repr__(self) -> str:
        return (
            f"<ConsentToken(id={self.id}, consent_id={self.consent_id}, "
            f"organization_id={self.organization_id}, revoked={self.revoked})>"
        )
