"""
Patient ABHA link model.

Associates an internal patient identifier with the patient's national health
ID (ABHA number and address). One row per patient; the ABHA fields are
replaced on re-link and cleared (not deleted) on delink.
"""

from typing import Any, Optional
from datetime import datetime
from sqlalchemy import String, TIMESTAMP, JSON
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base


class PatientAbhaLink(Base):
    """External health identity linked to an internal patient."""

    __tablename__ = "patient_abha_links"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    patient_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    """Internal patient (auth user) identifier."""

    fhir_patient_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    """Patient resource id on the FHIR server, when the patient has one."""

    abha_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, index=True)
    """14-digit ABHA number, formatted as returned by ABDM (e.g. 12-3456-7890-1234)."""

    abha_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    abha_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    abha_linked_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    abha_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    """Full ABHAProfile returned by the gateway."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    @property
    def is_linked(self) -> bool:
        return self.abha_number is not None

    def clear(self) -> None:
        """Clear the ABHA fields, keeping the row."""
        self.abha_number = None
        self.abha_address = None
        self.abha_status = None
        self.abha_linked_at = None
        self.abha_metadata = None

    def __repr__(self) -> str:
        return f"<PatientAbhaLink(patient_id={self.patient_id}, linked={self.is_linked})>"
