"""
ABHA identity link service.

Connects gateway enrollment to the patient record: stores the ABHA number
and address against the internal patient id, mirrors the ABHA identifier
onto the FHIR Patient resource, and keeps the patient's ABDM tokens in the
token store.
"""

import logging
from typing import Any, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import FHIR_BASE_URL
from core.constants import ABHA_CONSENT_CODE, ABHA_CONSENT_VERSION, ABHA_IDENTIFIER_SYSTEM
from core.exceptions import AbhaServiceError, StoreError, UpstreamError
from models.patient_abha_link import PatientAbhaLink
from services.abha_client import AbhaClient, get_abha_client
from services.abha_orchestrator import CODE_STORE_ERROR, failure_result
from services.abha_token_service import PatientTokenStore, get_patient_token_store
from services.fhir_client import FhirClient, remove_identifier, upsert_identifier
from shared_types.abha import (
    AbhaEnrollmentResult,
    AbhaEnvironment,
    AbhaLinkDetails,
    EnrollmentResponse,
    OrchestratorResult,
)
from utils.datetime_utils import ensure_utc, isoformat_utc, utc_now

logger = logging.getLogger(__name__)


class AbhaLinkService:
    """Enrollment-to-patient linking, lookup and delinking."""

    def __init__(
        self,
        client: Optional[AbhaClient] = None,
        token_store: Optional[PatientTokenStore] = None,
        fhir_client: Optional[FhirClient] = None,
    ) -> None:
        self.client = client or get_abha_client()
        self.token_store = token_store or get_patient_token_store()
        self.fhir_client = fhir_client

    def _get_link(self, db: Session, patient_id: str) -> Optional[PatientAbhaLink]:
        return db.execute(
            select(PatientAbhaLink).where(PatientAbhaLink.patient_id == patient_id)
        ).scalar_one_or_none()

    def register_fhir_patient(self, db: Session, patient_id: str, fhir_patient_id: str) -> PatientAbhaLink:
        """Record which FHIR Patient resource belongs to an internal patient."""
        link = self._get_link(db, patient_id)
        if link is None:
            link = PatientAbhaLink(patient_id=patient_id)
            db.add(link)
        link.fhir_patient_id = fhir_patient_id
        self._commit(db)
        return link

    def _commit(self, db: Session) -> None:
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception(f"Failed to persist ABHA link: {e}")
            raise StoreError("Failed to persist ABHA link") from e

    @staticmethod
    def _failed_enrollment(error: Exception) -> AbhaEnrollmentResult:
        failure = failure_result(error, "ABHA enrollment failed")
        return AbhaEnrollmentResult(success=False, error=failure.message, code=failure.code)

    async def enroll_and_link(
        self,
        db: Session,
        patient_id: str,
        txn_id: str,
        otp: str,
        mobile: Optional[str] = None,
        env: Union[str, AbhaEnvironment, None] = None,
    ) -> AbhaEnrollmentResult:
        """
        Enrol via Aadhaar OTP and link the resulting ABHA to the patient.

        Tokens returned by the enrollment are kept in the token store.
        """
        try:
            enrollment: EnrollmentResponse = await self.client.enrol_by_aadhaar(
                txn_id, otp, ABHA_CONSENT_CODE, ABHA_CONSENT_VERSION, env, mobile=mobile
            )
        except (AbhaServiceError, ValueError) as e:
            logger.warning(f"ABHA enrollment failed for patient {patient_id}: {e}")
            return self._failed_enrollment(e)

        profile = enrollment.profile
        profile_data = profile.model_dump(by_alias=True, exclude_none=True)

        try:
            await self.link_abha_to_patient(db, patient_id, profile.abha_number, profile.abha_address, profile_data)
        except (AbhaServiceError, ValueError) as e:
            logger.warning(f"Linking ABHA to patient {patient_id} failed: {e}")
            return self._failed_enrollment(e)

        if enrollment.tokens is not None:
            tokens = enrollment.tokens
            if tokens.refresh_token:
                await self.token_store.store(
                    patient_id, tokens.refresh_token, tokens.refresh_expires_in or tokens.expires_in
                )
            if tokens.expires_in > 0:
                await self.token_store.cache_access_token(patient_id, tokens.token, tokens.expires_in)

        return AbhaEnrollmentResult(
            success=True,
            abha_number=profile.abha_number,
            abha_address=profile.abha_address,
            profile=profile_data,
        )

    async def link_abha_to_patient(
        self,
        db: Session,
        patient_id: str,
        abha_number: str,
        abha_address: Optional[str],
        abha_profile: dict[str, Any],
    ) -> PatientAbhaLink:
        """
        Link an ABHA to a patient, replacing any previously linked ABHA.

        Raises:
            UpstreamError: If the FHIR Patient resource cannot be updated
            StoreError: If the link cannot be persisted
        """
        link = self._get_link(db, patient_id)

        if link is not None and link.fhir_patient_id and self.fhir_client is not None:
            patient = await self.fhir_client.get_resource("Patient", link.fhir_patient_id)
            upsert_identifier(patient, ABHA_IDENTIFIER_SYSTEM, abha_number)
            await self.fhir_client.put_resource("Patient", link.fhir_patient_id, patient)

        if link is None:
            link = PatientAbhaLink(patient_id=patient_id)
            db.add(link)

        link.abha_number = abha_number
        link.abha_address = abha_address
        link.abha_status = abha_profile.get("abhaStatus") or "ACTIVE"
        link.abha_linked_at = utc_now()
        link.abha_metadata = abha_profile
        self._commit(db)

        logger.info(f"Linked ABHA to patient {patient_id}")
        return link

    def verify_abha_linked(self, db: Session, abha_number: str) -> Optional[str]:
        """Return the patient id an ABHA number is linked to, if any."""
        return db.execute(
            select(PatientAbhaLink.patient_id).where(PatientAbhaLink.abha_number == abha_number)
        ).scalars().first()

    def get_patient_abha_details(self, db: Session, patient_id: str) -> Optional[AbhaLinkDetails]:
        link = self._get_link(db, patient_id)
        if link is None or not link.abha_number:
            return None

        linked_at = ensure_utc(link.abha_linked_at)
        return AbhaLinkDetails(
            abha_number=link.abha_number,
            abha_address=link.abha_address,
            abha_status=link.abha_status or "UNKNOWN",
            linked_at=isoformat_utc(linked_at) if linked_at else None,
        )

    async def delink_abha(self, db: Session, patient_id: str) -> OrchestratorResult:
        """Remove the ABHA from the patient record and FHIR resource, and revoke the patient's tokens."""
        link = self._get_link(db, patient_id)
        if link is None:
            return OrchestratorResult(False, "Patient mapping not found", code="NOT_FOUND")

        if link.fhir_patient_id and self.fhir_client is not None:
            try:
                patient = await self.fhir_client.get_resource("Patient", link.fhir_patient_id)
                remove_identifier(patient, ABHA_IDENTIFIER_SYSTEM)
                await self.fhir_client.put_resource("Patient", link.fhir_patient_id, patient)
            except UpstreamError as e:
                # The local link is still cleared; the FHIR server is not the source of truth
                logger.warning(f"Failed to remove ABHA identifier from FHIR Patient for {patient_id}: {e}")

        link.clear()
        try:
            self._commit(db)
        except StoreError as e:
            return OrchestratorResult(False, str(e), code=CODE_STORE_ERROR)

        await self.token_store.revoke(patient_id)
        logger.info(f"Delinked ABHA from patient {patient_id}")
        return OrchestratorResult(True, "ABHA delinked successfully")


# Global instance, created on first use
abha_link_service: Optional[AbhaLinkService] = None


def get_abha_link_service() -> AbhaLinkService:
    global abha_link_service
    if abha_link_service is None:
        abha_link_service = AbhaLinkService(fhir_client=FhirClient() if FHIR_BASE_URL else None)
    return abha_link_service
