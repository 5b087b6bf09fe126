"""Prescriptions and their medication lines."""
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..exceptions import (
    Forbidden,
    InvalidRole,
    InvalidTransition,
    NotFound,
    PrescriptionConflict,
    ValidationError,
)
from ..models.base import generate_uuid
from ..models.prescription import Medication, Prescription, PrescriptionStatus
from ..models.user import User, UserRole
from .identity import identity_service

logger = logging.getLogger(__name__)


class MedicationLine(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    dosage: str = Field(..., min_length=1, max_length=100)
    frequency: Optional[str] = Field(None, max_length=50)
    duration: Optional[str] = Field(None, max_length=100)
    instructions: Optional[str] = None
    refills: int = Field(0, ge=0)


def _parse_lines(medications: List[Dict]) -> List[MedicationLine]:
    if not medications:
        raise ValidationError({"medications": ["At least one medication is required."]})
    lines = []
    errors: Dict[str, List[str]] = {}
    for index, item in enumerate(medications):
        try:
            lines.append(MedicationLine.model_validate(item))
        except PydanticValidationError as exc:
            for field, messages in ValidationError.from_pydantic(exc).errors.items():
                errors[f"medications.{index}.{field}"] = messages
    if errors:
        raise ValidationError(errors)
    return lines


class PrescriptionService:

    def create_prescription(
        self,
        db: Session,
        doctor: User,
        patient_id: str,
        medications: List[Dict],
        diagnosis: Optional[str] = None,
        notes: Optional[str] = None,
        force: bool = False,
    ) -> Prescription:
        """
        Write a new prescription. A doctor holds at most one active
        prescription per patient: without ``force`` an existing one is
        reported as a conflict, with ``force`` it is completed first.
        """
        if doctor.role != UserRole.DOCTOR:
            raise InvalidRole("Only doctors can write prescriptions")
        lines = _parse_lines(medications)
        patient = identity_service.get_user_with_role(db, patient_id, UserRole.PATIENT_ROLES, "patient")

        existing = (
            db.query(Prescription)
            .filter(
                Prescription.patient_id == patient.id,
                Prescription.doctor_id == doctor.id,
                Prescription.status == PrescriptionStatus.ACTIVE,
            )
            .order_by(Prescription.created_at.desc())
            .first()
        )
        if existing is not None:
            if not force:
                new_names = {line.name.strip().lower() for line in lines}
                duplicates = [m.name for m in existing.medications if m.name.strip().lower() in new_names]
                raise PrescriptionConflict(
                    "Patient already has an active prescription from this doctor",
                    {
                        "existing_prescription_id": existing.id,
                        "existing_medications": [m.name for m in existing.medications],
                        "duplicate_medications": duplicates,
                    },
                )
            self._close(existing, PrescriptionStatus.COMPLETED)
            logger.info("Prescription %s completed to make way for a new one", existing.id)

        prescription = Prescription(
            id=generate_uuid(),
            patient_id=patient.id,
            doctor_id=doctor.id,
            diagnosis=diagnosis,
            notes=notes,
            status=PrescriptionStatus.ACTIVE,
        )
        for position, line in enumerate(lines):
            prescription.medications.append(Medication(
                id=generate_uuid(),
                position=position,
                status=PrescriptionStatus.ACTIVE,
                **line.model_dump(),
            ))
        db.add(prescription)
        self._commit(db)
        db.refresh(prescription)
        logger.info("Prescription %s written by %s for %s (%d medications)",
                    prescription.id, doctor.id, patient.id, len(lines))
        return prescription

    def get_prescription(self, db: Session, prescription_id: str) -> Prescription:
        prescription = db.get(Prescription, prescription_id)
        if prescription is None:
            raise NotFound(f"Prescription {prescription_id} not found")
        return prescription

    def set_prescription_status(self, db: Session, actor: User, prescription_id: str, status: str) -> Prescription:
        if status not in (PrescriptionStatus.DISCONTINUED, PrescriptionStatus.COMPLETED):
            raise ValidationError({"status": ["Status must be discontinued or completed."]})
        prescription = self.get_prescription(db, prescription_id)
        if actor.role != UserRole.ADMIN and actor.id != prescription.doctor_id:
            raise Forbidden("Only the prescribing doctor can change this prescription")
        if prescription.status != PrescriptionStatus.ACTIVE:
            raise InvalidTransition(f"Prescription {prescription_id} is already {prescription.status}")

        self._close(prescription, status)
        self._commit(db)
        db.refresh(prescription)
        logger.info("Prescription %s marked %s by %s", prescription.id, status, actor.id)
        return prescription

    def list_prescriptions(
        self,
        db: Session,
        patient_id: Optional[str] = None,
        doctor_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Prescription]:
        query = db.query(Prescription)
        if patient_id:
            query = query.filter(Prescription.patient_id == patient_id)
        if doctor_id:
            query = query.filter(Prescription.doctor_id == doctor_id)
        if status:
            query = query.filter(Prescription.status == status)
        return query.order_by(Prescription.created_at.desc()).all()

    @staticmethod
    def _close(prescription: Prescription, status: str) -> None:
        prescription.status = status
        for medication in prescription.medications:
            if medication.status == PrescriptionStatus.ACTIVE:
                medication.status = status

    @staticmethod
    def _commit(db: Session) -> None:
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise


prescription_service = PrescriptionService()
