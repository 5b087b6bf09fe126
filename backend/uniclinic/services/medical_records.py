"""
Medical record service.
Records are append-only: vital signs, medication administrations, care tasks
and general visit notes. The only in-place change is completing a task.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..exceptions import InvalidTransition, NotFound, ValidationError
from ..models.base import generate_uuid
from ..models.medical_record import MedicalRecord, RecordType
from ..models.record_content import TaskContent, parse_content
from ..models.user import User, UserRole
from .appointments import appointment_service
from .identity import identity_service
from .vital_alerts import VitalAlert, evaluate, highest_severity

logger = logging.getLogger(__name__)

CARE_TASK_DIAGNOSIS = "Care Task"


class MedicalRecordService:

    def record_vital_signs(
        self, db: Session, actor: User, patient_id: str, payload: Dict
    ) -> Tuple[MedicalRecord, List[VitalAlert]]:
        """
        Store a vital-sign reading and evaluate it.
        The attending doctor is the explicit ``doctor_id``, else the doctor of
        today's appointment, else none. Alerts are returned, never stored.
        """
        payload = dict(payload)
        patient = self._patient(db, patient_id)
        doctor_id = self._explicit_doctor(db, payload.pop("doctor_id", None))
        content = parse_content(RecordType.VITAL_SIGNS, payload)

        if doctor_id is None:
            doctor_id = appointment_service.resolve_attending_doctor(db, patient.id)

        record = self._store(
            db,
            patient_id=patient.id,
            doctor_id=doctor_id,
            type=RecordType.VITAL_SIGNS,
            content=content.to_json(),
            notes=content.notes,
            created_by=actor.id,
        )
        alerts = evaluate(record.content)
        logger.info("Vital signs recorded for patient %s (%d alerts, highest %s)",
                    patient.id, len(alerts), highest_severity(alerts))
        return record, alerts

    def record_medication(self, db: Session, actor: User, patient_id: str, payload: Dict) -> MedicalRecord:
        """Record one administration; falls back to the acting user when no doctor can be found."""
        payload = dict(payload)
        patient = self._patient(db, patient_id)
        doctor_id = self._explicit_doctor(db, payload.pop("doctor_id", None))
        for field in ("status", "administered_by", "administered_at"):
            payload.pop(field, None)
        content = parse_content(RecordType.MEDICATION, payload).model_copy(update={
            "administered_by": actor.id,
            "administered_at": datetime.utcnow(),
        })

        if doctor_id is None:
            doctor_id = appointment_service.resolve_attending_doctor(db, patient.id, fallback=actor.id)

        record = self._store(
            db,
            patient_id=patient.id,
            doctor_id=doctor_id,
            type=RecordType.MEDICATION,
            content=content.to_json(),
            notes=content.notes,
            created_by=actor.id,
        )
        logger.info("Medication %s administered to patient %s by %s",
                    content.medication_name, patient.id, actor.id)
        return record

    def create_task(self, db: Session, actor: User, patient_id: str, payload: Dict) -> MedicalRecord:
        payload = dict(payload)
        patient = self._patient(db, patient_id)
        for field in ("status", "completion_notes", "actual_duration", "completed_by", "completed_at"):
            payload.pop(field, None)
        content = parse_content(RecordType.TASK, payload)

        record = self._store(
            db,
            patient_id=patient.id,
            doctor_id=None,
            type=RecordType.TASK,
            content=content.to_json(),
            diagnosis=CARE_TASK_DIAGNOSIS,
            treatment=content.description,
            created_by=actor.id,
        )
        logger.info("Care task %s created for patient %s", record.id, patient.id)
        return record

    def complete_task(
        self,
        db: Session,
        actor: User,
        record_id: str,
        completion_notes: Optional[str] = None,
        actual_duration: Optional[int] = None,
    ) -> MedicalRecord:
        record = self.get_record(db, record_id)
        if record.type != RecordType.TASK:
            raise NotFound(f"Task {record_id} not found")

        task = TaskContent.model_validate(record.content)
        if task.status != "pending":
            raise InvalidTransition(f"Task {record_id} is already {task.status}")
        if actual_duration is not None and actual_duration < 0:
            raise ValidationError({"actual_duration": ["The actual duration must be at least 0."]})

        completed = task.model_copy(update={
            "status": "completed",
            "completion_notes": completion_notes,
            "actual_duration": actual_duration,
            "completed_by": actor.id,
            "completed_at": datetime.utcnow(),
        })
        # Reassign so the JSON column is flagged dirty
        record.content = completed.to_json()
        self._commit(db)
        db.refresh(record)
        logger.info("Care task %s completed by %s", record.id, actor.id)
        return record

    def create_general_record(self, db: Session, actor: User, patient_id: str, payload: Dict) -> MedicalRecord:
        """Visit note with diagnosis and treatment; a doctor author is the attending doctor."""
        payload = dict(payload)
        patient = self._patient(db, patient_id)
        doctor_id = self._explicit_doctor(db, payload.pop("doctor_id", None))
        diagnosis = payload.pop("diagnosis", None)
        treatment = payload.pop("treatment", None)
        notes = payload.pop("notes", None)
        visit_date = payload.pop("visit_date", None)
        if isinstance(visit_date, str):
            try:
                visit_date = date.fromisoformat(visit_date)
            except ValueError:
                raise ValidationError({"visit_date": ["The visit date must be a valid date."]})
        content = parse_content(RecordType.GENERAL, payload)

        if doctor_id is None:
            fallback = actor.id if actor.role == UserRole.DOCTOR else None
            doctor_id = appointment_service.resolve_attending_doctor(db, patient.id, fallback=fallback)

        record = self._store(
            db,
            patient_id=patient.id,
            doctor_id=doctor_id,
            type=RecordType.GENERAL,
            content=content.to_json(),
            diagnosis=diagnosis,
            treatment=treatment,
            notes=notes,
            visit_date=visit_date,
            created_by=actor.id,
        )
        logger.info("General record %s created for patient %s", record.id, patient.id)
        return record

    def vital_signs_history(
        self, db: Session, patient_id: str, days: int = 7
    ) -> List[Tuple[MedicalRecord, List[VitalAlert]]]:
        """Readings from the last ``days`` days, newest first, alerts recomputed."""
        if days < 1:
            raise ValidationError({"days": ["The days value must be at least 1."]})
        since = datetime.utcnow() - timedelta(days=days)
        records = (
            db.query(MedicalRecord)
            .filter(
                MedicalRecord.patient_id == patient_id,
                MedicalRecord.type == RecordType.VITAL_SIGNS,
                MedicalRecord.created_at >= since,
            )
            .order_by(MedicalRecord.created_at.desc())
            .all()
        )
        return [(record, evaluate(record.content)) for record in records]

    def list_records(self, db: Session, patient_id: str, record_type: Optional[str] = None) -> List[MedicalRecord]:
        if record_type is not None and record_type not in RecordType.ALL:
            raise ValidationError({"type": [f"Type must be one of {', '.join(RecordType.ALL)}."]})
        query = db.query(MedicalRecord).filter(MedicalRecord.patient_id == patient_id)
        if record_type:
            query = query.filter(MedicalRecord.type == record_type)
        return query.order_by(MedicalRecord.created_at.desc()).all()

    def get_record(self, db: Session, record_id: str) -> MedicalRecord:
        record = db.get(MedicalRecord, record_id)
        if record is None:
            raise NotFound(f"Medical record {record_id} not found")
        return record

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _patient(self, db: Session, patient_id: str) -> User:
        return identity_service.get_user_with_role(db, patient_id, UserRole.PATIENT_ROLES, "patient")

    def _explicit_doctor(self, db: Session, doctor_id: Optional[str]) -> Optional[str]:
        if doctor_id is None:
            return None
        return identity_service.get_user_with_role(db, doctor_id, (UserRole.DOCTOR,), "doctor").id

    def _store(self, db: Session, visit_date: Optional[date] = None, **fields) -> MedicalRecord:
        record = MedicalRecord(id=generate_uuid(), visit_date=visit_date or date.today(), **fields)
        db.add(record)
        self._commit(db)
        db.refresh(record)
        return record

    @staticmethod
    def _commit(db: Session) -> None:
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise


medical_record_service = MedicalRecordService()
