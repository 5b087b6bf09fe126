"""
Doctor ↔ patient assignment registry.
A patient (student or academic staff) has at most one doctor; a doctor has
any number of patients. The reference lives on the patient as ``doctor_id``.
"""
import logging
from typing import Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, aliased

from ..exceptions import InvalidRole, NotFound
from ..models.user import User, UserRole, PATIENT_MODELS

logger = logging.getLogger(__name__)


class AssignmentRegistry:

    def assign(self, db: Session, doctor: User, patient: User) -> User:
        """Link ``patient`` to ``doctor``. Both roles are checked on every call."""
        if doctor.role != UserRole.DOCTOR:
            raise InvalidRole(f"User {doctor.id} is not a doctor and cannot be assigned patients")
        if patient.role not in UserRole.PATIENT_ROLES:
            raise InvalidRole("Only students and academic staff can be assigned as patients")

        patient.doctor_id = doctor.id
        self._commit_checked(db, patient)
        db.refresh(patient)
        logger.info("Patient %s assigned to doctor %s", patient.id, doctor.id)
        return patient

    def remove(self, db: Session, doctor_id: str, patient_id: str) -> User:
        patient = None
        for model in PATIENT_MODELS:
            patient = (
                db.query(model)
                .filter(model.id == patient_id, model.doctor_id == doctor_id)
                .first()
            )
            if patient is not None:
                break
        if patient is None:
            raise NotFound(f"Patient {patient_id} is not assigned to doctor {doctor_id}")

        patient.doctor_id = None
        self._commit_checked(db, patient)
        db.refresh(patient)
        logger.info("Patient %s removed from doctor %s", patient_id, doctor_id)
        return patient

    def patients_of(self, db: Session, doctor_id: str) -> List[User]:
        patients: List[User] = []
        for model in PATIENT_MODELS:
            patients.extend(
                db.query(model)
                .filter(model.doctor_id == doctor_id, model.deleted_at.is_(None))
                .order_by(model.name)
                .all()
            )
        return patients

    def unassign_all(self, db: Session, doctor_id: str) -> int:
        """Clear ``doctor_id`` on every dependent. Flushes but does not commit."""
        count = 0
        for model in PATIENT_MODELS:
            for patient in db.query(model).filter(model.doctor_id == doctor_id).all():
                patient.doctor_id = None
                count += 1
        db.flush()
        return count

    def _commit_checked(self, db: Session, patient: User) -> None:
        db.flush()
        try:
            self.check_invariant(db, [patient])
        except InvalidRole:
            db.rollback()
            raise
        db.commit()

    def check_invariant(self, db: Session, holders: Optional[Iterable[User]] = None) -> None:
        """
        Raise InvalidRole if a stored doctor reference is inconsistent:
        a patient pointing at a non-doctor, or a non-patient carrying a doctor.
        With ``holders`` only those users are checked; otherwise the whole
        table is scanned in one query.
        """
        if holders is not None:
            for holder in holders:
                doctor_id = getattr(holder, "doctor_id", None)
                if doctor_id is not None:
                    owner = db.get(User, doctor_id)
                    self._check_reference(holder.id, holder.role, doctor_id, owner.role if owner else None)
            return

        doctor_ref = User.__table__.c.doctor_id
        owner = aliased(User)
        broken = (
            db.query(User.id, User.role, doctor_ref, owner.role)
            .outerjoin(owner, owner.id == doctor_ref)
            .filter(doctor_ref.isnot(None))
            .filter(or_(
                User.role.notin_(UserRole.PATIENT_ROLES),
                owner.id.is_(None),
                owner.role != UserRole.DOCTOR,
            ))
            .first()
        )
        if broken is not None:
            self._check_reference(*broken)

    @staticmethod
    def _check_reference(holder_id: str, holder_role: str, doctor_id: str, owner_role: Optional[str]) -> None:
        if holder_role not in UserRole.PATIENT_ROLES:
            raise InvalidRole(f"User {holder_id} ({holder_role}) cannot have a doctor")
        if owner_role != UserRole.DOCTOR:
            raise InvalidRole(f"Patient {holder_id} references {doctor_id}, which is not a doctor")


assignment_registry = AssignmentRegistry()
