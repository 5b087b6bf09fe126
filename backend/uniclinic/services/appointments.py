"""
Appointment scheduling and the appointment state machine.

    scheduled|rescheduled -> confirmed -> in_progress -> completed
    scheduled|rescheduled|confirmed -> cancelled | no_show | rescheduled

completed, cancelled and no_show are terminal.
"""
import logging
from datetime import date, datetime, time
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..exceptions import (
    Forbidden,
    ForbiddenFieldChange,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from ..models.appointment import (
    APPOINTMENT_TRANSITIONS,
    Appointment,
    AppointmentPriority,
    AppointmentStatus,
    AppointmentType,
)
from ..models.base import generate_uuid
from ..models.user import User, UserRole
from .identity import identity_service

logger = logging.getLogger(__name__)

MIN_DURATION = 15
MAX_DURATION = 180

UPDATABLE_FIELDS = (
    "patient_id", "doctor_id", "date", "time", "type", "duration", "reason",
    "priority", "status", "room", "special_instructions",
)
REASSIGNMENT_FIELDS = ("doctor_id", "patient_id")
NULLABLE_FIELDS = ("room", "special_instructions")


def check_transition(current: str, target: str) -> None:
    if target not in AppointmentStatus.ALL:
        raise ValidationError({"status": [f"Unknown appointment status '{target}'."]})
    if target not in APPOINTMENT_TRANSITIONS.get(current, set()):
        raise InvalidTransition(f"Cannot move appointment from '{current}' to '{target}'")


def _coerce_date(value, errors: Dict[str, List[str]]) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        errors["date"] = ["The date must be a valid date (YYYY-MM-DD)."]
        return None


def _coerce_time(value, errors: Dict[str, List[str]]) -> Optional[time]:
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(str(value))
    except ValueError:
        errors["time"] = ["The time must be a valid time (HH:MM)."]
        return None


def _validate_fields(values: Dict) -> Dict:
    """Check and normalise appointment fields; raises with every problem at once."""
    errors: Dict[str, List[str]] = {}
    cleaned = dict(values)

    if "date" in values:
        appointment_date = _coerce_date(values["date"], errors)
        if appointment_date is not None and appointment_date < date.today():
            errors["date"] = ["The date cannot be in the past."]
        cleaned["date"] = appointment_date
    if "time" in values:
        cleaned["time"] = _coerce_time(values["time"], errors)
    if "type" in values and values["type"] not in AppointmentType.ALL:
        errors["type"] = [f"Type must be one of {', '.join(AppointmentType.ALL)}."]
    if "priority" in values and values["priority"] not in AppointmentPriority.ALL:
        errors["priority"] = [f"Priority must be one of {', '.join(AppointmentPriority.ALL)}."]
    if "duration" in values:
        duration = values["duration"]
        if not isinstance(duration, int) or not MIN_DURATION <= duration <= MAX_DURATION:
            errors["duration"] = [f"Duration must be between {MIN_DURATION} and {MAX_DURATION} minutes."]
    if "reason" in values and (not values["reason"] or len(values["reason"]) > 500):
        errors["reason"] = ["The reason field is required and may not exceed 500 characters."]

    if errors:
        raise ValidationError(errors)
    return cleaned


class AppointmentService:

    def get(self, db: Session, appointment_id: str) -> Appointment:
        appointment = db.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFound(f"Appointment {appointment_id} not found")
        return appointment

    def schedule(self, db: Session, actor: User, data: Dict) -> Appointment:
        """
        Book an appointment. Patients book only for themselves and doctors
        default to themselves; everyone else names both parties.
        """
        data = {k: v for k, v in data.items() if v is not None}
        if actor.role in UserRole.PATIENT_ROLES:
            if data.get("patient_id", actor.id) != actor.id:
                raise Forbidden("Patients can only book appointments for themselves")
            data["patient_id"] = actor.id
        elif actor.role == UserRole.DOCTOR:
            data.setdefault("doctor_id", actor.id)

        errors = {
            field: [f"The {field} field is required."]
            for field in ("patient_id", "doctor_id", "date", "time", "reason")
            if field not in data
        }
        if errors:
            raise ValidationError(errors)
        unknown = set(data) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError({f: ["This field is not allowed."] for f in sorted(unknown)})
        if data.get("status", AppointmentStatus.SCHEDULED) != AppointmentStatus.SCHEDULED:
            raise ValidationError({"status": ["New appointments always start as scheduled."]})

        values = _validate_fields(data)
        identity_service.get_user_with_role(db, values["patient_id"], UserRole.PATIENT_ROLES, "patient")
        identity_service.get_user_with_role(db, values["doctor_id"], (UserRole.DOCTOR,), "doctor")

        appointment = Appointment(
            id=generate_uuid(),
            patient_id=values["patient_id"],
            doctor_id=values["doctor_id"],
            date=values["date"],
            time=values["time"],
            type=values.get("type", AppointmentType.CONSULTATION),
            duration=values.get("duration", 30),
            reason=values["reason"],
            priority=values.get("priority", AppointmentPriority.NORMAL),
            status=AppointmentStatus.SCHEDULED,
            room=values.get("room"),
            special_instructions=values.get("special_instructions"),
            created_by=actor.id,
        )
        db.add(appointment)
        self._commit(db)
        db.refresh(appointment)
        logger.info("Appointment %s scheduled for patient %s with doctor %s on %s %s",
                    appointment.id, appointment.patient_id, appointment.doctor_id,
                    appointment.date, appointment.time)
        return appointment

    def update(self, db: Session, actor: User, appointment_id: str, changes: Dict) -> Appointment:
        """
        Apply a partial update atomically. Clinical staff may not touch the
        doctor or patient; that is rejected before anything is looked at.
        """
        reassigning = sorted(f for f in REASSIGNMENT_FIELDS if f in changes)
        if actor.role == UserRole.CLINICAL_STAFF and reassigning:
            raise ForbiddenFieldChange(reassigning)
        if actor.role in UserRole.PATIENT_ROLES:
            raise Forbidden("Patients can only cancel or reschedule their appointments")

        appointment = self.get(db, appointment_id)
        if actor.role == UserRole.DOCTOR and appointment.doctor_id != actor.id:
            raise Forbidden("Doctors can only edit their own appointments")

        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError({f: ["This field is not allowed."] for f in sorted(unknown)})
        # Only the free-text columns may be cleared
        changes = {k: v for k, v in changes.items() if v is not None or k in NULLABLE_FIELDS}
        values = _validate_fields(changes)

        if "patient_id" in values:
            identity_service.get_user_with_role(db, values["patient_id"], UserRole.PATIENT_ROLES, "patient")
        if "doctor_id" in values:
            identity_service.get_user_with_role(db, values["doctor_id"], (UserRole.DOCTOR,), "doctor")

        moving = any(
            f in values and values[f] != getattr(appointment, f) for f in ("date", "time")
        )
        if moving and appointment.status not in AppointmentStatus.RESCHEDULABLE:
            raise InvalidTransition(f"Cannot change the date or time of a {appointment.status} appointment")
        # A move is the rescheduled transition unless the caller names a status
        if moving and values.get("status") is None:
            values["status"] = AppointmentStatus.RESCHEDULED
        new_status = values.get("status")
        if new_status is not None and new_status != appointment.status:
            check_transition(appointment.status, new_status)

        for field, value in values.items():
            setattr(appointment, field, value)
        self._commit(db)
        db.refresh(appointment)
        logger.info("Appointment %s updated by %s: %s", appointment.id, actor.id, sorted(values))
        return appointment

    def transition(self, db: Session, actor: User, appointment_id: str, status: str) -> Appointment:
        appointment = self.get(db, appointment_id)
        if actor.role in UserRole.PATIENT_ROLES:
            if appointment.patient_id != actor.id or status != AppointmentStatus.CANCELLED:
                raise Forbidden("Patients can only cancel their own appointments")
        check_transition(appointment.status, status)

        old_status = appointment.status
        appointment.status = status
        self._commit(db)
        db.refresh(appointment)
        logger.info("Appointment %s %s -> %s by %s", appointment.id, old_status, status, actor.id)
        return appointment

    def reschedule(self, db: Session, actor: User, appointment_id: str, new_date, new_time) -> Appointment:
        appointment = self.get(db, appointment_id)
        if actor.role in UserRole.PATIENT_ROLES and appointment.patient_id != actor.id:
            raise Forbidden("Patients can only reschedule their own appointments")
        if appointment.status not in AppointmentStatus.RESCHEDULABLE:
            raise InvalidTransition(f"Cannot reschedule a {appointment.status} appointment")

        values = _validate_fields({"date": new_date, "time": new_time})
        appointment.date = values["date"]
        appointment.time = values["time"]
        appointment.status = AppointmentStatus.RESCHEDULED
        self._commit(db)
        db.refresh(appointment)
        logger.info("Appointment %s rescheduled to %s %s", appointment.id, appointment.date, appointment.time)
        return appointment

    def cancel(self, db: Session, actor: User, appointment_id: str) -> Appointment:
        return self.transition(db, actor, appointment_id, AppointmentStatus.CANCELLED)

    def list_for(
        self,
        db: Session,
        patient_id: Optional[str] = None,
        doctor_id: Optional[str] = None,
        on_date: Optional[date] = None,
        status: Optional[str] = None,
    ) -> List[Appointment]:
        query = db.query(Appointment)
        if patient_id:
            query = query.filter(Appointment.patient_id == patient_id)
        if doctor_id:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if on_date:
            query = query.filter(Appointment.date == on_date)
        if status:
            query = query.filter(Appointment.status == status)
        return query.order_by(Appointment.date, Appointment.time).all()

    def delete(self, db: Session, appointment_id: str) -> None:
        appointment = self.get(db, appointment_id)
        if appointment.status == AppointmentStatus.IN_PROGRESS:
            raise InvalidTransition("Cannot delete an appointment that is in progress")
        db.delete(appointment)
        self._commit(db)
        logger.info("Appointment %s deleted", appointment_id)

    def resolve_attending_doctor(
        self,
        db: Session,
        patient_id: str,
        on_date: Optional[date] = None,
        fallback: Optional[str] = None,
    ) -> Optional[str]:
        """
        Attending doctor for ``patient_id`` on ``on_date`` (today by default):
        the doctor of that day's earliest active appointment, else ``fallback``.
        """
        appointment = (
            db.query(Appointment)
            .filter(
                Appointment.patient_id == patient_id,
                Appointment.date == (on_date or date.today()),
                Appointment.status.in_(AppointmentStatus.ACTIVE),
            )
            .order_by(Appointment.time)
            .first()
        )
        if appointment is not None:
            return appointment.doctor_id
        return fallback

    @staticmethod
    def _commit(db: Session) -> None:
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise


appointment_service = AppointmentService()
