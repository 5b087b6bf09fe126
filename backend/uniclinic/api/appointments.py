import datetime as dt
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict

from ..models.base import get_db
from ..models.user import User, UserRole
from ..core.security import get_current_user, require_patient_access, require_role
from ..exceptions import ForbiddenFieldChange
from ..services.appointments import REASSIGNMENT_FIELDS, appointment_service

router = APIRouter(prefix="/appointments", tags=["appointments"])


class AppointmentCreate(BaseModel):
    patient_id: Optional[str] = None
    doctor_id: Optional[str] = None
    date: dt.date
    time: dt.time
    type: Optional[str] = None
    duration: Optional[int] = None
    reason: str
    priority: Optional[str] = None
    room: Optional[str] = None
    special_instructions: Optional[str] = None


class AppointmentUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    patient_id: Optional[str] = None
    doctor_id: Optional[str] = None
    date: Optional[dt.date] = None
    time: Optional[dt.time] = None
    type: Optional[str] = None
    duration: Optional[int] = None
    reason: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    room: Optional[str] = None
    special_instructions: Optional[str] = None


class StatusChange(BaseModel):
    status: str


class RescheduleRequest(BaseModel):
    date: dt.date
    time: dt.time


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    patient_id: str
    doctor_id: str
    date: dt.date
    time: dt.time
    type: str
    duration: int
    reason: str
    priority: str
    status: str
    room: Optional[str]
    special_instructions: Optional[str]
    created_by: Optional[str]
    created_at: dt.datetime
    updated_at: dt.datetime


async def reject_clinical_reassignment(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> User:
    """Clinical staff sending doctor_id or patient_id get 403 INVALID_UPDATE, whatever the values."""
    if current_user.role != UserRole.CLINICAL_STAFF:
        return current_user
    try:
        payload = await request.json()
    except ValueError:
        return current_user
    if isinstance(payload, dict):
        reassigning = sorted(f for f in REASSIGNMENT_FIELDS if f in payload)
        if reassigning:
            raise ForbiddenFieldChange(reassigning)
    return current_user


@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def schedule_appointment(
    body: AppointmentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return appointment_service.schedule(db, current_user, body.model_dump())


@router.get("", response_model=List[AppointmentResponse])
def list_appointments(
    patient_id: Optional[str] = None,
    doctor_id: Optional[str] = None,
    on_date: Optional[dt.date] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    # Patients only ever see their own appointments
    if current_user.role in UserRole.PATIENT_ROLES:
        patient_id = current_user.id
    return appointment_service.list_for(
        db, patient_id=patient_id, doctor_id=doctor_id, on_date=on_date, status=status_filter
    )


@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    appointment = appointment_service.get(db, appointment_id)
    require_patient_access(current_user, appointment.patient_id)
    return appointment


@router.put("/{appointment_id}", response_model=AppointmentResponse)
def update_appointment(
    appointment_id: str,
    body: AppointmentUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(reject_clinical_reassignment),
):
    """Partial update. A date or time move puts the appointment in ``rescheduled``."""
    changes = body.model_dump(exclude_unset=True)
    return appointment_service.update(db, current_user, appointment_id, changes)


@router.post("/{appointment_id}/status", response_model=AppointmentResponse)
def change_status(
    appointment_id: str,
    body: StatusChange,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return appointment_service.transition(db, current_user, appointment_id, body.status)


@router.post("/{appointment_id}/reschedule", response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: str,
    body: RescheduleRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return appointment_service.reschedule(db, current_user, appointment_id, body.date, body.time)


@router.delete("/{appointment_id}")
def delete_appointment(
    appointment_id: str,
    db: Session = Depends(get_db),
    _staff=Depends(require_role(UserRole.CLINICAL_STAFF, UserRole.ADMIN)),
):
    appointment_service.delete(db, appointment_id)
    return {"message": "Appointment deleted successfully"}
