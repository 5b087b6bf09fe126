import datetime as dt
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict

from ..models.base import get_db
from ..models.user import User, UserRole
from ..core.security import get_current_user, require_patient_access, require_role
from ..services.prescriptions import MedicationLine, prescription_service

router = APIRouter(prefix="/prescriptions", tags=["prescriptions"])


class PrescriptionCreate(BaseModel):
    patient_id: str
    medications: List[MedicationLine]
    diagnosis: Optional[str] = None
    notes: Optional[str] = None
    force: bool = False


class PrescriptionStatusUpdate(BaseModel):
    status: str


class MedicationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    position: int
    name: str
    dosage: str
    frequency: Optional[str]
    duration: Optional[str]
    instructions: Optional[str]
    refills: int
    status: str


class PrescriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    patient_id: str
    doctor_id: str
    diagnosis: Optional[str]
    notes: Optional[str]
    status: str
    medications: List[MedicationResponse]
    created_at: dt.datetime


@router.post("", response_model=PrescriptionResponse, status_code=status.HTTP_201_CREATED)
def create_prescription(
    body: PrescriptionCreate,
    db: Session = Depends(get_db),
    doctor: User = Depends(require_role(UserRole.DOCTOR)),
):
    """Returns 409 with the existing prescription when one is active, unless ``force`` is set."""
    return prescription_service.create_prescription(
        db,
        doctor,
        body.patient_id,
        [m.model_dump() for m in body.medications],
        diagnosis=body.diagnosis,
        notes=body.notes,
        force=body.force,
    )


@router.get("", response_model=List[PrescriptionResponse])
def list_prescriptions(
    patient_id: Optional[str] = None,
    doctor_id: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if current_user.role in UserRole.PATIENT_ROLES:
        patient_id = current_user.id
    return prescription_service.list_prescriptions(
        db, patient_id=patient_id, doctor_id=doctor_id, status=status_filter
    )


@router.get("/{prescription_id}", response_model=PrescriptionResponse)
def get_prescription(
    prescription_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    prescription = prescription_service.get_prescription(db, prescription_id)
    require_patient_access(current_user, prescription.patient_id)
    return prescription


@router.patch("/{prescription_id}/status", response_model=PrescriptionResponse)
def update_prescription_status(
    prescription_id: str,
    body: PrescriptionStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.DOCTOR, UserRole.ADMIN)),
):
    return prescription_service.set_prescription_status(db, current_user, prescription_id, body.status)
