"""Doctor-patient assignment endpoints."""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from pydantic import BaseModel

from ..models.base import get_db
from ..models.user import User, UserRole
from ..core.security import get_current_user, require_role
from ..services.assignments import assignment_registry
from ..services.identity import identity_service

router = APIRouter(prefix="/assignments", tags=["assignments"])


class AssignmentRequest(BaseModel):
    doctor_id: str
    patient_id: str


@router.post("")
def assign_patient(
    body: AssignmentRequest,
    db: Session = Depends(get_db),
    _admin=Depends(require_role(UserRole.ADMIN)),
):
    doctor = identity_service.get_user(db, body.doctor_id)
    patient = identity_service.get_user(db, body.patient_id)
    patient = assignment_registry.assign(db, doctor, patient)
    return {
        "message": "Patient assigned to doctor",
        "doctor_id": doctor.id,
        "patient": identity_service.project(patient),
    }


@router.delete("/{doctor_id}/{patient_id}")
def remove_assignment(
    doctor_id: str,
    patient_id: str,
    db: Session = Depends(get_db),
    _admin=Depends(require_role(UserRole.ADMIN)),
):
    patient = assignment_registry.remove(db, doctor_id, patient_id)
    return {"message": "Patient removed from doctor", "patient": identity_service.project(patient)}


@router.get("/{doctor_id}/patients")
def list_doctor_patients(
    doctor_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if current_user.role == UserRole.DOCTOR and current_user.id != doctor_id:
        raise HTTPException(status_code=403, detail="Doctors can only list their own patients")
    if current_user.role not in UserRole.STAFF_ROLES:
        raise HTTPException(status_code=403, detail="Insufficient permissions to list patients")
    identity_service.get_user_with_role(db, doctor_id, (UserRole.DOCTOR,), "doctor")
    patients = assignment_registry.patients_of(db, doctor_id)
    return {"doctor_id": doctor_id, "patients": [identity_service.project(p) for p in patients]}
