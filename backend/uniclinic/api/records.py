"""
Patient record endpoints: vital signs, medication administration, care tasks
and general visit notes.
"""
import datetime as dt
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict, Field

from ..models.base import get_db
from ..models.record_content import MedicationRoute, VitalSignsContent
from ..models.user import User, UserRole
from ..core.permissions import PERM_CREATE_MEDICAL_RECORDS
from ..core.security import get_current_user, require_patient_access, require_permission, require_role
from ..services.medical_records import medical_record_service

router = APIRouter(tags=["medical-records"])

_staff = require_role(*UserRole.STAFF_ROLES)


# ── Request / Response schemas ──────────────────────────────────────────────

class VitalSignsRequest(VitalSignsContent):
    doctor_id: Optional[str] = None


class MedicationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    medication_name: str
    dosage: str
    route: MedicationRoute
    administration_time: dt.datetime
    prescribing_doctor: str
    notes: Optional[str] = None
    doctor_id: Optional[str] = None


class TaskCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: str
    priority: str = "medium"
    due_time: Optional[dt.datetime] = None
    instructions: Optional[str] = None


class TaskCompletion(BaseModel):
    completion_notes: Optional[str] = None
    actual_duration: Optional[int] = Field(None, ge=0)


class GeneralRecordCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    diagnosis: Optional[str] = None
    treatment: Optional[str] = None
    notes: Optional[str] = None
    summary: Optional[str] = None
    follow_up_date: Optional[dt.date] = None
    visit_date: Optional[dt.date] = None
    doctor_id: Optional[str] = None


class RecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    patient_id: str
    doctor_id: Optional[str]
    type: str
    content: Dict[str, Any]
    diagnosis: Optional[str]
    treatment: Optional[str]
    notes: Optional[str]
    visit_date: dt.date
    created_by: str
    created_at: dt.datetime


class AlertResponse(BaseModel):
    type: str
    message: str
    severity: str


class VitalSignsResponse(BaseModel):
    record: RecordResponse
    alerts: List[AlertResponse]


# ── Vital signs ─────────────────────────────────────────────────────────────

@router.post(
    "/patients/{patient_id}/vital-signs",
    response_model=VitalSignsResponse,
    status_code=status.HTTP_201_CREATED,
)
def record_vital_signs(
    patient_id: str,
    body: VitalSignsRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(_staff),
):
    record, alerts = medical_record_service.record_vital_signs(
        db, current_user, patient_id, body.model_dump(exclude_none=True)
    )
    return {"record": record, "alerts": [a.to_dict() for a in alerts]}


@router.get("/patients/{patient_id}/vital-signs", response_model=List[VitalSignsResponse])
def vital_signs_history(
    patient_id: str,
    days: int = Query(7, ge=1, le=365),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_patient_access(current_user, patient_id)
    history = medical_record_service.vital_signs_history(db, patient_id, days=days)
    return [{"record": r, "alerts": [a.to_dict() for a in alerts]} for r, alerts in history]


# ── Medication administration ───────────────────────────────────────────────

@router.post("/patients/{patient_id}/medications", status_code=status.HTTP_201_CREATED)
def record_medication(
    patient_id: str,
    body: MedicationRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(_staff),
):
    record = medical_record_service.record_medication(
        db, current_user, patient_id, body.model_dump(mode="json", exclude_none=True)
    )
    return {"message": "Medication administration recorded", "record": RecordResponse.model_validate(record)}


# ── Care tasks ──────────────────────────────────────────────────────────────

@router.post("/patients/{patient_id}/tasks", status_code=status.HTTP_201_CREATED)
def create_task(
    patient_id: str,
    body: TaskCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(_staff),
):
    record = medical_record_service.create_task(
        db, current_user, patient_id, body.model_dump(mode="json", exclude_none=True)
    )
    return {"message": "Care task created", "task": RecordResponse.model_validate(record)}


@router.post("/tasks/{record_id}/complete")
def complete_task(
    record_id: str,
    body: TaskCompletion,
    db: Session = Depends(get_db),
    current_user: User = Depends(_staff),
):
    record = medical_record_service.complete_task(
        db, current_user, record_id,
        completion_notes=body.completion_notes,
        actual_duration=body.actual_duration,
    )
    return {"message": "Task completed", "task": RecordResponse.model_validate(record)}


# ── General records ─────────────────────────────────────────────────────────

@router.post("/patients/{patient_id}/records", response_model=RecordResponse, status_code=status.HTTP_201_CREATED)
def create_general_record(
    patient_id: str,
    body: GeneralRecordCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(PERM_CREATE_MEDICAL_RECORDS)),
):
    return medical_record_service.create_general_record(
        db, current_user, patient_id, body.model_dump(exclude_none=True)
    )


@router.get("/patients/{patient_id}/records", response_model=List[RecordResponse])
def list_records(
    patient_id: str,
    record_type: Optional[str] = Query(None, alias="type"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_patient_access(current_user, patient_id)
    return medical_record_service.list_records(db, patient_id, record_type)


@router.get("/records/{record_id}", response_model=RecordResponse)
def get_record(
    record_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    record = medical_record_service.get_record(db, record_id)
    require_patient_access(current_user, record.patient_id)
    return record
