import datetime as dt
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict

from ..models.base import get_db
from ..models.user import User
from ..core.security import get_current_user, require_patient_access
from ..services.medical_cards import MedicalCardPayload, medical_card_service

router = APIRouter(prefix="/patients", tags=["medical-cards"])


class MedicalCardResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    emergency_contact: Dict[str, Any]
    medical_history: Optional[List[Any]]
    current_medications: Optional[List[Any]]
    allergies: Optional[List[Any]]
    previous_conditions: Optional[List[Any]]
    family_history: Optional[List[Any]]
    insurance_info: Optional[Dict[str, Any]]
    updated_by: Optional[str]
    updated_at: dt.datetime


@router.put("/{patient_id}/medical-card", response_model=MedicalCardResponse)
def upsert_medical_card(
    patient_id: str,
    body: MedicalCardPayload,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_patient_access(current_user, patient_id)
    return medical_card_service.upsert_medical_card(
        db, current_user, patient_id, body.model_dump(mode="json", exclude_unset=True)
    )


@router.get("/{patient_id}/medical-card", response_model=MedicalCardResponse)
def get_medical_card(
    patient_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_patient_access(current_user, patient_id)
    return medical_card_service.get_medical_card(db, patient_id)
