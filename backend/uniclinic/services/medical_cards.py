"""Patient medical cards: one per patient, created or replaced in place."""
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..exceptions import NotFound, ValidationError
from ..models.base import generate_uuid
from ..models.medical_card import MedicalCard
from ..models.user import User, UserRole
from .identity import identity_service

logger = logging.getLogger(__name__)


class EmergencyContact(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    relationship: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=1, max_length=20)
    email: Optional[str] = Field(None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class InsuranceInfo(BaseModel):
    provider: Optional[str] = Field(None, max_length=255)
    policy_number: Optional[str] = Field(None, max_length=255)
    expiry: Optional[date] = None


class MedicalCardPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    emergency_contact: EmergencyContact
    medical_history: Optional[List[Any]] = None
    current_medications: Optional[List[Any]] = None
    allergies: Optional[List[Any]] = None
    previous_conditions: Optional[List[Any]] = None
    family_history: Optional[List[Any]] = None
    insurance_info: Optional[InsuranceInfo] = None


class MedicalCardService:

    def upsert_medical_card(self, db: Session, actor: User, patient_id: str, payload: Dict) -> MedicalCard:
        patient = identity_service.get_user_with_role(db, patient_id, UserRole.PATIENT_ROLES, "patient")
        try:
            data = MedicalCardPayload.model_validate(payload).model_dump(mode="json")
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(exc) from exc

        card = db.query(MedicalCard).filter(MedicalCard.user_id == patient.id).first()
        created = card is None
        if created:
            card = MedicalCard(id=generate_uuid(), user_id=patient.id)
            db.add(card)
        for field, value in data.items():
            setattr(card, field, value)
        card.updated_by = actor.id

        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        db.refresh(card)
        logger.info("Medical card for %s %s by %s", patient.id, "created" if created else "updated", actor.id)
        return card

    def get_medical_card(self, db: Session, patient_id: str) -> MedicalCard:
        card = db.query(MedicalCard).filter(MedicalCard.user_id == patient_id).first()
        if card is None:
            raise NotFound(f"No medical card for patient {patient_id}")
        return card


medical_card_service = MedicalCardService()
