from sqlalchemy import Column, String, JSON, ForeignKey
from .base import Base, TimestampMixin, generate_uuid


class MedicalCard(Base, TimestampMixin):
    """One card per patient; created or updated in place, never deleted on its own."""
    __tablename__ = "medical_cards"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id"), unique=True, nullable=False, index=True)
    emergency_contact = Column(JSON, nullable=False)  # {name, relationship, phone, email?}
    medical_history = Column(JSON, nullable=True)
    current_medications = Column(JSON, nullable=True)
    allergies = Column(JSON, nullable=True)
    previous_conditions = Column(JSON, nullable=True)
    family_history = Column(JSON, nullable=True)
    insurance_info = Column(JSON, nullable=True)  # {provider, policy_number, expiry}
    updated_by = Column(String, ForeignKey("users.id"), nullable=True)
