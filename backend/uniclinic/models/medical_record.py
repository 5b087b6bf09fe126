from sqlalchemy import Column, String, Date, Text, JSON, ForeignKey
from .base import Base, TimestampMixin, generate_uuid


class RecordType:
    VITAL_SIGNS = "vital_signs"
    MEDICATION = "medication"
    TASK = "task"
    GENERAL = "general"

    ALL = [VITAL_SIGNS, MEDICATION, TASK, GENERAL]


class MedicalRecord(Base, TimestampMixin):
    """Append-only clinical note. ``content`` is validated per ``type``."""
    __tablename__ = "medical_records"

    id = Column(String, primary_key=True, default=generate_uuid)
    patient_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    type = Column(String(20), nullable=False, default=RecordType.GENERAL, index=True)
    content = Column(JSON, nullable=False, default=dict)
    diagnosis = Column(Text, nullable=True)
    treatment = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    visit_date = Column(Date, nullable=False)
    created_by = Column(String, ForeignKey("users.id"), nullable=False)
