from sqlalchemy import Column, String, Integer, Text, ForeignKey
from sqlalchemy.orm import relationship
from .base import Base, TimestampMixin, generate_uuid


class PrescriptionStatus:
    ACTIVE = "active"
    DISCONTINUED = "discontinued"
    COMPLETED = "completed"

    ALL = [ACTIVE, DISCONTINUED, COMPLETED]


class Prescription(Base, TimestampMixin):
    __tablename__ = "prescriptions"

    id = Column(String, primary_key=True, default=generate_uuid)
    patient_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    diagnosis = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=PrescriptionStatus.ACTIVE)

    medications = relationship(
        "Medication",
        back_populates="prescription",
        cascade="all, delete-orphan",
        order_by="Medication.position",
    )


class Medication(Base, TimestampMixin):
    __tablename__ = "medications"

    id = Column(String, primary_key=True, default=generate_uuid)
    prescription_id = Column(String, ForeignKey("prescriptions.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    name = Column(String(255), nullable=False)
    dosage = Column(String(100), nullable=False)
    frequency = Column(String(50), nullable=True)  # daily, twice_daily, weekly, as_needed
    duration = Column(String(100), nullable=True)  # e.g. "7 days"
    instructions = Column(Text, nullable=True)
    refills = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=PrescriptionStatus.ACTIVE)

    prescription = relationship("Prescription", back_populates="medications")
