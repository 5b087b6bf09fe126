"""
Demo data seeder for UniClinic.

Creates one account per role with known credentials and assigns the demo
student to the demo doctor, so the walkthrough works right after a fresh
start.

Credentials (logged on first run):
  Admin         : admin@uniclinic.demo     / Admin1234!
  Doctor        : doctor@uniclinic.demo    / Doctor1234!
  Clinical staff: nurse@uniclinic.demo     / Nurse1234!
  Student       : student@university.edu   / Student1234!

This seeder is idempotent and safe to call on every startup.
"""
import logging
from datetime import datetime

from .models.base import SessionLocal, Base, engine, generate_uuid
from .models.user import Admin, ClinicalStaff, Doctor, Student, User, UserStatus
from .core.security import get_password_hash

logger = logging.getLogger(__name__)

DEMO_ADMIN_EMAIL = "admin@uniclinic.demo"
DEMO_ADMIN_PASSWORD = "Admin1234!"

DEMO_DOCTOR_EMAIL = "doctor@uniclinic.demo"
DEMO_DOCTOR_PASSWORD = "Doctor1234!"
DEMO_DOCTOR_LICENSE = "DEMO-LIC-001"

DEMO_NURSE_EMAIL = "nurse@uniclinic.demo"
DEMO_NURSE_PASSWORD = "Nurse1234!"

DEMO_STUDENT_EMAIL = "student@university.edu"
DEMO_STUDENT_PASSWORD = "Student1234!"
DEMO_STUDENT_ID = "DEMO-STU-001"


def seed_demo_data() -> None:
    """Create the demo accounts and the demo assignment if they do not already exist."""
    # Ensure tables exist (no-op when already created at startup)
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        _seed_user(db, Admin, DEMO_ADMIN_EMAIL, DEMO_ADMIN_PASSWORD,
                   name="Demo Admin", staff_no="ADM-001")
        doctor = _seed_user(db, Doctor, DEMO_DOCTOR_EMAIL, DEMO_DOCTOR_PASSWORD,
                            name="Demo Doctor", medical_license_number=DEMO_DOCTOR_LICENSE,
                            specialization="General Practice", staff_no="DOC-001")
        _seed_user(db, ClinicalStaff, DEMO_NURSE_EMAIL, DEMO_NURSE_PASSWORD,
                   name="Demo Nurse", staff_no="NUR-001", department="Outpatients")
        student = _seed_user(db, Student, DEMO_STUDENT_EMAIL, DEMO_STUDENT_PASSWORD,
                             name="Demo Student", student_id=DEMO_STUDENT_ID, department="Computer Science")
        _seed_assignment(db, doctor, student)
    finally:
        db.close()


# ── helpers ──────────────────────────────────────────────────────────────────

def _seed_user(db, model, email: str, password: str, **fields) -> User:
    user = db.query(User).filter(User.email == email).first()
    if user:
        return user
    user = model(
        id=generate_uuid(),
        email=email,
        password_hash=get_password_hash(password),
        status=UserStatus.ACTIVE,
        email_verified_at=datetime.utcnow(),
        custom_permissions=[],
        **fields,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("[seed] Created demo %s: %s / %s", user.role, email, password)
    return user


def _seed_assignment(db, doctor: Doctor, student: Student) -> None:
    if student.doctor_id is None:
        student.doctor_id = doctor.id
        db.commit()
        logger.info("[seed] Assigned %s to %s", student.email, doctor.email)
