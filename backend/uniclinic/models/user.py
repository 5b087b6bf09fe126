"""
Users are stored in one ``users`` table but mapped as one class per role
(single-table inheritance keyed on ``role``). Each variant declares only the
columns that belong to it, so a Student can never carry a licence number and
a Doctor can never point at a doctor of its own.
"""
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey
from sqlalchemy.orm import declared_attr, mapped_column
from .base import Base, TimestampMixin, generate_uuid


class UserRole:
    STUDENT = "student"
    DOCTOR = "doctor"
    CLINICAL_STAFF = "clinical_staff"
    ACADEMIC_STAFF = "academic_staff"
    ADMIN = "admin"

    ALL = [STUDENT, DOCTOR, CLINICAL_STAFF, ACADEMIC_STAFF, ADMIN]
    PATIENT_ROLES = (STUDENT, ACADEMIC_STAFF)
    STAFF_ROLES = (DOCTOR, CLINICAL_STAFF, ADMIN)


class UserStatus:
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING_VERIFICATION = "pending_verification"
    SUSPENDED = "suspended"

    ALL = [ACTIVE, INACTIVE, PENDING_VERIFICATION, SUSPENDED]
    # States an administrator may put an account into
    ADMIN_SETTABLE = (ACTIVE, INACTIVE, SUSPENDED)


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, index=True)
    status = Column(String(30), nullable=False, default=UserStatus.ACTIVE)
    phone = Column(String(20), nullable=True)
    email_verified_at = Column(DateTime, nullable=True)
    custom_permissions = Column(JSON, nullable=False, default=list)
    deleted_at = Column(DateTime, nullable=True)

    __mapper_args__ = {"polymorphic_on": role}

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    @property
    def is_verified(self) -> bool:
        return self.email_verified_at is not None

    @property
    def is_patient(self) -> bool:
        return self.role in UserRole.PATIENT_ROLES

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id} email={self.email}>"


# Shared role columns. ``use_existing_column`` lets several variants map the
# same physical column of the single users table.

def _department():
    return mapped_column(String(100), nullable=True, use_existing_column=True)


def _staff_no():
    return mapped_column(String(20), unique=True, nullable=True, use_existing_column=True)


class PatientMixin:
    """Columns for users who can be assigned to a doctor."""

    @declared_attr
    def doctor_id(cls):
        return mapped_column(
            String, ForeignKey("users.id"), nullable=True, index=True, use_existing_column=True
        )


class Student(PatientMixin, User):
    student_id = mapped_column(String(20), unique=True, nullable=True)
    department = _department()

    __mapper_args__ = {"polymorphic_identity": UserRole.STUDENT}


class Doctor(User):
    medical_license_number = mapped_column(String(50), unique=True, nullable=True)
    specialization = mapped_column(String(100), nullable=True)
    staff_no = _staff_no()

    __mapper_args__ = {"polymorphic_identity": UserRole.DOCTOR}


class ClinicalStaff(User):
    staff_no = _staff_no()
    department = _department()

    __mapper_args__ = {"polymorphic_identity": UserRole.CLINICAL_STAFF}


class AcademicStaff(PatientMixin, User):
    staff_no = _staff_no()
    faculty = mapped_column(String(100), nullable=True)
    department = _department()

    __mapper_args__ = {"polymorphic_identity": UserRole.ACADEMIC_STAFF}


class Admin(User):
    staff_no = _staff_no()

    __mapper_args__ = {"polymorphic_identity": UserRole.ADMIN}


ROLE_MODELS = {
    UserRole.STUDENT: Student,
    UserRole.DOCTOR: Doctor,
    UserRole.CLINICAL_STAFF: ClinicalStaff,
    UserRole.ACADEMIC_STAFF: AcademicStaff,
    UserRole.ADMIN: Admin,
}

PATIENT_MODELS = (Student, AcademicStaff)
