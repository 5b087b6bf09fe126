"""Tests for registration, projection and the account lifecycle."""
from datetime import date, time, timedelta
from unittest import mock

import pytest
from sqlalchemy.exc import OperationalError

from uniclinic.core.security import verify_password
from uniclinic.exceptions import (
    DomainNotAllowed,
    DuplicateKey,
    Forbidden,
    MissingRequiredField,
    NotFound,
    PrecedingReassignmentRequired,
    ValidationError,
)
from uniclinic.models.appointment import Appointment
from uniclinic.models.audit_log import AuditLog
from uniclinic.models.user import Student, User, UserRole, UserStatus
from uniclinic.services.assignments import assignment_registry
from uniclinic.services.identity import identity_service


def _register(db, role=UserRole.STUDENT, email="alice@university.edu", **attributes):
    if role == UserRole.STUDENT and not attributes:
        attributes = {"student_id": "S-100", "department": "Physics"}
    return identity_service.register(
        db, role=role, email=email, name="Alice", password="s3cretpass", attributes=attributes
    )


class TestRegistration:
    def test_student_with_university_domain(self, db):
        user = _register(db)
        assert isinstance(user, Student)
        assert user.status == UserStatus.ACTIVE
        assert user.email_verified_at is not None
        assert user.student_id == "S-100"
        assert verify_password("s3cretpass", user.password_hash)

    def test_student_with_public_domain(self, db):
        with pytest.raises(DomainNotAllowed) as exc_info:
            _register(db, email="a@gmail.com")
        assert "email" in exc_info.value.errors

    def test_doctor_may_use_any_domain(self, db):
        user = _register(
            db, role=UserRole.DOCTOR, email="house@gmail.com",
            medical_license_number="LIC-1", specialization="Diagnostics",
        )
        assert user.role == UserRole.DOCTOR

    def test_missing_role_fields(self, db):
        with pytest.raises(MissingRequiredField) as exc_info:
            _register(db, role=UserRole.DOCTOR, email="d@clinic.org", specialization="Cardiology")
        assert list(exc_info.value.errors) == ["medical_license_number"]

    def test_collects_every_problem(self, db):
        with pytest.raises(ValidationError) as exc_info:
            identity_service.register(
                db, role=UserRole.STUDENT, email="a@gmail.com", name="",
                password="short", attributes={"department": "Physics"},
            )
        assert set(exc_info.value.errors) == {"name", "password", "email", "student_id"}

    def test_unknown_role(self, db):
        with pytest.raises(ValidationError) as exc_info:
            _register(db, role="janitor", staff_no="J-1")
        assert "role" in exc_info.value.errors

    def test_other_roles_attributes_are_dropped(self, db):
        user = _register(
            db, student_id="S-200", department="Maths",
            medical_license_number="LIC-X", faculty="Science",
        )
        assert not hasattr(user, "medical_license_number")
        assert "medical_license_number" not in identity_service.project(user)

    def test_duplicate_email(self, db):
        _register(db)
        with pytest.raises(DuplicateKey) as exc_info:
            _register(db, student_id="S-101", department="Physics")
        assert exc_info.value.field == "email"

    def test_duplicate_student_id(self, db):
        _register(db)
        with pytest.raises(DuplicateKey) as exc_info:
            _register(db, email="bob@university.edu", student_id="S-100", department="Physics")
        assert exc_info.value.field == "student_id"

    def test_duplicate_staff_no_across_roles(self, db, make_user):
        make_user(UserRole.CLINICAL_STAFF, staff_no="SHARED-1")
        with pytest.raises(DuplicateKey) as exc_info:
            _register(db, role=UserRole.ADMIN, email="root@clinic.org", staff_no="SHARED-1")
        assert exc_info.value.field == "staff_no"


class TestProjection:
    def test_base_and_role_fields(self, make_user):
        doctor = make_user(UserRole.DOCTOR, specialization="Cardiology", staff_no=None)
        data = identity_service.project(doctor)
        assert data["specialization"] == "Cardiology"
        assert "staff_no" not in data
        assert "permissions" not in data
        assert "custom_permissions" not in data
        assert "password_hash" not in data

    def test_patient_projection_hides_doctor(self, make_user):
        doctor = make_user(UserRole.DOCTOR)
        student = make_user(UserRole.STUDENT, doctor_id=doctor.id)
        assert "doctor_id" not in identity_service.project(student)

    def test_full_title(self, make_user):
        doctor = make_user(UserRole.DOCTOR, name="Grey", specialization="Surgery")
        student = make_user(UserRole.STUDENT, name="Sam", department="Law")
        lecturer = make_user(UserRole.ACADEMIC_STAFF, name="Lee", faculty="Arts")
        assert identity_service.full_title(doctor) == "Dr. Grey (Surgery)"
        assert identity_service.full_title(student) == "Sam - Law"
        assert identity_service.full_title(lecturer) == "Lee - Arts"

    def test_resolve_permissions(self, make_user):
        admin = make_user(UserRole.ADMIN, custom_permissions=["x"])
        nurse = make_user(UserRole.CLINICAL_STAFF, custom_permissions=["prescribe_medication"])
        assert identity_service.resolve_permissions(admin) == {"full_access"}
        assert "prescribe_medication" in identity_service.resolve_permissions(nurse)


class TestLifecycle:
    def test_verify_email_activates_pending(self, db, make_user):
        user = make_user(UserRole.STUDENT, status=UserStatus.PENDING_VERIFICATION)
        verified = identity_service.verify_email(db, user.email)
        assert verified.status == UserStatus.ACTIVE
        assert verified.email_verified_at is not None

    def test_verify_email_unknown(self, db):
        with pytest.raises(NotFound):
            identity_service.verify_email(db, "ghost@university.edu")

    def test_set_status_writes_audit(self, db, make_user):
        admin = make_user(UserRole.ADMIN)
        student = make_user(UserRole.STUDENT)
        identity_service.set_status(db, admin, student.id, UserStatus.SUSPENDED, reason="abuse")
        assert student.status == UserStatus.SUSPENDED
        log = db.query(AuditLog).filter(AuditLog.action == "user_status_update").one()
        assert log.changes["new_status"] == UserStatus.SUSPENDED

    def test_set_status_rejects_pending(self, db, make_user):
        admin = make_user(UserRole.ADMIN)
        student = make_user(UserRole.STUDENT)
        with pytest.raises(ValidationError):
            identity_service.set_status(db, admin, student.id, UserStatus.PENDING_VERIFICATION)

    def test_set_custom_permissions(self, db, make_user):
        admin = make_user(UserRole.ADMIN)
        nurse = make_user(UserRole.CLINICAL_STAFF)
        identity_service.set_custom_permissions(db, admin, nurse.id, ["b", "a", "a", " "])
        assert nurse.custom_permissions == ["a", "b"]


class TestDeleteUser:
    def test_admin_cannot_delete_self(self, db, make_user):
        admin = make_user(UserRole.ADMIN)
        with pytest.raises(Forbidden):
            identity_service.delete_user(db, admin, admin.id)

    def test_deleting_doctor_unassigns_patients(self, db, make_user):
        admin = make_user(UserRole.ADMIN)
        doctor = make_user(UserRole.DOCTOR)
        students = [make_user(UserRole.STUDENT, doctor_id=doctor.id) for _ in range(2)]
        lecturer = make_user(UserRole.ACADEMIC_STAFF, doctor_id=doctor.id)

        info = identity_service.delete_user(db, admin, doctor.id)

        assert info["patients_unassigned"] == 3
        assert db.get(User, doctor.id) is None
        for patient in students + [lecturer]:
            db.refresh(patient)
            assert patient.doctor_id is None
        assignment_registry.check_invariant(db)

    def test_soft_delete(self, db, make_user):
        admin = make_user(UserRole.ADMIN)
        student = make_user(UserRole.STUDENT)
        identity_service.delete_user(db, admin, student.id, soft=True)
        stored = identity_service.get_user(db, student.id, include_deleted=True)
        assert stored.deleted_at is not None
        assert stored.status == UserStatus.INACTIVE
        with pytest.raises(NotFound):
            identity_service.get_user(db, student.id)

    def test_failed_unassign_rolls_back(self, db, make_user):
        admin = make_user(UserRole.ADMIN)
        doctor = make_user(UserRole.DOCTOR)
        student = make_user(UserRole.STUDENT, doctor_id=doctor.id)

        with mock.patch.object(
            assignment_registry, "unassign_all", side_effect=OperationalError("UPDATE", {}, Exception("locked"))
        ):
            with pytest.raises(PrecedingReassignmentRequired):
                identity_service.delete_user(db, admin, doctor.id)

        assert db.get(User, doctor.id) is not None
        db.refresh(student)
        assert student.doctor_id == doctor.id

    def test_failed_commit_after_unassign_rolls_back(self, db, make_user):
        """Patients already unassigned in the session are restored when the commit fails."""
        admin = make_user(UserRole.ADMIN)
        doctor = make_user(UserRole.DOCTOR)
        patients = [
            make_user(UserRole.STUDENT, doctor_id=doctor.id),
            make_user(UserRole.ACADEMIC_STAFF, doctor_id=doctor.id),
        ]
        failure = OperationalError("COMMIT", {}, Exception("disk I/O error"))

        with mock.patch.object(db, "commit", side_effect=failure):
            with pytest.raises(OperationalError) as exc_info:
                identity_service.delete_user(db, admin, doctor.id)
        assert exc_info.value is failure

        assert db.get(User, doctor.id) is not None
        for patient in patients:
            db.refresh(patient)
            assert patient.doctor_id == doctor.id
        assert db.query(AuditLog).filter(AuditLog.action == "user_deletion").count() == 0

    def test_hard_delete_refused_while_referenced(self, db, make_user):
        admin = make_user(UserRole.ADMIN)
        doctor = make_user(UserRole.DOCTOR)
        student = make_user(UserRole.STUDENT, doctor_id=doctor.id)
        db.add(Appointment(
            patient_id=student.id, doctor_id=doctor.id,
            date=date.today() + timedelta(days=1), time=time(9), reason="Follow-up",
        ))
        db.commit()

        assert identity_service.clinical_references(db, doctor.id) == {"appointments": 1}
        with pytest.raises(PrecedingReassignmentRequired) as exc_info:
            identity_service.delete_user(db, admin, doctor.id)
        assert exc_info.value.details == {"references": {"appointments": 1}}
        assert db.get(User, doctor.id) is not None
        db.refresh(student)
        assert student.doctor_id == doctor.id

    def test_soft_delete_allowed_while_referenced(self, db, make_user):
        admin = make_user(UserRole.ADMIN)
        doctor = make_user(UserRole.DOCTOR)
        student = make_user(UserRole.STUDENT)
        db.add(Appointment(
            patient_id=student.id, doctor_id=doctor.id,
            date=date.today() + timedelta(days=1), time=time(9), reason="Follow-up",
        ))
        db.commit()

        identity_service.delete_user(db, admin, doctor.id, soft=True)
        assert identity_service.get_user(db, doctor.id, include_deleted=True).deleted_at is not None

    def test_delete_unknown_user(self, db, make_user):
        admin = make_user(UserRole.ADMIN)
        with pytest.raises(NotFound):
            identity_service.delete_user(db, admin, "missing")
