"""HTTP contract tests through the FastAPI app."""
from datetime import date, timedelta

import pytest

from uniclinic.core.audit_middleware import audited_resource
from uniclinic.models.appointment import Appointment, AppointmentStatus
from uniclinic.models.audit_log import AuditLog
from uniclinic.models.user import UserRole

API = "/api/v1"
TOMORROW = (date.today() + timedelta(days=1)).isoformat()


@pytest.fixture()
def people(make_user):
    return {
        "doctor": make_user(UserRole.DOCTOR),
        "other_doctor": make_user(UserRole.DOCTOR),
        "student": make_user(UserRole.STUDENT),
        "nurse": make_user(UserRole.CLINICAL_STAFF),
        "admin": make_user(UserRole.ADMIN),
    }


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"


class TestRegistration:
    def test_register_student(self, client):
        resp = client.post(f"{API}/auth/register", json={
            "role": "student", "email": "a@university.edu", "name": "Ada",
            "password": "longenough", "student_id": "S-1", "department": "Maths",
        })
        assert resp.status_code == 201
        body = resp.json()
        assert body["role"] == "student"
        assert body["status"] == "active"
        assert body["user_id"]

    def test_register_student_public_domain(self, client):
        resp = client.post(f"{API}/auth/register", json={
            "role": "student", "email": "a@gmail.com", "name": "Ada",
            "password": "longenough", "student_id": "S-1", "department": "Maths",
        })
        assert resp.status_code == 422
        assert "email" in resp.json()["errors"]

    def test_register_missing_body_fields(self, client):
        resp = client.post(f"{API}/auth/register", json={"role": "doctor"})
        assert resp.status_code == 422
        assert {"email", "name", "password"} <= set(resp.json()["errors"])


class TestProfile:
    def test_requires_token(self, client):
        assert client.get(f"{API}/users/me").status_code == 401

    def test_me_includes_permissions(self, client, people, auth_headers):
        resp = client.get(f"{API}/users/me", headers=auth_headers(people["doctor"]))
        assert resp.status_code == 200
        body = resp.json()
        assert "prescribe_medication" in body["permissions"]
        assert body["medical_license_number"] == body["display_identifier"]
        assert body["full_title"].startswith("Dr. ")

    def test_suspended_user_rejected(self, client, make_user, auth_headers):
        user = make_user(UserRole.STUDENT, status="suspended")
        assert client.get(f"{API}/users/me", headers=auth_headers(user)).status_code == 403

    def test_admin_only_listing(self, client, people, auth_headers):
        assert client.get(f"{API}/users", headers=auth_headers(people["nurse"])).status_code == 403
        resp = client.get(f"{API}/users", params={"role": "doctor"}, headers=auth_headers(people["admin"]))
        assert resp.status_code == 200
        assert len(resp.json()) == 2

    def test_admin_deletes_doctor(self, client, db, people, make_user, auth_headers):
        make_user(UserRole.STUDENT, doctor_id=people["other_doctor"].id)
        resp = client.delete(
            f"{API}/users/{people['other_doctor'].id}", headers=auth_headers(people["admin"])
        )
        assert resp.status_code == 200
        assert resp.json()["deleted_user"]["patients_unassigned"] == 1

    def test_admin_cannot_delete_self(self, client, people, auth_headers):
        resp = client.delete(f"{API}/users/{people['admin'].id}", headers=auth_headers(people["admin"]))
        assert resp.status_code == 403


class TestAssignments:
    def test_assign_and_list(self, client, people, auth_headers):
        headers = auth_headers(people["admin"])
        resp = client.post(f"{API}/assignments", headers=headers, json={
            "doctor_id": people["doctor"].id, "patient_id": people["student"].id,
        })
        assert resp.status_code == 200
        assert resp.json()["patient"]["id"] == people["student"].id

        resp = client.get(
            f"{API}/assignments/{people['doctor'].id}/patients", headers=auth_headers(people["doctor"])
        )
        assert [p["id"] for p in resp.json()["patients"]] == [people["student"].id]

    def test_assign_non_doctor_is_400(self, client, people, auth_headers):
        resp = client.post(f"{API}/assignments", headers=auth_headers(people["admin"]), json={
            "doctor_id": people["nurse"].id, "patient_id": people["student"].id,
        })
        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_ROLE"

    def test_remove_missing_assignment_is_404(self, client, people, auth_headers):
        resp = client.delete(
            f"{API}/assignments/{people['doctor'].id}/{people['student'].id}",
            headers=auth_headers(people["admin"]),
        )
        assert resp.status_code == 404


class TestAppointments:
    def _create(self, client, people, auth_headers):
        resp = client.post(f"{API}/appointments", headers=auth_headers(people["nurse"]), json={
            "patient_id": people["student"].id, "doctor_id": people["doctor"].id,
            "date": TOMORROW, "time": "09:30", "reason": "Check-up",
        })
        assert resp.status_code == 201
        return resp.json()

    def test_clinical_staff_reassign_rejected(self, client, db, people, auth_headers):
        appt = self._create(client, people, auth_headers)
        resp = client.put(
            f"{API}/appointments/{appt['id']}",
            headers=auth_headers(people["nurse"]),
            json={"doctor_id": people["other_doctor"].id},
        )
        assert resp.status_code == 403
        assert resp.json()["error_code"] == "INVALID_UPDATE"
        stored = db.get(Appointment, appt["id"])
        assert stored.doctor_id == people["doctor"].id

    @pytest.mark.parametrize("body", [
        {"doctor_id": 7},
        {"patient_id": None},
        {"doctor_id": "someone", "date": "not-a-date"},
        {"patient_id": "someone", "colour": "blue"},
    ])
    def test_clinical_staff_reassign_rejected_before_body_checks(self, client, db, people, auth_headers, body):
        appt = self._create(client, people, auth_headers)
        resp = client.put(
            f"{API}/appointments/{appt['id']}", headers=auth_headers(people["nurse"]), json=body,
        )
        assert resp.status_code == 403
        assert resp.json()["error_code"] == "INVALID_UPDATE"
        stored = db.get(Appointment, appt["id"])
        assert stored.doctor_id == people["doctor"].id
        assert stored.patient_id == people["student"].id

    def test_admin_reassign_still_validated(self, client, people, auth_headers):
        appt = self._create(client, people, auth_headers)
        resp = client.put(
            f"{API}/appointments/{appt['id']}", headers=auth_headers(people["admin"]), json={"doctor_id": 7},
        )
        assert resp.status_code == 422

    def test_put_date_move_marks_rescheduled(self, client, people, auth_headers):
        appt = self._create(client, people, auth_headers)
        new_date = (date.today() + timedelta(days=5)).isoformat()
        resp = client.put(
            f"{API}/appointments/{appt['id']}", headers=auth_headers(people["nurse"]), json={"date": new_date},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == AppointmentStatus.RESCHEDULED

    def test_status_flow_and_illegal_transition(self, client, people, auth_headers):
        appt = self._create(client, people, auth_headers)
        url = f"{API}/appointments/{appt['id']}/status"
        headers = auth_headers(people["doctor"])
        assert client.post(url, headers=headers, json={"status": "confirmed"}).status_code == 200
        resp = client.post(url, headers=headers, json={"status": "scheduled"})
        assert resp.status_code == 409
        assert resp.json()["error_code"] == "INVALID_TRANSITION"

    def test_patient_sees_only_own(self, client, people, make_user, auth_headers):
        self._create(client, people, auth_headers)
        other = make_user(UserRole.STUDENT)
        resp = client.get(
            f"{API}/appointments", params={"patient_id": people["student"].id}, headers=auth_headers(other)
        )
        assert resp.json() == []

    def test_reschedule(self, client, people, auth_headers):
        appt = self._create(client, people, auth_headers)
        new_date = (date.today() + timedelta(days=3)).isoformat()
        resp = client.post(
            f"{API}/appointments/{appt['id']}/reschedule",
            headers=auth_headers(people["student"]),
            json={"date": new_date, "time": "15:00"},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == AppointmentStatus.RESCHEDULED
        assert resp.json()["date"] == new_date


class TestRecords:
    def test_vital_signs_with_alerts(self, client, people, auth_headers):
        resp = client.post(
            f"{API}/patients/{people['student'].id}/vital-signs",
            headers=auth_headers(people["nurse"]),
            json={"temperature": 38.1, "temperature_unit": "C", "oxygen_saturation": 92},
        )
        assert resp.status_code == 201
        body = resp.json()
        assert [a["type"] for a in body["alerts"]] == ["fever", "low_oxygen"]
        assert body["record"]["type"] == "vital_signs"

    def test_vital_signs_out_of_range(self, client, people, auth_headers):
        resp = client.post(
            f"{API}/patients/{people['student'].id}/vital-signs",
            headers=auth_headers(people["nurse"]),
            json={"heart_rate": 20, "temperature_unit": "F"},
        )
        assert resp.status_code == 422
        assert "heart_rate" in resp.json()["errors"]

    def test_patient_cannot_record_vitals(self, client, people, auth_headers):
        resp = client.post(
            f"{API}/patients/{people['student'].id}/vital-signs",
            headers=auth_headers(people["student"]),
            json={"heart_rate": 70, "temperature_unit": "F"},
        )
        assert resp.status_code == 403

    def test_vital_history_visible_to_patient(self, client, people, auth_headers):
        client.post(
            f"{API}/patients/{people['student'].id}/vital-signs",
            headers=auth_headers(people["nurse"]),
            json={"heart_rate": 130, "temperature_unit": "F"},
        )
        resp = client.get(
            f"{API}/patients/{people['student'].id}/vital-signs", headers=auth_headers(people["student"])
        )
        assert resp.status_code == 200
        assert resp.json()[0]["alerts"][0]["type"] == "tachycardia"

    def test_other_patient_forbidden(self, client, people, make_user, auth_headers):
        other = make_user(UserRole.STUDENT)
        resp = client.get(f"{API}/patients/{people['student'].id}/records", headers=auth_headers(other))
        assert resp.status_code == 403

    def test_task_completion(self, client, people, auth_headers):
        headers = auth_headers(people["nurse"])
        task = client.post(
            f"{API}/patients/{people['student'].id}/tasks", headers=headers,
            json={"description": "Check dressing", "priority": "low"},
        ).json()["task"]
        resp = client.post(f"{API}/tasks/{task['id']}/complete", headers=headers, json={"actual_duration": 10})
        assert resp.status_code == 200
        assert resp.json()["task"]["content"]["status"] == "completed"
        again = client.post(f"{API}/tasks/{task['id']}/complete", headers=headers, json={})
        assert again.status_code == 409

    def test_audit_log_written(self, client, db, people, auth_headers):
        client.get(f"{API}/patients/{people['student'].id}/records", headers=auth_headers(people["nurse"]))
        log = db.query(AuditLog).filter(AuditLog.resource_type == "patients").one()
        assert log.user_id == people["nurse"].id
        assert log.resource_id == people["student"].id
        assert log.action == "view"


class TestAuditedPaths:
    @pytest.mark.parametrize("path,expected", [
        ("/api/v1/patients/p1/vital-signs", ("patients", "p1")),
        ("/api/v1/appointments", ("appointments", "collection")),
        ("/api/v1/tasks/t9/complete", ("tasks", "t9")),
        ("/api/v1/users/me", None),
        ("/health", None),
    ])
    def test_audited_resource(self, path, expected):
        assert audited_resource(path) == expected

    def test_registration_not_audited(self, client, db):
        client.post(f"{API}/auth/register", json={"role": "admin"})
        assert db.query(AuditLog).count() == 0


class TestPrescriptionsAndCards:
    def test_conflict_is_409(self, client, people, auth_headers):
        headers = auth_headers(people["doctor"])
        payload = {
            "patient_id": people["student"].id,
            "medications": [{"name": "Amoxicillin", "dosage": "500mg"}],
        }
        assert client.post(f"{API}/prescriptions", headers=headers, json=payload).status_code == 201
        resp = client.post(f"{API}/prescriptions", headers=headers, json=payload)
        assert resp.status_code == 409
        assert resp.json()["details"]["duplicate_medications"] == ["Amoxicillin"]
        forced = client.post(f"{API}/prescriptions", headers=headers, json=dict(payload, force=True))
        assert forced.status_code == 201

    def test_nurse_cannot_prescribe(self, client, people, auth_headers):
        resp = client.post(f"{API}/prescriptions", headers=auth_headers(people["nurse"]), json={
            "patient_id": people["student"].id,
            "medications": [{"name": "Amoxicillin", "dosage": "500mg"}],
        })
        assert resp.status_code == 403

    def test_medical_card_round_trip(self, client, people, auth_headers):
        url = f"{API}/patients/{people['student'].id}/medical-card"
        headers = auth_headers(people["student"])
        assert client.get(url, headers=headers).status_code == 404
        resp = client.put(url, headers=headers, json={
            "emergency_contact": {"name": "Pat", "relationship": "Parent", "phone": "123"},
        })
        assert resp.status_code == 200
        assert client.get(url, headers=headers).json()["emergency_contact"]["name"] == "Pat"
