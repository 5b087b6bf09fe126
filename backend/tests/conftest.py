"""Shared fixtures: an isolated in-memory database per test and user factories."""
import itertools

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Import all models so every table is registered on Base.metadata
from uniclinic.models.base import Base, get_db, generate_uuid
from uniclinic.models.user import ROLE_MODELS, UserRole, UserStatus
import uniclinic.models.appointment  # noqa: F401
import uniclinic.models.medical_record  # noqa: F401
import uniclinic.models.prescription  # noqa: F401
import uniclinic.models.medical_card  # noqa: F401
import uniclinic.models.audit_log  # noqa: F401
from uniclinic.core.security import create_access_token

# Placeholder hash; tests that need a real bcrypt hash go through registration
FAKE_HASH = "$2b$12$abcdefghijklmnopqrstuuG9cTqYyEw0H3b6cGkdXxS8v9nZb1wQe"

_counter = itertools.count(1)


def _role_fields(role: str, n: int) -> dict:
    return {
        UserRole.STUDENT: {"student_id": f"STU-{n:04d}", "department": "Computer Science"},
        UserRole.DOCTOR: {"medical_license_number": f"LIC-{n:04d}", "specialization": "General Practice"},
        UserRole.CLINICAL_STAFF: {"staff_no": f"NUR-{n:04d}", "department": "Outpatients"},
        UserRole.ACADEMIC_STAFF: {"staff_no": f"ACA-{n:04d}", "faculty": "Engineering"},
        UserRole.ADMIN: {"staff_no": f"ADM-{n:04d}"},
    }[role]


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def make_user(db):
    """Factory: ``make_user(UserRole.DOCTOR, name="Dr X")`` persists and returns a user."""
    def _make(role: str, **overrides):
        n = next(_counter)
        fields = {
            "id": generate_uuid(),
            "name": f"{role.title()} {n}",
            "email": f"{role}{n}@university.edu",
            "password_hash": FAKE_HASH,
            "status": UserStatus.ACTIVE,
            "custom_permissions": [],
        }
        fields.update(_role_fields(role, n))
        fields.update(overrides)
        user = ROLE_MODELS[role](**fields)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture()
def client(session_factory):
    from uniclinic.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.session_factory = session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()
    del app.state.session_factory


@pytest.fixture()
def auth_headers():
    """Factory: bearer headers for a persisted user."""
    def _headers(user) -> dict:
        token = create_access_token({"sub": user.id, "role": user.role})
        return {"Authorization": f"Bearer {token}"}
    return _headers
