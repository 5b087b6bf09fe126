"""Registration and email verification endpoints."""
from typing import Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from pydantic import BaseModel

from ..models.base import get_db
from ..models.user import UserRole
from ..core.permissions import ALL_ROLE_FIELDS
from ..core.security import require_role
from ..services.identity import identity_service

router = APIRouter(prefix="/auth", tags=["auth"])


# ── Request / Response schemas ──────────────────────────────────────────────

class RegisterRequest(BaseModel):
    role: str
    email: str
    name: str
    password: str
    phone: Optional[str] = None
    # Role attributes; only the ones belonging to ``role`` are kept
    student_id: Optional[str] = None
    department: Optional[str] = None
    medical_license_number: Optional[str] = None
    specialization: Optional[str] = None
    staff_no: Optional[str] = None
    faculty: Optional[str] = None


class RegisterResponse(BaseModel):
    message: str = "User registered successfully"
    user_id: str
    role: str
    status: str


class VerifyEmailRequest(BaseModel):
    email: str


# ── Endpoints ───────────────────────────────────────────────────────────────

@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(body: RegisterRequest, db: Session = Depends(get_db)):
    attributes = {
        field: getattr(body, field)
        for field in ALL_ROLE_FIELDS
        if getattr(body, field, None) is not None
    }
    user = identity_service.register(
        db,
        role=body.role,
        email=body.email,
        name=body.name,
        password=body.password,
        phone=body.phone,
        attributes=attributes,
    )
    return RegisterResponse(user_id=user.id, role=user.role, status=user.status)


@router.post("/verify-email")
def verify_email(
    body: VerifyEmailRequest,
    db: Session = Depends(get_db),
    _admin=Depends(require_role(UserRole.ADMIN)),
):
    user = identity_service.verify_email(db, body.email)
    return {"message": "Email verified", "user": identity_service.project(user)}
