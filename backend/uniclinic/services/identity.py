"""
Identity service: registration, permission resolution, role-aware projection
and the account lifecycle (verification, status changes, deletion).
"""
import logging
import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core import permissions as role_rules
from ..core.config import settings
from ..core.security import get_password_hash
from ..exceptions import (
    DomainNotAllowed,
    DuplicateKey,
    Forbidden,
    InvalidRole,
    InvalidTransition,
    MissingRequiredField,
    NotFound,
    PrecedingReassignmentRequired,
    ValidationError,
)
from ..models.appointment import Appointment
from ..models.audit_log import AuditLog
from ..models.base import generate_uuid
from ..models.medical_card import MedicalCard
from ..models.medical_record import MedicalRecord
from ..models.prescription import Prescription
from ..models.user import User, UserRole, UserStatus, ROLE_MODELS, Doctor, Student
from .assignments import assignment_registry

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

BASE_PROJECTION_FIELDS = (
    "id", "name", "email", "role", "phone", "status",
    "email_verified_at", "created_at", "updated_at",
)

# Unique role attributes and the variant that owns each column
_UNIQUE_ROLE_KEYS = (
    ("student_id", lambda: Student.student_id),
    ("medical_license_number", lambda: Doctor.medical_license_number),
    ("staff_no", lambda: User.__table__.c.staff_no),
)

# Tables whose rows point at a user; a hard delete must leave none behind
CLINICAL_MODELS = (Appointment, MedicalRecord, Prescription, MedicalCard)


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def email_domain(email: str) -> str:
    return email.rsplit("@", 1)[-1].lower()


class IdentityService:

    # ── Registration ─────────────────────────────────────────────────────────

    def register(
        self,
        db: Session,
        role: str,
        email: str,
        name: str,
        password: str,
        phone: Optional[str] = None,
        attributes: Optional[Dict] = None,
    ) -> User:
        """
        Validate and create a user of ``role``.
        All field problems are collected and raised together; unique-key
        collisions are checked only once the payload itself is valid.
        """
        attributes = attributes or {}
        email = (email or "").strip().lower()
        rule = role_rules.rule_for(role)
        errors: Dict[str, List[str]] = {}

        if rule is None:
            errors["role"] = [f"The selected role '{role}' is invalid."]
        if _is_blank(name):
            errors["name"] = ["The name field is required."]
        if not password or len(password) < settings.PASSWORD_MIN_LENGTH:
            errors["password"] = [
                f"The password must be at least {settings.PASSWORD_MIN_LENGTH} characters."
            ]

        domain_rejected = False
        if not EMAIL_PATTERN.match(email):
            errors["email"] = ["The email must be a valid email address."]
        elif role in UserRole.PATIENT_ROLES and email_domain(email) not in settings.UNIVERSITY_EMAIL_DOMAINS:
            domain_rejected = True

        missing = [f for f in rule.required if _is_blank(attributes.get(f))] if rule else []

        if domain_rejected and not errors and not missing:
            raise DomainNotAllowed(role)
        if missing and not errors and not domain_rejected:
            raise MissingRequiredField(missing, role)
        if domain_rejected:
            errors.update(DomainNotAllowed(role).errors)
        if missing:
            errors.update(MissingRequiredField(missing, role).errors)
        if errors:
            raise ValidationError(errors)

        role_values = {f: attributes[f] for f in rule.fields if not _is_blank(attributes.get(f))}
        ignored = set(attributes) - set(rule.fields)
        if ignored:
            logger.debug("Ignoring attributes %s not used by role %s", sorted(ignored), role)

        self._check_unique(db, email, role_values)

        now = datetime.utcnow()
        user = ROLE_MODELS[role](
            id=generate_uuid(),
            name=name.strip(),
            email=email,
            password_hash=get_password_hash(password),
            phone=phone,
            status=UserStatus.ACTIVE,
            email_verified_at=now,
            custom_permissions=[],
            **role_values,
        )
        db.add(user)
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        db.refresh(user)
        logger.info("Registered %s user %s", role, user.id)
        return user

    def _check_unique(self, db: Session, email: str, role_values: Dict) -> None:
        if db.query(User.id).filter(User.email == email).first():
            raise DuplicateKey("email")
        for field, column in _UNIQUE_ROLE_KEYS:
            value = role_values.get(field)
            if value is not None and db.query(User.id).filter(column() == value).first():
                raise DuplicateKey(field)

    # ── Lookups ──────────────────────────────────────────────────────────────

    def get_user(self, db: Session, user_id: str, include_deleted: bool = False) -> User:
        query = db.query(User).filter(User.id == user_id)
        if not include_deleted:
            query = query.filter(User.deleted_at.is_(None))
        user = query.first()
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    def get_user_with_role(self, db: Session, user_id: str, roles: Iterable[str], label: str) -> User:
        """Load a live user and check it holds one of ``roles``; ``label`` names it in errors."""
        user = db.query(User).filter(User.id == user_id, User.deleted_at.is_(None)).first()
        if user is None:
            raise NotFound(f"{label.capitalize()} {user_id} not found")
        if user.role not in roles:
            raise InvalidRole(f"User {user_id} is a {user.role}, not a valid {label}")
        return user

    def list_users(
        self,
        db: Session,
        role: Optional[str] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[User]:
        query = db.query(User).filter(User.deleted_at.is_(None))
        if role:
            query = query.filter(User.role == role)
        if status:
            query = query.filter(User.status == status)
        return query.order_by(User.created_at.desc()).offset(skip).limit(limit).all()

    # ── Role-derived views ───────────────────────────────────────────────────

    def resolve_permissions(self, user: User) -> Set[str]:
        return role_rules.resolve_permissions(user.role, user.custom_permissions)

    def display_identifier(self, user: User) -> str:
        return role_rules.display_identifier(user)

    def full_title(self, user: User) -> str:
        if user.role == UserRole.DOCTOR:
            title = f"Dr. {user.name}"
            if user.specialization:
                title += f" ({user.specialization})"
            return title
        if user.role == UserRole.STUDENT and user.department:
            return f"{user.name} - {user.department}"
        if user.role == UserRole.ACADEMIC_STAFF and user.faculty:
            return f"{user.name} - {user.faculty}"
        return user.name

    def project(self, user: User) -> Dict:
        """Base fields plus the role's own fields, absent values omitted. Never permissions."""
        rule = role_rules.rule_for(user.role)
        fields = BASE_PROJECTION_FIELDS + (rule.fields if rule else ())
        data = {}
        for field in fields:
            value = getattr(user, field, None)
            if value is not None:
                data[field] = value
        return data

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def verify_email(self, db: Session, email: str) -> User:
        user = db.query(User).filter(User.email == email.strip().lower(), User.deleted_at.is_(None)).first()
        if user is None:
            raise NotFound("User not found")
        if user.is_verified and user.status != UserStatus.PENDING_VERIFICATION:
            return user
        if user.status not in (UserStatus.PENDING_VERIFICATION, UserStatus.ACTIVE):
            raise InvalidTransition(f"Cannot verify an account in status '{user.status}'")
        user.email_verified_at = datetime.utcnow()
        user.status = UserStatus.ACTIVE
        db.commit()
        db.refresh(user)
        logger.info("Email verified for user %s", user.id)
        return user

    def set_status(self, db: Session, actor: User, user_id: str, status: str, reason: Optional[str] = None) -> User:
        if status not in UserStatus.ADMIN_SETTABLE:
            raise ValidationError({"status": [f"Status must be one of {', '.join(UserStatus.ADMIN_SETTABLE)}."]})
        user = self.get_user(db, user_id)
        if user.id == actor.id and status != UserStatus.ACTIVE:
            raise Forbidden("You cannot deactivate your own account")
        old_status = user.status
        user.status = status
        self._audit(db, actor, "user_status_update", user.id, {
            "old_status": old_status, "new_status": status, "reason": reason,
        })
        db.commit()
        db.refresh(user)
        logger.info("User %s status %s -> %s by %s", user.id, old_status, status, actor.id)
        return user

    def set_custom_permissions(
        self, db: Session, actor: User, user_id: str, permissions: Iterable[str], reason: Optional[str] = None
    ) -> User:
        user = self.get_user(db, user_id)
        cleaned = sorted({p.strip() for p in permissions if p and p.strip()})
        user.custom_permissions = cleaned
        self._audit(db, actor, "permissions_assigned", user.id, {"permissions": cleaned, "reason": reason})
        db.commit()
        db.refresh(user)
        return user

    def delete_user(
        self, db: Session, actor: User, user_id: str, soft: bool = False, reason: Optional[str] = None
    ) -> Dict:
        """
        Delete a user. For doctors, every assigned patient is unassigned first,
        in the same transaction as the delete itself. A hard delete is refused
        while appointments, records, prescriptions or a medical card still
        point at the user.
        """
        user = self.get_user(db, user_id)
        if user.id == actor.id:
            raise Forbidden("You cannot delete your own account")

        if not soft:
            references = self.clinical_references(db, user.id)
            if references:
                raise PrecedingReassignmentRequired(
                    f"User {user.id} is still referenced by clinical data; reassign it or use a soft delete",
                    {"references": references},
                )

        info = {"id": user.id, "name": user.name, "email": user.email, "role": user.role}
        unassigned = 0
        if user.role == UserRole.DOCTOR:
            try:
                unassigned = assignment_registry.unassign_all(db, user.id)
            except SQLAlchemyError as exc:
                db.rollback()
                raise PrecedingReassignmentRequired(
                    f"Could not unassign the patients of doctor {user.id}; nothing was deleted"
                ) from exc

        try:
            if soft:
                user.deleted_at = datetime.utcnow()
                user.status = UserStatus.INACTIVE
            else:
                db.delete(user)
            self._audit(db, actor, "user_deletion", info["id"], {
                "target_user_info": info,
                "reason": reason,
                "deletion_type": "soft_delete" if soft else "hard_delete",
                "patients_unassigned": unassigned,
            })
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise

        logger.info("User %s deleted by %s (%s, %d patients unassigned)",
                    info["id"], actor.id, "soft" if soft else "hard", unassigned)
        info["patients_unassigned"] = unassigned
        return info

    def clinical_references(self, db: Session, user_id: str) -> Dict[str, int]:
        """Row counts, per table, of clinical data whose user columns point at ``user_id``."""
        counts: Dict[str, int] = {}
        for model in CLINICAL_MODELS:
            table = model.__table__
            columns = [fk.parent for fk in table.foreign_keys if fk.references(User.__table__)]
            count = (
                db.query(func.count())
                .select_from(table)
                .filter(or_(*(column == user_id for column in columns)))
                .scalar()
            )
            if count:
                counts[table.name] = count
        return counts

    def _audit(self, db: Session, actor: User, action: str, resource_id: str, changes: Dict) -> None:
        db.add(AuditLog(
            id=generate_uuid(),
            user_id=actor.id,
            action=action,
            resource_type="users",
            resource_id=resource_id,
            changes=changes,
        ))


identity_service = IdentityService()
