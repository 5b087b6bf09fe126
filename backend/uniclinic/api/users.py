"""User profile and admin user-management endpoints."""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from pydantic import BaseModel

from ..models.base import get_db
from ..models.user import User, UserRole
from ..core.security import get_current_user, require_role
from ..services.identity import identity_service

router = APIRouter(prefix="/users", tags=["users"])


class StatusUpdate(BaseModel):
    status: str
    reason: Optional[str] = None


class PermissionsUpdate(BaseModel):
    permissions: List[str]
    reason: Optional[str] = None


def _profile(user: User) -> dict:
    data = identity_service.project(user)
    data["display_identifier"] = identity_service.display_identifier(user)
    data["full_title"] = identity_service.full_title(user)
    return data


@router.get("/me")
def get_me(current_user: User = Depends(get_current_user)):
    data = _profile(current_user)
    data["permissions"] = sorted(identity_service.resolve_permissions(current_user))
    return data


@router.get("")
def list_users(
    role: Optional[str] = Query(None, description="Filter by role"),
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by account status"),
    skip: int = 0,
    limit: int = 50,
    db: Session = Depends(get_db),
    _admin=Depends(require_role(UserRole.ADMIN)),
):
    users = identity_service.list_users(db, role=role, status=status_filter, skip=skip, limit=limit)
    return [_profile(u) for u in users]


@router.get("/{user_id}")
def get_user(
    user_id: str,
    db: Session = Depends(get_db),
    _admin=Depends(require_role(UserRole.ADMIN)),
):
    user = identity_service.get_user(db, user_id)
    data = _profile(user)
    data["permissions"] = sorted(identity_service.resolve_permissions(user))
    return data


@router.patch("/{user_id}/status")
def update_status(
    user_id: str,
    body: StatusUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_role(UserRole.ADMIN)),
):
    user = identity_service.set_status(db, admin, user_id, body.status, reason=body.reason)
    return {"message": f"User status updated to {user.status}", "user": _profile(user)}


@router.put("/{user_id}/permissions")
def update_permissions(
    user_id: str,
    body: PermissionsUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_role(UserRole.ADMIN)),
):
    user = identity_service.set_custom_permissions(db, admin, user_id, body.permissions, reason=body.reason)
    return {
        "message": "Permissions updated",
        "custom_permissions": user.custom_permissions,
        "permissions": sorted(identity_service.resolve_permissions(user)),
    }


@router.delete("/{user_id}", status_code=status.HTTP_200_OK)
def delete_user(
    user_id: str,
    soft: bool = False,
    reason: Optional[str] = None,
    db: Session = Depends(get_db),
    admin: User = Depends(require_role(UserRole.ADMIN)),
):
    deleted = identity_service.delete_user(db, admin, user_id, soft=soft, reason=reason)
    return {"message": "User deleted successfully", "deleted_user": deleted}
