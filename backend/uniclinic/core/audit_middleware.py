"""
Audit logging middleware.
Records who touched which patient-data resource (records, appointments,
prescriptions, tasks, medical cards) and with what outcome.
"""
import logging
from typing import Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from sqlalchemy.exc import SQLAlchemyError

from ..models.audit_log import AuditLog
from ..models.base import SessionLocal, generate_uuid
from .security import decode_access_token

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/"
AUDITED_RESOURCES = {"patients", "appointments", "prescriptions", "tasks", "records"}

ACTION_MAP = {
    "GET": "view",
    "POST": "create",
    "PUT": "update",
    "PATCH": "update",
    "DELETE": "delete",
}


def audited_resource(path: str) -> Optional[Tuple[str, str]]:
    """``/api/v1/<type>/<id>/...`` -> ``(type, id)``, or None when the path is not audited."""
    if not path.startswith(API_PREFIX):
        return None
    parts = [p for p in path[len(API_PREFIX):].split("/") if p]
    if not parts or parts[0] not in AUDITED_RESOURCES:
        return None
    return parts[0], parts[1] if len(parts) > 1 else "collection"


def actor_id(request: Request) -> str:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        return "anonymous"
    payload = decode_access_token(token) or {}
    return payload.get("sub") or "anonymous"


class AuditMiddleware(BaseHTTPMiddleware):
    """Writes one ``AuditLog`` row per request against a patient-data endpoint."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        action = ACTION_MAP.get(request.method)
        resource = audited_resource(request.url.path)
        if action is None or resource is None:
            return response

        resource_type, resource_id = resource
        entry = AuditLog(
            id=generate_uuid(),
            user_id=actor_id(request),
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            ip_address=request.client.host if request.client else None,
            request_method=request.method,
            request_path=request.url.path,
            user_agent=request.headers.get("user-agent"),
            changes={"status_code": response.status_code},
        )

        session_factory = getattr(request.app.state, "session_factory", SessionLocal)
        db = session_factory()
        try:
            db.add(entry)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("Audit write failed for %s %s: %s", request.method, request.url.path, exc)
        finally:
            db.close()

        return response
