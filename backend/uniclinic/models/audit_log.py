from sqlalchemy import Column, String, JSON
from .base import Base, TimestampMixin, generate_uuid


class AuditLog(Base, TimestampMixin):
    """Audit trail for access to patient data and admin actions."""
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String(100), nullable=False, index=True)
    action = Column(String(50), nullable=False)  # create, view, update, delete, or a named admin action
    resource_type = Column(String(50), nullable=False)
    resource_id = Column(String, nullable=False)
    ip_address = Column(String(45), nullable=True)
    request_method = Column(String(10), nullable=True)
    request_path = Column(String(500), nullable=True)
    user_agent = Column(String(500), nullable=True)
    changes = Column(JSON, nullable=True)
