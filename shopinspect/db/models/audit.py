"""Audit log model for ShopInspect.

System-wide, append-only record of significant actions. Retention of these
rows is governed by the audit retention policy, independently of the
per-inspection workflow history.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, Uuid

from shopinspect.db.base import Base


class AuditSeverity(str, Enum):
    """Severity levels for audit log entries."""
    DEBUG = "debug"       # Low-level debugging info
    INFO = "info"         # Standard operations
    WARNING = "warning"   # Potentially concerning actions (forced transitions)
    ERROR = "error"       # Failed operations
    CRITICAL = "critical" # Security-relevant events


class AuditLog(Base):
    """Immutable audit log entry."""
    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Shop scope
    shop_id = Column(Uuid, ForeignKey("shops.id"), nullable=False, index=True)

    # Actor information
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    user_role = Column(String(32), nullable=True)

    # Action details
    action = Column(String(100), nullable=False, index=True)
    resource_type = Column(String(100), nullable=False, index=True)
    resource_id = Column(Uuid, nullable=True, index=True)

    # Change tracking
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    details = Column(JSON, nullable=True)

    # Metadata
    severity = Column(String(20), nullable=False, default="info", index=True)
    request_id = Column(String(64), nullable=True)  # For distributed tracing
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} on {self.resource_type} by user {self.user_id}>"

    @classmethod
    def create_entry(
        cls,
        shop_id: uuid.UUID,
        action: str,
        resource_type: str,
        *,
        user_id: Optional[uuid.UUID] = None,
        user_role: Optional[str] = None,
        resource_id: Optional[uuid.UUID] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
        severity: AuditSeverity = AuditSeverity.INFO,
        created_at: Optional[datetime] = None,
    ) -> "AuditLog":
        """
        Factory method to create a new audit log entry.

        Args:
            shop_id: Shop the action belongs to
            action: Action performed (e.g., 'workflow.transition', 'workflow.force_transition')
            resource_type: Type of resource (e.g., 'inspection')
            user_id: ID of user performing action (None for system actions)
            user_role: Role the user acted under
            resource_id: ID of affected resource
            old_values: Previous values
            new_values: New values
            details: Additional context
            request_id: Request correlation ID
            severity: Log severity level
            created_at: Override the timestamp (defaults to now)
        """
        return cls(
            shop_id=shop_id,
            action=action,
            resource_type=resource_type,
            user_id=user_id,
            user_role=user_role,
            resource_id=resource_id,
            old_values=old_values,
            new_values=new_values,
            details=details,
            request_id=request_id,
            severity=severity.value if isinstance(severity, AuditSeverity) else severity,
            created_at=created_at or datetime.utcnow(),
        )
