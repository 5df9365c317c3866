"""Audit sink for workflow transitions.

Every committed transition, regular or forced, is mirrored to the system-wide
audit log in addition to the inspection's own state history.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from shopinspect.db.models.audit import AuditLog, AuditSeverity

logger = logging.getLogger(__name__)


RESOURCE_TYPE = "inspection"
ACTION_TRANSITION = "workflow.transition"
ACTION_FORCE_TRANSITION = "workflow.force_transition"


class AuditSink(Protocol):
    """Append-only destination for transition audit records."""

    def record_transition(
        self,
        db: Session,
        *,
        shop_id: UUID,
        inspection_id: UUID,
        user_id: UUID,
        role: str,
        from_state: str,
        to_state: str,
        version: int,
        reason: Optional[str] = None,
        forced: bool = False,
        details: Optional[Dict[str, Any]] = None,
        at: Optional[datetime] = None,
    ) -> None: ...


class DatabaseAuditSink:
    """Writes AuditLog rows through the transition's own session."""

    def record_transition(
        self,
        db: Session,
        *,
        shop_id: UUID,
        inspection_id: UUID,
        user_id: UUID,
        role: str,
        from_state: str,
        to_state: str,
        version: int,
        reason: Optional[str] = None,
        forced: bool = False,
        details: Optional[Dict[str, Any]] = None,
        at: Optional[datetime] = None,
    ) -> None:
        entry = AuditLog.create_entry(
            shop_id=shop_id,
            action=ACTION_FORCE_TRANSITION if forced else ACTION_TRANSITION,
            resource_type=RESOURCE_TYPE,
            user_id=user_id,
            user_role=role,
            resource_id=inspection_id,
            old_values={"workflow_state": from_state, "version": version - 1},
            new_values={"workflow_state": to_state, "version": version},
            details={"reason": reason, **(details or {})},
            severity=AuditSeverity.WARNING if forced else AuditSeverity.INFO,
            created_at=at,
        )
        db.add(entry)


class NullAuditSink:
    """Audit sink that drops records; for callers that audit elsewhere."""

    def record_transition(self, db: Session, **kwargs: Any) -> None:
        logger.debug(f"Audit record dropped for inspection {kwargs.get('inspection_id')}")
