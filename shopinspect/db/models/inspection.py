"""Inspection workflow database models.

Stores inspections, their checklist items, and the state transition history.
"""

import uuid
from datetime import datetime
from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer,
    JSON, Numeric, String, Text, Uuid,
)
from sqlalchemy.orm import relationship

from shopinspect.db.base import Base


WORKFLOW_STATES = (
    "draft", "in_progress", "pending_review", "approved",
    "rejected", "sent_to_customer", "completed",
)

ITEM_CONDITIONS = ("good", "fair", "poor", "needs_immediate")


def _in_clause(column: str, values) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class Inspection(Base):
    """
    A vehicle inspection moving through the shop's approval workflow.

    ``workflow_state``, ``previous_state``, ``version`` and ``state_changed_*``
    are written only by the workflow engine. ``version`` is the optimistic
    concurrency token and increases by one on every transition.
    """
    __tablename__ = "inspections"
    __table_args__ = (
        CheckConstraint(_in_clause("workflow_state", WORKFLOW_STATES), name="valid_workflow_state"),
        Index("ix_inspections_shop_state", "shop_id", "workflow_state"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    shop_id = Column(Uuid, ForeignKey("shops.id"), nullable=False, index=True)
    vehicle_id = Column(Uuid, ForeignKey("vehicles.id", ondelete="SET NULL"), nullable=True, index=True)
    technician_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Workflow state
    workflow_state = Column(String(50), nullable=False, default="draft")
    previous_state = Column(String(50), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    state_changed_at = Column(DateTime, default=datetime.utcnow)
    state_changed_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Written by transition actions
    started_at = Column(DateTime, nullable=True)
    inspection_duration = Column(Integer, nullable=True)  # minutes
    completed_at = Column(DateTime, nullable=True)
    customer_report_ready_at = Column(DateTime, nullable=True)
    customer_link_token = Column(String(64), nullable=True, unique=True)
    rejection_reason = Column(Text, nullable=True)

    notes = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)

    # Relationships
    shop = relationship("Shop", back_populates="inspections")
    vehicle = relationship("Vehicle")
    technician = relationship("User", foreign_keys=[technician_id])
    items = relationship("InspectionItem", back_populates="inspection", cascade="all, delete-orphan")
    history = relationship(
        "InspectionStateHistory",
        back_populates="inspection",
        order_by="InspectionStateHistory.changed_at",
    )

    def __repr__(self) -> str:
        return f"<Inspection {self.id} [{self.workflow_state} v{self.version}]>"


class InspectionItem(Base):
    """
    One checklist entry of an inspection.

    A null ``condition`` means the item has not been scored yet.
    """
    __tablename__ = "inspection_items"
    __table_args__ = (
        CheckConstraint(
            "condition IS NULL OR " + _in_clause("condition", ITEM_CONDITIONS),
            name="valid_item_condition",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    inspection_id = Column(Uuid, ForeignKey("inspections.id", ondelete="CASCADE"), nullable=False, index=True)
    category = Column(String(100), nullable=False)
    component = Column(String(255), nullable=False)
    condition = Column(String(20), nullable=True)
    notes = Column(Text, nullable=True)
    estimated_cost = Column(Numeric(8, 2), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    inspection = relationship("Inspection", back_populates="items")

    def __repr__(self) -> str:
        return f"<InspectionItem {self.category}/{self.component} [{self.condition}]>"


class InspectionStateHistory(Base):
    """
    Append-only record of every workflow transition.

    Forced transitions are stored with ``validation_passed = False`` and
    ``extra_data["forced"] = True``.
    """
    __tablename__ = "inspection_state_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    inspection_id = Column(Uuid, ForeignKey("inspections.id", ondelete="CASCADE"), nullable=False, index=True)

    # Transition details
    from_state = Column(String(50), nullable=True)
    to_state = Column(String(50), nullable=False)

    # Actor
    changed_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    change_reason = Column(Text, nullable=True)

    # Additional context
    extra_data = Column("metadata", JSON, nullable=False, default=dict)

    # Validation outcome
    validation_passed = Column(Boolean, nullable=False, default=True)
    validation_errors = Column(JSON, nullable=False, default=list)

    # Inspection version produced by the transition; orders entries sharing a timestamp
    version = Column(Integer, nullable=True)

    # Timestamp
    changed_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Relationships
    inspection = relationship("Inspection", back_populates="history")
    user = relationship("User")

    def __repr__(self) -> str:
        return f"<InspectionStateHistory {self.from_state} -> {self.to_state}>"
