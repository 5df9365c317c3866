"""Delivery log for notifications produced by workflow transitions."""

import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, Text, Integer, Uuid

from shopinspect.db.base import Base


class NotificationChannel(str, Enum):
    """Available notification channels."""
    IN_APP = "in_app"
    SMS = "sms"
    WEBHOOK = "webhook"


class NotificationEventType(str, Enum):
    """Events that can trigger notifications."""
    INSPECTION_READY_FOR_REVIEW = "inspection_ready_for_review"
    INSPECTION_REJECTED = "inspection_rejected"
    INSPECTION_RESULTS_READY = "inspection_results_ready"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class NotificationLog(Base):
    """
    One delivery attempt of a notification.

    Rows are written by the notification workers after the transition that
    caused them has committed.
    """
    __tablename__ = "notification_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    shop_id = Column(Uuid, ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True)
    inspection_id = Column(Uuid, ForeignKey("inspections.id", ondelete="SET NULL"), nullable=True, index=True)

    # Delivery details
    channel = Column(String(20), nullable=False)
    event_type = Column(String(50), nullable=False, index=True)
    recipient = Column(String(255), nullable=False)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Content
    subject = Column(String(255), nullable=True)
    body = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)

    # Status
    status = Column(String(20), nullable=False, default="pending", index=True)
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, default=0)
    external_id = Column(String(100), nullable=True)  # Gateway message id

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    sent_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<NotificationLog {self.channel}:{self.event_type} -> {self.recipient} [{self.status}]>"
