"""Database models for ShopInspect."""

from shopinspect.db.models.shop import Shop
from shopinspect.db.models.user import User
from shopinspect.db.models.customer import Customer, Vehicle
from shopinspect.db.models.inspection import Inspection, InspectionItem, InspectionStateHistory
from shopinspect.db.models.audit import AuditLog, AuditSeverity
from shopinspect.db.models.notification import (
    NotificationLog,
    NotificationChannel,
    NotificationEventType,
    NotificationStatus,
)

__all__ = [
    "Shop",
    "User",
    "Customer",
    "Vehicle",
    "Inspection",
    "InspectionItem",
    "InspectionStateHistory",
    "AuditLog",
    "AuditSeverity",
    "NotificationLog",
    "NotificationChannel",
    "NotificationEventType",
    "NotificationStatus",
]
