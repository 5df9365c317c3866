"""Services for ShopInspect."""

from shopinspect.services.audit import AuditSink, DatabaseAuditSink, NullAuditSink
from shopinspect.services.notifications import (
    CeleryNotifier,
    NotificationService,
    send_notification_sync,
)

__all__ = [
    "AuditSink",
    "DatabaseAuditSink",
    "NullAuditSink",
    "CeleryNotifier",
    "NotificationService",
    "send_notification_sync",
]
