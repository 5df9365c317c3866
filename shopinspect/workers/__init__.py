"""Celery workers for ShopInspect."""

from shopinspect.workers.notification_tasks import (
    celery_app,
    deliver_workflow_action,
    purge_expired_history,
)

__all__ = [
    "celery_app",
    "deliver_workflow_action",
    "purge_expired_history",
]
