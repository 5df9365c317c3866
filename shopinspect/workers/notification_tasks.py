"""Celery tasks for workflow side effects.

Provides async task processing for:
- Queued workflow actions (manager/technician notifications, customer SMS)
- Periodic retention sweep of old state history
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from uuid import UUID
import logging

import httpx
from celery import Celery, shared_task
from celery.schedules import crontab
from celery.signals import after_setup_logger

from shopinspect.core.config import get_settings
from shopinspect.core.logger import configure_from_settings
from shopinspect.db.models import InspectionStateHistory
from shopinspect.db.session import SessionLocal
from shopinspect.services.notifications import send_notification_sync

logger = logging.getLogger(__name__)
settings = get_settings()

# Initialize Celery
celery_app = Celery(
    'shopinspect',
    broker=settings.celery_broker,
    backend=settings.celery_backend,
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_routes={
        'shopinspect.workers.notification_tasks.deliver_workflow_action': {'queue': 'notifications'},
    },
    task_default_queue='default',
    beat_schedule={
        'purge-expired-history': {
            'task': 'shopinspect.workers.notification_tasks.purge_expired_history',
            'schedule': crontab(hour=3, minute=0),
        },
    },
)


@after_setup_logger.connect
def configure_worker_logging(logger=None, **kwargs) -> logging.Logger:
    """Apply the configured level and log file to the package logger.

    Celery owns the console output, so package records reach it by propagation.
    """
    return configure_from_settings(settings, console_logging=False)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def deliver_workflow_action(self, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deliver one queued workflow action.

    Args:
        payload: Serialized QueuedAction

    Returns:
        Action name and the notification IDs created
    """
    db = SessionLocal()
    try:
        notification_ids = send_notification_sync(db, UUID(payload["shop_id"]), payload)
        logger.info(
            f"Delivered {payload['action']} for inspection {payload['inspection_id']}: "
            f"{len(notification_ids)} notifications"
        )
        return {"action": payload["action"], "notifications": notification_ids}

    except httpx.TransportError as e:
        # Gateway unreachable or timed out
        logger.warning(f"Retrying {payload.get('action')} for inspection {payload.get('inspection_id')}: {e}")
        raise self.retry(exc=e)

    except Exception:
        logger.exception(f"Delivery of {payload.get('action')} failed for inspection {payload.get('inspection_id')}")
        raise

    finally:
        db.close()


# Periodic task for the history retention policy
@celery_app.task
def purge_expired_history(retention_days: Optional[int] = None) -> Dict[str, Any]:
    """
    Delete state history entries older than the retention period.

    This task is scheduled daily by celery beat.
    """
    if retention_days is None:
        retention_days = settings.history_retention_days
    cutoff = datetime.utcnow() - timedelta(days=retention_days)

    db = SessionLocal()
    try:
        deleted = db.query(InspectionStateHistory).filter(
            InspectionStateHistory.changed_at < cutoff
        ).delete(synchronize_session=False)
        db.commit()

        logger.info(f"Purged {deleted} history entries older than {cutoff.isoformat()}")
        return {"deleted": deleted, "cutoff": cutoff.isoformat()}

    except Exception:
        db.rollback()
        logger.exception("History purge failed")
        raise

    finally:
        db.close()
