"""Notification service for in-app and SMS delivery.

Handles:
- In-app notifications to shop managers when work is ready for review
- In-app notifications to the technician when an inspection is rejected
- Customer SMS with the inspection results link
- Handing queued workflow actions to Celery
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

import httpx
from jinja2 import Template
from sqlalchemy import and_
from sqlalchemy.orm import Session

from shopinspect.core.config import Settings, get_settings
from shopinspect.core.workflow.actions import Action, QueuedAction
from shopinspect.core.workflow.states import Role
from shopinspect.db.models import (
    Customer,
    Inspection,
    NotificationChannel,
    NotificationEventType,
    NotificationLog,
    NotificationStatus,
    Shop,
    User,
    Vehicle,
)

logger = logging.getLogger(__name__)


# In-app templates
IN_APP_TEMPLATES = {
    NotificationEventType.INSPECTION_READY_FOR_REVIEW: {
        "subject": "Inspection ready for review: {{ vehicle }}",
        "body": (
            "{{ technician }} submitted the inspection of {{ vehicle }} for review."
            "{% if warnings %}\n{% for w in warnings %}- {{ w }}\n{% endfor %}{% endif %}"
        ),
    },
    NotificationEventType.INSPECTION_REJECTED: {
        "subject": "Inspection returned: {{ vehicle }}",
        "body": "The inspection of {{ vehicle }} was sent back.\nReason: {{ reason }}",
    },
}

# Customer SMS templates, kept under 160 characters once rendered
SMS_TEMPLATES = {
    NotificationEventType.INSPECTION_RESULTS_READY: (
        "Hi {{ customer_name }}, your {{ vehicle }} inspection is complete! "
        "View report & recommendations: {{ link }}"
    ),
}

SMS_MAX_LENGTH = 160


def _render(source: str, context: Dict[str, Any]) -> str:
    return Template(source).render(**context).strip()


class NotificationService:
    """
    Service for delivering workflow notifications.
    """

    def __init__(self, db: Session, shop_id: UUID, settings: Optional[Settings] = None):
        """
        Initialize notification service.

        Args:
            db: Database session
            shop_id: Shop the notifications belong to
            settings: Optional settings override
        """
        self.db = db
        self.shop_id = shop_id
        self.settings = settings or get_settings()

    async def notify_role(
        self,
        inspection_id: UUID,
        role: Role,
        event_type: NotificationEventType,
        context: Optional[Dict[str, Any]] = None,
    ) -> List[str]:
        """
        Send an in-app notification to every active user with ``role``.

        For ``Role.TECHNICIAN`` only the inspection's assigned technician is
        notified when one is set.

        Returns:
            List of notification IDs
        """
        inspection = self._get_inspection(inspection_id)
        if inspection is None:
            logger.warning(f"Inspection {inspection_id} not found, notification dropped")
            return []

        context = {**self._inspection_context(inspection), **(context or {})}
        recipients = self._recipients(inspection, Role.parse(role))
        if not recipients:
            logger.info(f"No {role} recipients for {event_type.value} on inspection {inspection_id}")
            return []

        notification_ids = []
        for user in recipients:
            notification_ids.append(self._send_in_app(user, event_type, context, inspection_id))
        self.db.commit()
        return notification_ids

    async def send_inspection_sms(
        self,
        inspection_id: UUID,
        event_type: NotificationEventType = NotificationEventType.INSPECTION_RESULTS_READY,
    ) -> Optional[str]:
        """
        Text the inspection results link to the vehicle's customer.

        Returns:
            Notification ID, or None when the inspection is unknown

        Raises:
            httpx.TransportError: If the gateway could not be reached; the
                failed attempt is committed before the error propagates
        """
        inspection = self._get_inspection(inspection_id)
        if inspection is None:
            logger.warning(f"Inspection {inspection_id} not found, SMS dropped")
            return None

        context = self._inspection_context(inspection)
        body = _render(SMS_TEMPLATES[event_type], context)
        if len(body) > SMS_MAX_LENGTH:
            logger.warning(f"SMS for inspection {inspection_id} is {len(body)} characters")

        log = NotificationLog(
            shop_id=self.shop_id,
            inspection_id=inspection_id,
            channel=NotificationChannel.SMS.value,
            event_type=event_type.value,
            recipient=context["customer_phone"] or "",
            body=body,
            status=NotificationStatus.PENDING.value,
        )
        self.db.add(log)
        self.db.flush()

        if not context["customer_phone"]:
            log.status = NotificationStatus.SKIPPED.value
            log.error_message = "Customer has no phone number"
        else:
            try:
                external_id = await self._deliver_sms(context["customer_phone"], body)
                if external_id is None and not self.settings.sms_gateway_url:
                    log.status = NotificationStatus.SKIPPED.value
                    log.error_message = "SMS gateway not configured"
                else:
                    log.status = NotificationStatus.SENT.value
                    log.sent_at = datetime.utcnow()
                    log.external_id = external_id
            except httpx.TransportError as e:
                # Record the attempt, then let the worker retry
                logger.warning(f"SMS gateway unreachable for inspection {inspection_id}: {e}")
                log.status = NotificationStatus.FAILED.value
                log.error_message = str(e)
                log.attempts = 1
                self.db.commit()
                raise
            except Exception as e:
                logger.exception(f"Failed to send SMS for inspection {inspection_id}")
                log.status = NotificationStatus.FAILED.value
                log.error_message = str(e)
            log.attempts = 1

        self.db.commit()
        return str(log.id)

    def _send_in_app(
        self,
        user: User,
        event_type: NotificationEventType,
        context: Dict[str, Any],
        inspection_id: UUID,
    ) -> str:
        template = IN_APP_TEMPLATES[event_type]
        log = NotificationLog(
            shop_id=self.shop_id,
            inspection_id=inspection_id,
            channel=NotificationChannel.IN_APP.value,
            event_type=event_type.value,
            recipient=user.email,
            user_id=user.id,
            subject=_render(template["subject"], context),
            body=_render(template["body"], context),
            payload={k: v for k, v in context.items() if isinstance(v, (str, int, float, list))},
            status=NotificationStatus.SENT.value,
            attempts=1,
            sent_at=datetime.utcnow(),
        )
        self.db.add(log)
        self.db.flush()
        return str(log.id)

    async def _deliver_sms(self, to_number: str, body: str) -> Optional[str]:
        """Actually deliver the SMS through the gateway."""
        if not self.settings.sms_gateway_url:
            logger.warning("SMS gateway not configured, skipping SMS delivery")
            return None

        headers = {"Content-Type": "application/json"}
        if self.settings.sms_api_key:
            headers["Authorization"] = f"Bearer {self.settings.sms_api_key}"
        payload = {"from": self.settings.sms_from_number, "to": to_number, "text": body}

        async with httpx.AsyncClient(timeout=self.settings.sms_timeout) as client:
            response = await client.post(self.settings.sms_gateway_url, json=payload, headers=headers)
            response.raise_for_status()

        data = response.json() if response.content else {}
        return str(data.get("id")) if data.get("id") else ""

    def _get_inspection(self, inspection_id: UUID) -> Optional[Inspection]:
        return self.db.query(Inspection).filter(
            and_(
                Inspection.id == inspection_id,
                Inspection.shop_id == self.shop_id,
            )
        ).first()

    def _recipients(self, inspection: Inspection, role: Role) -> List[User]:
        if role == Role.TECHNICIAN and inspection.technician_id:
            user = self.db.query(User).filter(
                and_(User.id == inspection.technician_id, User.is_active == True)
            ).first()
            return [user] if user else []

        return self.db.query(User).filter(
            and_(
                User.shop_id == self.shop_id,
                User.role == role.value,
                User.is_active == True,
            )
        ).all()

    def _inspection_context(self, inspection: Inspection) -> Dict[str, Any]:
        """Build template context for an inspection."""
        vehicle = self.db.get(Vehicle, inspection.vehicle_id) if inspection.vehicle_id else None
        customer = self.db.get(Customer, vehicle.customer_id) if vehicle and vehicle.customer_id else None
        shop = self.db.get(Shop, inspection.shop_id)
        technician = self.db.get(User, inspection.technician_id) if inspection.technician_id else None

        link = None
        if inspection.customer_link_token:
            link = f"{self.settings.customer_portal_base_url.rstrip('/')}/{inspection.customer_link_token}"

        return {
            "inspection_id": str(inspection.id),
            "state": inspection.workflow_state,
            "shop_name": shop.name if shop else "",
            "vehicle": (vehicle.description if vehicle else "") or "vehicle",
            "customer_name": customer.first_name if customer else "there",
            "customer_phone": customer.phone if customer else None,
            "technician": (technician.name if technician else None) or "A technician",
            "reason": inspection.rejection_reason or "No reason provided",
            "link": link or self.settings.customer_portal_base_url,
        }


# Helper function for sync code
def send_notification_sync(db: Session, shop_id: UUID, payload: Dict[str, Any]) -> List[str]:
    """
    Deliver one queued workflow action from a synchronous worker.

    Args:
        db: Database session
        shop_id: Shop ID
        payload: ``QueuedAction.to_payload()`` output

    Returns:
        List of notification IDs
    """
    service = NotificationService(db, shop_id)
    inspection_id = UUID(payload["inspection_id"])
    action = Action(payload["action"])
    context = {
        "reason": payload.get("reason"),
        "warnings": payload.get("details", {}).get("warnings", []),
    }
    context = {k: v for k, v in context.items() if v}

    if action == Action.NOTIFY_MANAGERS:
        coro = service.notify_role(
            inspection_id, Role.SHOP_MANAGER,
            NotificationEventType.INSPECTION_READY_FOR_REVIEW, context,
        )
    elif action == Action.NOTIFY_TECHNICIAN:
        coro = service.notify_role(
            inspection_id, Role.TECHNICIAN,
            NotificationEventType.INSPECTION_REJECTED, context,
        )
    elif action == Action.SEND_SMS:
        coro = service.send_inspection_sms(inspection_id)
    else:
        raise ValueError(f"Action {action.value} is not a notification")

    result = asyncio.run(coro)
    if result is None:
        return []
    return result if isinstance(result, list) else [result]


class CeleryNotifier:
    """Notifier that enqueues queued workflow actions as Celery tasks."""

    def send(self, queued: QueuedAction) -> None:
        from shopinspect.workers.notification_tasks import deliver_workflow_action

        deliver_workflow_action.delay(queued.to_payload())
        logger.debug(f"Enqueued {queued.action.value} for inspection {queued.inspection_id}")
