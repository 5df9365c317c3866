"""Side effects attached to workflow transitions.

Actions come in two categories:

- TRANSACTIONAL actions write through the transition's database session and
  commit or roll back together with the state change.
- QUEUED actions reach systems outside the database (SMS gateway, in-app
  notifications). They are staged while the transaction is open and handed to
  a notifier only after commit; a delivery failure is logged and never turns
  into a transition failure.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Protocol, Union
from uuid import UUID

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class ActionCategory(str, Enum):
    TRANSACTIONAL = "transactional"
    QUEUED = "queued"


class Action(str, Enum):
    """Named side effects a transition rule may declare."""

    START_TIMER = "start_timer"
    CALC_DURATION = "calc_duration"
    SET_COMPLETION_TIME = "set_completion_time"
    PREPARE_CUSTOMER_REPORT = "prepare_customer_report"
    CLEAR_REJECTION_REASON = "clear_rejection_reason"
    CREATE_CUSTOMER_LINK = "create_customer_link"
    RECORD_COMPLETION = "record_completion"
    NOTIFY_MANAGERS = "notify_managers"
    NOTIFY_TECHNICIAN = "notify_technician"
    SEND_SMS = "send_sms"

    @property
    def category(self) -> ActionCategory:
        if self in QUEUED_ACTIONS:
            return ActionCategory.QUEUED
        return ActionCategory.TRANSACTIONAL


QUEUED_ACTIONS = frozenset({
    Action.NOTIFY_MANAGERS,
    Action.NOTIFY_TECHNICIAN,
    Action.SEND_SMS,
})

# Names used by older rule tables
_ACTION_ALIASES = {
    "start_inspection_timer": Action.START_TIMER,
    "calculate_duration": Action.CALC_DURATION,
    "clear_rejection": Action.CLEAR_REJECTION_REASON,
    "generate_customer_link": Action.CREATE_CUSTOMER_LINK,
}


def resolve_action(name: Union[Action, str]) -> Optional[Action]:
    """Map an action identifier to the enum, or None when unknown."""
    if isinstance(name, Action):
        return name
    try:
        return Action(name)
    except ValueError:
        return _ACTION_ALIASES.get(name)


@dataclass
class QueuedAction:
    """An external side effect waiting for the transaction to commit."""
    action: Action
    inspection_id: UUID
    shop_id: UUID
    user_id: UUID
    from_state: str
    to_state: str
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    queued_at: datetime = field(default_factory=datetime.utcnow)

    def to_payload(self) -> Dict[str, Any]:
        """JSON-serializable form for task queues."""
        return {
            "action": self.action.value,
            "inspection_id": str(self.inspection_id),
            "shop_id": str(self.shop_id),
            "user_id": str(self.user_id),
            "from_state": self.from_state,
            "to_state": self.to_state,
            "reason": self.reason,
            "details": self.details,
            "queued_at": self.queued_at.isoformat(),
        }


@dataclass
class ActionContext:
    """State shared by the actions of one transition."""
    db: "Session"
    inspection_id: UUID
    shop_id: UUID
    user_id: UUID
    from_state: str
    to_state: str
    now: datetime
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    queued: List[QueuedAction] = field(default_factory=list)
    executed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def update_inspection(self, **values: Any) -> None:
        """Write action-owned inspection columns inside the open transaction."""
        from sqlalchemy import update

        from shopinspect.db.models.inspection import Inspection

        values.setdefault("updated_at", self.now)
        stmt = (
            update(Inspection)
            .where(Inspection.id == self.inspection_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)

    def inspection_value(self, column: str) -> Any:
        from sqlalchemy import select

        from shopinspect.db.models.inspection import Inspection

        stmt = select(getattr(Inspection, column)).where(Inspection.id == self.inspection_id)
        return self.db.execute(stmt).scalar_one_or_none()


class Notifier(Protocol):
    """Fire-and-forget delivery of queued actions."""

    def send(self, queued: QueuedAction) -> None: ...


class NullNotifier:
    """Notifier that only logs; used when no delivery backend is configured."""

    def send(self, queued: QueuedAction) -> None:
        logger.info(
            f"Queued action {queued.action.value} for inspection {queued.inspection_id} "
            f"(no notifier configured)"
        )


def _start_timer(ctx: ActionContext) -> None:
    ctx.update_inspection(started_at=ctx.now)


def _calc_duration(ctx: ActionContext) -> None:
    started_at = ctx.inspection_value("started_at")
    if started_at is None:
        return
    minutes = int((ctx.now - started_at).total_seconds() // 60)
    ctx.update_inspection(inspection_duration=max(minutes, 0))


def _set_completion_time(ctx: ActionContext) -> None:
    ctx.update_inspection(completed_at=ctx.now)


def _prepare_customer_report(ctx: ActionContext) -> None:
    ctx.update_inspection(customer_report_ready_at=ctx.now)


def _clear_rejection_reason(ctx: ActionContext) -> None:
    ctx.update_inspection(rejection_reason=None)


def _create_customer_link(ctx: ActionContext) -> None:
    ctx.update_inspection(customer_link_token=secrets.token_urlsafe(24))


def _record_completion(ctx: ActionContext) -> None:
    ctx.update_inspection(completed_at=ctx.now)


TRANSACTIONAL_HANDLERS: Dict[Action, Callable[[ActionContext], None]] = {
    Action.START_TIMER: _start_timer,
    Action.CALC_DURATION: _calc_duration,
    Action.SET_COMPLETION_TIME: _set_completion_time,
    Action.PREPARE_CUSTOMER_REPORT: _prepare_customer_report,
    Action.CLEAR_REJECTION_REASON: _clear_rejection_reason,
    Action.CREATE_CUSTOMER_LINK: _create_customer_link,
    Action.RECORD_COMPLETION: _record_completion,
}


class ActionDispatcher:
    """
    Runs the actions declared on a transition rule.

    ``run`` is called inside the transaction after the state change has been
    written; ``flush`` is called after commit and hands queued actions to the
    notifier.
    """

    def __init__(self, notifier: Optional[Notifier] = None):
        self.notifier = notifier or NullNotifier()

    def run(self, actions: Iterable[Union[Action, str]], context: ActionContext) -> None:
        for name in actions:
            action = resolve_action(name)
            if action is None:
                label = name.value if isinstance(name, Enum) else str(name)
                logger.warning(f"Unknown workflow action skipped: {label}")
                context.skipped.append(label)
                continue

            if action.category == ActionCategory.QUEUED:
                context.queued.append(self._stage(action, context))
            else:
                TRANSACTIONAL_HANDLERS[action](context)
            context.executed.append(action.value)

    def flush(self, context: ActionContext) -> List[str]:
        """
        Deliver staged actions.

        Returns:
            Names of the actions whose delivery failed
        """
        failed = []
        for queued in context.queued:
            try:
                self.notifier.send(queued)
            except Exception:
                logger.exception(
                    f"Failed to deliver {queued.action.value} for inspection {queued.inspection_id}"
                )
                failed.append(queued.action.value)
        context.queued = []
        return failed

    def _stage(self, action: Action, context: ActionContext) -> QueuedAction:
        details: Dict[str, Any] = {}
        if context.warnings:
            details["warnings"] = list(context.warnings)
        if context.metadata:
            details["metadata"] = dict(context.metadata)
        return QueuedAction(
            action=action,
            inspection_id=context.inspection_id,
            shop_id=context.shop_id,
            user_id=context.user_id,
            from_state=context.from_state,
            to_state=context.to_state,
            reason=context.reason,
            details=details,
            queued_at=context.now,
        )
