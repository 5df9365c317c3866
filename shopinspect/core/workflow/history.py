"""Read-only views over the inspection state history.

Nothing here writes; queries run in a short-lived session that is closed
without committing.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Union
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.orm import aliased, sessionmaker

from shopinspect.core.config import Settings, get_settings
from shopinspect.db.models.customer import Customer, Vehicle
from shopinspect.db.models.inspection import Inspection, InspectionStateHistory
from shopinspect.db.models.user import User

from .errors import NotFound
from .states import WorkflowState

logger = logging.getLogger(__name__)


@dataclass
class HistoryEntry:
    """One recorded transition of an inspection."""
    id: UUID
    inspection_id: UUID
    from_state: Optional[str]
    to_state: str
    changed_by: Optional[UUID]
    changed_by_name: Optional[str]
    changed_by_role: Optional[str]
    change_reason: Optional[str]
    metadata: Dict[str, Any]
    validation_passed: bool
    validation_errors: List[str]
    changed_at: datetime
    version: Optional[int] = None

    @property
    def forced(self) -> bool:
        return bool(self.metadata.get("forced"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "inspection_id": str(self.inspection_id),
            "from_state": self.from_state,
            "to_state": self.to_state,
            "changed_by": str(self.changed_by) if self.changed_by else None,
            "changed_by_name": self.changed_by_name,
            "changed_by_role": self.changed_by_role,
            "change_reason": self.change_reason,
            "metadata": self.metadata,
            "validation_passed": self.validation_passed,
            "validation_errors": self.validation_errors,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
            "version": self.version,
        }


class Bottleneck(NamedTuple):
    state: str
    avg_hours: float


@dataclass
class WorkflowStatistics:
    """Aggregates over a shop's transitions within a time window."""
    shop_id: UUID
    window_days: int
    since: datetime
    transition_counts: Dict[str, int] = field(default_factory=dict)
    total_transitions: int = 0
    avg_completion_hours: Optional[float] = None
    avg_hours_in_state: Dict[str, float] = field(default_factory=dict)
    bottlenecks: List[Bottleneck] = field(default_factory=list)

    def count(self, from_state: Union[WorkflowState, str], to_state: Union[WorkflowState, str]) -> int:
        return self.transition_counts.get(transition_key(from_state, to_state), 0)

    @property
    def inspections_started(self) -> int:
        return self.count(WorkflowState.DRAFT, WorkflowState.IN_PROGRESS)

    @property
    def submitted_for_review(self) -> int:
        return self.count(WorkflowState.IN_PROGRESS, WorkflowState.PENDING_REVIEW)

    @property
    def approved(self) -> int:
        return self.count(WorkflowState.PENDING_REVIEW, WorkflowState.APPROVED)

    @property
    def rejected(self) -> int:
        return self.count(WorkflowState.PENDING_REVIEW, WorkflowState.REJECTED)

    @property
    def completed(self) -> int:
        suffix = f"->{WorkflowState.COMPLETED.value}"
        return sum(n for key, n in self.transition_counts.items() if key.endswith(suffix))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shop_id": str(self.shop_id),
            "window_days": self.window_days,
            "since": self.since.isoformat(),
            "transition_counts": dict(self.transition_counts),
            "total_transitions": self.total_transitions,
            "inspections_started": self.inspections_started,
            "submitted_for_review": self.submitted_for_review,
            "approved": self.approved,
            "rejected": self.rejected,
            "completed": self.completed,
            "avg_completion_hours": self.avg_completion_hours,
            "avg_hours_in_state": dict(self.avg_hours_in_state),
            "bottlenecks": [b._asdict() for b in self.bottlenecks],
        }


@dataclass
class InspectionSummary:
    """Work-queue view of an inspection."""
    id: UUID
    workflow_state: str
    version: int
    state_changed_at: Optional[datetime]
    customer_name: Optional[str] = None
    vehicle_info: Optional[str] = None
    technician_name: Optional[str] = None
    minutes_in_state: Optional[int] = None


def transition_key(from_state: Union[WorkflowState, str, None], to_state: Union[WorkflowState, str]) -> str:
    def _v(s):
        if s is None:
            return "none"
        return s.value if isinstance(s, WorkflowState) else str(s)
    return f"{_v(from_state)}->{_v(to_state)}"


def _hours(delta: timedelta) -> float:
    return delta.total_seconds() / 3600


class WorkflowHistoryReader:
    """
    History and metrics queries for inspection workflows.

    Every query is scoped to a shop; an inspection belonging to another
    shop is indistinguishable from one that does not exist.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.clock = clock

    def history(self, inspection_id: UUID, shop_id: UUID) -> List[HistoryEntry]:
        """
        Full transition trail of an inspection, most recent first.

        Raises:
            NotFound: If the inspection is unknown, deleted or owned by another shop
        """
        with self.session_factory() as db:
            exists = db.execute(
                select(Inspection.id).where(
                    and_(
                        Inspection.id == inspection_id,
                        Inspection.shop_id == shop_id,
                        Inspection.deleted_at.is_(None),
                    )
                )
            ).first()
            if exists is None:
                raise NotFound(inspection_id)

            stmt = (
                select(InspectionStateHistory, User.name, User.role)
                .outerjoin(User, User.id == InspectionStateHistory.changed_by)
                .where(InspectionStateHistory.inspection_id == inspection_id)
                .order_by(
                    InspectionStateHistory.changed_at.desc(),
                    InspectionStateHistory.version.desc(),
                )
            )
            return [
                HistoryEntry(
                    id=row.id,
                    inspection_id=row.inspection_id,
                    from_state=row.from_state,
                    to_state=row.to_state,
                    changed_by=row.changed_by,
                    changed_by_name=name,
                    changed_by_role=role,
                    change_reason=row.change_reason,
                    metadata=dict(row.extra_data or {}),
                    validation_passed=row.validation_passed,
                    validation_errors=list(row.validation_errors or []),
                    changed_at=row.changed_at,
                    version=row.version,
                )
                for row, name, role in db.execute(stmt).all()
            ]

    def statistics(
        self,
        shop_id: UUID,
        window_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> WorkflowStatistics:
        """
        Aggregate a shop's transitions of the last ``window_days`` days.

        Completion time runs from an inspection's earliest
        ``draft -> in_progress`` entry, wherever it falls, to each completion
        inside the window. Time in a state is measured between consecutive
        history entries of the same inspection.
        """
        if window_days is None:
            window_days = self.settings.statistics_window_days
        now = now or self.clock()
        since = now - timedelta(days=window_days)
        stats = WorkflowStatistics(shop_id=shop_id, window_days=window_days, since=since)

        with self.session_factory() as db:
            stmt = (
                select(
                    InspectionStateHistory.inspection_id,
                    InspectionStateHistory.from_state,
                    InspectionStateHistory.to_state,
                    InspectionStateHistory.changed_at,
                )
                .join(Inspection, Inspection.id == InspectionStateHistory.inspection_id)
                .where(
                    and_(
                        Inspection.shop_id == shop_id,
                        Inspection.deleted_at.is_(None),
                        InspectionStateHistory.changed_at >= since,
                        InspectionStateHistory.changed_at <= now,
                    )
                )
                .order_by(
                    InspectionStateHistory.inspection_id,
                    InspectionStateHistory.changed_at,
                    InspectionStateHistory.version,
                )
            )
            rows = db.execute(stmt).all()

            by_inspection: Dict[UUID, list] = defaultdict(list)
            for row in rows:
                key = transition_key(row.from_state, row.to_state)
                stats.transition_counts[key] = stats.transition_counts.get(key, 0) + 1
                by_inspection[row.inspection_id].append(row)
            stats.total_transitions = len(rows)

            completed_ids = [
                inspection_id
                for inspection_id, entries in by_inspection.items()
                if any(e.to_state == WorkflowState.COMPLETED.value for e in entries)
            ]
            starts = self._start_times(db, completed_ids)

        completion_hours = []
        for inspection_id in completed_ids:
            started = starts.get(inspection_id)
            if started is None:
                continue
            for entry in by_inspection[inspection_id]:
                if entry.to_state == WorkflowState.COMPLETED.value and entry.changed_at >= started:
                    completion_hours.append(_hours(entry.changed_at - started))
        if completion_hours:
            stats.avg_completion_hours = sum(completion_hours) / len(completion_hours)

        stats.avg_hours_in_state = self._time_in_state(by_inspection.values())
        stats.bottlenecks = self._bottlenecks(stats.avg_hours_in_state, by_inspection.values())
        return stats

    def inspections_by_state(
        self,
        shop_id: UUID,
        states: Iterable[Union[WorkflowState, str]],
        limit: int = 50,
    ) -> List[InspectionSummary]:
        """Inspections currently in any of ``states``, longest waiting first."""
        values = [WorkflowState(s).value for s in states]
        if not values:
            return []

        technician = aliased(User)
        now = self.clock()
        with self.session_factory() as db:
            stmt = (
                select(Inspection, Customer, Vehicle, technician.name)
                .outerjoin(Vehicle, Vehicle.id == Inspection.vehicle_id)
                .outerjoin(Customer, Customer.id == Vehicle.customer_id)
                .outerjoin(technician, technician.id == Inspection.technician_id)
                .where(
                    and_(
                        Inspection.shop_id == shop_id,
                        Inspection.workflow_state.in_(values),
                        Inspection.deleted_at.is_(None),
                    )
                )
                .order_by(Inspection.state_changed_at.asc())
                .limit(limit)
            )
            return [
                self._summary(inspection, customer, vehicle, technician_name, now)
                for inspection, customer, vehicle, technician_name in db.execute(stmt).all()
            ]

    def overdue_inspections(self, shop_id: UUID, now: Optional[datetime] = None) -> List[InspectionSummary]:
        """Inspections that have sat in a timed state longer than its configured timeout."""
        now = now or self.clock()
        timeouts = self.settings.state_timeouts
        overdue = []
        for summary in self.inspections_by_state(shop_id, list(timeouts), limit=1000):
            limit_minutes = timeouts[summary.workflow_state]
            if summary.state_changed_at is None:
                continue
            if now - summary.state_changed_at > timedelta(minutes=limit_minutes):
                summary.minutes_in_state = int((now - summary.state_changed_at).total_seconds() // 60)
                overdue.append(summary)
        if overdue:
            logger.info(f"{len(overdue)} overdue inspections for shop {shop_id}")
        return overdue

    @staticmethod
    def _start_times(db, inspection_ids: List[UUID]) -> Dict[UUID, datetime]:
        if not inspection_ids:
            return {}
        stmt = select(
            InspectionStateHistory.inspection_id,
            InspectionStateHistory.changed_at,
        ).where(
            and_(
                InspectionStateHistory.inspection_id.in_(inspection_ids),
                InspectionStateHistory.from_state == WorkflowState.DRAFT.value,
                InspectionStateHistory.to_state == WorkflowState.IN_PROGRESS.value,
            )
        )
        starts: Dict[UUID, datetime] = {}
        for inspection_id, changed_at in db.execute(stmt).all():
            if inspection_id not in starts or changed_at < starts[inspection_id]:
                starts[inspection_id] = changed_at
        return starts

    @staticmethod
    def _durations(groups) -> Dict[str, List[float]]:
        durations: Dict[str, List[float]] = defaultdict(list)
        for entries in groups:
            for previous, current in zip(entries, entries[1:]):
                durations[previous.to_state].append(_hours(current.changed_at - previous.changed_at))
        return durations

    def _time_in_state(self, groups) -> Dict[str, float]:
        return {
            state: sum(values) / len(values)
            for state, values in self._durations(groups).items()
        }

    def _bottlenecks(self, averages: Dict[str, float], groups) -> List[Bottleneck]:
        all_durations = [d for values in self._durations(groups).values() for d in values]
        if not all_durations:
            return []
        global_avg = sum(all_durations) / len(all_durations)
        threshold = global_avg * self.settings.bottleneck_threshold_multiple
        found = [
            Bottleneck(state, avg)
            for state, avg in averages.items()
            if avg > threshold
        ]
        return sorted(found, key=lambda b: b.avg_hours, reverse=True)

    @staticmethod
    def _summary(inspection, customer, vehicle, technician_name, now: datetime) -> InspectionSummary:
        minutes = None
        if inspection.state_changed_at is not None:
            minutes = int((now - inspection.state_changed_at).total_seconds() // 60)
        return InspectionSummary(
            id=inspection.id,
            workflow_state=inspection.workflow_state,
            version=inspection.version,
            state_changed_at=inspection.state_changed_at,
            customer_name=customer.full_name if customer else None,
            vehicle_info=vehicle.description if vehicle else None,
            technician_name=technician_name,
            minutes_in_state=minutes,
        )
