"""Inspection workflow engine.

Executes state transitions with permission checks, business-rule evaluation,
optimistic concurrency, history recording, and side-effect dispatch. Each
transition runs in its own database transaction: either the state change,
its history row, its audit record and its transactional actions all commit,
or none of them do.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Union
from uuid import UUID

from sqlalchemy import and_, select, update
from sqlalchemy.orm import Session, sessionmaker

from shopinspect.db.models.inspection import Inspection, InspectionStateHistory
from shopinspect.services.audit import AuditSink, DatabaseAuditSink

from .actions import ActionContext, ActionDispatcher
from .checks import InspectionDataSource, RuleEvaluation, SqlInspectionData, WorkflowEvaluator
from .errors import (
    ConditionFailed,
    InternalError,
    InvalidTransition,
    NotFound,
    StateConflict,
    Unauthorized,
    ValidationFailed,
    WorkflowError,
)
from .request import CallerContext, TransitionRequest
from .states import Role, TransitionRule, WorkflowState, require_rule, valid_targets

logger = logging.getLogger(__name__)


FORCE_REASON_PREFIX = "FORCE TRANSITION: "


@dataclass
class TransitionResult:
    """Structured outcome of a transition attempt."""
    success: bool
    inspection_id: UUID
    from_state: Optional[str] = None
    to_state: Optional[str] = None
    version: Optional[int] = None
    error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    failed_checks: List[str] = field(default_factory=list)
    failed_deliveries: List[str] = field(default_factory=list)
    forced: bool = False

    @classmethod
    def failure(
        cls,
        exc: WorkflowError,
        inspection_id: UUID,
        from_state: Optional[str] = None,
        to_state: Optional[str] = None,
        warnings: Optional[List[str]] = None,
    ) -> "TransitionResult":
        return cls(
            success=False,
            inspection_id=inspection_id,
            from_state=from_state,
            to_state=to_state,
            error=exc.code,
            errors=list(exc.errors),
            warnings=list(warnings or []),
            failed_checks=list(getattr(exc, "failed_checks", [])),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to a dictionary for an API response."""
        return {
            "success": self.success,
            "inspection_id": str(self.inspection_id),
            "from_state": self.from_state,
            "to_state": self.to_state,
            "version": self.version,
            "error": self.error,
            "errors": self.errors,
            "warnings": self.warnings,
            "failed_checks": self.failed_checks,
            "failed_deliveries": self.failed_deliveries,
            "forced": self.forced,
        }


class _Snapshot(NamedTuple):
    state: WorkflowState
    version: int


class _Outcome(NamedTuple):
    version: int
    warnings: List[str]
    context: Optional[ActionContext]


def _value(state: Union[WorkflowState, str, None]) -> Optional[str]:
    if state is None:
        return None
    return state.value if isinstance(state, WorkflowState) else str(state)


class WorkflowEngine:
    """
    Transition executor for inspection workflows.

    The engine holds no workflow state of its own: the inspection row's
    ``version`` is re-read on every attempt and the write is a
    compare-and-swap on that version, so of two callers racing on the same
    inspection exactly one commits and the other gets ``StateConflict``.
    Retrying is left to the caller.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        dispatcher: Optional[ActionDispatcher] = None,
        audit_sink: Optional[AuditSink] = None,
        data_source_factory: Callable[[Session], InspectionDataSource] = SqlInspectionData,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """
        Initialize the engine.

        Args:
            session_factory: Factory producing one session per transition
            dispatcher: Action dispatcher (defaults to one with a logging notifier)
            audit_sink: Destination for audit records (defaults to the audit_logs table)
            data_source_factory: Builds the read-only data access used by checks
            clock: Source of naive UTC timestamps
        """
        self.session_factory = session_factory
        self.dispatcher = dispatcher or ActionDispatcher()
        self.audit_sink = audit_sink or DatabaseAuditSink()
        self.data_source_factory = data_source_factory
        self.clock = clock

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def execute(
        self,
        inspection_id: UUID,
        from_state: Union[WorkflowState, str],
        to_state: Union[WorkflowState, str],
        user_id: UUID,
        role: Union[Role, str],
        shop_id: UUID,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TransitionResult:
        """
        Move an inspection from ``from_state`` to ``to_state``.

        Returns:
            TransitionResult; on failure ``error`` holds the error code and
            ``errors`` every blocking reason
        """
        try:
            request = self._build_request(
                inspection_id, from_state, to_state, user_id, role, shop_id, reason, metadata
            )
        except WorkflowError as exc:
            return TransitionResult.failure(exc, inspection_id, _value(from_state), _value(to_state))
        return self.apply(request)

    def apply(self, request: TransitionRequest) -> TransitionResult:
        """Execute an already-built transition request."""
        from_value = request.from_state.value
        to_value = request.to_state.value
        try:
            with self.session_factory.begin() as db:
                outcome = self._transition(db, request)
        except WorkflowError as exc:
            logger.warning(
                f"Transition {from_value} -> {to_value} rejected for inspection "
                f"{request.inspection_id}: {exc.code} {exc.errors}"
            )
            return TransitionResult.failure(
                exc, request.inspection_id, from_value, to_value,
                warnings=getattr(exc, "warnings", None),
            )
        except Exception as exc:
            logger.exception(
                f"Transition {from_value} -> {to_value} failed for inspection {request.inspection_id}"
            )
            return TransitionResult.failure(
                InternalError(f"Internal error during transition: {exc}"),
                request.inspection_id, from_value, to_value,
            )

        failed_deliveries = self.dispatcher.flush(outcome.context) if outcome.context else []

        logger.info(
            f"Inspection {request.inspection_id} transitioned {from_value} -> {to_value} "
            f"by {request.user_id} ({request.role.value}), version {outcome.version}"
        )
        return TransitionResult(
            success=True,
            inspection_id=request.inspection_id,
            from_state=from_value,
            to_state=to_value,
            version=outcome.version,
            warnings=outcome.warnings,
            failed_deliveries=failed_deliveries,
        )

    def force_transition(
        self,
        inspection_id: UUID,
        to_state: Union[WorkflowState, str],
        user_id: UUID,
        role: Union[Role, str],
        shop_id: UUID,
        reason: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
        *,
        from_state: Optional[Union[WorkflowState, str]] = None,
    ) -> TransitionResult:
        """
        Move an inspection to any state, bypassing the rule graph and checks.

        Admin only and a reason is mandatory. The history row is marked
        ``validation_passed = False`` with ``forced = True`` in its metadata.
        No actions run. When ``from_state`` is given it is compared against
        the stored state like a regular transition.
        """
        to_value = _value(to_state)
        try:
            caller = CallerContext(user_id=user_id, role=self._parse_role(role), shop_id=shop_id)
            if caller.role != Role.ADMIN:
                raise Unauthorized(caller.role.value, "Force transition requires the admin role")
            if not reason or not reason.strip():
                raise ValidationFailed(["Reason is required for force transition"])
            target = self._parse_state(to_state)
            expected = self._parse_state(from_state) if from_state is not None else None
        except WorkflowError as exc:
            return TransitionResult.failure(exc, inspection_id, _value(from_state), to_value)

        extra = dict(metadata or {})
        extra.update({"forced": True, "original_reason": reason})

        try:
            with self.session_factory.begin() as db:
                snapshot = self._read_snapshot(db, inspection_id, shop_id)
                if expected is not None and snapshot.state != expected:
                    raise StateConflict(expected.value, snapshot.state.value)

                now = self.clock()
                version = self._write_state(db, inspection_id, snapshot, target, user_id, now)
                self._append_history(
                    db,
                    inspection_id=inspection_id,
                    from_state=snapshot.state,
                    to_state=target,
                    user_id=user_id,
                    reason=f"{FORCE_REASON_PREFIX}{reason}",
                    extra=extra,
                    validation_passed=False,
                    at=now,
                    version=version,
                )
                self.audit_sink.record_transition(
                    db,
                    shop_id=shop_id,
                    inspection_id=inspection_id,
                    user_id=user_id,
                    role=caller.role.value,
                    from_state=snapshot.state.value,
                    to_state=target.value,
                    version=version,
                    reason=reason,
                    forced=True,
                    at=now,
                )
        except WorkflowError as exc:
            logger.warning(f"Force transition rejected for inspection {inspection_id}: {exc.errors}")
            return TransitionResult.failure(exc, inspection_id, _value(from_state), to_value)
        except Exception as exc:
            logger.exception(f"Force transition failed for inspection {inspection_id}")
            return TransitionResult.failure(
                InternalError(f"Internal error during force transition: {exc}"),
                inspection_id, _value(from_state), to_value,
            )

        logger.warning(
            f"Inspection {inspection_id} FORCED {snapshot.state.value} -> {target.value} "
            f"by {user_id}: {reason}"
        )
        return TransitionResult(
            success=True,
            inspection_id=inspection_id,
            from_state=snapshot.state.value,
            to_state=target.value,
            version=version,
            forced=True,
        )

    # ------------------------------------------------------------------
    # Dry runs and lookups
    # ------------------------------------------------------------------

    def validate(
        self,
        inspection_id: UUID,
        from_state: Union[WorkflowState, str],
        to_state: Union[WorkflowState, str],
        role: Union[Role, str],
        shop_id: UUID,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[UUID] = None,
    ) -> TransitionResult:
        """Run the permission, state and rule checks without changing anything."""
        try:
            request = self._build_request(
                inspection_id, from_state, to_state, user_id, role, shop_id, reason, metadata
            )
            db = self.session_factory()
            try:
                rule, snapshot, evaluation = self._check(db, request)
            finally:
                db.rollback()
                db.close()
            self._raise_for(evaluation)
        except WorkflowError as exc:
            return TransitionResult.failure(
                exc, inspection_id, _value(from_state), _value(to_state),
                warnings=getattr(exc, "warnings", None),
            )

        return TransitionResult(
            success=True,
            inspection_id=inspection_id,
            from_state=request.from_state.value,
            to_state=request.to_state.value,
            version=snapshot.version,
            warnings=evaluation.warnings,
        )

    def can_transition(
        self,
        inspection_id: UUID,
        from_state: Union[WorkflowState, str],
        to_state: Union[WorkflowState, str],
        role: Union[Role, str],
        shop_id: UUID,
        reason: Optional[str] = None,
    ) -> bool:
        return self.validate(inspection_id, from_state, to_state, role, shop_id, reason).success

    def get_current_state(self, inspection_id: UUID, shop_id: UUID) -> Optional[WorkflowState]:
        """Current state of an inspection, or None when it is not visible to the shop."""
        with self.session_factory() as db:
            try:
                return self._read_snapshot(db, inspection_id, shop_id).state
            except NotFound:
                return None

    def available_transitions(
        self,
        inspection_id: UUID,
        role: Union[Role, str],
        shop_id: UUID,
    ) -> List[WorkflowState]:
        """
        Target states the role may request from the inspection's current state.

        Raises:
            Unauthorized: If the role is not a workflow role
        """
        caller_role = self._parse_role(role)
        state = self.get_current_state(inspection_id, shop_id)
        if state is None:
            return []
        return valid_targets(state, caller_role)

    # ------------------------------------------------------------------
    # Transaction steps
    # ------------------------------------------------------------------

    def _transition(self, db: Session, request: TransitionRequest) -> _Outcome:
        rule, snapshot, evaluation = self._check(db, request)
        self._raise_for(evaluation)

        now = self.clock()
        version = self._write_state(
            db, request.inspection_id, snapshot, request.to_state, request.user_id, now
        )

        extra = dict(request.metadata)
        if evaluation.warnings:
            extra.setdefault("warnings", list(evaluation.warnings))
        self._append_history(
            db,
            inspection_id=request.inspection_id,
            from_state=snapshot.state,
            to_state=request.to_state,
            user_id=request.user_id,
            reason=request.reason,
            extra=extra,
            validation_passed=True,
            at=now,
            version=version,
        )

        context = ActionContext(
            db=db,
            inspection_id=request.inspection_id,
            shop_id=request.shop_id,
            user_id=request.user_id,
            from_state=snapshot.state.value,
            to_state=request.to_state.value,
            now=now,
            reason=request.reason,
            metadata=dict(request.metadata),
            warnings=list(evaluation.warnings),
        )
        self.dispatcher.run(rule.actions, context)

        self.audit_sink.record_transition(
            db,
            shop_id=request.shop_id,
            inspection_id=request.inspection_id,
            user_id=request.user_id,
            role=request.role.value,
            from_state=snapshot.state.value,
            to_state=request.to_state.value,
            version=version,
            reason=request.reason,
            details={"actions": context.executed, "skipped_actions": context.skipped},
            at=now,
        )
        return _Outcome(version=version, warnings=list(evaluation.warnings), context=context)

    def _check(self, db: Session, request: TransitionRequest):
        rule = require_rule(request.from_state, request.to_state)
        if not rule.allows(request.role):
            raise Unauthorized(request.role.value)

        snapshot = self._read_snapshot(db, request.inspection_id, request.shop_id)
        if snapshot.state != request.from_state:
            raise StateConflict(request.from_state.value, snapshot.state.value)

        evaluator = WorkflowEvaluator(self.data_source_factory(db))
        return rule, snapshot, evaluator.evaluate(rule, request)

    @staticmethod
    def _raise_for(evaluation: RuleEvaluation) -> None:
        if evaluation.ok:
            return
        if evaluation.condition_errors:
            exc = ConditionFailed(evaluation.errors, evaluation.failed_checks)
        else:
            exc = ValidationFailed(evaluation.errors, evaluation.failed_checks)
        exc.warnings = list(evaluation.warnings)
        raise exc

    def _read_snapshot(self, db: Session, inspection_id: UUID, shop_id: UUID) -> _Snapshot:
        stmt = select(Inspection.workflow_state, Inspection.version).where(
            and_(
                Inspection.id == inspection_id,
                Inspection.shop_id == shop_id,
                Inspection.deleted_at.is_(None),
            )
        )
        row = db.execute(stmt).first()
        if row is None:
            raise NotFound(inspection_id)
        return _Snapshot(WorkflowState(row.workflow_state), row.version)

    def _write_state(
        self,
        db: Session,
        inspection_id: UUID,
        snapshot: _Snapshot,
        to_state: WorkflowState,
        user_id: UUID,
        now: datetime,
    ) -> int:
        """Compare-and-swap the state on the version that was read."""
        new_version = snapshot.version + 1
        stmt = (
            update(Inspection)
            .where(
                and_(
                    Inspection.id == inspection_id,
                    Inspection.version == snapshot.version,
                    Inspection.workflow_state == snapshot.state.value,
                )
            )
            .values(
                workflow_state=to_state.value,
                previous_state=snapshot.state.value,
                version=new_version,
                state_changed_at=now,
                state_changed_by=user_id,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = db.execute(stmt)
        if result.rowcount != 1:
            current = db.execute(
                select(Inspection.workflow_state).where(Inspection.id == inspection_id)
            ).scalar_one_or_none()
            raise StateConflict(
                snapshot.state.value,
                current or "unknown",
                f"Inspection {inspection_id} was modified concurrently "
                f"(expected {snapshot.state.value} at version {snapshot.version})",
            )
        return new_version

    @staticmethod
    def _append_history(
        db: Session,
        *,
        inspection_id: UUID,
        from_state: WorkflowState,
        to_state: WorkflowState,
        user_id: UUID,
        reason: Optional[str],
        extra: Dict[str, Any],
        validation_passed: bool,
        at: datetime,
        version: Optional[int] = None,
    ) -> InspectionStateHistory:
        entry = InspectionStateHistory(
            inspection_id=inspection_id,
            from_state=from_state.value,
            to_state=to_state.value,
            changed_by=user_id,
            change_reason=reason,
            extra_data=extra,
            validation_passed=validation_passed,
            validation_errors=[],
            changed_at=at,
            version=version,
        )
        db.add(entry)
        db.flush()
        return entry

    # ------------------------------------------------------------------
    # Input parsing
    # ------------------------------------------------------------------

    def _build_request(
        self,
        inspection_id: UUID,
        from_state: Union[WorkflowState, str],
        to_state: Union[WorkflowState, str],
        user_id: Optional[UUID],
        role: Union[Role, str],
        shop_id: UUID,
        reason: Optional[str],
        metadata: Optional[Dict[str, Any]],
    ) -> TransitionRequest:
        caller = CallerContext(user_id=user_id, role=self._parse_role(role), shop_id=shop_id)
        source = self._parse_state(from_state)
        target = self._parse_state(to_state)
        return TransitionRequest(
            inspection_id=inspection_id,
            from_state=source,
            to_state=target,
            caller=caller,
            reason=reason,
            metadata=dict(metadata or {}),
        )

    @staticmethod
    def _parse_state(value: Union[WorkflowState, str]) -> WorkflowState:
        try:
            return WorkflowState(value)
        except ValueError:
            raise InvalidTransition(f"Unknown workflow state: {value}")

    @staticmethod
    def _parse_role(value: Union[Role, str]) -> Role:
        try:
            return Role.parse(value)
        except ValueError:
            raise Unauthorized(str(value), f"Unknown role: {value}")
