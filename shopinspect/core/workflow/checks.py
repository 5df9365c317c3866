"""Condition and validation checks for workflow transitions.

Conditions are hard pre-checks: an unmet condition blocks the transition.
Validations are business-rule checks that either block (errors) or merely
advise (warnings). Both are identified by closed enums and dispatched through
a registry; identifiers the registry does not know produce a warning instead
of an error so that a partially rolled-out rule table keeps working.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Protocol, Union
from uuid import UUID

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from .request import TransitionRequest
    from .states import TransitionRule

logger = logging.getLogger(__name__)


NEEDS_IMMEDIATE = "needs_immediate"


class Condition(str, Enum):
    """Pre-checks that gate whether a transition may be attempted."""

    MAY_ADD_ITEMS = "may_add_items"
    HAS_ITEMS = "has_items"
    ALL_ITEMS_SCORED = "all_items_scored"
    REASON_REQUIRED = "reason_required"
    CUSTOMER_HAS_PHONE = "customer_has_phone"


class Validation(str, Enum):
    """Business-rule checks that may block or warn."""

    CHECK_CRITICAL_ITEMS = "check_critical_items"
    NO_BLOCKING_CRITICAL_ITEMS = "no_blocking_critical_items"


# Names used by older rule tables
_CONDITION_ALIASES = {
    "inspection_has_items_or_can_add": Condition.MAY_ADD_ITEMS,
    "inspection_has_items": Condition.HAS_ITEMS,
    "all_items_have_status": Condition.ALL_ITEMS_SCORED,
    "all_items_assessed": Condition.ALL_ITEMS_SCORED,
    "rejection_reason_provided": Condition.REASON_REQUIRED,
    "rejection_reason": Condition.REASON_REQUIRED,
    "admin_override_reason": Condition.REASON_REQUIRED,
    "customer_contact_info": Condition.CUSTOMER_HAS_PHONE,
}


@dataclass
class CheckResult:
    """Outcome of a single check. ``ok`` is False only when errors were recorded."""
    ok: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def fail(self, message: str) -> "CheckResult":
        self.ok = False
        self.errors.append(message)
        return self

    def warn(self, message: str) -> "CheckResult":
        self.warnings.append(message)
        return self


@dataclass
class RuleEvaluation:
    """Aggregated outcome of every condition and validation on a rule."""
    condition_errors: List[str] = field(default_factory=list)
    validation_errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    failed_conditions: List[str] = field(default_factory=list)
    failed_validations: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.condition_errors and not self.validation_errors

    @property
    def errors(self) -> List[str]:
        return self.condition_errors + self.validation_errors

    @property
    def failed_checks(self) -> List[str]:
        return self.failed_conditions + self.failed_validations


class InspectionDataSource(Protocol):
    """Read-only queries the checks need about an inspection."""

    def count_items(self, inspection_id: UUID) -> int: ...

    def count_unscored_items(self, inspection_id: UUID) -> int: ...

    def count_items_in_condition(self, inspection_id: UUID, condition: str) -> int: ...

    def customer_phone(self, inspection_id: UUID) -> Optional[str]: ...


class SqlInspectionData:
    """InspectionDataSource backed by the current SQLAlchemy session."""

    def __init__(self, db: "Session"):
        self.db = db

    def count_items(self, inspection_id: UUID) -> int:
        from sqlalchemy import func, select

        from shopinspect.db.models.inspection import InspectionItem

        stmt = select(func.count(InspectionItem.id)).where(
            InspectionItem.inspection_id == inspection_id
        )
        return self.db.execute(stmt).scalar_one()

    def count_unscored_items(self, inspection_id: UUID) -> int:
        from sqlalchemy import and_, func, select

        from shopinspect.db.models.inspection import InspectionItem

        stmt = select(func.count(InspectionItem.id)).where(
            and_(
                InspectionItem.inspection_id == inspection_id,
                InspectionItem.condition.is_(None),
            )
        )
        return self.db.execute(stmt).scalar_one()

    def count_items_in_condition(self, inspection_id: UUID, condition: str) -> int:
        from sqlalchemy import and_, func, select

        from shopinspect.db.models.inspection import InspectionItem

        stmt = select(func.count(InspectionItem.id)).where(
            and_(
                InspectionItem.inspection_id == inspection_id,
                InspectionItem.condition == condition,
            )
        )
        return self.db.execute(stmt).scalar_one()

    def customer_phone(self, inspection_id: UUID) -> Optional[str]:
        from sqlalchemy import select

        from shopinspect.db.models.customer import Customer, Vehicle
        from shopinspect.db.models.inspection import Inspection

        stmt = (
            select(Customer.phone)
            .join(Vehicle, Vehicle.customer_id == Customer.id)
            .join(Inspection, Inspection.vehicle_id == Vehicle.id)
            .where(Inspection.id == inspection_id)
        )
        return self.db.execute(stmt).scalars().first()


CheckHandler = Callable[[InspectionDataSource, "TransitionRequest"], CheckResult]


def _tagged(name: Enum, message: str) -> str:
    return f"{message} ({name.value})"


def _may_add_items(data: InspectionDataSource, request: "TransitionRequest") -> CheckResult:
    # Items can still be added while the inspection is in progress
    return CheckResult()


def _has_items(data: InspectionDataSource, request: "TransitionRequest") -> CheckResult:
    result = CheckResult()
    if data.count_items(request.inspection_id) == 0:
        result.fail(_tagged(
            Condition.HAS_ITEMS,
            "Inspection must have at least one item to submit for review",
        ))
    return result


def _all_items_scored(data: InspectionDataSource, request: "TransitionRequest") -> CheckResult:
    result = CheckResult()
    unscored = data.count_unscored_items(request.inspection_id)
    if unscored > 0:
        result.fail(_tagged(
            Condition.ALL_ITEMS_SCORED,
            f"All inspection items must have a condition status ({unscored} unscored)",
        ))
    return result


def _reason_required(data: InspectionDataSource, request: "TransitionRequest") -> CheckResult:
    result = CheckResult()
    if not request.has_reason:
        result.fail(_tagged(Condition.REASON_REQUIRED, "A reason is required for this transition"))
    return result


def _customer_has_phone(data: InspectionDataSource, request: "TransitionRequest") -> CheckResult:
    result = CheckResult()
    phone = data.customer_phone(request.inspection_id)
    if not phone or not phone.strip():
        result.fail(_tagged(
            Condition.CUSTOMER_HAS_PHONE,
            "Customer must have a phone number to send inspection results",
        ))
    return result


def _check_critical_items(data: InspectionDataSource, request: "TransitionRequest") -> CheckResult:
    result = CheckResult()
    critical = data.count_items_in_condition(request.inspection_id, NEEDS_IMMEDIATE)
    if critical > 0:
        result.warn(f"{critical} critical safety items found - requires manager approval")
    return result


def _no_blocking_critical_items(data: InspectionDataSource, request: "TransitionRequest") -> CheckResult:
    result = CheckResult()
    critical = data.count_items_in_condition(request.inspection_id, NEEDS_IMMEDIATE)
    if critical > 0:
        result.fail(_tagged(
            Validation.NO_BLOCKING_CRITICAL_ITEMS,
            f"Cannot approve with unresolved critical items ({critical} critical safety items)",
        ))
    return result


CONDITION_HANDLERS: Dict[Condition, CheckHandler] = {
    Condition.MAY_ADD_ITEMS: _may_add_items,
    Condition.HAS_ITEMS: _has_items,
    Condition.ALL_ITEMS_SCORED: _all_items_scored,
    Condition.REASON_REQUIRED: _reason_required,
    Condition.CUSTOMER_HAS_PHONE: _customer_has_phone,
}

VALIDATION_HANDLERS: Dict[Validation, CheckHandler] = {
    Validation.CHECK_CRITICAL_ITEMS: _check_critical_items,
    Validation.NO_BLOCKING_CRITICAL_ITEMS: _no_blocking_critical_items,
}


def resolve_condition(name: Union[Condition, str]) -> Optional[Condition]:
    """Map a condition identifier to the enum, or None when unknown."""
    if isinstance(name, Condition):
        return name
    try:
        return Condition(name)
    except ValueError:
        return _CONDITION_ALIASES.get(name)


def resolve_validation(name: Union[Validation, str]) -> Optional[Validation]:
    """Map a validation identifier to the enum, or None when unknown."""
    if isinstance(name, Validation):
        return name
    try:
        return Validation(name)
    except ValueError:
        return None


def _name(value: Union[Enum, str]) -> str:
    return value.value if isinstance(value, Enum) else str(value)


class WorkflowEvaluator:
    """
    Evaluates the conditions and validations attached to transition rules.

    Every check runs even after an earlier one failed, so a rejected
    transition reports all of its blocking reasons at once.
    """

    def __init__(self, data: InspectionDataSource):
        self.data = data

    def check_condition(
        self,
        name: Union[Condition, str],
        request: "TransitionRequest",
    ) -> CheckResult:
        condition = resolve_condition(name)
        handler = CONDITION_HANDLERS.get(condition) if condition else None
        if handler is None:
            logger.warning(f"Unknown workflow condition: {_name(name)}")
            return CheckResult().warn(f"Unknown condition: {_name(name)}")
        return handler(self.data, request)

    def check_validation(
        self,
        name: Union[Validation, str],
        request: "TransitionRequest",
    ) -> CheckResult:
        validation = resolve_validation(name)
        handler = VALIDATION_HANDLERS.get(validation) if validation else None
        if handler is None:
            logger.warning(f"Unknown workflow validation: {_name(name)}")
            return CheckResult().warn(f"Unknown validation: {_name(name)}")
        return handler(self.data, request)

    def evaluate(self, rule: "TransitionRule", request: "TransitionRequest") -> RuleEvaluation:
        """Run every condition and validation of ``rule`` against ``request``."""
        evaluation = RuleEvaluation()

        for condition in rule.conditions:
            result = self.check_condition(condition, request)
            evaluation.warnings.extend(result.warnings)
            if not result.ok:
                evaluation.condition_errors.extend(result.errors)
                evaluation.failed_conditions.append(_name(condition))

        for validation in rule.validations:
            result = self.check_validation(validation, request)
            evaluation.warnings.extend(result.warnings)
            if not result.ok:
                evaluation.validation_errors.extend(result.errors)
                evaluation.failed_validations.append(_name(validation))

        return evaluation
