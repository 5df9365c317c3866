"""Inspection workflow states and transition rules.

State Machine Diagram:

    ┌──────────┐
    │  DRAFT   │ ← Initial state (inspection created)
    └────┬─────┘
         │
    ┌────▼────────┐◄──────────────┐
    │ IN_PROGRESS │               │
    └────┬────────┘               │
         │                        │
    ┌────▼───────────┐      ┌─────┴────┐
    │ PENDING_REVIEW │─────►│ REJECTED │
    └────┬───────────┘      └──────────┘
         │
    ┌────▼─────┐◄───────────────────────┐
    │ APPROVED │                        │ admin override
    └────┬─────┘                        │ (reason required)
         │                              │
    ┌────▼─────────────┐          ┌─────┴─────┐
    │ SENT_TO_CUSTOMER │─────────►│ COMPLETED │
    └──────────────────┘          └───────────┘
"""

from enum import Enum
from typing import Dict, FrozenSet, List, NamedTuple, Optional, Set, Tuple, Union

from .actions import Action
from .checks import Condition, Validation
from .errors import NoSuchTransition


class WorkflowState(str, Enum):
    """Lifecycle stages of an inspection."""

    DRAFT = "draft"                        # Created, work not started
    IN_PROGRESS = "in_progress"            # Technician is inspecting
    PENDING_REVIEW = "pending_review"      # Submitted, awaiting a manager
    APPROVED = "approved"                  # Manager signed off
    REJECTED = "rejected"                  # Sent back to the technician
    SENT_TO_CUSTOMER = "sent_to_customer"  # Results delivered to the customer
    COMPLETED = "completed"                # Closed


class Role(str, Enum):
    """Caller roles that take part in the workflow."""

    TECHNICIAN = "technician"
    SHOP_MANAGER = "shop_manager"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: Union[str, "Role"]) -> "Role":
        """Resolve a role from its value or one of its legacy names."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        normalized = _ROLE_ALIASES.get(normalized, normalized)
        return cls(normalized)


_ROLE_ALIASES = {
    "mechanic": "technician",
    "tech": "technician",
    "manager": "shop_manager",
}


CheckName = Union[Condition, Validation, str]
ActionName = Union[Action, str]


class TransitionRule(NamedTuple):
    """Defines a legal state transition."""
    from_state: WorkflowState
    to_state: WorkflowState
    allowed_roles: FrozenSet[Role]
    conditions: Tuple[CheckName, ...] = ()
    validations: Tuple[CheckName, ...] = ()
    actions: Tuple[ActionName, ...] = ()

    def allows(self, role: Role) -> bool:
        return role in self.allowed_roles


_ALL_STAFF = frozenset({Role.TECHNICIAN, Role.SHOP_MANAGER, Role.ADMIN})
_MANAGERS = frozenset({Role.SHOP_MANAGER, Role.ADMIN})
_ADMIN_ONLY = frozenset({Role.ADMIN})


# Define all valid transitions
TRANSITION_RULES: List[TransitionRule] = [
    # Technician work
    TransitionRule(
        WorkflowState.DRAFT, WorkflowState.IN_PROGRESS, _ALL_STAFF,
        conditions=(Condition.MAY_ADD_ITEMS,),
        actions=(Action.START_TIMER,),
    ),
    TransitionRule(
        WorkflowState.IN_PROGRESS, WorkflowState.PENDING_REVIEW, _ALL_STAFF,
        conditions=(Condition.HAS_ITEMS, Condition.ALL_ITEMS_SCORED),
        validations=(Validation.CHECK_CRITICAL_ITEMS,),
        actions=(Action.CALC_DURATION, Action.NOTIFY_MANAGERS),
    ),

    # Manager review
    TransitionRule(
        WorkflowState.PENDING_REVIEW, WorkflowState.APPROVED, _MANAGERS,
        validations=(Validation.NO_BLOCKING_CRITICAL_ITEMS,),
        actions=(Action.SET_COMPLETION_TIME, Action.PREPARE_CUSTOMER_REPORT),
    ),
    TransitionRule(
        WorkflowState.PENDING_REVIEW, WorkflowState.REJECTED, _MANAGERS,
        conditions=(Condition.REASON_REQUIRED,),
        actions=(Action.NOTIFY_TECHNICIAN,),
    ),
    TransitionRule(
        WorkflowState.REJECTED, WorkflowState.IN_PROGRESS, _ALL_STAFF,
        actions=(Action.CLEAR_REJECTION_REASON,),
    ),

    # Customer delivery
    TransitionRule(
        WorkflowState.APPROVED, WorkflowState.SENT_TO_CUSTOMER, _MANAGERS,
        conditions=(Condition.CUSTOMER_HAS_PHONE,),
        actions=(Action.SEND_SMS, Action.CREATE_CUSTOMER_LINK),
    ),
    TransitionRule(
        WorkflowState.SENT_TO_CUSTOMER, WorkflowState.COMPLETED, _ALL_STAFF,
        actions=(Action.RECORD_COMPLETION,),
    ),

    # Correcting an erroneous completion
    TransitionRule(
        WorkflowState.COMPLETED, WorkflowState.APPROVED, _ADMIN_ONLY,
        conditions=(Condition.REASON_REQUIRED,),
    ),
]

# Build lookup tables for efficient access
RULES_BY_EDGE: Dict[Tuple[WorkflowState, WorkflowState], TransitionRule] = {}
RULES_BY_SOURCE: Dict[WorkflowState, List[TransitionRule]] = {}

for _rule in TRANSITION_RULES:
    RULES_BY_EDGE[(_rule.from_state, _rule.to_state)] = _rule
    RULES_BY_SOURCE.setdefault(_rule.from_state, []).append(_rule)


INITIAL_STATE = WorkflowState.DRAFT

# No outgoing transitions except the admin override
TERMINAL_STATES: Set[WorkflowState] = {
    WorkflowState.COMPLETED,
}

# States in which the technician is still working on the inspection
ACTIVE_STATES: Set[WorkflowState] = {
    WorkflowState.DRAFT,
    WorkflowState.IN_PROGRESS,
    WorkflowState.REJECTED,
}

# States whose results a customer may see
CUSTOMER_FACING_STATES: Set[WorkflowState] = {
    WorkflowState.SENT_TO_CUSTOMER,
    WorkflowState.COMPLETED,
}


def rules_from(state: WorkflowState) -> List[TransitionRule]:
    """Get all rules leaving the given state."""
    return list(RULES_BY_SOURCE.get(state, []))


def rule_for(from_state: WorkflowState, to_state: WorkflowState) -> Optional[TransitionRule]:
    """Get the rule for a state pair, or None when the edge does not exist."""
    return RULES_BY_EDGE.get((from_state, to_state))


def require_rule(from_state: WorkflowState, to_state: WorkflowState) -> TransitionRule:
    """Get the rule for a state pair.

    Raises:
        NoSuchTransition: If the edge is not part of the rule graph
    """
    rule = rule_for(from_state, to_state)
    if rule is None:
        raise NoSuchTransition(_value(from_state), _value(to_state))
    return rule


def valid_targets(state: WorkflowState, role: Role) -> List[WorkflowState]:
    """States the given role may move an inspection to from ``state``."""
    return [rule.to_state for rule in rules_from(state) if rule.allows(role)]


def _value(state: Union[WorkflowState, str]) -> str:
    return state.value if isinstance(state, WorkflowState) else str(state)
