"""Inspection workflow module for ShopInspect.

Implements the inspection state machine, its transition rules, and the
history and metrics views over recorded transitions.
"""

from .states import WorkflowState, Role, TransitionRule, TRANSITION_RULES, valid_targets
from .errors import (
    WorkflowError,
    InvalidTransition,
    NoSuchTransition,
    Unauthorized,
    StateConflict,
    ConditionFailed,
    ValidationFailed,
    NotFound,
    InternalError,
)
from .request import CallerContext, TransitionRequest
from .checks import Condition, Validation, WorkflowEvaluator
from .actions import Action, ActionDispatcher, QueuedAction, Notifier, NullNotifier
from .engine import WorkflowEngine, TransitionResult
from .history import WorkflowHistoryReader, HistoryEntry, WorkflowStatistics

__all__ = [
    "WorkflowState",
    "Role",
    "TransitionRule",
    "TRANSITION_RULES",
    "valid_targets",
    "WorkflowError",
    "InvalidTransition",
    "NoSuchTransition",
    "Unauthorized",
    "StateConflict",
    "ConditionFailed",
    "ValidationFailed",
    "NotFound",
    "InternalError",
    "CallerContext",
    "TransitionRequest",
    "Condition",
    "Validation",
    "WorkflowEvaluator",
    "Action",
    "ActionDispatcher",
    "QueuedAction",
    "Notifier",
    "NullNotifier",
    "WorkflowEngine",
    "TransitionResult",
    "WorkflowHistoryReader",
    "HistoryEntry",
    "WorkflowStatistics",
]
