"""Workflow error taxonomy.

Errors are raised inside the transition transaction and converted to a
structured ``TransitionResult`` at the transaction boundary.
"""

from typing import Iterable, List, Optional


class WorkflowError(Exception):
    """Base class for recoverable workflow failures."""

    code = "workflow_error"

    def __init__(self, message: str, errors: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.message = message
        self.errors: List[str] = list(errors) if errors else [message]


class InvalidTransition(WorkflowError):
    """The requested edge is not part of the rule graph."""

    code = "invalid_transition"


class NoSuchTransition(InvalidTransition):
    """Rule table lookup failed for a state pair."""

    def __init__(self, from_state: str, to_state: str):
        super().__init__(f"Invalid transition from {from_state} to {to_state}")
        self.from_state = from_state
        self.to_state = to_state


class Unauthorized(WorkflowError):
    """The caller's role may not perform the transition."""

    code = "unauthorized"

    def __init__(self, role: str, message: Optional[str] = None):
        super().__init__(message or f"User role {role} is not authorized for this transition")
        self.role = role


class StateConflict(WorkflowError):
    """The inspection changed since the caller last read it."""

    code = "state_conflict"

    def __init__(self, expected: str, actual: str, message: Optional[str] = None):
        super().__init__(
            message or f"Inspection state has changed. Expected {expected}, found {actual}"
        )
        self.expected = expected
        self.actual = actual


class ConditionFailed(WorkflowError):
    """One or more pre-conditions did not hold."""

    code = "condition_failed"

    def __init__(self, errors: Iterable[str], failed_checks: Optional[Iterable[str]] = None):
        errors = list(errors)
        super().__init__("Transition conditions not met", errors)
        self.failed_checks = list(failed_checks or [])


class ValidationFailed(WorkflowError):
    """One or more business-rule validations blocked the transition."""

    code = "validation_failed"

    def __init__(self, errors: Iterable[str], failed_checks: Optional[Iterable[str]] = None):
        errors = list(errors)
        super().__init__("Transition validation failed", errors)
        self.failed_checks = list(failed_checks or [])


class NotFound(WorkflowError):
    """Inspection id unknown or outside the caller's shop."""

    code = "not_found"

    def __init__(self, inspection_id):
        super().__init__(f"Inspection {inspection_id} not found")
        self.inspection_id = inspection_id


class InternalError(WorkflowError):
    """Unexpected storage or programming failure; the transaction was rolled back."""

    code = "internal_error"
