"""Caller context and transition request value objects."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from uuid import UUID

from .states import Role, WorkflowState


@dataclass(frozen=True)
class CallerContext:
    """Resolved identity of the caller, supplied by the auth layer and trusted as-is."""
    user_id: UUID
    role: Role
    shop_id: UUID

    def __post_init__(self):
        object.__setattr__(self, "role", Role.parse(self.role))


@dataclass
class TransitionRequest:
    """A single attempted move of an inspection between two states."""
    inspection_id: UUID
    from_state: WorkflowState
    to_state: WorkflowState
    caller: CallerContext
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.from_state = WorkflowState(self.from_state)
        self.to_state = WorkflowState(self.to_state)
        if self.metadata is None:
            self.metadata = {}

    @property
    def user_id(self) -> UUID:
        return self.caller.user_id

    @property
    def role(self) -> Role:
        return self.caller.role

    @property
    def shop_id(self) -> UUID:
        return self.caller.shop_id

    @property
    def has_reason(self) -> bool:
        return bool(self.reason and self.reason.strip())
