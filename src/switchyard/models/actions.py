"""Pending action lifecycle.

    pending ──► executing ──► executed
       │            │
       └────────────┴───────► failed

``executing`` is transient: it is set immediately before the side effect and
always resolved to a terminal status by the same handler invocation.
"""

from __future__ import annotations

from enum import Enum


class PendingActionStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    EXECUTED = "executed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PendingActionStatus.EXECUTED, PendingActionStatus.FAILED)


class ActionType(str, Enum):
    EXECUTE_STATEMENT = "execute_statement"
    EDIT_FILE = "edit_file"


ALLOWED_TRANSITIONS: dict[PendingActionStatus, frozenset[PendingActionStatus]] = {
    PendingActionStatus.PENDING: frozenset({
        PendingActionStatus.EXECUTING,
        PendingActionStatus.FAILED,
    }),
    PendingActionStatus.EXECUTING: frozenset({
        PendingActionStatus.EXECUTED,
        PendingActionStatus.FAILED,
    }),
    PendingActionStatus.EXECUTED: frozenset(),
    PendingActionStatus.FAILED: frozenset(),
}


class InvalidTransition(ValueError):
    """Raised when a status change is not in ALLOWED_TRANSITIONS."""


def check_transition(current: PendingActionStatus, target: PendingActionStatus) -> None:
    """Raise InvalidTransition unless ``current -> target`` is allowed."""
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(f"Cannot move action from '{current.value}' to '{target.value}'")
