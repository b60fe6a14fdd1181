"""Operation and run transition tables.

The tables are the single definition of which status changes are legal.
:class:`~reconspine.execution.engine.OperationEngine` validates every
transition against them before issuing the compare-and-swap, so an illegal
request fails fast with :class:`InvalidTransitionError` and never reaches
the database.

Operation transition graph::

    PENDING ──────────► IN_PROGRESS ──────────► COMPLETED
       │                 │   │   │
       │                 │   │   └──► AWAITING_SYSTEM ──► COMPLETED | FAILED
       │                 │   └──────► FAILED ──► PENDING      (automatic retry)
       │                 │                  └──► DEAD_LETTER ──► PENDING  (manual retry)
       │                 └──► PENDING (stale claim requeue)  └──► RESOLVED
       └──► CANCELLED ◄── IN_PROGRESS | AWAITING_SYSTEM
"""

from __future__ import annotations

from reconspine.core.enums import OperationStatus, RunStatus
from reconspine.core.errors import InvalidTransitionError

S = OperationStatus

OPERATION_TRANSITIONS: dict[OperationStatus, frozenset[OperationStatus]] = {
    S.PENDING: frozenset({S.IN_PROGRESS, S.CANCELLED}),
    S.IN_PROGRESS: frozenset({
        S.COMPLETED,
        S.FAILED,
        S.AWAITING_SYSTEM,
        S.CANCELLED,
        S.PENDING,
    }),
    S.AWAITING_SYSTEM: frozenset({S.COMPLETED, S.FAILED, S.CANCELLED}),
    S.FAILED: frozenset({S.PENDING, S.DEAD_LETTER}),
    S.DEAD_LETTER: frozenset({S.PENDING, S.RESOLVED}),
    S.COMPLETED: frozenset(),
    S.RESOLVED: frozenset(),
    S.CANCELLED: frozenset(),
}

# Statuses from which each operator action is legal.
RETRYABLE_FROM = frozenset({S.FAILED, S.DEAD_LETTER})
CANCELLABLE_FROM = frozenset({S.PENDING, S.IN_PROGRESS, S.AWAITING_SYSTEM})
RESOLVABLE_FROM = frozenset({S.DEAD_LETTER})

RUN_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.IN_PROGRESS, RunStatus.CANCELLED}),
    RunStatus.IN_PROGRESS: frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED}),
    RunStatus.COMPLETED: frozenset(),
    RunStatus.FAILED: frozenset(),
    RunStatus.CANCELLED: frozenset(),
}

# Run statuses an operator may resume with a fresh pass.
RESUMABLE_FROM = frozenset({RunStatus.FAILED, RunStatus.CANCELLED})


def can_transition(current: OperationStatus, target: OperationStatus) -> bool:
    return target in OPERATION_TRANSITIONS.get(current, frozenset())


def validate_transition(current: OperationStatus, target: OperationStatus) -> None:
    """Raise :class:`InvalidTransitionError` unless ``current → target`` is legal."""
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value, "Operation")


def validate_run_transition(current: RunStatus, target: RunStatus) -> None:
    if target not in RUN_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current.value, target.value, "ReconciliationRun")


def require_status(
    current: OperationStatus,
    allowed: frozenset[OperationStatus],
    target: OperationStatus,
) -> None:
    """Guard an operator action (retry/cancel/resolve) on its allowed sources."""
    if current not in allowed:
        raise InvalidTransitionError(current.value, target.value, "Operation")


__all__ = [
    "OPERATION_TRANSITIONS",
    "RUN_TRANSITIONS",
    "RETRYABLE_FROM",
    "CANCELLABLE_FROM",
    "RESOLVABLE_FROM",
    "RESUMABLE_FROM",
    "can_transition",
    "validate_transition",
    "validate_run_transition",
    "require_status",
]
