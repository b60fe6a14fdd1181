"""Closed vocabularies used across the engine.

Values arriving as free-form strings (CLI flags, API payloads) are parsed
with :func:`parse_enum` at the boundary so that raw strings never reach the
state machine.

Tags:
    reconspine, enums, validation

Doc-Types:
    api-reference
"""

from __future__ import annotations

from enum import Enum
from typing import TypeVar

from reconspine.core.errors import ValidationError

E = TypeVar("E", bound=Enum)


class OperationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class Direction(str, Enum):
    """Which system is authoritative for a remediation.

    ``SOURCE_TO_TARGET`` writes the source of truth's view onto the target;
    ``TARGET_TO_SOURCE`` writes the target's view back into the directory.
    """

    SOURCE_TO_TARGET = "source_to_target"
    TARGET_TO_SOURCE = "target_to_source"


class OperationStatus(str, Enum):
    """Lifecycle of a corrective operation.

    Valid transition graph::

        PENDING          → IN_PROGRESS | CANCELLED
        IN_PROGRESS      → COMPLETED | FAILED | AWAITING_SYSTEM | CANCELLED
                           | PENDING (stale claim requeue)
        AWAITING_SYSTEM  → COMPLETED | FAILED | CANCELLED
        FAILED           → PENDING (retry) | DEAD_LETTER
        DEAD_LETTER      → PENDING (manual retry) | RESOLVED
        COMPLETED, RESOLVED, CANCELLED → (terminal)
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    AWAITING_SYSTEM = "awaiting_system"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_OPERATION_STATUSES


TERMINAL_OPERATION_STATUSES = frozenset({
    OperationStatus.COMPLETED,
    OperationStatus.RESOLVED,
    OperationStatus.CANCELLED,
})

ACTIVE_OPERATION_STATUSES = frozenset(set(OperationStatus) - TERMINAL_OPERATION_STATUSES)


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class DiscrepancyType(str, Enum):
    """Kinds of drift a reconciliation run can detect.

    - MISSING: identity in the source has no account on the target
    - ORPHAN: target account with no identity in the source
    - MISMATCH: linked pair whose attributes disagree
    - COLLISION: several target accounts claim the same identity
    - UNLINKED: correlated pair that is not linked yet
    - DELETED: identity deleted in the source, account still on the target
    """

    MISSING = "missing"
    ORPHAN = "orphan"
    MISMATCH = "mismatch"
    COLLISION = "collision"
    UNLINKED = "unlinked"
    DELETED = "deleted"


class ResolutionStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    IGNORED = "ignored"


class RemediationAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    LINK = "link"
    UNLINK = "unlink"
    INACTIVATE_IDENTITY = "inactivate_identity"


class ConflictOutcome(str, Enum):
    APPLIED = "applied"
    SUPERSEDED = "superseded"
    MERGED = "merged"
    REJECTED = "rejected"


class RunMode(str, Enum):
    FULL = "full"
    DELTA = "delta"


class RunStatus(str, Enum):
    """Reconciliation run status, independent of operation status.

    Valid transition graph::

        PENDING      → IN_PROGRESS | CANCELLED
        IN_PROGRESS  → COMPLETED | FAILED | CANCELLED
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunTrigger(str, Enum):
    MANUAL = "manual"
    SCHEDULE = "schedule"


class Frequency(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CRON = "cron"


def parse_enum(enum_cls: type[E], value: E | str | None, field: str) -> E:
    """Parse *value* into *enum_cls* or raise :class:`ValidationError`.

    Accepts enum members unchanged and strings case-insensitively.
    """
    if isinstance(value, enum_cls):
        return value
    if value is None or not isinstance(value, str):
        raise ValidationError(f"{field} is required", field=field)
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"Unknown {field} '{value}'. Expected one of: {allowed}", field=field
        ) from None


def parse_optional_enum(enum_cls: type[E], value: E | str | None, field: str) -> E | None:
    """Like :func:`parse_enum` but passes ``None`` and ``""`` through."""
    if value is None or value == "":
        return None
    return parse_enum(enum_cls, value, field)


__all__ = [
    "OperationType",
    "Direction",
    "OperationStatus",
    "TERMINAL_OPERATION_STATUSES",
    "ACTIVE_OPERATION_STATUSES",
    "AttemptOutcome",
    "DiscrepancyType",
    "ResolutionStatus",
    "RemediationAction",
    "ConflictOutcome",
    "RunMode",
    "RunStatus",
    "RunTrigger",
    "Frequency",
    "parse_enum",
    "parse_optional_enum",
]
