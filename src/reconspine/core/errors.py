"""
Structured error types for the reconciliation engine.

Every failure the engine can raise or record is a :class:`ReconError`
subclass carrying a category, a retryable flag, structured context and an
optional chained cause. The hierarchy mirrors the engine's error taxonomy so
callers can route on type instead of parsing messages.

Manifesto:
    - **Typed taxonomy:** transient, permanent, conflict, state, validation
    - **Explicit retry semantics:** each error knows if it's retryable
    - **Rich context:** operation/discrepancy/connector ids travel with the error
    - **Error chaining:** the original exception is preserved as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                          ReconError                              │
        │        (category, retryable, context, cause)                     │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ConnectorError          StateError             ValidationError  │
        │  (CONNECTOR)             (STATE)                (VALIDATION)     │
        │     │                       │                                    │
        │  TransientConnectorError InvalidTransitionError  NotFoundError   │
        │  ConnectorTimeoutError   ActiveOperationError    ConfigError     │
        │  PermanentConnectorError StaleVersionError       ScheduleError   │
        │                                                                  │
        │  ConflictError (CONFLICT): always paired with a ConflictRecord   │
        └─────────────────────────────────────────────────────────────────┘

Propagation:
    Transient connector errors are absorbed by the retry loop. State and
    validation errors surface synchronously to the caller. Connector errors
    travel as values inside :class:`~reconspine.core.result.Err` rather than
    being raised across the connector boundary.

Tags:
    error-handling, exception-hierarchy, retry-logic, reconciliation

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for routing and result codes."""

    CONNECTOR = "CONNECTOR"
    CONFLICT = "CONFLICT"
    STATE = "STATE"
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    CONFIG = "CONFIG"
    SCHEDULE = "SCHEDULE"
    DATABASE = "DATABASE"
    INTERNAL = "INTERNAL"


class ErrorKind(str, Enum):
    """Outcome kind of a failed connector call, as recorded on an Attempt."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    CONFLICT = "conflict"


class ReconError(Exception):
    """
    Base exception for all reconciliation engine errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers can
    override either per instance.

    Examples:
        >>> err = ReconError("boom").with_context(operation_id="op-1")
        >>> err.to_dict()["context"]
        {'operation_id': 'op-1'}
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ReconError:
        """Add context to this error (fluent API)."""
        self.context.update({k: v for k, v in kwargs.items() if v is not None})
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.context:
            result["context"] = dict(self.context)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONNECTOR ERRORS
# =============================================================================


class ConnectorError(ReconError):
    """A connector call did not succeed.

    ``kind`` is what the Attempt log records; the state machine matches on it
    to pick between the retry path and the dead-letter path.
    """

    default_category = ErrorCategory.CONNECTOR
    kind: ErrorKind = ErrorKind.TRANSIENT

    @property
    def detail(self) -> str:
        """Attempt.error_detail rendering: ``"<kind>: <message>"``."""
        return f"{self.kind.value}: {self.message}"


class TransientConnectorError(ConnectorError):
    """Timeouts, 5xx responses, connection resets."""

    default_retryable = True
    kind = ErrorKind.TRANSIENT


class ConnectorTimeoutError(TransientConnectorError):
    """The connector call exceeded its deadline; server-side effect unknown."""

    def __init__(self, message: str = "connector call timed out", *, timeout: float | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.timeout = timeout
        if timeout is not None:
            self.context.setdefault("timeout_seconds", timeout)


class PermanentConnectorError(ConnectorError):
    """Validation rejection, not-found and similar failures retries cannot fix."""

    default_retryable = False
    kind = ErrorKind.PERMANENT


class ConflictError(ConnectorError):
    """The remediation is no longer valid given the target's current state."""

    default_category = ErrorCategory.CONFLICT
    default_retryable = True
    kind = ErrorKind.CONFLICT


# =============================================================================
# STATE ERRORS
# =============================================================================


class StateError(ReconError):
    """The entity is not in a state that allows the requested action."""

    default_category = ErrorCategory.STATE


class InvalidTransitionError(StateError):
    """Raised when an illegal status transition is attempted.

    Transition validation is deliberately strict. If a legitimate transition
    is blocked, add it to the transition table explicitly.
    """

    def __init__(self, current: str, target: str, entity: str = "Operation", **kwargs: Any) -> None:
        self.current = current
        self.target = target
        self.entity = entity
        super().__init__(f"Invalid {entity} transition: {current} → {target}", **kwargs)


class ActiveOperationError(StateError):
    """A discrepancy already has a non-terminal operation."""

    def __init__(self, discrepancy_id: str, operation_id: str | None = None, **kwargs: Any) -> None:
        self.discrepancy_id = discrepancy_id
        self.operation_id = operation_id
        message = f"Discrepancy '{discrepancy_id}' already has an active operation"
        if operation_id:
            message += f" ('{operation_id}')"
        super().__init__(message, **kwargs)
        self.with_context(discrepancy_id=discrepancy_id, operation_id=operation_id)


class StaleVersionError(StateError):
    """A compare-and-swap lost the race: the row moved on since it was read."""

    def __init__(self, entity_id: str, expected_status: str, expected_version: int, **kwargs: Any) -> None:
        self.entity_id = entity_id
        self.expected_status = expected_status
        self.expected_version = expected_version
        super().__init__(
            f"Stale write on '{entity_id}': expected status={expected_status} version={expected_version}",
            **kwargs,
        )


# =============================================================================
# REQUEST / CONFIG ERRORS
# =============================================================================


class ValidationError(ReconError):
    """Malformed request: unknown enum value, missing field, invalid combination."""

    default_category = ErrorCategory.VALIDATION

    def __init__(self, message: str, *, field: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.field = field
        if field:
            self.context.setdefault("field", field)


class NotFoundError(ReconError):
    """The referenced entity does not exist."""

    default_category = ErrorCategory.NOT_FOUND

    def __init__(self, entity: str, entity_id: str, **kwargs: Any) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} '{entity_id}' not found", **kwargs)


class ConfigError(ReconError):
    """Missing or invalid engine configuration (e.g. unregistered connector)."""

    default_category = ErrorCategory.CONFIG


class ScheduleError(ReconError):
    """Invalid schedule definition or a failure while firing a schedule."""

    default_category = ErrorCategory.SCHEDULE


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, ReconError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, ReconError):
        return error.category
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorCategory.CONNECTOR
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    return ErrorCategory.INTERNAL


def error_code_for(exc: Exception) -> str:
    """Map an engine error onto its stable result code."""
    if isinstance(exc, (ValidationError, ScheduleError)):
        return "VALIDATION_FAILED"
    if isinstance(exc, NotFoundError):
        return "NOT_FOUND"
    if isinstance(exc, ActiveOperationError):
        return "ACTIVE_OPERATION"
    if isinstance(exc, StateError):
        return "INVALID_STATE"
    if isinstance(exc, ConfigError):
        return "CONFIG_ERROR"
    return "INTERNAL"


__all__ = [
    "ErrorCategory",
    "ErrorKind",
    "ReconError",
    "ConnectorError",
    "TransientConnectorError",
    "ConnectorTimeoutError",
    "PermanentConnectorError",
    "ConflictError",
    "StateError",
    "InvalidTransitionError",
    "ActiveOperationError",
    "StaleVersionError",
    "ValidationError",
    "NotFoundError",
    "ConfigError",
    "ScheduleError",
    "is_retryable",
    "categorize_error",
    "error_code_for",
]
