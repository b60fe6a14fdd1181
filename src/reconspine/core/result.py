"""
Result type for explicit success/failure handling.

Connector adapters return ``Ok(receipt)`` or ``Err(ConnectorError)`` instead of
raising, so the operation state machine can pattern-match the outcome::

    match connector.apply(request):
        case Ok(receipt):
            ...
        case Err(PermanentConnectorError() as error):
            ...
        case Err(error):
            ...

Manifesto:
    - **Errors as values:** a failed connector call is data, not control flow
    - **Pattern matching:** frozen slots dataclasses support ``match``
    - **Exception bridge:** :func:`try_result_with` adapts code that raises

Tags:
    result-pattern, error-handling, functional-programming, reconspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from reconspine.core.errors import ReconError

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Get the value. Safe for Ok."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """Transform the value if Ok."""
        return Ok(f(self.value))

    def flat_map(self, f: Callable[[T], Result[U]]) -> Result[U]:
        """Chain to another Result-returning function."""
        return f(self.value)

    def map_err(self, f: Callable[[Exception], Exception]) -> Result[T]:
        return self

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, "value": self.value}

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """Failed result containing an error.

    Prefer a :class:`~reconspine.core.errors.ReconError` subclass as the
    error so kind, category and retry semantics travel with it.
    """

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the error. Use only when you're sure it's Ok."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """No-op for Err."""
        return Err(self.error)

    def flat_map(self, f: Callable[[T], Result[U]]) -> Result[U]:
        """No-op for Err."""
        return Err(self.error)

    def map_err(self, f: Callable[[Exception], Exception]) -> Result[T]:
        """Transform the error."""
        return Err(f(self.error))

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.error, ReconError):
            return {"ok": False, "error": self.error.to_dict()}
        return {
            "ok": False,
            "error": {
                "error_type": type(self.error).__name__,
                "message": str(self.error),
            },
        }

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Type alias for Result
Result = Ok[T] | Err[T]


def try_result_with(
    f: Callable[[], T],
    error_mapper: Callable[[Exception], Exception] | None = None,
) -> Result[T]:
    """Execute *f* and wrap its return value or raised exception.

    Args:
        f: Zero-argument callable that may raise exceptions
        error_mapper: Optional function to transform exceptions

    Returns:
        Ok[T] if f() succeeds, Err with mapped exception if f() raises
    """
    try:
        return Ok(f())
    except Exception as e:
        if error_mapper:
            return Err(error_mapper(e))
        return Err(e)


__all__ = [
    "Ok",
    "Err",
    "Result",
    "try_result_with",
]
