"""
Operations layer — the transport-agnostic surface of reconspine.

The ops package provides typed request/response functions that wrap the
engine, the reconciliation services and the repositories with consistent
patterns:

- All functions accept ``OperationContext`` as first argument
- All functions return ``OperationResult[T]`` / ``PagedResult[T]`` (never raise)
- Engine errors map onto stable codes (``VALIDATION_FAILED``, ``NOT_FOUND``,
  ``INVALID_STATE``, ``ACTIVE_OPERATION``, ``CONFIG_ERROR``, ``INTERNAL``)
- Mutating functions honour ``ctx.dry_run``

Usage::

    from reconspine.ops import OperationContext
    from reconspine.ops.discrepancies import list_discrepancies
    from reconspine.ops.requests import ListDiscrepanciesRequest

    ctx = OperationContext(conn=create_connection(init_schema=True))
    result = list_discrepancies(ctx, ListDiscrepanciesRequest(resolution_status="pending"))
    assert result.success
"""

from reconspine.ops.context import OperationContext
from reconspine.ops.result import OperationError, OperationResult, PagedResult

__all__ = [
    "OperationContext",
    "OperationError",
    "OperationResult",
    "PagedResult",
]
