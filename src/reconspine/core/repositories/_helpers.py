"""Shared helpers for repository classes.

Tags:
    reconspine, repository, helpers

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from reconspine.core.models import dump_json
from reconspine.core.timestamps import to_iso


@dataclass(frozen=True, slots=True)
class PageSlice:
    """Pagination params used by list operations."""

    limit: int = 50
    offset: int = 0


def _build_where(
    conditions: dict[str, Any],
    ph: Callable[[int], str],
    *,
    extra_clauses: list[str] | None = None,
    extra_params: tuple = (),
) -> tuple[str, tuple]:
    """Build a WHERE clause from a conditions dict.

    Returns ``(where_fragment, params_tuple)``.  Skips ``None`` values.
    ``extra_clauses`` are appended literally; their bound values go in
    ``extra_params`` in the same order.
    """
    parts: list[str] = []
    params: list[Any] = []
    for col, val in conditions.items():
        if val is None:
            continue
        parts.append(f"{col} = {ph(1)}")
        params.append(val)
    if extra_clauses:
        parts.extend(extra_clauses)
        params.extend(extra_params)
    where = " AND ".join(parts) if parts else "1=1"
    return where, tuple(params)


def _set_clause(fields: dict[str, Any], ph: Callable[[int], str]) -> tuple[str, tuple]:
    """``col = ?, col2 = ?`` fragment for an UPDATE plus its params."""
    parts = [f"{col} = {ph(1)}" for col in fields]
    return ", ".join(parts), tuple(fields.values())


def _column_value(value: Any) -> Any:
    """Coerce a Python value into its stored column form."""
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (dict, list)):
        return dump_json(value)
    if isinstance(value, bool):
        return 1 if value else 0
    return value
