"""Bulk remediation — one action fanned out over many discrepancies.

Each item is remediated independently: a rejected or broken item is
reported in its own result and never stops the rest of the batch. A dry
run previews every item with zero persisted side effects.

Example::

    coordinator = BulkRemediationCoordinator(service)
    result = coordinator.run(
        [BulkItem("d-1", "create", "source_to_target"),
         BulkItem("d-2", "create", "source_to_target")],
        dry_run=True,
    )
    result.counts   # {"total": 2, "created": 0, "previewed": 2, "failed": 0}
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from reconspine.core.enums import Direction, RemediationAction
from reconspine.core.errors import ReconError, ValidationError, error_code_for
from reconspine.core.logging import get_logger
from reconspine.reconciliation.remediation import RemediationService

logger = get_logger(__name__)


@dataclass(frozen=True)
class BulkItem:
    discrepancy_id: str
    action: RemediationAction | str
    direction: Direction | str

    @classmethod
    def coerce(cls, item: BulkItem | Mapping[str, Any]) -> BulkItem:
        if isinstance(item, BulkItem):
            return item
        return cls(
            discrepancy_id=item.get("discrepancy_id") or "",
            action=item.get("action") or "",
            direction=item.get("direction") or "",
        )


@dataclass
class BulkItemResult:
    discrepancy_id: str
    ok: bool
    operation_id: str | None = None
    preview: dict[str, Any] | None = None
    error: str | None = None
    error_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "discrepancy_id": self.discrepancy_id,
            "ok": self.ok,
            "operation_id": self.operation_id,
            "preview": self.preview,
            "error": self.error,
            "error_code": self.error_code,
        }


@dataclass
class BulkResult:
    dry_run: bool
    items: list[BulkItemResult] = field(default_factory=list)

    @property
    def counts(self) -> dict[str, int]:
        ok = [i for i in self.items if i.ok]
        return {
            "total": len(self.items),
            "created": 0 if self.dry_run else len(ok),
            "previewed": len(ok) if self.dry_run else 0,
            "failed": len(self.items) - len(ok),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "counts": self.counts,
            "items": [i.to_dict() for i in self.items],
        }


class BulkRemediationCoordinator:
    """Applies :meth:`RemediationService.remediate` item by item."""

    def __init__(self, service: RemediationService):
        self.service = service

    def run(
        self,
        items: Iterable[BulkItem | Mapping[str, Any]],
        *,
        connector_id: str | None = None,
        dry_run: bool = False,
    ) -> BulkResult:
        """Remediate every item; with *connector_id*, items of other connectors are not found."""
        result = BulkResult(dry_run=dry_run)
        seen: set[str] = set()

        for raw in items:
            item = BulkItem.coerce(raw)
            try:
                if item.discrepancy_id in seen:
                    raise ValidationError(
                        f"Discrepancy '{item.discrepancy_id}' is listed more than once",
                        field="discrepancy_id",
                    )
                seen.add(item.discrepancy_id)
                outcome = self.service.remediate(
                    item.discrepancy_id,
                    item.action,
                    item.direction,
                    connector_id=connector_id,
                    dry_run=dry_run,
                )
            except ReconError as exc:
                result.items.append(
                    BulkItemResult(
                        discrepancy_id=item.discrepancy_id,
                        ok=False,
                        error=exc.message,
                        error_code=error_code_for(exc),
                    )
                )
                continue
            except Exception as exc:
                logger.exception("bulk_item_failed", discrepancy_id=item.discrepancy_id)
                result.items.append(
                    BulkItemResult(
                        discrepancy_id=item.discrepancy_id,
                        ok=False,
                        error=f"{type(exc).__name__}: {exc}",
                        error_code="INTERNAL",
                    )
                )
                continue

            result.items.append(
                BulkItemResult(
                    discrepancy_id=item.discrepancy_id,
                    ok=True,
                    operation_id=outcome.operation.id if outcome.operation else None,
                    preview=outcome.draft.to_dict(),
                )
            )

        logger.info("bulk_remediation_finished", dry_run=dry_run, **result.counts)
        return result


__all__ = ["BulkItem", "BulkItemResult", "BulkResult", "BulkRemediationCoordinator"]
