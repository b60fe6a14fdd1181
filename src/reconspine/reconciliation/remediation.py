"""Remediation mapping — turn a discrepancy plus an operator action into an operation.

WHY
───
Operators think in actions ("create the account", "link these two",
"inactivate the identity"); the engine executes typed operations against
one system. This module owns the translation and refuses combinations that
make no sense (deleting a mismatch, linking without both sides).

ARCHITECTURE
────────────
::

    RemediationService(conn, engine)
      ├── .plan(discrepancy, action, direction)        ─ pure: OperationDraft
      ├── .remediate(id, action, direction, dry_run)   ─ preview or submit
      └── .ignore(id)                                  ─ dismiss, no operation

    action               valid discrepancy types          operation
    ──────────────────   ──────────────────────────────   ─────────
    create               missing, orphan                  CREATE
    update               mismatch, unlinked               UPDATE
    delete               orphan, deleted, missing         DELETE
    link                 unlinked, collision              UPDATE {"link": ...}
    unlink               collision, unlinked, mismatch    UPDATE {"unlink": true}
    inactivate_identity  orphan, deleted, mismatch        UPDATE (target_to_source only)

Direction ``source_to_target`` writes to the target: the source snapshot
is authoritative and the target snapshot is the conflict baseline.
``target_to_source`` is the mirror image.

Every non-dry-run request lands in the remediation action log with result
``created`` or ``rejected``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from reconspine.core.connection import transaction
from reconspine.core.enums import (
    Direction,
    DiscrepancyType,
    OperationType,
    RemediationAction,
    ResolutionStatus,
    parse_enum,
)
from reconspine.core.errors import (
    ActiveOperationError,
    NotFoundError,
    ReconError,
    StateError,
    ValidationError,
)
from reconspine.core.logging import get_logger
from reconspine.core.models import (
    Discrepancy,
    Operation,
    OperationDraft,
    RemediationActionRecord,
)
from reconspine.core.repositories import DiscrepancyRepository, RemediationActionRepository
from reconspine.core.timestamps import new_id
from reconspine.execution.engine import OperationEngine

logger = get_logger(__name__)

D = DiscrepancyType

ACTION_RULES: dict[RemediationAction, tuple[OperationType, frozenset[DiscrepancyType]]] = {
    RemediationAction.CREATE: (OperationType.CREATE, frozenset({D.MISSING, D.ORPHAN})),
    RemediationAction.UPDATE: (OperationType.UPDATE, frozenset({D.MISMATCH, D.UNLINKED})),
    RemediationAction.DELETE: (OperationType.DELETE, frozenset({D.ORPHAN, D.DELETED, D.MISSING})),
    RemediationAction.LINK: (OperationType.UPDATE, frozenset({D.UNLINKED, D.COLLISION})),
    RemediationAction.UNLINK: (OperationType.UPDATE, frozenset({D.COLLISION, D.UNLINKED, D.MISMATCH})),
    RemediationAction.INACTIVATE_IDENTITY: (
        OperationType.UPDATE,
        frozenset({D.ORPHAN, D.DELETED, D.MISMATCH}),
    ),
}

RESULT_CREATED = "created"
RESULT_REJECTED = "rejected"


@dataclass(frozen=True)
class RemediationOutcome:
    """What a remediation request produced.

    ``operation`` is ``None`` for dry runs; ``draft`` is always set.
    """

    discrepancy_id: str
    draft: OperationDraft
    dry_run: bool
    operation: Operation | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "discrepancy_id": self.discrepancy_id,
            "dry_run": self.dry_run,
            "preview": self.draft.to_dict(),
            "operation": self.operation.to_dict() if self.operation else None,
        }


def _attributes(snapshot: dict[str, Any] | None) -> dict[str, Any] | None:
    if snapshot is None:
        return None
    return dict(snapshot.get("attributes") or {})


class RemediationService:
    """Plans and submits remediations for single discrepancies."""

    def __init__(self, engine: OperationEngine):
        self.engine = engine
        self.conn = engine.conn
        self.discrepancies = DiscrepancyRepository(engine.conn)
        self.actions = RemediationActionRepository(engine.conn)

    # ------------------------------------------------------------------ #
    # Planning
    # ------------------------------------------------------------------ #

    def plan(
        self,
        discrepancy: Discrepancy,
        action: RemediationAction | str,
        direction: Direction | str,
    ) -> OperationDraft:
        """Compute the operation *action* would create.  Persists nothing.

        Raises:
            ValidationError: The action does not apply to this discrepancy
                or direction.
        """
        action = parse_enum(RemediationAction, action, "action")
        direction = parse_enum(Direction, direction, "direction")
        operation_type, valid_types = ACTION_RULES[action]

        if discrepancy.discrepancy_type not in valid_types:
            allowed = ", ".join(sorted(t.value for t in valid_types))
            raise ValidationError(
                f"Action '{action.value}' does not apply to {discrepancy.discrepancy_type.value} "
                f"discrepancies (valid for: {allowed})",
                field="action",
            )
        if action is RemediationAction.INACTIVATE_IDENTITY and direction is not Direction.TARGET_TO_SOURCE:
            raise ValidationError(
                "inactivate_identity writes to the source directory and requires direction target_to_source",
                field="direction",
            )

        if direction is Direction.SOURCE_TO_TARGET:
            authoritative, baseline = discrepancy.source_snapshot, discrepancy.target_snapshot
            own_ref, other_ref = discrepancy.target_ref, discrepancy.source_ref
        else:
            authoritative, baseline = discrepancy.target_snapshot, discrepancy.source_snapshot
            own_ref, other_ref = discrepancy.source_ref, discrepancy.target_ref

        # Without an entity on the written side, address it by the
        # counterpart's correlation key.
        entity_ref = own_ref or (authoritative or {}).get("correlation_key") or other_ref
        if not entity_ref:
            raise ValidationError("Discrepancy has no entity reference to remediate", field="discrepancy_id")

        payload = self._payload(discrepancy, action, operation_type, authoritative)
        return OperationDraft(
            connector_id=discrepancy.connector_id,
            operation_type=operation_type,
            direction=direction,
            target_entity_ref=entity_ref,
            payload=payload,
            discrepancy_id=discrepancy.id,
            action=action,
            baseline=baseline,
        )

    @staticmethod
    def _payload(
        discrepancy: Discrepancy,
        action: RemediationAction,
        operation_type: OperationType,
        authoritative: dict[str, Any] | None,
    ) -> dict[str, Any]:
        if action is RemediationAction.DELETE:
            return {}
        if action is RemediationAction.LINK:
            if not (discrepancy.source_ref and discrepancy.target_ref):
                raise ValidationError("link requires both a source and a target reference", field="action")
            return {"link": {"source_ref": discrepancy.source_ref, "target_ref": discrepancy.target_ref}}
        if action is RemediationAction.UNLINK:
            return {"unlink": True}
        if action is RemediationAction.INACTIVATE_IDENTITY:
            return {"attributes": {"active": False}}

        attributes = _attributes(authoritative)
        if attributes is None:
            verb = "create" if operation_type is OperationType.CREATE else "update"
            raise ValidationError(
                f"No authoritative snapshot to {verb} from in this direction", field="direction"
            )
        payload: dict[str, Any] = {"attributes": attributes}
        if operation_type is OperationType.CREATE and authoritative.get("correlation_key"):
            payload["correlation_key"] = authoritative["correlation_key"]
        return payload

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #

    def get(self, discrepancy_id: str, connector_id: str | None = None) -> Discrepancy:
        """Load a discrepancy; one owned by another connector is reported as not found."""
        discrepancy = self.discrepancies.get(discrepancy_id)
        if discrepancy is None or (connector_id is not None and discrepancy.connector_id != connector_id):
            raise NotFoundError("Discrepancy", discrepancy_id)
        return discrepancy

    def remediate(
        self,
        discrepancy_id: str,
        action: RemediationAction | str,
        direction: Direction | str,
        *,
        connector_id: str | None = None,
        dry_run: bool = False,
    ) -> RemediationOutcome:
        """Preview (``dry_run``) or create the operation for one discrepancy.

        Raises:
            NotFoundError, ValidationError, StateError, ActiveOperationError
        """
        action = parse_enum(RemediationAction, action, "action")
        direction = parse_enum(Direction, direction, "direction")
        discrepancy = self.get(discrepancy_id, connector_id)

        try:
            self.require_remediable(discrepancy)
            draft = self.plan(discrepancy, action, direction)
            if dry_run:
                return RemediationOutcome(discrepancy.id, draft, dry_run=True)
            operation = self.engine.submit(draft)
        except ReconError as exc:
            if not dry_run:
                self._log_action(discrepancy, action, direction, RESULT_REJECTED, error=exc.message)
            logger.info(
                "remediation_rejected",
                discrepancy_id=discrepancy.id,
                action=action.value,
                reason=exc.message,
            )
            raise

        self._log_action(discrepancy, action, direction, RESULT_CREATED, operation_id=operation.id)
        logger.info(
            "remediation_submitted",
            discrepancy_id=discrepancy.id,
            operation_id=operation.id,
            action=action.value,
            direction=direction.value,
        )
        return RemediationOutcome(discrepancy.id, draft, dry_run=False, operation=operation)

    def ignore(self, discrepancy_id: str, *, connector_id: str | None = None) -> Discrepancy:
        """Dismiss a pending discrepancy without remediation.  Final."""
        with transaction(self.conn):
            discrepancy = self.get(discrepancy_id, connector_id)
            self.require_remediable(discrepancy)
            if not self.discrepancies.mark_ignored(discrepancy.id, self.engine.clock()):
                raise StateError(f"Discrepancy '{discrepancy.id}' could not be ignored")
        logger.info("discrepancy_ignored", discrepancy_id=discrepancy_id)
        return self.get(discrepancy_id)

    def require_remediable(self, discrepancy: Discrepancy) -> None:
        if discrepancy.resolution_status is not ResolutionStatus.PENDING:
            raise StateError(
                f"Discrepancy '{discrepancy.id}' is {discrepancy.resolution_status.value}; "
                f"only pending discrepancies can be acted on"
            )
        active = self.engine.operations.find_active_for_discrepancy(discrepancy.id)
        if active is not None:
            raise ActiveOperationError(discrepancy.id, active.id)

    def _log_action(
        self,
        discrepancy: Discrepancy,
        action: RemediationAction,
        direction: Direction,
        result: str,
        *,
        operation_id: str | None = None,
        error: str | None = None,
    ) -> None:
        with transaction(self.conn):
            self.actions.add(
                RemediationActionRecord(
                    id=new_id(),
                    connector_id=discrepancy.connector_id,
                    discrepancy_id=discrepancy.id,
                    action=action,
                    direction=direction,
                    result=result,
                    created_at=self.engine.clock(),
                    operation_id=operation_id,
                    error=error,
                )
            )


__all__ = ["ACTION_RULES", "RemediationOutcome", "RemediationService"]
