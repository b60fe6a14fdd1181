"""Conflict resolution between a planned remediation and concurrent changes.

WHY
───
Between detection and execution, someone may change the written system
directly: an admin fixes the account by hand, a sync job edits group
membership, the entity gets deleted. Blindly replaying the remediation can
undo that work or fail in confusing ways.

ARCHITECTURE
────────────
::

    execute(op)
      │
      ├─ endpoint.observe(op.target_entity_ref)  → current
      ├─ fingerprint(current) == fingerprint(op.baseline)?
      │     yes → None (no conflict, no record)
      │     no  → policy.adjudicate(op, baseline, current)
      │             → APPLIED | SUPERSEDED | MERGED | REJECTED
      └─ engine acts on the decision and stores one ConflictRecord

The :class:`DefaultConflictPolicy` rules:

- create: target now matches the payload → superseded; exists otherwise → rejected
- delete: target already gone → superseded; otherwise applied
- update: target gone → rejected; already carries the payload → superseded;
  concurrent edits touch payload keys only on list-valued attributes →
  merged (lists unioned); otherwise applied
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from reconspine.core.enums import ConflictOutcome, Direction, OperationType
from reconspine.core.logging import get_logger
from reconspine.core.models import ObservedEntity, Operation, fingerprint
from reconspine.core.protocols import Connector

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ConflictDecision:
    """Outcome of one adjudication.

    ``payload`` is what the connector should receive: the operation's own
    payload, or the merged one when ``outcome`` is ``MERGED``.
    """

    outcome: ConflictOutcome
    payload: dict[str, Any]
    baseline: dict[str, Any] | None = None
    current: dict[str, Any] | None = None
    detail: str = ""
    changed_keys: list[str] = field(default_factory=list)

    @property
    def proceeds(self) -> bool:
        """Whether the connector call should still be issued."""
        return self.outcome in (ConflictOutcome.APPLIED, ConflictOutcome.MERGED)


class ConflictPolicy(Protocol):
    def adjudicate(
        self,
        operation: Operation,
        baseline: dict[str, Any] | None,
        current: ObservedEntity | None,
    ) -> ConflictDecision: ...


def _contains(actual: dict[str, Any], desired: dict[str, Any]) -> bool:
    return all(actual.get(k) == v for k, v in desired.items())


def _union(preferred: list[Any], other: list[Any]) -> list[Any]:
    return list(preferred) + [item for item in other if item not in preferred]


class DefaultConflictPolicy:
    """Rules for the built-in operation payload shapes.

    Payloads: ``{"attributes": {...}}`` for create/update, ``{"link": {...}}``,
    ``{"unlink": {...}}`` for link management, ``{}`` for delete.
    """

    def adjudicate(
        self,
        operation: Operation,
        baseline: dict[str, Any] | None,
        current: ObservedEntity | None,
    ) -> ConflictDecision:
        current_snapshot = current.snapshot() if current is not None else None
        gone = current is None or current.deleted
        payload = operation.payload

        def decide(outcome: ConflictOutcome, detail: str, **extra: Any) -> ConflictDecision:
            return ConflictDecision(
                outcome=outcome,
                payload=extra.pop("payload", payload),
                baseline=baseline,
                current=current_snapshot,
                detail=detail,
                **extra,
            )

        if operation.operation_type is OperationType.DELETE:
            if gone:
                return decide(ConflictOutcome.SUPERSEDED, "entity already removed")
            return decide(ConflictOutcome.APPLIED, "entity changed but still present")

        desired = dict(payload.get("attributes") or {})

        if operation.operation_type is OperationType.CREATE:
            if gone:
                return decide(ConflictOutcome.APPLIED, "entity still absent")
            if _contains(current.attributes, desired):
                return decide(ConflictOutcome.SUPERSEDED, "entity already created with the same attributes")
            return decide(ConflictOutcome.REJECTED, "entity created concurrently with different attributes")

        # UPDATE
        if gone:
            return decide(ConflictOutcome.REJECTED, "entity deleted since detection")

        if "link" in payload:
            link = payload["link"] or {}
            # the written entity should point at its counterpart
            if operation.direction is Direction.SOURCE_TO_TARGET:
                wanted = link.get("source_ref")
            else:
                wanted = link.get("target_ref")
            if wanted is not None and current.linked_ref == wanted:
                return decide(ConflictOutcome.SUPERSEDED, "entity already linked")
            return decide(ConflictOutcome.APPLIED, "link still required")
        if "unlink" in payload:
            if current.linked_ref is None:
                return decide(ConflictOutcome.SUPERSEDED, "entity already unlinked")
            return decide(ConflictOutcome.APPLIED, "unlink still required")

        if _contains(current.attributes, desired):
            return decide(ConflictOutcome.SUPERSEDED, "entity already carries the desired values")

        before = dict((baseline or {}).get("attributes") or {})
        after = current.attributes
        changed = sorted(k for k in set(before) | set(after) if before.get(k) != after.get(k))
        overlap = [k for k in changed if k in desired]
        if not overlap:
            return decide(
                ConflictOutcome.APPLIED,
                "concurrent change does not touch remediated attributes",
                changed_keys=changed,
            )

        mergeable = [
            k for k in overlap
            if isinstance(desired[k], list) and isinstance(after.get(k), list)
        ]
        if mergeable and len(mergeable) == len(overlap):
            merged = dict(desired)
            for key in mergeable:
                merged[key] = _union(desired[key], after[key])
            return decide(
                ConflictOutcome.MERGED,
                f"merged concurrent additions into {', '.join(mergeable)}",
                payload={**payload, "attributes": merged},
                changed_keys=changed,
            )

        return decide(
            ConflictOutcome.APPLIED,
            f"authoritative values override concurrent edits to {', '.join(overlap)}",
            changed_keys=changed,
        )


class ConflictResolver:
    """Compare the written system's current state with the detection baseline."""

    def __init__(self, policy: ConflictPolicy | None = None) -> None:
        self.policy: ConflictPolicy = policy or DefaultConflictPolicy()

    def check(self, operation: Operation, endpoint: Connector) -> ConflictDecision | None:
        """Return ``None`` when nothing changed, otherwise the policy's decision.

        Exceptions raised by ``observe`` propagate; the engine treats them as
        a transient failure of the attempt.
        """
        current = endpoint.observe(operation.target_entity_ref)
        current_snapshot = current.snapshot() if current is not None else None
        if fingerprint(current_snapshot) == fingerprint(operation.baseline):
            return None

        decision = self.policy.adjudicate(operation, operation.baseline, current)
        logger.info(
            "conflict_detected",
            operation_id=operation.id,
            outcome=decision.outcome.value,
            detail=decision.detail,
        )
        return decision


__all__ = [
    "ConflictDecision",
    "ConflictPolicy",
    "DefaultConflictPolicy",
    "ConflictResolver",
]
