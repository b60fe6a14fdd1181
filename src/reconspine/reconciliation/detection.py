"""Drift classification between a source population and a target population.

Pairing rules, in order:

1. A target entity *claims* a source identity through ``linked_ref`` or,
   when it is not linked, through a matching ``correlation_key``.
2. Several targets claiming one identity → COLLISION for each claimant.
3. Claimed identity deleted in the source → DELETED.
4. Unlinked claimant → UNLINKED.
5. Linked pair whose compared attributes differ → MISMATCH.
6. Target claiming nothing (or a ref unknown to the source) → ORPHAN.
7. Live identity claimed by nobody → MISSING.

Attribute comparison looks at the source's attributes (optionally limited
to ``compare_keys``); values only present on the target are not drift.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass

from reconspine.core.enums import DiscrepancyType
from reconspine.core.models import ObservedEntity


@dataclass(frozen=True, slots=True)
class Drift:
    """One classified unit of drift, not yet a persisted Discrepancy."""

    discrepancy_type: DiscrepancyType
    source: ObservedEntity | None
    target: ObservedEntity | None

    @property
    def source_ref(self) -> str | None:
        return self.source.ref if self.source else None

    @property
    def target_ref(self) -> str | None:
        return self.target.ref if self.target else None


class DriftClassifier:
    """Pairs source and target entities and classifies their differences."""

    def __init__(self, compare_keys: Iterable[str] | None = None):
        self.compare_keys = frozenset(compare_keys) if compare_keys is not None else None

    def attributes_differ(self, source: ObservedEntity, target: ObservedEntity) -> bool:
        keys = source.attributes.keys() if self.compare_keys is None else self.compare_keys
        return any(source.attributes.get(k) != target.attributes.get(k) for k in keys)

    def classify(
        self,
        sources: Iterable[ObservedEntity],
        targets: Iterable[ObservedEntity],
    ) -> list[Drift]:
        by_ref: dict[str, ObservedEntity] = {}
        by_key: dict[str, ObservedEntity] = {}
        for entity in sources:
            by_ref[entity.ref] = entity
            if entity.correlation_key and not entity.deleted:
                by_key.setdefault(entity.correlation_key, entity)

        claims: dict[str, list[ObservedEntity]] = defaultdict(list)
        drifts: list[Drift] = []

        for target in targets:
            if target.deleted:
                continue
            identity = None
            if target.linked_ref:
                identity = by_ref.get(target.linked_ref)
            elif target.correlation_key:
                identity = by_key.get(target.correlation_key)
            if identity is None:
                drifts.append(Drift(DiscrepancyType.ORPHAN, None, target))
            else:
                claims[identity.ref].append(target)

        for identity_ref, claimants in claims.items():
            identity = by_ref[identity_ref]
            if len(claimants) > 1:
                drifts.extend(Drift(DiscrepancyType.COLLISION, identity, t) for t in claimants)
                continue
            target = claimants[0]
            if identity.deleted:
                drifts.append(Drift(DiscrepancyType.DELETED, identity, target))
            elif not target.linked_ref:
                drifts.append(Drift(DiscrepancyType.UNLINKED, identity, target))
            elif self.attributes_differ(identity, target):
                drifts.append(Drift(DiscrepancyType.MISMATCH, identity, target))

        for identity in by_ref.values():
            if not identity.deleted and identity.ref not in claims:
                drifts.append(Drift(DiscrepancyType.MISSING, identity, None))

        return drifts


__all__ = ["Drift", "DriftClassifier"]
