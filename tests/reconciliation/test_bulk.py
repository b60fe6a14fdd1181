"""
Tests for BulkRemediationCoordinator.
"""

from __future__ import annotations

import pytest

from reconspine.core.enums import DiscrepancyType
from reconspine.core.errors import ReconError, error_code_for
from reconspine.core.repositories import OperationRepository, RemediationActionRepository
from reconspine.reconciliation.bulk import BulkItem, BulkRemediationCoordinator
from reconspine.reconciliation.remediation import RemediationService
from tests._support.fakes import CONNECTOR, entity, seed_discrepancy


@pytest.fixture()
def coordinator(engine) -> BulkRemediationCoordinator:
    return BulkRemediationCoordinator(RemediationService(engine))


@pytest.fixture()
def missing(conn):
    return [
        seed_discrepancy(conn, source=entity(f"u-{i}", f"user{i}", mail=f"user{i}@example.com"))
        for i in range(4)
    ]


class TestBulkRemediation:
    def test_all_items_created(self, coordinator, conn, missing):
        result = coordinator.run(
            [BulkItem(d.id, "create", "source_to_target") for d in missing]
        )

        assert result.counts == {"total": 4, "created": 4, "previewed": 0, "failed": 0}
        assert all(item.operation_id for item in result.items)
        assert OperationRepository(conn).list_operations()[1] == 4

    def test_one_bad_item_does_not_stop_the_rest(self, coordinator, conn, missing):
        items = [{"discrepancy_id": d.id, "action": "create", "direction": "source_to_target"} for d in missing]
        items[1]["action"] = "link"

        result = coordinator.run(items)

        assert result.counts == {"total": 4, "created": 3, "previewed": 0, "failed": 1}
        bad = result.items[1]
        assert not bad.ok
        assert bad.error_code == "VALIDATION_FAILED"
        assert bad.discrepancy_id == missing[1].id
        assert [i.ok for i in result.items] == [True, False, True, True]

    def test_dry_run_previews_without_side_effects(self, coordinator, conn, missing):
        result = coordinator.run(
            [BulkItem(d.id, "create", "source_to_target") for d in missing], dry_run=True
        )

        assert result.counts == {"total": 4, "created": 0, "previewed": 4, "failed": 0}
        assert result.items[0].preview["payload"]["correlation_key"] == "user0"
        assert result.items[0].operation_id is None
        assert OperationRepository(conn).list_operations()[1] == 0
        assert RemediationActionRepository(conn).list_actions()[1] == 0

    def test_duplicate_ids_rejected_per_item(self, coordinator, missing):
        d = missing[0]

        result = coordinator.run(
            [BulkItem(d.id, "create", "source_to_target"), BulkItem(d.id, "delete", "source_to_target")]
        )

        assert [i.ok for i in result.items] == [True, False]
        assert result.items[1].error_code == "VALIDATION_FAILED"
        assert "more than once" in result.items[1].error

    def test_error_codes(self, coordinator, conn, missing):
        coordinator.run([BulkItem(missing[0].id, "create", "source_to_target")])

        result = coordinator.run(
            [
                BulkItem("nope", "create", "source_to_target"),
                BulkItem(missing[0].id, "create", "source_to_target"),
            ]
        )

        assert [i.error_code for i in result.items] == ["NOT_FOUND", "ACTIVE_OPERATION"]

    def test_codes_match_single_remediation(self, coordinator, engine, missing):
        result = coordinator.run([BulkItem(missing[0].id, "teleport", "source_to_target")])

        with pytest.raises(ReconError) as exc_info:
            RemediationService(engine).remediate(missing[0].id, "teleport", "source_to_target")
        assert result.items[0].error_code == error_code_for(exc_info.value) == "VALIDATION_FAILED"

    def test_scoped_to_connector(self, coordinator, conn, missing):
        other = seed_discrepancy(conn, connector_id="hr-main")

        result = coordinator.run(
            [
                BulkItem(missing[0].id, "create", "source_to_target"),
                BulkItem(other.id, "create", "source_to_target"),
            ],
            connector_id=CONNECTOR,
        )

        assert [i.error_code for i in result.items] == [None, "NOT_FOUND"]

    def test_mixed_types(self, coordinator, conn):
        orphan = seed_discrepancy(conn, DiscrepancyType.ORPHAN, target=entity("t-9", "zed"))
        missing = seed_discrepancy(conn)

        result = coordinator.run(
            [
                BulkItem(orphan.id, "delete", "source_to_target"),
                BulkItem(missing.id, "delete", "source_to_target"),
            ],
            dry_run=True,
        )

        assert result.counts["previewed"] == 2
        assert result.to_dict()["items"][0]["preview"]["operation_type"] == "delete"
