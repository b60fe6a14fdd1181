"""
Tests for discrepancy and remediation-action operations.
"""

from __future__ import annotations

import pytest

from reconspine.core.enums import DiscrepancyType, ResolutionStatus
from reconspine.core.repositories import OperationRepository
from reconspine.core.timestamps import utcnow
from reconspine.ops.actions import list_remediation_actions
from reconspine.ops.discrepancies import (
    bulk_remediate,
    discrepancy_trend,
    get_discrepancy,
    ignore_discrepancy,
    list_discrepancies,
    remediate_discrepancy,
)
from reconspine.ops.requests import (
    BulkRemediateRequest,
    DiscrepancyTrendRequest,
    GetDiscrepancyRequest,
    IgnoreDiscrepancyRequest,
    ListDiscrepanciesRequest,
    ListRemediationActionsRequest,
    RemediateRequest,
)
from tests._support.fakes import CONNECTOR, entity, seed_discrepancy


def _remediate(
    ctx, discrepancy_id, action="create", direction="source_to_target", connector_id=CONNECTOR, **kwargs
):
    return remediate_discrepancy(
        ctx,
        RemediateRequest(
            connector_id=connector_id,
            discrepancy_id=discrepancy_id,
            action=action,
            direction=direction,
            **kwargs,
        ),
    )


def _ignore(ctx, discrepancy_id, connector_id=CONNECTOR):
    return ignore_discrepancy(
        ctx, IgnoreDiscrepancyRequest(connector_id=connector_id, discrepancy_id=discrepancy_id)
    )


class TestListDiscrepancies:
    def test_filters_and_paging(self, ctx, conn):
        for i in range(3):
            seed_discrepancy(conn, source=entity(f"u-{i}", f"user{i}"))
        seed_discrepancy(conn, DiscrepancyType.ORPHAN, target=entity("t-9", "zed"))

        result = list_discrepancies(ctx, ListDiscrepanciesRequest(discrepancy_type="missing", limit=2))

        assert result.success
        assert result.total == 3
        assert len(result.data) == 2
        assert result.has_more

    def test_filter_by_ref(self, ctx, conn):
        seed_discrepancy(conn, DiscrepancyType.ORPHAN, target=entity("t-9", "zed"))

        result = list_discrepancies(ctx, ListDiscrepanciesRequest(target_ref="t-9"))

        assert [d.target_ref for d in result.data] == ["t-9"]

    def test_unknown_type(self, ctx):
        result = list_discrepancies(ctx, ListDiscrepanciesRequest(discrepancy_type="weird"))

        assert not result.success
        assert result.error.code == "VALIDATION_FAILED"


class TestGetDiscrepancy:
    def test_detail_includes_active_operation_and_actions(self, ctx, conn):
        d = seed_discrepancy(conn)
        created = _remediate(ctx, d.id)

        result = get_discrepancy(ctx, GetDiscrepancyRequest(discrepancy_id=d.id))

        assert result.success
        assert result.data.active_operation.id == created.data.operation.id
        assert [a.result for a in result.data.actions] == ["created"]
        assert result.to_dict()["data"]["active_operation"]["id"] == created.data.operation.id

    def test_not_found(self, ctx):
        result = get_discrepancy(ctx, GetDiscrepancyRequest(discrepancy_id="nope"))
        assert result.error.code == "NOT_FOUND"

    def test_requires_id(self, ctx):
        assert get_discrepancy(ctx, GetDiscrepancyRequest()).error.code == "VALIDATION_FAILED"


class TestRemediateDiscrepancy:
    def test_creates_operation(self, ctx, conn):
        d = seed_discrepancy(conn)

        result = _remediate(ctx, d.id)

        assert result.success
        assert not result.data.dry_run
        assert OperationRepository(conn).get(result.data.operation.id) is not None

    def test_context_dry_run_previews(self, dry_ctx, conn):
        d = seed_discrepancy(conn)

        result = _remediate(dry_ctx, d.id)

        assert result.success
        assert result.data.dry_run
        assert result.data.operation is None
        assert OperationRepository(conn).list_operations()[1] == 0

    def test_request_dry_run_previews(self, ctx, conn):
        d = seed_discrepancy(conn)

        result = _remediate(ctx, d.id, dry_run=True)

        assert result.data.dry_run
        assert OperationRepository(conn).list_operations()[1] == 0

    @pytest.mark.parametrize(
        "action,direction,code",
        [
            ("update", "source_to_target", "VALIDATION_FAILED"),
            ("create", "sideways", "VALIDATION_FAILED"),
            ("teleport", "source_to_target", "VALIDATION_FAILED"),
        ],
    )
    def test_rejections(self, ctx, conn, action, direction, code):
        d = seed_discrepancy(conn)

        result = _remediate(ctx, d.id, action=action, direction=direction)

        assert not result.success
        assert result.error.code == code

    def test_active_operation(self, ctx, conn):
        d = seed_discrepancy(conn)
        _remediate(ctx, d.id)

        result = _remediate(ctx, d.id)

        assert result.error.code == "ACTIVE_OPERATION"
        assert result.error.details["discrepancy_id"] == d.id

    def test_not_found(self, ctx):
        assert _remediate(ctx, "nope").error.code == "NOT_FOUND"

    def test_other_connectors_discrepancy_is_not_found(self, ctx, conn):
        d = seed_discrepancy(conn, connector_id="hr-main")

        result = _remediate(ctx, d.id)

        assert result.error.code == "NOT_FOUND"
        assert OperationRepository(conn).list_operations()[1] == 0

    def test_requires_connector(self, ctx, conn):
        d = seed_discrepancy(conn)

        assert _remediate(ctx, d.id, connector_id="").error.code == "VALIDATION_FAILED"


class TestBulkRemediate:
    def test_partial_failure_still_succeeds(self, ctx, conn):
        ds = [seed_discrepancy(conn, source=entity(f"u-{i}", f"user{i}")) for i in range(3)]
        items = [
            {"discrepancy_id": d.id, "action": "create", "direction": "source_to_target"} for d in ds
        ]
        items.append({"discrepancy_id": "nope", "action": "create", "direction": "source_to_target"})

        result = bulk_remediate(ctx, BulkRemediateRequest(connector_id=CONNECTOR, items=items))

        assert result.success
        assert result.data.counts == {"total": 4, "created": 3, "previewed": 0, "failed": 1}
        assert result.warnings == ["1 of 4 items failed"]
        assert result.data.items[3].error_code == "NOT_FOUND"

    def test_context_dry_run(self, dry_ctx, conn):
        d = seed_discrepancy(conn)

        result = bulk_remediate(
            dry_ctx,
            BulkRemediateRequest(
                connector_id=CONNECTOR,
                items=[{"discrepancy_id": d.id, "action": "create", "direction": "source_to_target"}],
            ),
        )

        assert result.data.counts["previewed"] == 1
        assert result.warnings == []
        assert OperationRepository(conn).list_operations()[1] == 0

    def test_empty_items(self, ctx):
        result = bulk_remediate(ctx, BulkRemediateRequest(connector_id=CONNECTOR, items=[]))

        assert result.error.code == "VALIDATION_FAILED"

    def test_items_of_other_connectors_fail(self, ctx, conn):
        ours = seed_discrepancy(conn)
        theirs = seed_discrepancy(conn, connector_id="hr-main")
        items = [
            {"discrepancy_id": d.id, "action": "create", "direction": "source_to_target"}
            for d in (ours, theirs)
        ]

        result = bulk_remediate(ctx, BulkRemediateRequest(connector_id=CONNECTOR, items=items))

        assert result.data.counts == {"total": 2, "created": 1, "previewed": 0, "failed": 1}
        assert result.data.items[1].error_code == "NOT_FOUND"

    def test_requires_connector(self, ctx, conn):
        d = seed_discrepancy(conn)
        items = [{"discrepancy_id": d.id, "action": "create", "direction": "source_to_target"}]

        result = bulk_remediate(ctx, BulkRemediateRequest(items=items))

        assert result.error.code == "VALIDATION_FAILED"


class TestIgnoreDiscrepancy:
    def test_ignore(self, ctx, conn):
        d = seed_discrepancy(conn)

        result = _ignore(ctx, d.id)

        assert result.success
        assert result.data.resolution_status is ResolutionStatus.IGNORED

    def test_dry_run_only_checks(self, dry_ctx, conn):
        d = seed_discrepancy(conn)

        result = _ignore(dry_ctx, d.id)

        assert result.success
        assert result.data.resolution_status is ResolutionStatus.PENDING

    def test_twice_is_invalid_state(self, ctx, conn):
        d = seed_discrepancy(conn)
        _ignore(ctx, d.id)

        result = _ignore(ctx, d.id)

        assert result.error.code == "INVALID_STATE"

    def test_active_operation_blocks(self, ctx, conn):
        d = seed_discrepancy(conn)
        _remediate(ctx, d.id)

        result = _ignore(ctx, d.id)

        assert result.error.code == "ACTIVE_OPERATION"

    def test_other_connectors_discrepancy_is_not_found(self, ctx, dry_ctx, conn):
        d = seed_discrepancy(conn, connector_id="hr-main")

        assert _ignore(ctx, d.id).error.code == "NOT_FOUND"
        assert _ignore(dry_ctx, d.id).error.code == "NOT_FOUND"
        assert _ignore(ctx, d.id, connector_id="hr-main").success


class TestDiscrepancyTrend:
    def test_counts_per_day_and_type(self, ctx, conn):
        now = utcnow()
        for i in range(2):
            seed_discrepancy(conn, source=entity(f"u-{i}", f"user{i}"), detected_at=now)
        seed_discrepancy(conn, DiscrepancyType.ORPHAN, target=entity("t-9", "zed"), detected_at=now)
        seed_discrepancy(conn, connector_id="hr-main", detected_at=now)

        result = discrepancy_trend(ctx, DiscrepancyTrendRequest(connector_id=CONNECTOR, days=7))

        assert result.success
        day = now.date().isoformat()
        assert [p.to_dict() for p in result.data] == [
            {"day": day, "discrepancy_type": "missing", "count": 2},
            {"day": day, "discrepancy_type": "orphan", "count": 1},
        ]

    def test_old_detections_excluded(self, ctx, conn):
        seed_discrepancy(conn)

        result = discrepancy_trend(ctx, DiscrepancyTrendRequest(connector_id=CONNECTOR, days=1))

        assert result.success
        assert result.data == []

    @pytest.mark.parametrize(
        "request_",
        [DiscrepancyTrendRequest(connector_id=""), DiscrepancyTrendRequest(connector_id=CONNECTOR, days=0)],
    )
    def test_validation(self, ctx, request_):
        assert discrepancy_trend(ctx, request_).error.code == "VALIDATION_FAILED"


class TestListRemediationActions:
    def test_created_and_rejected(self, ctx, conn):
        d = seed_discrepancy(conn)
        _remediate(ctx, d.id, action="update")
        _remediate(ctx, d.id)

        rejected = list_remediation_actions(ctx, ListRemediationActionsRequest(result="rejected"))
        created = list_remediation_actions(ctx, ListRemediationActionsRequest(action="create"))

        assert rejected.total == 1
        assert rejected.data[0].error
        assert created.total == 1
        assert created.data[0].operation_id

    def test_unknown_result_filter(self, ctx):
        result = list_remediation_actions(ctx, ListRemediationActionsRequest(result="maybe"))

        assert result.error.code == "VALIDATION_FAILED"
