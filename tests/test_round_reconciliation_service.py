"""Reconciliation against the database: scenarios, idempotence and failure modes."""
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.core.errors import NotFoundError, PersistenceError
from app.models.audit_log import AuditLog
from app.services.round_reconciliation_service import RoundReconciliationService
from tests.helpers import add_counts, create_reference, load_reference, locations_by_id, validate_location


async def audit_actions(db, referencia):
    result = await db.execute(
        select(AuditLog.action_type)
        .where(AuditLog.master_reference == referencia)
        .order_by(AuditLog.created_at)
    )
    return list(result.scalars().all())


class TestScenarios:
    async def test_a_round1_matches_erp(self, db, admin_id):
        ids = await create_reference("REF-A", "100")
        await add_counts(ids, 1, ["40", "60"])
        await add_counts(ids, 2, ["50", "45"])

        outcome = await RoundReconciliationService(db).reconcile("REF-A", admin_id)

        assert outcome.success is True
        assert outcome.action == "closed"
        assert outcome.reason == "matches_erp"
        master = await load_reference("REF-A")
        assert master.status == "audited"
        assert master.current_round == 1
        assert len(master.count_history) == 1
        assert master.count_history[0]["admin_id"] == str(admin_id)
        by_id = locations_by_id(master)
        assert by_id[ids[0]].validated_quantity == Decimal("40")
        assert by_id[ids[1]].validated_at_round == 1
        assert await audit_actions(db, "REF-A") == ["closed"]

    async def test_b_physical_consistency(self, db, admin_id):
        ids = await create_reference("REF-B", "100")
        await add_counts(ids, 1, ["30", "60"])
        await add_counts(ids, 2, ["45", "45"])

        outcome = await RoundReconciliationService(db).reconcile("REF-B", admin_id)

        assert outcome.action == "closed"
        assert outcome.reason == "physical_consistency"
        master = await load_reference("REF-B")
        assert all(loc.validated_at_round == 2 for loc in master.locations)
        assert sum(loc.validated_quantity for loc in master.locations) == Decimal("90")

    async def test_c_to_f_full_escalation(self, db, admin_id):
        ids = await create_reference("REF-C", "100")
        await add_counts(ids, 1, ["40", "50"])
        await add_counts(ids, 2, ["45", "50"])

        # C: sums 90 / 95
        outcome = await RoundReconciliationService(db).reconcile("REF-C", admin_id)
        assert outcome.action == "next_round"
        assert outcome.new_round == 3
        master = await load_reference("REF-C")
        assert master.current_round == 3
        assert master.status == "conflict"

        # Round 3 off by one, then round 4 still off
        await add_counts(ids, 3, ["49", "50"])
        outcome = await RoundReconciliationService(db).reconcile("REF-C", admin_id)
        assert outcome.action == "next_round"
        assert outcome.new_round == 4

        await add_counts(ids, 4, ["48", "50"])
        # E: escalate
        outcome = await RoundReconciliationService(db).reconcile("REF-C", admin_id)
        assert outcome.action == "escalate_to_superadmin"
        assert outcome.new_round == 5
        master = await load_reference("REF-C")
        assert master.status == "critical"
        assert master.current_round == 5

        # F: superadmin closes with 80 split over 2 locations
        outcome = await RoundReconciliationService(db).superadmin_close("REF-C", admin_id, total_quantity="80")
        assert outcome.action == "forced_close_superadmin"
        master = await load_reference("REF-C")
        assert master.status == "audited"
        for location in master.locations:
            assert location.validated_quantity == Decimal("40")
            assert location.validated_at_round == 5
        assert [entry["action"] for entry in master.count_history] == [
            "next_round", "next_round", "escalate_to_superadmin", "forced_close_superadmin",
        ]
        assert await audit_actions(db, "REF-C") == [
            "next_round", "next_round", "escalate_to_superadmin", "forced_close_superadmin",
        ]

    async def test_d_round3_matches_erp(self, db, admin_id):
        ids = await create_reference("REF-D", "100", status="conflict", current_round=3)
        await add_counts(ids, 3, ["55", "45"])

        outcome = await RoundReconciliationService(db).reconcile("REF-D", admin_id)

        assert outcome.action == "closed"
        assert outcome.reason == "matches_erp"
        master = await load_reference("REF-D")
        assert master.status == "audited"
        assert {loc.validated_at_round for loc in master.locations} == {3}


class TestRoundRules:
    async def test_frozen_location_counts_towards_round3(self, db, admin_id):
        ids = await create_reference("REF-FZ", "100", status="conflict", current_round=3)
        await validate_location(ids[0], 2, "30")
        await add_counts(ids[1:], 3, ["70"])

        outcome = await RoundReconciliationService(db).reconcile("REF-FZ", admin_id)

        assert outcome.action == "closed"
        by_id = locations_by_id(await load_reference("REF-FZ"))
        assert by_id[ids[0]].validated_at_round == 2
        assert by_id[ids[1]].validated_quantity == Decimal("70")

    async def test_null_erp_escalates_from_round4(self, db, admin_id):
        ids = await create_reference("REF-NULL", None, locations=1, status="conflict", current_round=4)
        await add_counts(ids, 4, ["10"])

        outcome = await RoundReconciliationService(db).reconcile("REF-NULL", admin_id)

        assert outcome.action == "escalate_to_superadmin"

    async def test_location_discovered_in_round3(self, db, admin_id):
        ids = await create_reference("REF-NEW", "100", locations=2, discovered_at_round=[None, 3])
        await add_counts(ids[:1], 1, ["90"])
        await add_counts(ids[:1], 2, ["95"])

        outcome = await RoundReconciliationService(db).reconcile("REF-NEW", admin_id)
        assert outcome.action == "next_round"

        await add_counts(ids, 3, ["90", "10"])
        outcome = await RoundReconciliationService(db).reconcile("REF-NEW", admin_id)
        assert outcome.action == "closed"


class TestNonMutatingOutcomes:
    async def test_partial_data_waits_without_writes(self, db, admin_id):
        ids = await create_reference("REF-W", "100")
        await add_counts(ids, 1, ["40", "60"])
        await add_counts(ids[:1], 2, ["50"])

        outcome = await RoundReconciliationService(db).reconcile("REF-W", admin_id)

        assert outcome.action == "waiting_for_counts"
        master = await load_reference("REF-W")
        assert master.status == "pending"
        assert master.count_history == []
        assert all(loc.validated_at_round is None for loc in master.locations)
        assert await audit_actions(db, "REF-W") == []

    async def test_reconciling_closed_reference_is_a_no_op(self, db, admin_id):
        ids = await create_reference("REF-I", "100")
        await add_counts(ids, 1, ["40", "60"])
        await add_counts(ids, 2, ["40", "60"])
        service = RoundReconciliationService(db)
        await service.reconcile("REF-I", admin_id)

        outcome = await service.reconcile("REF-I", admin_id)

        assert outcome.action == "closed"
        assert outcome.detail == "Reference is already audited"
        master = await load_reference("REF-I")
        assert len(master.count_history) == 1
        count = await db.scalar(select(func.count()).select_from(AuditLog))
        assert count == 1

    async def test_force_closed_reference_is_a_no_op(self, db, admin_id):
        await create_reference("REF-FC", "100", status="forced_closed", current_round=3)

        outcome = await RoundReconciliationService(db).reconcile("REF-FC", admin_id)

        assert outcome.action == "closed"
        assert (await load_reference("REF-FC")).count_history == []

    async def test_round5_counts_do_not_close_without_superadmin(self, db, admin_id):
        ids = await create_reference("REF-R5", "100", status="critical", current_round=5)
        await add_counts(ids, 5, ["50", "50"])

        outcome = await RoundReconciliationService(db).reconcile("REF-R5", admin_id)

        assert outcome.action == "waiting_for_counts"
        master = await load_reference("REF-R5")
        assert master.status == "critical"
        assert master.count_history == []
        assert all(location.validated_at_round is None for location in master.locations)


class TestFailures:
    async def test_unknown_reference(self, db, admin_id):
        with pytest.raises(NotFoundError):
            await RoundReconciliationService(db).reconcile("NOPE", admin_id)

    async def test_commit_failure_rolls_back_everything(self, db, admin_id, monkeypatch):
        ids = await create_reference("REF-P", "100")
        await add_counts(ids, 1, ["40", "60"])
        await add_counts(ids, 2, ["40", "60"])

        async def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db, "commit", failing_commit)

        with pytest.raises(PersistenceError):
            await RoundReconciliationService(db).reconcile("REF-P", admin_id)

        master = await load_reference("REF-P")
        assert master.status == "pending"
        assert master.count_history == []
        assert all(loc.validated_at_round is None for loc in master.locations)


class TestQueries:
    async def test_list_references_filters(self, db):
        await create_reference("MP-1", "1", material_type="MP")
        await create_reference("MP-2", "1", material_type="MP", status="conflict", current_round=3)
        await create_reference("PP-1", "1", material_type="PP")
        service = RoundReconciliationService(db)

        items, total = await service.list_references(material_type="MP")
        assert total == 2
        assert [item.referencia for item in items] == ["MP-1", "MP-2"]

        items, total = await service.list_references(current_round=3)
        assert [item.referencia for item in items] == ["MP-2"]

        items, total = await service.list_references(skip=1, limit=1)
        assert total == 3
        assert len(items) == 1

    async def test_list_open_references_skips_closed(self, db):
        await create_reference("OPEN", "1")
        await create_reference("DONE", "1", status="audited")
        await create_reference("FORCED", "1", status="forced_closed")

        assert await RoundReconciliationService(db).list_open_references() == ["OPEN"]
