"""Count transcription and administrative edits."""
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from app.core.errors import NotFoundError, ValidationError
from app.models.audit_log import AuditLog
from app.services.count_service import CountService, check_round
from tests.helpers import create_reference, load_reference, validate_location


class TestRecordCount:
    async def test_records_and_normalizes_quantity(self, db, admin_id):
        ids = await create_reference("REF-RC", "100")

        count, master = await CountService(db).record_count(ids[0], 1, 12.345678, recorded_by=admin_id)

        assert count.quantity_counted == Decimal("12.3457")
        assert count.supervisor_id == admin_id
        assert master.referencia == "REF-RC"

    async def test_saving_again_updates_in_place(self, db, admin_id):
        ids = await create_reference("REF-UP", "100")
        service = CountService(db)

        first, _ = await service.record_count(ids[0], 2, "10", recorded_by=admin_id)
        second, _ = await service.record_count(ids[0], 2, "11", recorded_by=admin_id)

        assert first.id == second.id
        location = (await load_reference("REF-UP")).locations[0]
        assert [c.quantity_counted for c in location.counts] == [Decimal("11")]

    async def test_c1_and_c2_are_both_open_in_round_1(self, db, admin_id):
        ids = await create_reference("REF-PAR", "100")
        service = CountService(db)

        await service.record_count(ids[0], 2, "5", recorded_by=admin_id)
        await service.record_count(ids[0], 1, "5", recorded_by=admin_id)

    async def test_future_round_rejected(self, db, admin_id):
        ids = await create_reference("REF-FUT", "100")

        with pytest.raises(ValidationError):
            await CountService(db).record_count(ids[0], 3, "5", recorded_by=admin_id)

    @pytest.mark.parametrize("past_round", [1, 2])
    async def test_past_round_rejected_once_tie_break_starts(self, db, admin_id, past_round):
        ids = await create_reference("REF-PAST", "100", status="conflict", current_round=3)
        service = CountService(db)

        with pytest.raises(ValidationError, match="edit it instead"):
            await service.record_count(ids[0], past_round, "5", recorded_by=admin_id)

        count, _ = await service.record_count(ids[0], 3, "5", recorded_by=admin_id)
        assert count.audit_round == 3

    async def test_closed_reference_rejected(self, db, admin_id):
        ids = await create_reference("REF-CL", "100", status="audited")

        with pytest.raises(ValidationError):
            await CountService(db).record_count(ids[0], 1, "5", recorded_by=admin_id)

    async def test_validated_location_rejected(self, db, admin_id):
        ids = await create_reference("REF-VAL", "100", status="conflict", current_round=3)
        await validate_location(ids[0], 2, "50")

        with pytest.raises(ValidationError):
            await CountService(db).record_count(ids[0], 3, "5", recorded_by=admin_id)

    async def test_round_before_discovery_rejected(self, db, admin_id):
        ids = await create_reference("REF-DISC", "100", locations=1, discovered_at_round=[2])

        with pytest.raises(ValidationError):
            await CountService(db).record_count(ids[0], 1, "5", recorded_by=admin_id)

    @pytest.mark.parametrize("quantity", [-0.5, "", "12,5", True])
    async def test_bad_quantity_rejected(self, db, admin_id, quantity):
        ids = await create_reference("REF-Q", "100")

        with pytest.raises(ValidationError):
            await CountService(db).record_count(ids[0], 1, quantity, recorded_by=admin_id)

    async def test_unknown_location(self, db, admin_id):
        with pytest.raises(NotFoundError):
            await CountService(db).record_count(uuid4(), 1, "5", recorded_by=admin_id)


class TestEditCount:
    async def test_rewrites_any_round_and_logs(self, db, admin_id):
        ids = await create_reference("REF-ED", "100", status="audited")
        service = CountService(db)

        await service.edit_count(ids[0], 4, "7", admin_id)
        count = await service.edit_count(ids[0], 4, "8", admin_id)

        assert count.quantity_counted == Decimal("8")
        result = await db.execute(
            select(AuditLog).where(AuditLog.master_reference == "REF-ED").order_by(AuditLog.created_at)
        )
        logs = list(result.scalars().all())
        assert [log.action_type for log in logs] == ["edicion_conteo", "edicion_conteo"]
        assert logs[0].new_data["previous_quantity"] is None
        assert logs[1].new_data["previous_quantity"] == "7.0000"
        assert logs[1].new_data["quantity"] == "8.0000"

    async def test_does_not_reconcile(self, db, admin_id):
        ids = await create_reference("REF-ED2", "10", locations=1)
        service = CountService(db)

        await service.edit_count(ids[0], 1, "10", admin_id)
        await service.edit_count(ids[0], 2, "10", admin_id)

        master = await load_reference("REF-ED2")
        assert master.status == "pending"
        assert master.count_history == []


@pytest.mark.parametrize("value", [0, 6, "1", 1.0, False])
def test_check_round_rejects(value):
    with pytest.raises(ValidationError):
        check_round(value)
