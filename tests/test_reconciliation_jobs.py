"""Background triggers: after-count reconciliation and the periodic sweep."""
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from app.config import settings
from app.database import async_session_factory
from app.jobs.reconciliation_jobs import reconcile_in_background, sweep_open_references
from app.models.inventory_audit import ReconciliationClaim
from tests.helpers import add_counts, create_reference, load_reference


async def test_background_reconcile_returns_outcome(admin_id):
    ids = await create_reference("REF-BG", "100")
    await add_counts(ids, 1, ["40", "60"])
    await add_counts(ids, 2, ["40", "60"])

    outcome = await reconcile_in_background("REF-BG", admin_id)

    assert outcome.action == "closed"
    assert (await load_reference("REF-BG")).status == "audited"


async def test_background_reconcile_swallows_domain_errors(admin_id):
    assert await reconcile_in_background("MISSING", admin_id) is None


async def test_sweep_reconciles_open_references():
    ready = await create_reference("SW-READY", "100")
    await add_counts(ready, 1, ["40", "60"])
    await add_counts(ready, 2, ["10", "10"])
    await create_reference("SW-WAIT", "100")
    await create_reference("SW-DONE", "100", status="audited")

    busy = await create_reference("SW-BUSY", "100")
    await add_counts(busy, 1, ["50", "50"])
    await add_counts(busy, 2, ["50", "50"])
    now = datetime.now(timezone.utc)
    async with async_session_factory() as session:
        session.add(ReconciliationClaim(
            referencia="SW-BUSY",
            claim_token=uuid4(),
            claimed_at=now,
            expires_at=now + timedelta(seconds=30),
        ))
        await session.commit()

    stats = await sweep_open_references()

    assert stats == {
        "references": 3,
        "skipped": 1,
        "actions": {"closed": 1, "waiting_for_counts": 1},
    }
    closed = await load_reference("SW-READY")
    assert closed.status == "audited"
    assert closed.count_history[-1]["admin_id"] == str(settings.SYSTEM_USER_ID)
    assert (await load_reference("SW-BUSY")).status == "pending"
