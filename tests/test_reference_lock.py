"""Per-reference claim lock (SQLite path)."""
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from app.core.errors import ConcurrencyBusyError
from app.database import async_session_factory
from app.models.inventory_audit import ReconciliationClaim
from app.services.reference_lock import ReferenceLock
from app.services.round_reconciliation_service import RoundReconciliationService
from tests.helpers import add_counts, create_reference, load_reference


async def insert_claim(referencia: str, expires_in: timedelta) -> None:
    now = datetime.now(timezone.utc)
    async with async_session_factory() as session:
        session.add(ReconciliationClaim(
            referencia=referencia,
            claim_token=uuid4(),
            claimed_at=now,
            expires_at=now + expires_in,
        ))
        await session.commit()


async def claim_count(db) -> int:
    return await db.scalar(select(func.count()).select_from(ReconciliationClaim))


async def test_sqlite_uses_claim_rows(db):
    assert ReferenceLock(db).uses_advisory_lock is False


async def test_claim_is_released_after_block(db):
    lock = ReferenceLock(db, retry_delay_ms=0)

    async with lock.hold("REF-L"):
        assert await claim_count(db) == 1

    assert await claim_count(db) == 0


async def test_claim_is_released_when_block_raises(db):
    lock = ReferenceLock(db, retry_delay_ms=0)

    with pytest.raises(RuntimeError):
        async with lock.hold("REF-L"):
            raise RuntimeError("boom")

    assert await claim_count(db) == 0


async def test_busy_reference_raises_after_one_retry(db):
    await insert_claim("REF-BUSY", timedelta(seconds=30))
    lock = ReferenceLock(db, retry_delay_ms=1)

    with pytest.raises(ConcurrencyBusyError) as exc_info:
        async with lock.hold("REF-BUSY"):
            pass

    assert exc_info.value.reference == "REF-BUSY"
    assert exc_info.value.retryable is True


async def test_nested_hold_on_same_reference_is_busy(db):
    lock = ReferenceLock(db, retry_delay_ms=0)

    async with lock.hold("REF-N"):
        with pytest.raises(ConcurrencyBusyError):
            async with ReferenceLock(db, retry_delay_ms=0).hold("REF-N"):
                pass

    # Other references are independent
    async with lock.hold("REF-OTHER"):
        pass


async def test_expired_claim_is_taken_over(db):
    await insert_claim("REF-OLD", timedelta(seconds=-5))

    async with ReferenceLock(db, retry_delay_ms=0).hold("REF-OLD"):
        tokens = (await db.execute(select(ReconciliationClaim.expires_at))).scalars().all()
        assert len(tokens) == 1

    assert await claim_count(db) == 0


async def test_reconcile_on_busy_reference_changes_nothing(db, admin_id):
    ids = await create_reference("REF-RB", "100")
    await add_counts(ids, 1, ["40", "60"])
    await add_counts(ids, 2, ["40", "60"])
    await insert_claim("REF-RB", timedelta(seconds=30))

    with pytest.raises(ConcurrencyBusyError):
        await RoundReconciliationService(db).reconcile("REF-RB", admin_id)

    assert (await load_reference("REF-RB")).status == "pending"
