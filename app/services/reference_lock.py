"""
Per-reference mutual exclusion for reconciliation.

Two triggers can race for the same reference (the last two counts of a
round landing at once). Only one reconciliation per reference may run at a
time, across every server instance:

- PostgreSQL: transaction-scoped advisory lock keyed by the reference code,
  released automatically on commit or rollback.
- Other databases: a claim row in reconciliation_claims, inserted and
  committed in its own session and deleted when the work is done. Claims
  older than RECONCILE_CLAIM_TTL_SECONDS are taken over.

A busy reference is retried once after RECONCILE_LOCK_RETRY_DELAY_MS, then
ConcurrencyBusyError is raised.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Optional
from uuid import UUID, uuid4

from sqlalchemy import delete, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.core.errors import ConcurrencyBusyError, PersistenceError
from app.models.inventory_audit import ReconciliationClaim


logger = logging.getLogger(__name__)


class ReferenceLock:
    """Acquire the reconciliation lock for a reference within a session's transaction."""

    def __init__(
        self,
        db: AsyncSession,
        session_factory: Optional[async_sessionmaker] = None,
        retry_delay_ms: Optional[int] = None,
        claim_ttl_seconds: Optional[int] = None,
    ):
        self.db = db
        self.session_factory = session_factory
        self.retry_delay = (
            settings.RECONCILE_LOCK_RETRY_DELAY_MS if retry_delay_ms is None else retry_delay_ms
        ) / 1000
        self.claim_ttl = timedelta(
            seconds=settings.RECONCILE_CLAIM_TTL_SECONDS if claim_ttl_seconds is None else claim_ttl_seconds
        )

    @property
    def uses_advisory_lock(self) -> bool:
        return self.db.bind.dialect.name == "postgresql"

    @asynccontextmanager
    async def hold(self, reference: str) -> AsyncIterator[None]:
        """
        Hold the lock for the body of the block.

        Raises:
            ConcurrencyBusyError: the reference stayed locked after one retry
            PersistenceError: the claim could not be written or released
        """
        if self.uses_advisory_lock:
            await self._with_retry(reference, self._try_advisory_lock)
            # Released by the enclosing transaction's commit/rollback
            yield
            return

        token = uuid4()
        await self._with_retry(reference, lambda ref: self._try_claim(ref, token))
        try:
            yield
        finally:
            await self._release_claim(reference, token)

    async def _with_retry(self, reference: str, attempt) -> None:
        if await attempt(reference):
            return
        logger.debug(f"Reference {reference} is locked, retrying in {self.retry_delay:.3f}s")
        await asyncio.sleep(self.retry_delay)
        if await attempt(reference):
            return
        logger.info(f"Reference {reference} still locked after retry")
        raise ConcurrencyBusyError(reference)

    # ------------------------------------------------------------------
    # PostgreSQL advisory lock
    # ------------------------------------------------------------------

    async def _try_advisory_lock(self, reference: str) -> bool:
        try:
            result = await self.db.execute(
                text("SELECT pg_try_advisory_xact_lock(hashtextextended(:key, 0))"),
                {"key": f"reconcile:{reference}"},
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not acquire lock for {reference}: {e}") from e
        return bool(result.scalar())

    # ------------------------------------------------------------------
    # Claim row
    # ------------------------------------------------------------------

    def _claim_session(self) -> AsyncSession:
        if self.session_factory is not None:
            return self.session_factory()
        return AsyncSession(bind=self.db.bind, expire_on_commit=False)

    async def _try_claim(self, reference: str, token: UUID) -> bool:
        now = datetime.now(timezone.utc)
        async with self._claim_session() as session:
            try:
                # Abandoned claims (crashed worker) are reclaimed
                await session.execute(
                    delete(ReconciliationClaim).where(
                        ReconciliationClaim.referencia == reference,
                        ReconciliationClaim.expires_at < now,
                    )
                )
                session.add(ReconciliationClaim(
                    referencia=reference,
                    claim_token=token,
                    claimed_at=now,
                    expires_at=now + self.claim_ttl,
                ))
                await session.commit()
                return True
            except IntegrityError:
                await session.rollback()
                return False
            except SQLAlchemyError as e:
                await session.rollback()
                raise PersistenceError(f"Could not claim {reference}: {e}") from e

    async def _release_claim(self, reference: str, token: UUID) -> None:
        async with self._claim_session() as session:
            try:
                await session.execute(
                    delete(ReconciliationClaim).where(
                        ReconciliationClaim.referencia == reference,
                        ReconciliationClaim.claim_token == token,
                    )
                )
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                # The claim expires on its own after the TTL
                logger.error(f"Failed to release claim on {reference}: {e}")
