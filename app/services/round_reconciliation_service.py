"""
Round Reconciliation Service.

Decides, after each counting round, whether a reference is audited,
advanced to the next round or escalated to the superadmin, and applies the
manual overrides (validate manually, force close, superadmin close).

Every entry point:
1. takes the per-reference lock (ReferenceLock),
2. loads the reference, its locations and their counts into a snapshot,
3. lets the round state decide (app.services.round_states),
4. writes status/round/history, validated locations and the audit log in a
   single transaction.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.errors import NotFoundError, PersistenceError, ValidationError
from app.core.quantities import (
    distribute_evenly, format_quantity, normalize_optional, normalize_quantity
)
from app.models.inventory_audit import (
    InventoryCount, InventoryMaster, Location, ReferenceStatus, LAST_ROUND
)
from app.schemas.reconciliation import RoundOutcome
from app.services.audit_service import AuditService
from app.services.count_service import CountService
from app.services.reference_lock import ReferenceLock
from app.services.round_states import (
    Decision, LocationSnapshot, ReconcileAction, ReferenceSnapshot, state_for
)


logger = logging.getLogger(__name__)


class OverrideAction(str, Enum):
    """Administrative actions outside the automatic round logic."""
    VALIDACION_MANUAL = "validacion_manual"
    CIERRE_FORZADO = "cierre_forzado"


class RoundReconciliationService:
    """Service for round reconciliation and manual overrides."""

    def __init__(self, db: AsyncSession, lock: Optional[ReferenceLock] = None):
        self.db = db
        self.lock = lock or ReferenceLock(db)
        self.audit = AuditService(db)

    # ========================================================================
    # QUERIES
    # ========================================================================

    async def get_reference(self, referencia: str) -> Optional[InventoryMaster]:
        """Get a reference with its locations and counts."""
        result = await self.db.execute(
            select(InventoryMaster)
            .where(InventoryMaster.referencia == referencia)
            .options(selectinload(InventoryMaster.locations).selectinload(Location.counts))
        )
        return result.scalar_one_or_none()

    async def list_references(
        self,
        status: Optional[str] = None,
        material_type: Optional[str] = None,
        current_round: Optional[int] = None,
        skip: int = 0,
        limit: int = 100
    ) -> Tuple[List[InventoryMaster], int]:
        """List references with filters."""
        query = select(InventoryMaster)

        if status:
            query = query.where(InventoryMaster.status == status)
        if material_type:
            query = query.where(InventoryMaster.material_type == material_type)
        if current_round:
            query = query.where(InventoryMaster.current_round == current_round)

        # Count
        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query)

        # Paginate
        query = query.order_by(InventoryMaster.referencia).offset(skip).limit(limit)
        result = await self.db.execute(query)

        return list(result.scalars().all()), total or 0

    async def list_open_references(self, limit: int = 200) -> List[str]:
        """Reference codes that can still change state, oldest update first."""
        result = await self.db.execute(
            select(InventoryMaster.referencia)
            .where(InventoryMaster.status.not_in([
                ReferenceStatus.AUDITED.value,
                ReferenceStatus.FORCED_CLOSED.value,
            ]))
            .order_by(InventoryMaster.updated_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _load(self, referencia: str) -> Tuple[InventoryMaster, List[Location], ReferenceSnapshot]:
        master = await self.db.scalar(
            select(InventoryMaster)
            .where(InventoryMaster.referencia == referencia)
            .execution_options(populate_existing=True)
        )
        if master is None:
            raise NotFoundError(f"Reference {referencia} not found")

        result = await self.db.execute(
            select(Location)
            .where(Location.master_reference == referencia)
            .order_by(Location.location_name, Location.id)
            .execution_options(populate_existing=True)
        )
        locations = list(result.scalars().all())

        counts: Dict[UUID, Dict[int, Decimal]] = {loc.id: {} for loc in locations}
        if locations:
            count_rows = await self.db.execute(
                select(
                    InventoryCount.location_id,
                    InventoryCount.audit_round,
                    InventoryCount.quantity_counted,
                ).where(InventoryCount.location_id.in_(list(counts)))
            )
            for location_id, audit_round, quantity in count_rows.all():
                counts[location_id][audit_round] = normalize_optional(quantity)

        snapshot = ReferenceSnapshot(
            referencia=master.referencia,
            status=master.status,
            current_round=master.current_round,
            erp_quantity=normalize_optional(master.erp_quantity),
            locations=tuple(
                LocationSnapshot(
                    location_id=loc.id,
                    counts=counts[loc.id],
                    discovered_at_round=loc.discovered_at_round,
                    validated_at_round=loc.validated_at_round,
                    validated_quantity=normalize_optional(loc.validated_quantity),
                )
                for loc in locations
            ),
        )
        return master, locations, snapshot

    # ========================================================================
    # RECONCILIATION
    # ========================================================================

    async def reconcile(self, referencia: str, admin_id: UUID) -> RoundOutcome:
        """
        Evaluate the current round of a reference and apply the outcome.

        Non-mutating outcomes (waiting_for_counts, already closed) write
        nothing.

        Raises:
            NotFoundError: unknown reference
            ConcurrencyBusyError: another reconciliation holds the reference
            PersistenceError: the transaction could not be committed
        """
        async with self._locked(referencia, "Reconciliation"):
            master, locations, snapshot = await self._load(referencia)
            state = state_for(snapshot)
            decision = state.on_trigger(snapshot)
            logger.debug(f"{referencia}: {state!r} -> {decision.action.value}")

            if decision.mutates:
                await self._apply(master, locations, decision, admin_id)
            await self._commit(referencia)

        return self._outcome(master, decision)

    @asynccontextmanager
    async def _locked(self, referencia: str, operation: str) -> AsyncIterator[None]:
        """Hold the reference lock; roll back before it is released on any failure."""
        async with self.lock.hold(referencia):
            try:
                yield
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise PersistenceError(f"{operation} of {referencia} failed: {e}") from e
            except Exception:
                await self.db.rollback()
                raise

    async def _apply(
        self,
        master: InventoryMaster,
        locations: List[Location],
        decision: Decision,
        admin_id: UUID,
    ) -> None:
        round_before = master.current_round

        if decision.new_status:
            master.status = decision.new_status
        if decision.new_round:
            master.current_round = decision.new_round

        for location in locations:
            if location.id in decision.validations:
                validated_round, quantity = decision.validations[location.id]
                location.validated_at_round = validated_round
                location.validated_quantity = quantity

        entry = self._append_history(master, decision.history_entry, admin_id)
        await self.audit.log(
            action_type=entry["action"],
            master_reference=master.referencia,
            round_number=round_before,
            user_id=admin_id,
            new_data=entry,
        )
        logger.info(
            f"Reference {master.referencia}: {entry['action']} "
            f"(round {round_before} -> {master.current_round}, status {master.status})"
        )

    @staticmethod
    def _append_history(master: InventoryMaster, entry: Dict[str, Any], admin_id: UUID) -> Dict[str, Any]:
        entry = {
            **entry,
            "admin_id": str(admin_id),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        # Reassign so the JSON column is flagged dirty
        master.count_history = [*(master.count_history or []), entry]
        return entry

    async def _commit(self, referencia: str) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Commit failed for reference {referencia}: {e}")
            raise PersistenceError(f"Could not persist reconciliation of {referencia}: {e}") from e

    @staticmethod
    def _outcome(master: InventoryMaster, decision: Decision) -> RoundOutcome:
        return RoundOutcome(
            success=True,
            action=decision.action.value,
            reason=decision.reason.value if decision.reason else None,
            new_round=decision.new_round,
            reference=master.referencia,
            status=master.status,
            current_round=master.current_round,
            detail=decision.detail,
        )

    # ========================================================================
    # MANUAL OVERRIDES
    # ========================================================================

    async def validate_manually(self, referencia: str, admin_id: UUID, quantity: Any) -> RoundOutcome:
        """
        Close a reference with an administrator-supplied quantity.

        The quantity is split evenly across the live locations of the current
        round; the shares always sum back to the input.

        Raises:
            ValidationError: bad quantity or no live location to validate
        """
        total = normalize_quantity(quantity)

        async with self._locked(referencia, "Manual validation"):
            master, locations, snapshot = await self._load(referencia)
            current_round = master.current_round
            live_ids = [loc.location_id for loc in snapshot.live_locations(current_round)]
            if not live_ids:
                raise ValidationError(f"Reference {referencia} has no live locations to validate")

            shares = dict(zip(live_ids, distribute_evenly(total, len(live_ids))))
            for location in locations:
                if location.id in shares:
                    location.validated_at_round = current_round
                    location.validated_quantity = shares[location.id]

            master.status = ReferenceStatus.AUDITED.value
            entry = self._append_history(master, {
                "round": current_round,
                "action": OverrideAction.VALIDACION_MANUAL.value,
                "quantity": format_quantity(total),
                "erp": format_quantity(snapshot.erp_quantity),
                "distribution": {str(k): format_quantity(v) for k, v in shares.items()},
            }, admin_id)
            await self.audit.log(
                action_type=OverrideAction.VALIDACION_MANUAL.value,
                master_reference=referencia,
                round_number=current_round,
                user_id=admin_id,
                new_data=entry,
            )
            await self._commit(referencia)

        logger.info(f"Reference {referencia} validated manually with {total} by {admin_id}")
        return RoundOutcome(
            action=OverrideAction.VALIDACION_MANUAL.value,
            reference=referencia,
            status=master.status,
            current_round=master.current_round,
        )

    async def force_close(self, referencia: str, admin_id: UUID, reason: str) -> RoundOutcome:
        """
        Close a reference administratively without a sum match.

        Location quantities are left untouched.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required to force close a reference")

        async with self._locked(referencia, "Forced closure"):
            master, _, _ = await self._load(referencia)
            master.status = ReferenceStatus.FORCED_CLOSED.value
            entry = self._append_history(master, {
                "round": master.current_round,
                "action": OverrideAction.CIERRE_FORZADO.value,
                "reason": reason,
            }, admin_id)
            await self.audit.log(
                action_type=OverrideAction.CIERRE_FORZADO.value,
                master_reference=referencia,
                round_number=master.current_round,
                user_id=admin_id,
                new_data=entry,
            )
            await self._commit(referencia)

        logger.info(f"Reference {referencia} force closed by {admin_id}: {reason}")
        return RoundOutcome(
            action=OverrideAction.CIERRE_FORZADO.value,
            reference=referencia,
            status=master.status,
            current_round=master.current_round,
        )

    async def superadmin_close(
        self,
        referencia: str,
        admin_id: UUID,
        quantities: Optional[Dict[UUID, Any]] = None,
        total_quantity: Optional[Any] = None,
    ) -> RoundOutcome:
        """
        Enter the round 5 quantities of a critical reference and close it.

        Writes one C5 count per live location (given per location, or a
        total split evenly), then reconciles in the same transaction, which
        yields forced_close_superadmin.

        Raises:
            ValidationError: reference is not critical, or quantities are missing/invalid
        """
        if (quantities is None) == (total_quantity is None):
            raise ValidationError("Provide either per-location quantities or a total quantity")
        if quantities is not None:
            quantities = {
                UUID(str(location_id)): normalize_quantity(value, f"quantity for {location_id}")
                for location_id, value in quantities.items()
            }
        else:
            total_quantity = normalize_quantity(total_quantity, "total_quantity")

        counts = CountService(self.db)
        async with self._locked(referencia, "Superadmin closure"):
            master, locations, snapshot = await self._load(referencia)
            if master.current_round != LAST_ROUND or master.is_closed:
                raise ValidationError(
                    f"Reference {referencia} is not critical "
                    f"(round {master.current_round}, status {master.status})"
                )

            live_ids = [loc.location_id for loc in snapshot.live_locations(LAST_ROUND)]
            if not live_ids:
                raise ValidationError(f"Reference {referencia} has no live locations to count")

            if quantities is not None:
                missing = set(live_ids) - set(quantities)
                unknown = set(quantities) - set(live_ids)
                if missing:
                    raise ValidationError(f"Enter a quantity for every location ({len(missing)} missing)")
                if unknown:
                    raise ValidationError(f"{len(unknown)} quantities are for locations not live on {referencia}")
                entered = quantities
            else:
                entered = dict(zip(live_ids, distribute_evenly(total_quantity, len(live_ids))))

            for location_id in live_ids:
                await counts.upsert_count(location_id, LAST_ROUND, entered[location_id], supervisor_id=admin_id)

            master, locations, snapshot = await self._load(referencia)
            decision = state_for(snapshot).evaluate(snapshot)
            if decision.action != ReconcileAction.FORCED_CLOSE_SUPERADMIN:
                raise ValidationError(f"Round 5 counts for {referencia} are incomplete")
            await self._apply(master, locations, decision, admin_id)
            await self._commit(referencia)

        return self._outcome(master, decision)
