"""
Count Service - transcription of physical counts.

Business logic for recording counts per (location, round) and for the
administrative count edit. Recording a count never reconciles by itself;
the API schedules reconciliation separately.
"""
import logging
from decimal import Decimal
from typing import Any, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError, PersistenceError, ValidationError
from app.core.quantities import format_quantity, normalize_quantity
from app.models.inventory_audit import (
    InventoryCount, InventoryMaster, Location, FIRST_ROUND, LAST_ROUND
)
from app.services.audit_service import AuditService


logger = logging.getLogger(__name__)

EDIT_COUNT_ACTION = "edicion_conteo"


def check_round(audit_round: Any) -> int:
    if isinstance(audit_round, bool) or not isinstance(audit_round, int):
        raise ValidationError("audit_round must be an integer")
    if not FIRST_ROUND <= audit_round <= LAST_ROUND:
        raise ValidationError(f"audit_round must be between {FIRST_ROUND} and {LAST_ROUND}")
    return audit_round


def open_rounds(current_round: int) -> Tuple[int, ...]:
    """Rounds a supervisor may still transcribe: C1 and C2 together, then one at a time."""
    if current_round <= 2:
        return (1, 2)
    return (current_round,)


class CountService:
    """Service for count transcription."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_location(self, location_id: UUID) -> Tuple[Location, InventoryMaster]:
        """Get a location and its reference, or raise NotFoundError."""
        result = await self.db.execute(
            select(Location, InventoryMaster)
            .join(InventoryMaster, InventoryMaster.referencia == Location.master_reference)
            .where(Location.id == location_id)
        )
        row = result.one_or_none()
        if row is None:
            raise NotFoundError(f"Location {location_id} not found")
        return row[0], row[1]

    async def get_count(self, location_id: UUID, audit_round: int) -> Optional[InventoryCount]:
        result = await self.db.execute(
            select(InventoryCount).where(
                InventoryCount.location_id == location_id,
                InventoryCount.audit_round == audit_round,
            )
        )
        return result.scalar_one_or_none()

    async def upsert_count(
        self,
        location_id: UUID,
        audit_round: int,
        quantity: Decimal,
        supervisor_id: Optional[UUID] = None,
        operario_id: Optional[UUID] = None,
    ) -> Tuple[InventoryCount, Optional[Decimal]]:
        """
        Write the count for (location, round) in the current transaction.

        An existing row is updated in place. Returns the row and the previous
        quantity (None when the row is new).
        """
        count = await self.get_count(location_id, audit_round)
        if count is not None:
            previous = count.quantity_counted
            count.quantity_counted = quantity
            if supervisor_id is not None:
                count.supervisor_id = supervisor_id
            if operario_id is not None:
                count.operario_id = operario_id
            await self.db.flush()
            return count, previous

        count = InventoryCount(
            location_id=location_id,
            audit_round=audit_round,
            quantity_counted=quantity,
            supervisor_id=supervisor_id,
            operario_id=operario_id,
        )
        self.db.add(count)
        await self.db.flush()
        return count, None

    async def record_count(
        self,
        location_id: UUID,
        audit_round: int,
        quantity: Any,
        recorded_by: UUID,
        operario_id: Optional[UUID] = None,
    ) -> Tuple[InventoryCount, InventoryMaster]:
        """
        Record the count transcribed by a supervisor.

        Raises:
            ValidationError: bad quantity or round, or the round does not apply
            NotFoundError: unknown location
        """
        audit_round = check_round(audit_round)
        value = normalize_quantity(quantity, "quantity_counted")

        location, master = await self.get_location(location_id)
        if master.is_closed:
            raise ValidationError(f"Reference {master.referencia} is already closed ({master.status})")
        if audit_round not in open_rounds(master.current_round):
            state = "is not open yet" if audit_round > master.current_round else "is closed, edit it instead"
            raise ValidationError(
                f"Reference {master.referencia} is in round {master.current_round}; "
                f"round {audit_round} {state}"
            )
        if not location.applies_to_round(audit_round):
            raise ValidationError(
                f"Location was added in round {location.discovered_at_round}; "
                f"round {audit_round} does not apply"
            )
        if location.is_validated:
            raise ValidationError(
                f"Location was already validated in round {location.validated_at_round}"
            )

        try:
            count, _ = await self.upsert_count(
                location.id, audit_round, value,
                supervisor_id=recorded_by, operario_id=operario_id,
            )
            await self.db.commit()
        except IntegrityError:
            # Two saves of the same (location, round) raced; the second becomes an update
            await self.db.rollback()
            try:
                count, _ = await self.upsert_count(
                    location_id, audit_round, value,
                    supervisor_id=recorded_by, operario_id=operario_id,
                )
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise PersistenceError(f"Could not save count: {e}") from e
            # Rows loaded before the rollback are expired
            _, master = await self.get_location(location_id)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(f"Could not save count: {e}") from e

        await self.db.refresh(count)
        logger.info(
            f"Count recorded: reference={master.referencia} location={location_id} "
            f"round={audit_round} quantity={value}"
        )
        return count, master

    async def edit_count(
        self,
        location_id: UUID,
        audit_round: int,
        quantity: Any,
        admin_id: UUID,
    ) -> InventoryCount:
        """
        Administrative rewrite of any (location, round) quantity.

        Does not reconcile; the next trigger picks the new value up.
        """
        audit_round = check_round(audit_round)
        value = normalize_quantity(quantity, "quantity_counted")
        location, master = await self.get_location(location_id)

        try:
            count, previous = await self.upsert_count(
                location.id, audit_round, value, supervisor_id=admin_id
            )
            await AuditService(self.db).log(
                action_type=EDIT_COUNT_ACTION,
                master_reference=master.referencia,
                round_number=audit_round,
                user_id=admin_id,
                new_data={
                    "location_id": str(location.id),
                    "audit_round": audit_round,
                    "previous_quantity": format_quantity(previous),
                    "quantity": format_quantity(value),
                },
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(f"Could not edit count: {e}") from e

        await self.db.refresh(count)
        logger.info(
            f"Count edited: reference={master.referencia} location={location_id} "
            f"round={audit_round} {previous} -> {value} by {admin_id}"
        )
        return count
