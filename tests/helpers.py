"""Data helpers for tests. Each helper uses its own session and commits."""
import uuid
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from app.core.security import create_access_token
from app.database import async_session_factory
from app.models.inventory_audit import InventoryCount, InventoryMaster, Location
from app.models.user import UserRole


async def create_reference(
    referencia: str,
    erp: Optional[str],
    locations: int = 2,
    material_type: str = "MP",
    status: str = "pending",
    current_round: int = 1,
    discovered_at_round: Optional[Sequence[Optional[int]]] = None,
) -> List[uuid.UUID]:
    """Insert a reference with `locations` locations; returns their ids in name order."""
    async with async_session_factory() as session:
        session.add(InventoryMaster(
            referencia=referencia,
            material_type=material_type,
            erp_quantity=Decimal(erp) if erp is not None else None,
            status=status,
            current_round=current_round,
        ))
        ids = []
        for index in range(locations):
            location_id = uuid.uuid4()
            session.add(Location(
                id=location_id,
                master_reference=referencia,
                location_name=f"L{index + 1:02d}",
                discovered_at_round=discovered_at_round[index] if discovered_at_round else None,
            ))
            ids.append(location_id)
        await session.commit()
    return ids


async def add_counts(location_ids: Sequence[uuid.UUID], audit_round: int, quantities: Sequence[str]) -> None:
    """Insert one count per location for the round."""
    async with async_session_factory() as session:
        for location_id, quantity in zip(location_ids, quantities):
            session.add(InventoryCount(
                location_id=location_id,
                audit_round=audit_round,
                quantity_counted=Decimal(quantity),
            ))
        await session.commit()


async def validate_location(location_id: uuid.UUID, at_round: int, quantity: str) -> None:
    async with async_session_factory() as session:
        location = await session.get(Location, location_id)
        location.validated_at_round = at_round
        location.validated_quantity = Decimal(quantity)
        await session.commit()


async def load_reference(referencia: str) -> InventoryMaster:
    """Read a reference, its locations and counts in a fresh session."""
    async with async_session_factory() as session:
        result = await session.execute(
            select(InventoryMaster)
            .where(InventoryMaster.referencia == referencia)
            .options(selectinload(InventoryMaster.locations).selectinload(Location.counts))
        )
        return result.scalar_one()


def locations_by_id(master: InventoryMaster) -> Dict[uuid.UUID, Location]:
    return {loc.id: loc for loc in master.locations}


async def grant_roles(*roles: str, user_id: Optional[uuid.UUID] = None) -> Dict[str, str]:
    """Grant roles to a (new) user and return Authorization headers for them."""
    user_id = user_id or uuid.uuid4()
    async with async_session_factory() as session:
        for role in roles:
            session.add(UserRole(user_id=user_id, role=role))
        await session.commit()
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}
