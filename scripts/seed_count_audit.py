"""
Seed script for a local count audit.
Creates the tables, grants roles to a user and loads a few sample references.

Usage:
    python -m scripts.seed_count_audit [user_id]
"""

import asyncio
import sys
import uuid
from decimal import Decimal
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select
from app.database import async_session_factory, engine, Base
from app.models.inventory_audit import InventoryMaster, Location, MaterialType
from app.models.user import AppRole, UserRole
from app.core.security import create_access_token


# ==================== SAMPLE REFERENCES ====================
REFERENCES = [
    {
        "referencia": "MP-ACERO-1020",
        "material_type": MaterialType.MP.value,
        "control": "Bodega principal",
        "erp_quantity": Decimal("150"),
        "locations": ["Estante A1", "Estante A2", "Patio"],
    },
    {
        "referencia": "MP-RESINA-300",
        "material_type": MaterialType.MP.value,
        "control": "Bodega quimicos",
        "erp_quantity": Decimal("42.5"),
        "locations": ["Tanque 1", "Tanque 2"],
    },
    {
        "referencia": "PP-CARCASA-77",
        "material_type": MaterialType.PP.value,
        "control": "Linea 3",
        "erp_quantity": Decimal("80"),
        "locations": ["Celda 1", "Celda 2", "Celda 3", "Buffer"],
    },
]


async def seed_roles(session, user_id: uuid.UUID):
    """Grant superadmin and admin to the user."""
    print("\nGranting roles...")
    for role in (AppRole.SUPERADMIN.value, AppRole.ADMIN.value):
        result = await session.execute(
            select(UserRole).where(UserRole.user_id == user_id, UserRole.role == role)
        )
        if result.scalar_one_or_none():
            print(f"  {role} already granted")
            continue
        session.add(UserRole(user_id=user_id, role=role))
        print(f"  Granted {role}")


async def seed_references(session):
    """Create sample references with their locations."""
    print("\nCreating references...")
    created = 0
    for data in REFERENCES:
        existing = await session.get(InventoryMaster, data["referencia"])
        if existing:
            print(f"  {data['referencia']} already exists")
            continue

        master = InventoryMaster(
            referencia=data["referencia"],
            material_type=data["material_type"],
            control=data["control"],
            erp_quantity=data["erp_quantity"],
        )
        session.add(master)
        for name in data["locations"]:
            session.add(Location(master_reference=master.referencia, location_name=name))
        created += 1
        print(f"  Created {master.referencia} ({len(data['locations'])} locations)")
    return created


async def main():
    """Main seed function."""
    print("=" * 60)
    print("Count Audit Seed Script")
    print("=" * 60)

    user_id = uuid.UUID(sys.argv[1]) if len(sys.argv) > 1 else uuid.uuid4()

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_factory() as session:
        try:
            await seed_roles(session, user_id)
            created = await seed_references(session)

            await session.commit()

            print("\n" + "=" * 60)
            print("Seeding completed successfully!")
            print("=" * 60)
            print(f"\nSummary:")
            print(f"  - References created: {created}")
            print(f"\nUser {user_id}:")
            print(f"  - Token: {create_access_token(user_id)}")

        except Exception as e:
            await session.rollback()
            print(f"\nError during seeding: {e}")
            raise


if __name__ == "__main__":
    asyncio.run(main())
