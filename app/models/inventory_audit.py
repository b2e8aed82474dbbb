"""
Physical Count Audit Models.

Models for the round-based physical inventory audit:
- Inventory master references with ERP quantity and round state
- Physical locations where each reference is counted
- Counts per location and round (C1-C5)
- Reconciliation claims used to serialize work per reference
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List
from uuid import UUID, uuid4

from sqlalchemy import (
    String, Integer, DateTime, ForeignKey, Index, Text, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import JSONType, UUIDType, QuantityType


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# ENUMS
# ============================================================================

class MaterialType(str, Enum):
    """Material category of a reference."""
    MP = "MP"  # Materia prima
    PP = "PP"  # Producto en proceso


class ReferenceStatus(str, Enum):
    """Audit status of a reference."""
    PENDING = "pending"              # Rounds 1-2 in progress
    AUDITED = "audited"              # Closed by sum match, manual validation or superadmin
    CONFLICT = "conflict"            # Sequential rounds 3-4 in progress
    CRITICAL = "critical"            # Round 5, waiting for superadmin
    FORCED_CLOSED = "forced_closed"  # Administrative closure without a match


CLOSED_STATUSES = (ReferenceStatus.AUDITED.value, ReferenceStatus.FORCED_CLOSED.value)

FIRST_ROUND = 1
LAST_ROUND = 5


# ============================================================================
# MODELS
# ============================================================================

class InventoryMaster(Base):
    """
    A reference under physical audit.

    count_history is an append-only JSON array; each round closure,
    escalation or override appends exactly one entry.
    """
    __tablename__ = "inventory_master"
    __table_args__ = (
        Index("idx_im_status_round", "status", "current_round"),
        Index("idx_im_material_type", "material_type"),
        CheckConstraint("current_round BETWEEN 1 AND 5", name="ck_im_current_round"),
    )

    referencia: Mapped[str] = mapped_column(String(100), primary_key=True)
    material_type: Mapped[str] = mapped_column(
        String(2), nullable=False, default=MaterialType.MP.value
    )
    control: Mapped[Optional[str]] = mapped_column(String(100))

    erp_quantity: Mapped[Optional[Decimal]] = mapped_column(QuantityType)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ReferenceStatus.PENDING.value
    )
    current_round: Mapped[int] = mapped_column(Integer, nullable=False, default=FIRST_ROUND)
    count_history: Mapped[List] = mapped_column(JSONType, nullable=False, default=list)

    assigned_admin_id: Mapped[Optional[UUID]] = mapped_column(UUIDType)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    # Relationships
    locations: Mapped[List["Location"]] = relationship(
        back_populates="reference", order_by="Location.location_name"
    )

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES

    def __repr__(self) -> str:
        return f"<InventoryMaster(referencia='{self.referencia}', status='{self.status}', round={self.current_round})>"


class Location(Base):
    """Physical spot where a reference's stock is counted."""
    __tablename__ = "locations"
    __table_args__ = (
        Index("idx_loc_master_reference", "master_reference"),
        Index("idx_loc_supervisor", "assigned_supervisor_id"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType, primary_key=True, default=uuid4)
    master_reference: Mapped[str] = mapped_column(
        String(100), ForeignKey("inventory_master.referencia", ondelete="CASCADE"), nullable=False
    )

    location_name: Mapped[Optional[str]] = mapped_column(String(200))
    location_detail: Mapped[Optional[str]] = mapped_column(String(200))
    punto_referencia: Mapped[Optional[str]] = mapped_column(String(200))
    observaciones: Mapped[Optional[str]] = mapped_column(Text)

    assigned_supervisor_id: Mapped[Optional[UUID]] = mapped_column(UUIDType)

    # Set when the location was added after round 1; earlier rounds don't apply
    discovered_at_round: Mapped[Optional[int]] = mapped_column(Integer)

    # Frozen contribution once accepted
    validated_at_round: Mapped[Optional[int]] = mapped_column(Integer)
    validated_quantity: Mapped[Optional[Decimal]] = mapped_column(QuantityType)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    # Relationships
    reference: Mapped["InventoryMaster"] = relationship(back_populates="locations")
    counts: Mapped[List["InventoryCount"]] = relationship(
        back_populates="location", order_by="InventoryCount.audit_round"
    )

    @property
    def is_validated(self) -> bool:
        return self.validated_at_round is not None

    def applies_to_round(self, round_number: int) -> bool:
        """Whether this location must be counted in the given round."""
        return self.discovered_at_round is None or self.discovered_at_round <= round_number


class InventoryCount(Base):
    """Quantity counted at one location in one round. One row per (location, round)."""
    __tablename__ = "inventory_counts"
    __table_args__ = (
        UniqueConstraint("location_id", "audit_round", name="uq_count_location_round"),
        CheckConstraint("audit_round BETWEEN 1 AND 5", name="ck_count_audit_round"),
        CheckConstraint("quantity_counted >= 0", name="ck_count_quantity_non_negative"),
        Index("idx_count_round", "audit_round"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType, primary_key=True, default=uuid4)
    location_id: Mapped[UUID] = mapped_column(
        UUIDType, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False
    )
    audit_round: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_counted: Mapped[Decimal] = mapped_column(QuantityType, nullable=False)

    operario_id: Mapped[Optional[UUID]] = mapped_column(UUIDType)
    supervisor_id: Mapped[Optional[UUID]] = mapped_column(UUIDType)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    # Relationships
    location: Mapped["Location"] = relationship(back_populates="counts")


class ReconciliationClaim(Base):
    """
    Cross-instance claim on a reference while it is being reconciled.

    Used where PostgreSQL advisory locks are not available. The primary key
    makes a second concurrent claim fail on insert.
    """
    __tablename__ = "reconciliation_claims"

    referencia: Mapped[str] = mapped_column(String(100), primary_key=True)
    claim_token: Mapped[UUID] = mapped_column(UUIDType, nullable=False)
    claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
