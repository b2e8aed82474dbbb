import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, DateTime, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import JSONType, UUIDType


class AuditLog(Base):
    """
    Audit log for every state-changing reconciliation outcome.
    Rows are append-only; nothing updates or deletes them.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_reference_created", "master_reference", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Action details
    action_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    # Actions: closed, next_round, escalate_to_superadmin, forced_close_superadmin,
    #          validacion_manual, cierre_forzado, edicion_conteo

    # Reference being audited
    master_reference: Mapped[str] = mapped_column(String(100), nullable=False)
    round_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Who performed the action
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    # Payload snapshot
    new_data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # Timestamp
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<AuditLog(action_type='{self.action_type}', reference='{self.master_reference}', round={self.round_number})>"
