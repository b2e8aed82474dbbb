import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import String, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType


class AppRole(str, Enum):
    """
    Application roles.
    SUPERADMIN resolves critical (round 5) references.
    ADMIN_MP / ADMIN_PP are limited to their material type.
    """
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    ADMIN_MP = "admin_mp"
    ADMIN_PP = "admin_pp"
    SUPERVISOR = "supervisor"
    OPERARIO = "operario"


ADMIN_ROLES = (
    AppRole.SUPERADMIN.value,
    AppRole.ADMIN.value,
    AppRole.ADMIN_MP.value,
    AppRole.ADMIN_PP.value,
)


class UserRole(Base):
    """
    Role granted to a user.

    Users themselves live in the identity provider; only the role
    assignment is stored here.
    """
    __tablename__ = "user_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_user_role"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="superadmin, admin, admin_mp, admin_pp, supervisor, operario"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<UserRole(user_id='{self.user_id}', role='{self.role}')>"
