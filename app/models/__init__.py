# Models module
from app.models.inventory_audit import (
    InventoryMaster, Location, InventoryCount, ReconciliationClaim,
    MaterialType, ReferenceStatus,
)
from app.models.audit_log import AuditLog
from app.models.user import UserRole, AppRole

__all__ = [
    "InventoryMaster",
    "Location",
    "InventoryCount",
    "ReconciliationClaim",
    "MaterialType",
    "ReferenceStatus",
    "AuditLog",
    "UserRole",
    "AppRole",
]
