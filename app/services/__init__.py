# Services module
from app.services.audit_service import AuditService
from app.services.count_service import CountService
from app.services.reference_lock import ReferenceLock
from app.services.round_reconciliation_service import RoundReconciliationService

__all__ = [
    "AuditService",
    "CountService",
    "ReferenceLock",
    "RoundReconciliationService",
]
