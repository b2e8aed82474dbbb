"""
Round Reconciliation API Endpoints.

API endpoints for the physical count audit including:
- validate_and_close_round RPC
- Reference read models (list, detail, audit trail)
- Manual overrides (validate manually, force close, superadmin close)
"""
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from app.api.deps import (
    DB, AdminOrSupervisor, AnyAdmin, Superadmin, check_reference_access
)
from app.core.errors import NotFoundError
from app.core.permissions import PermissionChecker
from app.models.inventory_audit import InventoryMaster, MaterialType, ReferenceStatus
from app.schemas.reconciliation import (
    ValidateAndCloseRoundRequest, RoundOutcome,
    ValidateManuallyRequest, ForceCloseRequest, SuperadminCloseRequest,
    ReferenceDetailResponse, ReferenceListResponse, ReferenceSummaryResponse,
    AuditLogListResponse, AuditLogResponse,
)
from app.services.audit_service import AuditService
from app.services.round_reconciliation_service import RoundReconciliationService

router = APIRouter()


async def _authorize_reference(db, referencia: str, permission_checker: PermissionChecker) -> InventoryMaster:
    master = await db.get(InventoryMaster, referencia)
    if master is None:
        raise NotFoundError(f"Reference {referencia} not found")
    check_reference_access(permission_checker, master.material_type)
    return master


# ============================================================================
# RPC
# ============================================================================

@router.post(
    "/rpc/validate_and_close_round",
    response_model=RoundOutcome,
    summary="Validate and Close Round"
)
async def validate_and_close_round(
    data: ValidateAndCloseRoundRequest,
    db: DB,
    permission_checker: AdminOrSupervisor,
):
    """
    Evaluate the current round of a reference.

    Returns closed, next_round, escalate_to_superadmin or
    waiting_for_counts. The outcome is recorded against the authenticated
    caller.
    """
    if data.admin_id is not None and data.admin_id != permission_checker.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="admin_id must be the authenticated user"
        )

    await _authorize_reference(db, data.reference, permission_checker)
    service = RoundReconciliationService(db)
    return await service.reconcile(data.reference, permission_checker.user_id)


# ============================================================================
# REFERENCES
# ============================================================================

@router.get(
    "/references",
    response_model=ReferenceListResponse,
    summary="List References"
)
async def list_references(
    db: DB,
    permission_checker: AdminOrSupervisor,
    status_filter: Optional[ReferenceStatus] = Query(None, alias="status"),
    material_type: Optional[MaterialType] = None,
    round_filter: Optional[int] = Query(None, alias="round", ge=1, le=5),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    """List references under audit."""
    material = material_type.value if material_type else None
    if material is not None:
        check_reference_access(permission_checker, material)
    else:
        visible = [m.value for m in MaterialType if permission_checker.can_access_reference(m.value)]
        if len(visible) == 1:
            material = visible[0]

    service = RoundReconciliationService(db)
    items, total = await service.list_references(
        status=status_filter.value if status_filter else None,
        material_type=material,
        current_round=round_filter,
        skip=skip,
        limit=limit,
    )
    return ReferenceListResponse(
        items=[ReferenceSummaryResponse.model_validate(item) for item in items],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/references/{referencia}",
    response_model=ReferenceDetailResponse,
    summary="Get Reference"
)
async def get_reference(
    referencia: str,
    db: DB,
    permission_checker: AdminOrSupervisor,
):
    """Get a reference with its locations, counts and round history."""
    service = RoundReconciliationService(db)
    master = await service.get_reference(referencia)
    if not master:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Reference not found"
        )
    check_reference_access(permission_checker, master.material_type)
    return master


@router.get(
    "/references/{referencia}/audit-logs",
    response_model=AuditLogListResponse,
    summary="Reference Audit Trail"
)
async def get_reference_audit_logs(
    referencia: str,
    db: DB,
    permission_checker: AdminOrSupervisor,
    action_type: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    """Audit entries for a reference, oldest first."""
    await _authorize_reference(db, referencia, permission_checker)
    logs, total = await AuditService(db).get_audit_logs(
        master_reference=referencia,
        action_type=action_type,
        skip=skip,
        limit=limit,
    )
    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(log) for log in logs],
        total=total,
    )


# ============================================================================
# MANUAL OVERRIDES
# ============================================================================

@router.post(
    "/references/{referencia}/validate-manually",
    response_model=RoundOutcome,
    summary="Validate Reference Manually"
)
async def validate_manually(
    referencia: str,
    data: ValidateManuallyRequest,
    db: DB,
    permission_checker: AnyAdmin,
):
    """Close the reference with an administrator-supplied quantity."""
    await _authorize_reference(db, referencia, permission_checker)
    service = RoundReconciliationService(db)
    return await service.validate_manually(referencia, permission_checker.user_id, data.quantity)


@router.post(
    "/references/{referencia}/force-close",
    response_model=RoundOutcome,
    summary="Force Close Reference"
)
async def force_close(
    referencia: str,
    data: ForceCloseRequest,
    db: DB,
    permission_checker: AnyAdmin,
):
    """Close the reference without a match. Location quantities are not touched."""
    await _authorize_reference(db, referencia, permission_checker)
    service = RoundReconciliationService(db)
    return await service.force_close(referencia, permission_checker.user_id, data.reason)


@router.post(
    "/references/{referencia}/superadmin-close",
    response_model=RoundOutcome,
    summary="Superadmin Close (Round 5)"
)
async def superadmin_close(
    referencia: str,
    data: SuperadminCloseRequest,
    db: DB,
    permission_checker: Superadmin,
):
    """Enter the round 5 quantities of a critical reference and close it."""
    service = RoundReconciliationService(db)
    return await service.superadmin_close(
        referencia,
        permission_checker.user_id,
        quantities=data.quantities,
        total_quantity=data.total_quantity,
    )
