"""
Count Transcription API Endpoints.

Supervisors transcribe the counts of each location and round; admins may
rewrite any count afterwards.
"""
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, HTTPException, Path, status

from app.api.deps import DB, AdminOrSupervisor, AnyAdmin, check_reference_access
from app.config import settings
from app.jobs.reconciliation_jobs import reconcile_in_background
from app.models.inventory_audit import LAST_ROUND
from app.schemas.reconciliation import (
    CountCreate, CountEdit, CountRecordedResponse, CountResponse
)
from app.services.count_service import CountService

router = APIRouter()


@router.post(
    "",
    response_model=CountRecordedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record Count"
)
async def record_count(
    data: CountCreate,
    background_tasks: BackgroundTasks,
    db: DB,
    permission_checker: AdminOrSupervisor,
):
    """
    Record the count of a location for a round.

    Saving again for the same location and round overwrites the value.
    Reconciliation runs in the background afterwards.
    """
    if data.audit_round == LAST_ROUND and not permission_checker.is_superadmin():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Round 5 counts are entered by the superadmin"
        )

    service = CountService(db)
    _, master = await service.get_location(data.location_id)
    check_reference_access(permission_checker, master.material_type)

    count, master = await service.record_count(
        data.location_id,
        data.audit_round,
        data.quantity_counted,
        recorded_by=permission_checker.user_id,
        operario_id=data.operario_id,
    )

    scheduled = settings.AUTO_RECONCILE_ON_COUNT
    if scheduled:
        background_tasks.add_task(reconcile_in_background, master.referencia, permission_checker.user_id)

    return CountRecordedResponse(
        count=CountResponse.model_validate(count),
        reference=master.referencia,
        reconciliation_scheduled=scheduled,
    )


@router.put(
    "/{location_id}/rounds/{audit_round}",
    response_model=CountResponse,
    summary="Edit Count"
)
async def edit_count(
    location_id: UUID,
    data: CountEdit,
    db: DB,
    permission_checker: AnyAdmin,
    audit_round: int = Path(..., ge=1, le=5),
):
    """Administrative rewrite of a count. Does not trigger reconciliation."""
    if audit_round == LAST_ROUND and not permission_checker.is_superadmin():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Round 5 counts are entered by the superadmin"
        )

    service = CountService(db)
    _, master = await service.get_location(location_id)
    check_reference_access(permission_checker, master.material_type)
    return await service.edit_count(location_id, audit_round, data.quantity_counted, permission_checker.user_id)
