"""
Round Reconciliation Schemas.

Pydantic schemas for the reconciliation RPC, manual overrides, count
recording and reference read models.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.schemas.base import BaseCreateSchema, BaseResponseSchema


# ============================================================================
# RECONCILIATION
# ============================================================================

class ValidateAndCloseRoundRequest(BaseCreateSchema):
    """Body of the validate_and_close_round RPC."""
    reference: str = Field(..., min_length=1, max_length=100)
    # Optional; when sent it must be the authenticated caller
    admin_id: Optional[UUID] = None


class RoundOutcome(BaseModel):
    """
    Result of a reconciliation or manual override.

    action is one of closed, next_round, escalate_to_superadmin,
    forced_close_superadmin, waiting_for_counts, error for the RPC, or
    validacion_manual / cierre_forzado for the override paths.
    """
    success: bool = True
    action: str
    reason: Optional[str] = None
    new_round: Optional[int] = None
    error: Optional[str] = None

    reference: Optional[str] = None
    status: Optional[str] = None
    current_round: Optional[int] = None
    detail: Optional[str] = None


# ============================================================================
# MANUAL OVERRIDES
# ============================================================================

class ValidateManuallyRequest(BaseCreateSchema):
    """Administrator-supplied final quantity, split evenly across live locations."""
    quantity: Decimal


class ForceCloseRequest(BaseCreateSchema):
    """Administrative closure without a match."""
    reason: str = Field(..., min_length=1, max_length=1000)


class SuperadminCloseRequest(BaseCreateSchema):
    """
    Round 5 quantities.

    Either one quantity per live location, or a total split evenly.
    """
    quantities: Optional[Dict[UUID, Decimal]] = None
    total_quantity: Optional[Decimal] = None

    @model_validator(mode="after")
    def check_one_source(self):
        if (self.quantities is None) == (self.total_quantity is None):
            raise ValueError("Provide either quantities or total_quantity")
        return self


# ============================================================================
# COUNTS
# ============================================================================

class CountCreate(BaseCreateSchema):
    """Count transcribed for a location in a round."""
    location_id: UUID
    audit_round: int = Field(..., ge=1, le=5)
    quantity_counted: Decimal
    operario_id: Optional[UUID] = None


class CountEdit(BaseCreateSchema):
    """Administrative rewrite of a count."""
    quantity_counted: Decimal


class CountResponse(BaseResponseSchema):
    id: UUID
    location_id: UUID
    audit_round: int
    quantity_counted: Decimal
    operario_id: Optional[UUID] = None
    supervisor_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime


class CountRecordedResponse(BaseModel):
    count: CountResponse
    reference: str
    reconciliation_scheduled: bool = False


# ============================================================================
# REFERENCES
# ============================================================================

class LocationResponse(BaseResponseSchema):
    id: UUID
    master_reference: str
    location_name: Optional[str] = None
    location_detail: Optional[str] = None
    punto_referencia: Optional[str] = None
    observaciones: Optional[str] = None
    assigned_supervisor_id: Optional[UUID] = None
    discovered_at_round: Optional[int] = None
    validated_at_round: Optional[int] = None
    validated_quantity: Optional[Decimal] = None
    counts: List[CountResponse] = []


class ReferenceSummaryResponse(BaseResponseSchema):
    referencia: str
    material_type: str
    control: Optional[str] = None
    erp_quantity: Optional[Decimal] = None
    status: str
    current_round: int
    updated_at: datetime


class ReferenceDetailResponse(ReferenceSummaryResponse):
    count_history: List[Dict[str, Any]] = []
    locations: List[LocationResponse] = []


class ReferenceListResponse(BaseModel):
    items: List[ReferenceSummaryResponse]
    total: int
    skip: int
    limit: int


# ============================================================================
# AUDIT LOG
# ============================================================================

class AuditLogResponse(BaseResponseSchema):
    id: UUID
    action_type: str
    master_reference: str
    round_number: Optional[int] = None
    user_id: Optional[UUID] = None
    new_data: Optional[Dict[str, Any]] = None
    created_at: datetime


class AuditLogListResponse(BaseModel):
    items: List[AuditLogResponse]
    total: int
