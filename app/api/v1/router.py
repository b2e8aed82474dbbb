from fastapi import APIRouter

from app.api.v1.endpoints import (
    # Round reconciliation & references
    reconciliation,
    # Count transcription
    counts,
)

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(
    reconciliation.router,
    tags=["Reconciliation"]
)
api_router.include_router(
    counts.router,
    prefix="/counts",
    tags=["Counts"]
)
