from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.api.v1.router import api_router
from app.core.errors import ReconciliationError
from app.database import init_db, async_session_factory
from app.jobs.scheduler import start_scheduler, shutdown_scheduler, get_job_status


logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create missing tables (migrations are applied with alembic in production)
    - Start background scheduler (reconciliation sweep)
    """
    # Startup
    await init_db()
    start_scheduler()
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started")

    yield

    # Shutdown
    shutdown_scheduler()


OPENAPI_TAGS = [
    {"name": "Reconciliation", "description": "Round reconciliation, references and manual overrides"},
    {"name": "Counts", "description": "Count transcription per location and round"},
]

API_DESCRIPTION = """
## Inventory Count Audit API

Physical inventory audit in up to five counting rounds per reference.

| Round | Who | Closes when |
|-------|-----|-------------|
| C1 / C2 | Supervisors, in parallel | Either sum matches ERP, or C1 = C2 |
| C3 / C4 | Supervisors, live locations only | Sum (plus frozen locations) matches ERP |
| C5 | Superadmin | Always, with the entered quantities |

### Authentication

Include the identity provider token in the Authorization header: `Bearer <token>`

### Error Codes

| Code | Description |
|------|-------------|
| 401 | Unauthorized - Invalid/expired token |
| 403 | Forbidden - Role or material type not allowed |
| 404 | Not Found - Reference or location doesn't exist |
| 409 | Conflict - Reference is being reconciled, retry shortly |
| 422 | Unprocessable Entity - Rejected quantity or round |
| 503 | Service Unavailable - Transaction failed, safe to retry |
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(ReconciliationError)
async def reconciliation_exception_handler(request: Request, exc: ReconciliationError):
    """Map domain errors to the RPC error shape."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {type(exc).__name__}: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path}: {type(exc).__name__}: {exc}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "action": "error",
            "error": str(exc),
            "type": type(exc).__name__,
        },
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown",
            "scheduler": get_job_status(),
        }
    }

    # Check database connectivity
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
