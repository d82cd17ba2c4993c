from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from return_ledger.config import settings
from return_ledger.api.v1.router import api_router
from return_ledger.core.exceptions import ReturnLedgerError
from return_ledger.database import init_db, async_session_factory
from return_ledger.services.inventory_service import wait_for_restock_tasks


logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Configure logging
    - Create missing tables

    Shutdown:
    - Wait for restock tasks still running
    """
    configure_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()

    yield

    await wait_for_restock_tasks()
    logger.info("Shutting down...")


# OpenAPI Tags with detailed descriptions
OPENAPI_TAGS = [
    {"name": "Returns", "description": "Customer returns: create, approve, edit, reject and refund"},
    {"name": "Accounting", "description": "Ledger accounts and chart of accounts bootstrap"},
    {"name": "Health", "description": "Liveness and database connectivity"},
]

API_DESCRIPTION = """
## Return & Ledger Service

Customer returns with double-entry ledger postings.

### Tenancy

Every `/api/v1` request must carry an `X-Tenant-ID` header (UUID).

### Error Codes

| Code | Description |
|------|-------------|
| 400 | VALIDATION_ERROR - Malformed or missing input |
| 404 | NOT_FOUND - Return, order or customer doesn't exist |
| 409 | STATE_CONFLICT - Transition not allowed from the current status |
| 422 | OVER_RETURN - Return would exceed the order value |
| 500 | LEDGER_IMBALANCE - Internal invariant breach |
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


@app.exception_handler(ReturnLedgerError)
async def return_ledger_error_handler(request: Request, exc: ReturnLedgerError):
    """Render domain errors as {"success": false, "error": {...}} with their status code."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.to_dict()},
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
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
