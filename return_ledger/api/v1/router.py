from fastapi import APIRouter

from return_ledger.api.v1.endpoints import (
    # Customer returns
    returns,
    # Ledger accounts
    accounting,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Returns ====================
api_router.include_router(
    returns.router,
    prefix="/returns",
    tags=["Returns"]
)

# ==================== Accounting ====================
api_router.include_router(
    accounting.router,
    prefix="/accounting",
    tags=["Accounting"]
)
