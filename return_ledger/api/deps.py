"""Request dependencies: database session, tenant and service factories."""
from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from return_ledger.database import get_db
from return_ledger.services.ledger_service import LedgerService


async def get_tenant_id(
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID"),
) -> UUID:
    """
    Resolve the tenant from the X-Tenant-ID header.

    Raises:
        HTTPException 400: header missing or not a UUID
    """
    if not x_tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required",
        )
    try:
        return UUID(x_tenant_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid tenant id: {x_tenant_id}",
        )


async def get_ledger_service(db: AsyncSession = Depends(get_db)) -> LedgerService:
    return LedgerService(db)


# Type aliases for cleaner endpoint signatures
DB = Annotated[AsyncSession, Depends(get_db)]
TenantId = Annotated[UUID, Depends(get_tenant_id)]
Ledger = Annotated[LedgerService, Depends(get_ledger_service)]
