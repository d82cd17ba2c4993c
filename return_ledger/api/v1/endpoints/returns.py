"""Customer return API endpoints."""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Query, status

from return_ledger.api.deps import DB, TenantId
from return_ledger.models.return_order import ReturnStatus, ReturnType
from return_ledger.schemas.accounting import TransactionResponse
from return_ledger.schemas.base import ApiResponse
from return_ledger.schemas.return_order import (
    RefundRequest,
    ReturnCreate,
    ReturnListResponse,
    ReturnReject,
    ReturnResponse,
    ReturnUpdate,
)
from return_ledger.services.inventory_service import run_restock
from return_ledger.services.return_service import ReturnLifecycleService

router = APIRouter()


def _background_dispatcher(background_tasks: BackgroundTasks):
    """Schedule restock on the response's background tasks (runs after the response is sent)."""
    def dispatch(tenant_id, lines, return_id, return_number):
        background_tasks.add_task(run_restock, tenant_id, lines, return_id, return_number)
    return dispatch


def _envelope(return_record, message: Optional[str] = None) -> ApiResponse[ReturnResponse]:
    return ApiResponse[ReturnResponse](
        message=message,
        data=ReturnResponse.model_validate(return_record),
    )


# ==================== Queries ====================

@router.get("", response_model=ReturnListResponse)
async def list_returns(
    db: DB,
    tenant_id: TenantId,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    return_type: Optional[ReturnType] = None,
    status: Optional[ReturnStatus] = None,
    order_id: Optional[UUID] = None,
    sort: str = Query("return_date", pattern="^(return_date|created_at)$"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
):
    """List returns with filtering, sorting and pagination."""
    service = ReturnLifecycleService(db, tenant_id)
    items, total = await service.list_returns(
        return_type=return_type,
        status=status,
        order_id=order_id,
        page=page,
        size=size,
        sort=sort,
        order=order,
    )
    return ReturnListResponse(
        items=[ReturnResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        size=size,
        pages=(total + size - 1) // size,
    )


@router.get("/{return_id}", response_model=ApiResponse[ReturnResponse])
async def get_return(return_id: UUID, db: DB, tenant_id: TenantId):
    """Get a return with its items."""
    service = ReturnLifecycleService(db, tenant_id)
    return _envelope(await service.get_return(return_id))


@router.get("/{return_id}/transactions", response_model=ApiResponse[List[TransactionResponse]])
async def list_return_transactions(return_id: UUID, db: DB, tenant_id: TenantId):
    """Approval, reversal and refund transactions posted for a return."""
    service = ReturnLifecycleService(db, tenant_id)
    transactions = await service.list_transactions(return_id)
    return ApiResponse[List[TransactionResponse]](
        data=[TransactionResponse.model_validate(t) for t in transactions],
    )


# ==================== Lifecycle ====================

@router.post("", response_model=ApiResponse[ReturnResponse], status_code=status.HTTP_201_CREATED)
async def create_return(data: ReturnCreate, db: DB, tenant_id: TenantId):
    """Create a PENDING return. Nothing is posted to the ledger yet."""
    service = ReturnLifecycleService(db, tenant_id, restock_dispatcher=None)
    return_record = await service.create_return(data)
    return _envelope(return_record, "Return created successfully")


@router.put("/{return_id}/approve", response_model=ApiResponse[ReturnResponse])
async def approve_return(
    return_id: UUID,
    db: DB,
    tenant_id: TenantId,
    background_tasks: BackgroundTasks,
):
    """Approve a PENDING return and schedule restocking of its items."""
    service = ReturnLifecycleService(
        db, tenant_id, restock_dispatcher=_background_dispatcher(background_tasks)
    )
    return_record = await service.approve_return(return_id)
    return _envelope(return_record, "Return approved successfully")


@router.put("/{return_id}", response_model=ApiResponse[ReturnResponse])
async def update_return(return_id: UUID, data: ReturnUpdate, db: DB, tenant_id: TenantId):
    """Edit a PENDING or APPROVED return. Approved returns are re-posted."""
    service = ReturnLifecycleService(db, tenant_id, restock_dispatcher=None)
    return_record = await service.update_return(return_id, data)
    return _envelope(return_record, "Return updated successfully")


@router.post("/{return_id}/reject", response_model=ApiResponse[ReturnResponse])
async def reject_return(
    return_id: UUID,
    db: DB,
    tenant_id: TenantId,
    data: Optional[ReturnReject] = None,
):
    """Reject a PENDING or APPROVED return."""
    service = ReturnLifecycleService(db, tenant_id, restock_dispatcher=None)
    return_record = await service.reject_return(return_id, data.reason if data else None)
    return _envelope(return_record, "Return rejected successfully")


@router.post("/{return_id}/refund", response_model=ApiResponse[ReturnResponse])
async def refund_return(return_id: UUID, data: RefundRequest, db: DB, tenant_id: TenantId):
    """Refund an APPROVED return by cash, bank transfer or account credit."""
    service = ReturnLifecycleService(db, tenant_id, restock_dispatcher=None)
    return_record = await service.refund_return(return_id, data)
    return _envelope(return_record, "Refund processed successfully")
