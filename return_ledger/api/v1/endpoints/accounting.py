"""Ledger account API endpoints."""
from typing import List, Optional

from fastapi import APIRouter, status

from return_ledger.api.deps import Ledger, TenantId
from return_ledger.models.accounting import AccountSubType, AccountType
from return_ledger.schemas.accounting import AccountListResponse, AccountResponse
from return_ledger.schemas.base import ApiResponse

router = APIRouter()


@router.get("/accounts", response_model=AccountListResponse)
async def list_accounts(
    ledger: Ledger,
    tenant_id: TenantId,
    account_type: Optional[AccountType] = None,
):
    """List the tenant's ledger accounts ordered by code."""
    accounts = await ledger.list_accounts(tenant_id, account_type)
    return AccountListResponse(
        items=[AccountResponse.model_validate(a) for a in accounts],
        total=len(accounts),
    )


@router.get("/accounts/payment", response_model=ApiResponse[List[AccountResponse]])
async def list_payment_accounts(
    ledger: Ledger,
    tenant_id: TenantId,
    sub_type: Optional[AccountSubType] = None,
):
    """Cash and bank accounts refunds can be paid from."""
    accounts = await ledger.get_payment_accounts(tenant_id, sub_type)
    return ApiResponse[List[AccountResponse]](
        data=[AccountResponse.model_validate(a) for a in accounts],
    )


@router.post(
    "/accounts/initialize",
    response_model=ApiResponse[List[AccountResponse]],
    status_code=status.HTTP_201_CREATED,
)
async def initialize_chart_of_accounts(ledger: Ledger, tenant_id: TenantId):
    """Create the default chart of accounts. Existing accounts are left as they are."""
    accounts = await ledger.initialize_chart_of_accounts(tenant_id)
    return ApiResponse[List[AccountResponse]](
        message="Chart of accounts initialized",
        data=[AccountResponse.model_validate(a) for a in accounts],
    )
