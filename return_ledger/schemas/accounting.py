"""Pydantic schemas for ledger accounts and transactions."""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, field_serializer

from return_ledger.schemas.base import BaseResponseSchema


# ==================== Account Schemas ====================

class AccountResponse(BaseResponseSchema):
    """Response schema for Account."""
    id: UUID
    code: str
    name: str
    type: str
    account_sub_type: Optional[str] = None
    balance: Decimal = Decimal("0")

    @field_serializer('balance')
    def serialize_decimal(self, value: Decimal) -> float:
        return float(value) if value is not None else 0.0


class AccountListResponse(BaseModel):
    items: List[AccountResponse]
    total: int


# ==================== Transaction Schemas ====================

class AccountBrief(BaseResponseSchema):
    id: UUID
    code: str
    name: str


class TransactionLineResponse(BaseResponseSchema):
    """Response schema for TransactionLine."""
    id: UUID
    line_number: int
    account_id: UUID
    account: Optional[AccountBrief] = None
    debit_amount: Decimal = Decimal("0")
    credit_amount: Decimal = Decimal("0")

    # Serialize Decimal as float for JSON (frontend expects numbers, not strings)
    @field_serializer('debit_amount', 'credit_amount')
    def serialize_decimal(self, value: Decimal) -> float:
        return float(value) if value is not None else 0.0


class TransactionResponse(BaseResponseSchema):
    """Response schema for Transaction."""
    id: UUID
    transaction_number: str
    date: datetime
    description: str
    entry_type: str
    order_id: Optional[UUID] = None
    return_id: Optional[UUID] = None
    reversal_of_id: Optional[UUID] = None
    total_debit: Decimal
    total_credit: Decimal
    lines: List[TransactionLineResponse] = []
    created_at: datetime

    @field_serializer('total_debit', 'total_credit')
    def serialize_decimal(self, value: Decimal) -> float:
        return float(value) if value is not None else 0.0
