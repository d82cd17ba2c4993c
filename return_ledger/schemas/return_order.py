"""Pydantic schemas for customer returns."""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, field_serializer

from return_ledger.models.return_order import ReturnType
from return_ledger.schemas.base import BaseCreateSchema, BaseResponseSchema, BaseUpdateSchema


# ==================== Request Schemas ====================

class ReturnLineInput(BaseCreateSchema):
    """
    One product selected for return.

    Missing price/quantity are resolved from the order's price and quantity
    maps, then from the order's product data.
    """
    id: str = Field(..., min_length=1, alias="productId")
    variant_id: Optional[str] = Field(None, alias="variantId")
    name: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, gt=0)
    color: Optional[str] = None
    size: Optional[str] = None


# A selected product is either a bare product id or a line object
SelectedProduct = Union[ReturnLineInput, str]


class ReturnCreate(BaseCreateSchema):
    """Schema for creating a return."""
    order_id: UUID
    return_type: ReturnType
    reason: Optional[str] = Field(None, max_length=1000)
    return_date: Optional[datetime] = None
    shipping_charge_handling: str = Field(
        ...,
        description="FULL_REFUND, DEDUCT_FROM_ADVANCE, CUSTOMER_PAYS"
    )
    shipping_charge_amount: Optional[Decimal] = Field(
        None, ge=0, description="Overrides the order's shipping charge"
    )
    selected_products: Optional[List[SelectedProduct]] = Field(
        None, description="Required for partial returns"
    )


class ReturnUpdate(BaseUpdateSchema):
    """Schema for editing a PENDING or APPROVED return."""
    return_type: Optional[ReturnType] = None
    reason: Optional[str] = Field(None, max_length=1000)
    return_date: Optional[datetime] = None
    shipping_charge_handling: Optional[str] = None
    shipping_charge_amount: Optional[Decimal] = Field(None, ge=0)
    selected_products: Optional[List[SelectedProduct]] = None
    refund_method: Optional[str] = Field(None, description="Cash, Bank Transfer, Credit to Account")
    refund_amount: Optional[Decimal] = Field(None, ge=0, description="Overrides the computed amount")


class ReturnReject(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class RefundRequest(BaseCreateSchema):
    refund_method: str = Field(..., description="Cash, Bank Transfer, Credit to Account")
    refund_amount: Optional[Decimal] = Field(None, gt=0, description="Defaults to the return's refund amount")


# ==================== Response Schemas ====================

class ReturnItemResponse(BaseResponseSchema):
    id: UUID
    product_id: Optional[str] = None
    product_name: str
    purchase_price: Decimal
    quantity: int
    reason: Optional[str] = None
    product_variant_id: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None

    @field_serializer('purchase_price')
    def serialize_decimal(self, value: Decimal) -> float:
        return float(value) if value is not None else 0.0


class CustomerBrief(BaseResponseSchema):
    id: UUID
    name: str
    phone_number: Optional[str] = None


class OrderBrief(BaseResponseSchema):
    id: UUID
    order_number: str
    return_status: str
    refund_amount: Decimal
    customer: Optional[CustomerBrief] = None

    @field_serializer('refund_amount')
    def serialize_decimal(self, value: Decimal) -> float:
        return float(value) if value is not None else 0.0


class ReturnResponse(BaseResponseSchema):
    """Response schema for a return with its items."""
    id: UUID
    return_number: str
    order_id: UUID
    return_type: str
    reason: Optional[str] = None
    return_date: datetime
    status: str
    shipping_charge_handling: str
    shipping_charge_amount: Decimal
    advance_balance_used: Decimal
    total_amount: Decimal
    refund_amount: Decimal
    refund_method: Optional[str] = None
    rejection_reason: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    order: Optional[OrderBrief] = None
    items: List[ReturnItemResponse] = []

    # Serialize Decimal as float for JSON (frontend expects numbers, not strings)
    @field_serializer(
        'shipping_charge_amount', 'advance_balance_used', 'total_amount', 'refund_amount'
    )
    def serialize_decimal(self, value: Decimal) -> float:
        return float(value) if value is not None else 0.0


class ReturnListResponse(BaseModel):
    """Paginated return list response."""
    items: List[ReturnResponse]
    total: int
    page: int = 1
    size: int = 20
    pages: int = 0
