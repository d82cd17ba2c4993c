"""
Return Models

A Return is one customer return request against exactly one Order.
Status moves PENDING -> APPROVED -> REFUNDED, or to REJECTED from
PENDING/APPROVED. Rows are never deleted; REJECTED is terminal.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from return_ledger.database import Base
from return_ledger.db_types import UUIDType, MoneyType

if TYPE_CHECKING:
    from return_ledger.models.order import Order
    from return_ledger.models.accounting import Transaction


class ReturnType(str, Enum):
    """Whole order or a selection of its lines."""
    FULL = "CUSTOMER_FULL"
    PARTIAL = "CUSTOMER_PARTIAL"


class ReturnStatus(str, Enum):
    """Return lifecycle status."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REFUNDED = "REFUNDED"


# Statuses counted against the order value
ACTIVE_RETURN_STATUSES = (ReturnStatus.PENDING, ReturnStatus.APPROVED, ReturnStatus.REFUNDED)


class ShippingChargeHandling(str, Enum):
    """Who bears the order's shipping charge on return."""
    FULL_REFUND = "FULL_REFUND"
    DEDUCT_FROM_ADVANCE = "DEDUCT_FROM_ADVANCE"
    CUSTOMER_PAYS = "CUSTOMER_PAYS"


class RefundMethod(str, Enum):
    """How the refund leaves the business."""
    CASH = "Cash"
    BANK_TRANSFER = "Bank Transfer"
    CREDIT_TO_ACCOUNT = "Credit to Account"


class Return(Base):
    """
    Customer return against an order.
    Amounts are computed by the valuation module and frozen on the row.
    """
    __tablename__ = "returns"
    __table_args__ = (
        UniqueConstraint("tenant_id", "return_number", name="uq_return_tenant_number"),
        Index("ix_returns_tenant_status", "tenant_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        nullable=False,
        index=True
    )

    return_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="RET-<year>-<seq>"
    )

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    return_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="CUSTOMER_FULL, CUSTOMER_PARTIAL"
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    return_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Shipping
    shipping_charge_handling: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="FULL_REFUND, DEDUCT_FROM_ADVANCE, CUSTOMER_PAYS"
    )
    shipping_charge_amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0"),
        nullable=False
    )
    advance_balance_used: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0"),
        nullable=False
    )

    # Amounts
    total_amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0"),
        nullable=False,
        comment="Value counted against the order"
    )
    refund_amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0"),
        nullable=False
    )
    refund_method: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Cash, Bank Transfer, Credit to Account"
    )

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=ReturnStatus.PENDING.value,
        index=True,
        comment="PENDING, APPROVED, REJECTED, REFUNDED"
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    order: Mapped["Order"] = relationship("Order", back_populates="returns")
    items: Mapped[List["ReturnItem"]] = relationship(
        "ReturnItem",
        back_populates="return_record",
        cascade="all, delete-orphan"
    )
    transactions: Mapped[List["Transaction"]] = relationship(
        "Transaction",
        back_populates="return_record",
        order_by="Transaction.created_at"
    )

    def __repr__(self) -> str:
        return f"<Return(number='{self.return_number}', status='{self.status}')>"


class ReturnItem(Base):
    """Returned line. Name and price are snapshots taken at creation."""
    __tablename__ = "return_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    return_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("returns.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    product_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    purchase_price: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        comment="Unit price at the time of the return"
    )
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Variant snapshot
    product_variant_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    size: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    return_record: Mapped["Return"] = relationship("Return", back_populates="items")

    def __repr__(self) -> str:
        return f"<ReturnItem(product='{self.product_name}', qty={self.quantity})>"
