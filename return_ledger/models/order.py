import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List, Any

from sqlalchemy import String, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from return_ledger.database import Base
from return_ledger.db_types import UUIDType, JSONType, MoneyType

if TYPE_CHECKING:
    from return_ledger.models.customer import Customer
    from return_ledger.models.return_order import Return


class OrderReturnStatus(str, Enum):
    """Aggregate return state of an order."""
    NONE = "NONE"
    PARTIAL = "PARTIAL"
    FULL = "FULL"


class Order(Base):
    """
    Sales order as seen by the return engine.

    Line data lives in the JSON columns written by the order screens:
    ``selected_products`` is a list of product ids or product objects,
    ``product_quantities`` and ``product_prices`` are maps keyed by product id
    or ``"{product_id}_{variant_id}"``. The engine only writes
    ``refund_amount`` and ``return_status``.
    """
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("tenant_id", "order_number", name="uq_order_tenant_number"),
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

    order_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("customers.id", ondelete="RESTRICT"),
        nullable=True,
        index=True
    )

    # Line data
    selected_products: Mapped[Optional[List[Any]]] = mapped_column(JSONType, nullable=True)
    product_quantities: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    product_prices: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    shipping_charges: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0"),
        nullable=False
    )

    # Return tracking (owned by the return engine)
    refund_amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0"),
        nullable=False,
        comment="Sum of total_amount over active returns"
    )
    return_status: Mapped[str] = mapped_column(
        String(50),
        default=OrderReturnStatus.NONE.value,
        nullable=False,
        comment="NONE, PARTIAL, FULL"
    )

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
    customer: Mapped[Optional["Customer"]] = relationship("Customer")
    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan"
    )
    returns: Mapped[List["Return"]] = relationship("Return", back_populates="order")

    def __repr__(self) -> str:
        return f"<Order(number='{self.order_number}', return_status='{self.return_status}')>"


class OrderItem(Base):
    """Order line with its variant snapshot."""
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    product_variant_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Product snapshot (stored for historical record)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    size: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    @property
    def composite_key(self) -> str:
        return f"{self.product_id}_{self.product_variant_id or 'base'}"

    def __repr__(self) -> str:
        return f"<OrderItem(product='{self.product_name}', qty={self.quantity})>"
