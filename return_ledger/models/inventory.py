"""Inventory movements written when returned goods come back into stock."""
from enum import Enum
from datetime import datetime, timezone
from sqlalchemy import Column, String, Text, Integer, DateTime
import uuid

from return_ledger.database import Base
from return_ledger.db_types import UUIDType, MoneyType


class StockMovementType(str, Enum):
    """Stock movement type enum."""
    RETURN_IN = "RETURN_IN"  # Customer return


class StockMovement(Base):
    """Stock movement history/ledger."""

    __tablename__ = "stock_movements"

    id = Column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUIDType(as_uuid=True), nullable=False, index=True)

    movement_type = Column(
        String(50), nullable=False, index=True,
        comment="RETURN_IN"
    )
    movement_date = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Product
    product_id = Column(String(100))
    product_variant_id = Column(String(100))
    product_name = Column(String(255), nullable=False)

    quantity = Column(Integer, nullable=False)  # Positive for in
    unit_cost = Column(MoneyType, default=0)

    # Related documents
    reference_type = Column(String(50))  # return
    reference_id = Column(UUIDType(as_uuid=True), index=True)
    reference_number = Column(String(100))

    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    def __repr__(self):
        return f"<StockMovement {self.movement_type} {self.product_name} x{self.quantity}>"
