import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from return_ledger.core.exceptions import NotFoundError, ValidationError
from return_ledger.models.customer import Customer
from return_ledger.services.valuation import to_money


logger = logging.getLogger(__name__)


class CustomerService:
    """Customer advance balance adjustments. Runs in the caller's transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def adjust_advance_balance(self, customer_id: UUID, delta: Decimal) -> Customer:
        """Add ``delta`` (may be negative) to the customer's advance balance."""
        result = await self.db.execute(
            select(Customer)
            .where(Customer.id == customer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        customer = result.scalar_one_or_none()
        if not customer:
            raise NotFoundError("Customer not found", {"customer_id": str(customer_id)})

        delta = to_money(delta)
        new_balance = to_money(customer.advance_balance) + delta
        if new_balance < 0:
            raise ValidationError(
                "Advance balance cannot go negative",
                {
                    "customer_id": str(customer_id),
                    "advance_balance": str(customer.advance_balance),
                    "delta": str(delta),
                },
            )

        customer.advance_balance = new_balance
        await self.db.flush()
        logger.info(f"Advance balance of customer {customer_id} adjusted by {delta} to {new_balance}")
        return customer
