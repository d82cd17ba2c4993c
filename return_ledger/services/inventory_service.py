"""
Inventory collaborator for returns.

Restocking is a best-effort side effect of approval: it runs after the
approval has committed, on its own session, and a failure is only logged.

    lines = [RestockLine.from_item(item) for item in return_record.items]
    dispatch_restock_task(tenant_id, lines, return_record.id, return_record.return_number)
"""
import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional, Sequence, Set
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from return_ledger.database import get_db_session
from return_ledger.models.inventory import StockMovement, StockMovementType


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RestockLine:
    """Detached copy of a return item, safe to use after the session closes."""
    product_name: str
    quantity: int
    product_id: Optional[str] = None
    product_variant_id: Optional[str] = None
    unit_cost: Decimal = Decimal("0")

    @classmethod
    def from_item(cls, item) -> "RestockLine":
        return cls(
            product_name=item.product_name,
            quantity=item.quantity,
            product_id=item.product_id,
            product_variant_id=item.product_variant_id,
            unit_cost=item.purchase_price,
        )


class InventoryService:
    """Writes stock movements for returned goods."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def increase_from_return(
        self,
        tenant_id: UUID,
        lines: Sequence[RestockLine],
        return_id: UUID,
        return_number: str,
    ) -> List[StockMovement]:
        movements = []
        for line in lines:
            if line.quantity <= 0:
                continue
            movement = StockMovement(
                tenant_id=tenant_id,
                movement_type=StockMovementType.RETURN_IN.value,
                product_id=line.product_id,
                product_variant_id=line.product_variant_id,
                product_name=line.product_name,
                quantity=line.quantity,
                unit_cost=line.unit_cost,
                reference_type="return",
                reference_id=return_id,
                reference_number=return_number,
                notes=f"Customer return {return_number}",
            )
            self.db.add(movement)
            movements.append(movement)

        await self.db.flush()
        return movements


async def run_restock(
    tenant_id: UUID,
    lines: Sequence[RestockLine],
    return_id: UUID,
    return_number: str,
) -> None:
    """Restock job. Never raises; failures are logged."""
    try:
        async with get_db_session() as db:
            movements = await InventoryService(db).increase_from_return(
                tenant_id, lines, return_id, return_number
            )
        logger.info(f"Restocked {len(movements)} line(s) for return {return_number}")
    except Exception:
        logger.exception(f"Restock failed for return {return_number}")


# Callable that schedules run_restock somewhere outside the approval transaction
RestockDispatcher = Callable[[UUID, Sequence[RestockLine], UUID, str], None]

_background_tasks: Set[asyncio.Task] = set()


def dispatch_restock_task(
    tenant_id: UUID,
    lines: Sequence[RestockLine],
    return_id: UUID,
    return_number: str,
) -> None:
    """Run the restock job as a tracked asyncio task on the running loop."""
    task = asyncio.create_task(run_restock(tenant_id, lines, return_id, return_number))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


async def wait_for_restock_tasks() -> None:
    """Wait for every restock task scheduled so far (used on shutdown)."""
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)
