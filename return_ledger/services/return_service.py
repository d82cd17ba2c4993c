"""
Return Lifecycle Service

Orchestrates create / approve / reject / update / refund of a customer Return.
Each operation is one unit of work: every write it makes (return, items,
transactions, account balances, order aggregates, customer advance balance)
commits together or not at all.

LEDGER POSTINGS:
━━━━━━━━━━━━━━━━
• create   no posting; a PENDING return can be edited freely
• approve  Dr 4100 Sales Returns / Cr 1200 Accounts Receivable
           (products value, plus shipping when handling is FULL_REFUND)
• update   APPROVED only: reverse unreversed approvals, re-post new amounts
• reject   APPROVED only: reverse unreversed approvals
• refund   Dr 4100 Sales Returns / Cr 1000 Cash | 1100 Bank | 1210 Advance

Restocking after approval is dispatched after the commit and never affects
the approval outcome.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from return_ledger.core.enum_utils import get_enum_value, to_enum, enum_comment, is_status
from return_ledger.core.exceptions import NotFoundError, ValidationError
from return_ledger.models.accounting import Transaction, TransactionEntryType
from return_ledger.models.document_sequence import DocumentType
from return_ledger.models.order import Order, OrderItem
from return_ledger.models.return_order import (
    Return, ReturnItem, ReturnType, ReturnStatus,
    ShippingChargeHandling, RefundMethod, ACTIVE_RETURN_STATUSES,
)
from return_ledger.schemas.return_order import ReturnCreate, ReturnUpdate, RefundRequest
from return_ledger.services import return_state_machine
from return_ledger.services.customer_service import CustomerService
from return_ledger.services.document_sequence_service import DocumentSequenceService
from return_ledger.services.inventory_service import (
    RestockDispatcher, RestockLine, dispatch_restock_task,
)
from return_ledger.services.ledger_service import LedgerService, PostingLine, ACCOUNT_CODES
from return_ledger.services.valuation import (
    LineItem, ReturnPolicy, ShippingOutcome, ZERO, to_money,
    apply_shipping_handling, compute_order_total, compute_return_value,
    normalize_lines, order_line_items, order_maps, parse_shipping_handling,
    summarize_order_returns, validate_against_order, json_field,
)


logger = logging.getLogger(__name__)


# Transaction description tags (display only; entry_type drives selection).
APPROVAL_TAG = "Return Approved"
UPDATE_TAG = "Return Update"
UPDATE_REVERSAL_TAG = "Return Update (Reverse)"
REJECT_REVERSAL_TAG = "Return Rejected (Reverse)"
REFUND_TAG = "Refund"

REFUND_ACCOUNTS = {
    RefundMethod.CASH: ACCOUNT_CODES["CASH"],
    RefundMethod.BANK_TRANSFER: ACCOUNT_CODES["BANK"],
    RefundMethod.CREDIT_TO_ACCOUNT: ACCOUNT_CODES["CUSTOMER_ADVANCE"],
}

SORT_FIELDS = {
    "return_date": Return.return_date,
    "created_at": Return.created_at,
}


def parse_refund_method(value: Any) -> RefundMethod:
    method = to_enum(value, RefundMethod)
    if method is None:
        raise ValidationError(
            f"Unrecognized refund method: {get_enum_value(value)!r}",
            {"allowed": enum_comment(RefundMethod)},
        )
    return method


class ReturnLifecycleService:
    """State machine driven lifecycle of customer returns."""

    def __init__(
        self,
        db: AsyncSession,
        tenant_id: UUID,
        policy: Optional[ReturnPolicy] = None,
        restock_dispatcher: Optional[RestockDispatcher] = dispatch_restock_task,
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.policy = policy or ReturnPolicy.from_settings()
        self.restock_dispatcher = restock_dispatcher
        self.ledger = LedgerService(db)
        self.customers = CustomerService(db)
        self.sequences = DocumentSequenceService(db, tenant_id)

    @asynccontextmanager
    async def _unit_of_work(self):
        """Commit on success, roll back and re-raise on any error."""
        try:
            yield
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_return(self, return_id: UUID) -> Return:
        result = await self.db.execute(
            select(Return)
            .options(
                selectinload(Return.items),
                selectinload(Return.order).selectinload(Order.customer),
            )
            .where(
                Return.id == return_id,
                Return.tenant_id == self.tenant_id,
            )
            .execution_options(populate_existing=True)
        )
        return_record = result.scalar_one_or_none()
        if not return_record:
            raise NotFoundError("Return not found", {"return_id": str(return_id)})
        return return_record

    async def list_returns(
        self,
        return_type: Optional[ReturnType] = None,
        status: Optional[ReturnStatus] = None,
        order_id: Optional[UUID] = None,
        page: int = 1,
        size: int = 20,
        sort: str = "return_date",
        order: str = "desc",
    ) -> Tuple[List[Return], int]:
        """List returns with filters, newest first by default."""
        if sort not in SORT_FIELDS:
            raise ValidationError(f"Cannot sort by {sort!r}", {"allowed": list(SORT_FIELDS)})

        query = select(Return).where(Return.tenant_id == self.tenant_id)
        if return_type:
            query = query.where(Return.return_type == get_enum_value(return_type))
        if status:
            query = query.where(Return.status == get_enum_value(status))
        if order_id:
            query = query.where(Return.order_id == order_id)

        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query) or 0

        sort_column = SORT_FIELDS[sort]
        query = query.options(
            selectinload(Return.items),
            selectinload(Return.order).selectinload(Order.customer),
        )
        query = query.order_by(sort_column.asc() if order == "asc" else sort_column.desc())
        query = query.offset((page - 1) * size).limit(size).execution_options(populate_existing=True)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def list_transactions(self, return_id: UUID) -> List[Transaction]:
        """Approval, reversal and refund transactions linked to a return."""
        await self.get_return(return_id)
        return await self.ledger.list_transactions_for_return(self.tenant_id, return_id)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def create_return(self, data: ReturnCreate) -> Return:
        """Create a PENDING return. Posts nothing to the ledger."""
        async with self._unit_of_work():
            order = await self._lock_order(data.order_id)
            handling = parse_shipping_handling(data.shipping_charge_handling)
            lines = self._resolve_lines(order, data.return_type, data.selected_products)

            shipping = self._shipping_amount(order, data.shipping_charge_amount)
            available = self._available_advance(order, handling)
            products_value, outcome = self._compute_amounts(lines, shipping, handling, available)

            existing = await self._active_returns(order.id)
            validate_against_order(
                order, existing, data.return_type, outcome.final_amount, self.policy
            ).raise_for_violation()

            return_date = data.return_date or datetime.now(timezone.utc)
            return_number = await self.sequences.get_next_number(
                DocumentType.CUSTOMER_RETURN.value, year=return_date.year
            )
            return_record = Return(
                tenant_id=self.tenant_id,
                return_number=return_number,
                order_id=order.id,
                return_type=get_enum_value(data.return_type),
                reason=data.reason,
                return_date=return_date,
                shipping_charge_handling=handling.value,
                shipping_charge_amount=shipping,
                advance_balance_used=outcome.advance_balance_used,
                total_amount=outcome.final_amount,
                refund_amount=outcome.final_amount,
                status=ReturnStatus.PENDING.value,
            )
            return_record.items = self._build_items(order, lines, data.reason)
            self.db.add(return_record)
            await self.db.flush()

            if outcome.advance_balance_used > 0 and order.customer_id:
                await self.customers.adjust_advance_balance(
                    order.customer_id, -outcome.advance_balance_used
                )

            await self._refresh_order_aggregates(order)
            return_id = return_record.id

        logger.info(
            f"Return {return_number} created for order {order.order_number}: "
            f"products={products_value} total={outcome.final_amount}"
        )
        return await self.get_return(return_id)

    async def approve_return(self, return_id: UUID) -> Return:
        """PENDING -> APPROVED, posting the approval transaction."""
        async with self._unit_of_work():
            return_record = await self._lock_return(return_id)
            return_state_machine.validate_transition(return_record.status, ReturnStatus.APPROVED.value)

            transaction = await self._post_approval(
                return_record,
                f"{APPROVAL_TAG}: {return_record.return_number} - {return_record.reason or 'Customer return'}",
            )
            return_record.status = ReturnStatus.APPROVED.value
            return_record.approved_at = datetime.now(timezone.utc)
            restock_lines = [RestockLine.from_item(item) for item in return_record.items]
            return_number = return_record.return_number

        logger.info(f"Return {return_number} approved, transaction {transaction.transaction_number}")
        self._dispatch_restock(restock_lines, return_id, return_number)
        return await self.get_return(return_id)

    async def reject_return(self, return_id: UUID, reason: Optional[str] = None) -> Return:
        """PENDING/APPROVED -> REJECTED, reversing any approval posting."""
        async with self._unit_of_work():
            return_record = await self._lock_return(return_id)
            return_state_machine.validate_transition(return_record.status, ReturnStatus.REJECTED.value)
            order = await self._lock_order(return_record.order_id)

            if is_status(return_record.status, ReturnStatus.APPROVED):
                await self._reverse_approvals(
                    return_record, f"{REJECT_REVERSAL_TAG}: {return_record.return_number}"
                )

            used = to_money(return_record.advance_balance_used)
            if used > 0 and order.customer_id:
                await self.customers.adjust_advance_balance(order.customer_id, used)

            return_record.status = ReturnStatus.REJECTED.value
            return_record.rejection_reason = reason or "Return rejected"
            return_record.rejected_at = datetime.now(timezone.utc)
            await self._refresh_order_aggregates(order)
            return_number = return_record.return_number

        logger.info(f"Return {return_number} rejected")
        return await self.get_return(return_id)

    async def update_return(self, return_id: UUID, data: ReturnUpdate) -> Return:
        """
        Edit a PENDING or APPROVED return; status is unchanged.

        An APPROVED return has its open approval postings reversed and a new
        approval posted for the edited amounts.
        """
        fields = data.model_dump(exclude_unset=True)

        async with self._unit_of_work():
            return_record = await self._lock_return(return_id)
            return_state_machine.validate_editable(return_record.status)
            was_approved = is_status(return_record.status, ReturnStatus.APPROVED)
            order = await self._lock_order(return_record.order_id)

            return_type = fields.get("return_type") or return_record.return_type
            handling = parse_shipping_handling(
                fields.get("shipping_charge_handling") or return_record.shipping_charge_handling
            )
            if fields.get("selected_products") is not None or return_type == ReturnType.FULL.value:
                lines = self._resolve_lines(order, return_type, data.selected_products)
            else:
                lines = self._lines_from_items(return_record.items)
                if not lines:
                    raise ValidationError("No products selected for return")

            shipping = to_money(
                fields["shipping_charge_amount"]
                if fields.get("shipping_charge_amount") is not None
                else return_record.shipping_charge_amount
            )
            old_used = to_money(return_record.advance_balance_used)
            available = self._available_advance(order, handling, already_used=old_used)
            products_value, outcome = self._compute_amounts(lines, shipping, handling, available)

            new_total = outcome.final_amount
            if fields.get("refund_amount") is not None:
                new_total = to_money(fields["refund_amount"])

            refund_method = None
            if fields.get("refund_method") is not None:
                refund_method = parse_refund_method(fields["refund_method"])

            existing = await self._active_returns(order.id, exclude_id=return_record.id)
            validate_against_order(order, existing, return_type, new_total, self.policy).raise_for_violation()

            if was_approved:
                await self._reverse_approvals(
                    return_record, f"{UPDATE_REVERSAL_TAG}: {return_record.return_number}"
                )

            reason = fields["reason"] if "reason" in fields else return_record.reason
            return_record.items = self._build_items(order, lines, reason)

            advance_delta = old_used - outcome.advance_balance_used
            if advance_delta != 0 and order.customer_id:
                await self.customers.adjust_advance_balance(order.customer_id, advance_delta)

            return_record.return_type = get_enum_value(return_type)
            return_record.reason = reason
            if fields.get("return_date") is not None:
                return_record.return_date = fields["return_date"]
            return_record.shipping_charge_handling = handling.value
            return_record.shipping_charge_amount = shipping
            return_record.advance_balance_used = outcome.advance_balance_used
            return_record.total_amount = new_total
            return_record.refund_amount = new_total
            if refund_method is not None:
                return_record.refund_method = refund_method.value
            await self.db.flush()

            if was_approved:
                await self._post_approval(return_record, f"{UPDATE_TAG}: {return_record.return_number}")

            await self._refresh_order_aggregates(order)
            return_number = return_record.return_number

        logger.info(f"Return {return_number} updated: products={products_value} total={new_total}")
        return await self.get_return(return_id)

    async def refund_return(self, return_id: UUID, data: RefundRequest) -> Return:
        """APPROVED -> REFUNDED, posting the refund transaction."""
        async with self._unit_of_work():
            return_record = await self._lock_return(return_id)
            return_state_machine.validate_transition(return_record.status, ReturnStatus.REFUNDED.value)
            method = parse_refund_method(data.refund_method)

            amount = to_money(data.refund_amount if data.refund_amount is not None else return_record.refund_amount)
            if amount < 0:
                raise ValidationError("Refund amount cannot be negative", {"refund_amount": str(amount)})

            order = None
            if method == RefundMethod.CREDIT_TO_ACCOUNT:
                order = await self._lock_order(return_record.order_id)
                if not order.customer_id:
                    raise ValidationError("Order has no customer to credit the refund to")

            sales_returns = await self.ledger.get_or_create_account(self.tenant_id, ACCOUNT_CODES["SALES_RETURNS"])
            payment_account = await self.ledger.get_or_create_account(self.tenant_id, REFUND_ACCOUNTS[method])
            transaction = await self.ledger.post_transaction(
                tenant_id=self.tenant_id,
                description=f"{REFUND_TAG}: {return_record.return_number} - {method.value}",
                lines=[
                    PostingLine(account_id=sales_returns.id, debit=amount),
                    PostingLine(account_id=payment_account.id, credit=amount),
                ],
                entry_type=TransactionEntryType.RETURN_REFUND,
                order_id=return_record.order_id,
                return_id=return_record.id,
            )

            if order is not None:
                await self.customers.adjust_advance_balance(order.customer_id, amount)

            return_record.status = ReturnStatus.REFUNDED.value
            return_record.refund_method = method.value
            return_record.refund_amount = amount
            return_record.refunded_at = datetime.now(timezone.utc)
            return_number = return_record.return_number

        logger.info(
            f"Return {return_number} refunded {amount} via {method.value}, "
            f"transaction {transaction.transaction_number}"
        )
        return await self.get_return(return_id)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _lock_order(self, order_id: UUID) -> Order:
        result = await self.db.execute(
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.customer))
            .where(
                Order.id == order_id,
                Order.tenant_id == self.tenant_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if not order:
            raise NotFoundError("Order not found", {"order_id": str(order_id)})
        return order

    async def _lock_return(self, return_id: UUID) -> Return:
        result = await self.db.execute(
            select(Return)
            .options(selectinload(Return.items))
            .where(
                Return.id == return_id,
                Return.tenant_id == self.tenant_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return_record = result.scalar_one_or_none()
        if not return_record:
            raise NotFoundError("Return not found", {"return_id": str(return_id)})
        return return_record

    async def _active_returns(self, order_id: UUID, exclude_id: Optional[UUID] = None) -> List[Return]:
        query = select(Return).where(
            Return.tenant_id == self.tenant_id,
            Return.order_id == order_id,
            Return.status.in_([s.value for s in ACTIVE_RETURN_STATUSES]),
        )
        if exclude_id is not None:
            query = query.where(Return.id != exclude_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _refresh_order_aggregates(self, order: Order) -> None:
        """Recompute the order's refund_amount and return_status from active returns."""
        await self.db.flush()
        active = await self._active_returns(order.id)
        order.refund_amount, order.return_status = summarize_order_returns(
            compute_order_total(order), active, self.policy
        )
        await self.db.flush()

    def _resolve_lines(self, order: Order, return_type, selected_products) -> List[LineItem]:
        """All order lines for a full return, the selection for a partial one."""
        if get_enum_value(return_type) == ReturnType.FULL.value:
            lines = order_line_items(order)
        else:
            lines = normalize_lines(
                [self._with_order_defaults(order, raw) for raw in selected_products or []],
                *order_maps(order),
            )
        if not lines:
            raise ValidationError("No products selected for return")
        return lines

    def _with_order_defaults(self, order: Order, raw) -> Dict[str, Any]:
        """Fill a selected line's gaps (name, catalog price) from the order's product data."""
        if hasattr(raw, "model_dump"):
            line = raw.model_dump(exclude_none=True)
        elif isinstance(raw, dict):
            line = dict(raw)
        else:
            line = {"id": str(raw)}

        product_id = str(line.get("id"))
        variant_id = line.get("variant_id")
        for product in json_field(order.selected_products, []):
            if not isinstance(product, dict):
                continue
            if str(product.get("id")) != product_id:
                continue
            product_variant = product.get("variantId") or product.get("productVariantId")
            if variant_id and product_variant and str(product_variant) != str(variant_id):
                continue
            defaults = {k: v for k, v in product.items() if k not in ("price", "quantity")}
            if product.get("price") is not None:
                defaults["catalog_price"] = product["price"]
            return {**defaults, **line}
        return line

    def _lines_from_items(self, items: List[ReturnItem]) -> List[LineItem]:
        return [
            LineItem(
                product_id=item.product_id or str(item.id),
                quantity=item.quantity,
                unit_price=to_money(item.purchase_price),
                name=item.product_name,
                variant_id=item.product_variant_id,
                color=item.color,
                size=item.size,
            )
            for item in items
        ]

    def _build_items(self, order: Order, lines: List[LineItem], reason: Optional[str]) -> List[ReturnItem]:
        """Snapshot lines into ReturnItems, taking variant data from the order items."""
        by_key: Dict[str, OrderItem] = {}
        for order_item in order.items:
            by_key[order_item.composite_key] = order_item
            if not order_item.product_variant_id:
                by_key[order_item.product_id] = order_item

        items = []
        for line in lines:
            order_item = by_key.get(line.composite_key) or by_key.get(line.product_id)
            items.append(
                ReturnItem(
                    product_id=line.product_id,
                    product_name=line.name or (order_item.product_name if order_item else "Product"),
                    purchase_price=line.unit_price,
                    quantity=line.quantity,
                    reason=reason,
                    product_variant_id=(order_item.product_variant_id if order_item else None) or line.variant_id,
                    color=(order_item.color if order_item else None) or line.color,
                    size=(order_item.size if order_item else None) or line.size,
                )
            )
        return items

    def _shipping_amount(self, order: Order, override) -> Decimal:
        return to_money(override if override is not None else order.shipping_charges)

    def _available_advance(
        self,
        order: Order,
        handling: ShippingChargeHandling,
        already_used: Decimal = ZERO,
    ) -> Decimal:
        if handling != ShippingChargeHandling.DEDUCT_FROM_ADVANCE or order.customer is None:
            return ZERO
        return to_money(order.customer.advance_balance) + already_used

    def _compute_amounts(
        self,
        lines: List[LineItem],
        shipping: Decimal,
        handling: ShippingChargeHandling,
        available_advance: Decimal,
    ) -> Tuple[Decimal, ShippingOutcome]:
        products_value = compute_return_value(lines)
        outcome = apply_shipping_handling(products_value, shipping, handling, available_advance)
        if outcome.final_amount < 0:
            raise ValidationError(
                "Shipping deduction exceeds the value of the returned products",
                {"products_value": str(products_value), "shipping_charges": str(shipping)},
            )
        return products_value, outcome

    async def _post_approval(self, return_record: Return, description: str) -> Transaction:
        """Dr Sales Returns / Cr Accounts Receivable for the stored items."""
        amount = compute_return_value(self._lines_from_items(return_record.items))
        if return_record.shipping_charge_handling == ShippingChargeHandling.FULL_REFUND.value:
            amount += to_money(return_record.shipping_charge_amount)

        sales_returns = await self.ledger.get_or_create_account(self.tenant_id, ACCOUNT_CODES["SALES_RETURNS"])
        receivable = await self.ledger.get_or_create_account(self.tenant_id, ACCOUNT_CODES["ACCOUNTS_RECEIVABLE"])
        return await self.ledger.post_transaction(
            tenant_id=self.tenant_id,
            description=description,
            lines=[
                PostingLine(account_id=sales_returns.id, debit=amount),
                PostingLine(account_id=receivable.id, credit=amount),
            ],
            entry_type=TransactionEntryType.RETURN_APPROVAL,
            order_id=return_record.order_id,
            return_id=return_record.id,
        )

    async def _reverse_approvals(self, return_record: Return, description: str) -> List[Transaction]:
        """
        Reverse every approval posting of the return not reversed yet.

        Selection is by entry type, so refund postings are never picked up.
        """
        approvals = await self.ledger.get_unreversed_transactions(
            self.tenant_id, return_record.id, TransactionEntryType.RETURN_APPROVAL
        )
        return [await self.ledger.reverse_transaction(t, description) for t in approvals]

    def _dispatch_restock(self, lines: List[RestockLine], return_id: UUID, return_number: str) -> None:
        if not lines or self.restock_dispatcher is None:
            return
        try:
            self.restock_dispatcher(self.tenant_id, lines, return_id, return_number)
        except Exception:
            logger.exception(f"Could not schedule restock for return {return_number}")
