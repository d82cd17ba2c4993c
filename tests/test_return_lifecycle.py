"""Return lifecycle: transitions, ledger postings and order aggregates."""
import logging
import re
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from return_ledger.core.exceptions import (
    NotFoundError,
    OverReturnError,
    StateConflictError,
    ValidationError,
)
from return_ledger.models import Return, StockMovement, TransactionEntryType
from return_ledger.models.return_order import ReturnStatus, ReturnType
from return_ledger.schemas.return_order import RefundRequest, ReturnCreate, ReturnUpdate
from return_ledger.services import inventory_service
from return_ledger.services.inventory_service import (
    InventoryService,
    dispatch_restock_task,
    run_restock,
    wait_for_restock_tasks,
)
from return_ledger.services.ledger_service import LedgerService
from return_ledger.services.return_service import ReturnLifecycleService


@pytest.fixture
def restocks():
    return []


@pytest.fixture
def service(db_session, tenant_id, policy, restocks):
    def record(tenant, lines, return_id, return_number):
        restocks.append((tenant, list(lines), return_id, return_number))

    return ReturnLifecycleService(db_session, tenant_id, policy, restock_dispatcher=record)


def partial(order_id, *products, handling="CUSTOMER_PAYS", **extra):
    return ReturnCreate(
        order_id=order_id,
        return_type=ReturnType.PARTIAL,
        shipping_charge_handling=handling,
        selected_products=list(products),
        **extra,
    )


def full(order_id, handling="FULL_REFUND", **extra):
    return ReturnCreate(
        order_id=order_id,
        return_type=ReturnType.FULL,
        shipping_charge_handling=handling,
        **extra,
    )


async def balance(db, tenant_id, code) -> Decimal:
    account = await LedgerService(db).get_account_by_code(tenant_id, code)
    return account.balance if account else Decimal("0.00")


async def transactions_of(service, return_id, entry_type=None):
    transactions = await service.list_transactions(return_id)
    if entry_type is not None:
        transactions = [t for t in transactions if t.entry_type == entry_type.value]
    return transactions


def amounts(transaction):
    return {(line.account.code, line.debit_amount, line.credit_amount) for line in transaction.lines}


# ==================== Worked example ====================

async def test_partial_return_customer_pays_then_cash_refund(service, db_session, tenant_id, order, restocks):
    ret = await service.create_return(partial(order.id, {"productId": "P2"}))

    assert re.fullmatch(r"RET-\d{4}-0001", ret.return_number)
    assert ret.status == ReturnStatus.PENDING.value
    assert ret.total_amount == Decimal("200.00")
    assert ret.refund_amount == Decimal("200.00")
    assert await transactions_of(service, ret.id) == []
    assert ret.order.return_status == "PARTIAL"
    assert ret.order.refund_amount == Decimal("200.00")

    [item] = ret.items
    assert (item.product_id, item.product_name, item.purchase_price, item.quantity) == (
        "P2", "Red Shirt", Decimal("400.00"), 1,
    )
    assert (item.color, item.size) == ("Red", "L")

    ret = await service.approve_return(ret.id)
    assert ret.status == ReturnStatus.APPROVED.value
    assert ret.approved_at is not None

    [approval] = await transactions_of(service, ret.id)
    assert approval.entry_type == TransactionEntryType.RETURN_APPROVAL.value
    assert approval.description == f"Return Approved: {ret.return_number} - Customer return"
    assert amounts(approval) == {
        ("4100", Decimal("400.00"), Decimal("0.00")),
        ("1200", Decimal("0.00"), Decimal("400.00")),
    }
    assert len(restocks) == 1

    ret = await service.refund_return(ret.id, RefundRequest(refund_method="Cash"))
    assert ret.status == ReturnStatus.REFUNDED.value
    assert ret.refund_method == "Cash"
    assert ret.refunded_at is not None

    [refund] = await transactions_of(service, ret.id, TransactionEntryType.RETURN_REFUND)
    assert refund.description == f"Refund: {ret.return_number} - Cash"
    assert amounts(refund) == {
        ("4100", Decimal("200.00"), Decimal("0.00")),
        ("1000", Decimal("0.00"), Decimal("200.00")),
    }

    assert await balance(db_session, tenant_id, "4100") == Decimal("-600.00")
    assert await balance(db_session, tenant_id, "1200") == Decimal("-400.00")
    assert await balance(db_session, tenant_id, "1000") == Decimal("-200.00")


async def test_full_return_posts_shipping_with_full_refund(service, db_session, tenant_id, order):
    ret = await service.create_return(full(order.id, reason="Defective"))

    assert ret.total_amount == Decimal("1000.00")
    assert {i.product_id for i in ret.items} == {"P1", "P2"}
    assert ret.order.return_status == "FULL"

    ret = await service.approve_return(ret.id)
    [approval] = await transactions_of(service, ret.id)
    assert approval.description == f"Return Approved: {ret.return_number} - Defective"
    assert approval.total_debit == Decimal("1000.00")


async def test_variant_snapshot_comes_from_order_item(service, order):
    ret = await service.create_return(partial(order.id, "P1"))

    [item] = ret.items
    assert (item.product_variant_id, item.color, item.size) == ("V1", "Blue", "M")
    assert item.purchase_price == Decimal("400.00")


async def test_explicit_line_price_and_quantity(service, order):
    ret = await service.create_return(
        partial(order.id, {"productId": "P2", "price": 350, "quantity": 1}, handling="FULL_REFUND")
    )
    assert ret.total_amount == Decimal("550.00")


# ==================== Order bound ====================

async def test_second_full_return_is_refused(service, order):
    order_id = order.id
    await service.create_return(full(order_id))

    with pytest.raises(OverReturnError) as exc_info:
        await service.create_return(full(order_id))
    assert exc_info.value.details["rule"] == "FULL_RETURN_EXISTS"


async def test_partials_cannot_exceed_order_value(service, db_session, tenant_id, order):
    order_id = order.id
    await service.create_return(partial(order_id, "P2", handling="FULL_REFUND"))

    with pytest.raises(OverReturnError) as exc_info:
        await service.create_return(partial(order_id, "P1", handling="FULL_REFUND"))
    assert exc_info.value.details["rule"] == "EXCEEDS_ORDER_VALUE"

    count = await db_session.scalar(select(func.count()).select_from(Return).where(Return.tenant_id == tenant_id))
    assert count == 1

    # The refused create did not consume a return number
    ret = await service.create_return(partial(order_id, "P1"))
    assert ret.return_number.endswith("-0002")
    assert ret.order.refund_amount == Decimal("800.00")


async def test_rejected_return_frees_order_value(service, order):
    order_id = order.id
    first = await service.create_return(full(order_id))
    rejected = await service.reject_return(first.id)

    assert rejected.order.return_status == "NONE"
    assert rejected.order.refund_amount == Decimal("0.00")

    second = await service.create_return(full(order_id))
    assert second.status == ReturnStatus.PENDING.value


# ==================== Reject ====================

async def test_reject_pending_posts_nothing(service, order):
    ret = await service.create_return(partial(order.id, "P2"))
    ret = await service.reject_return(ret.id, "Wrong size")

    assert ret.status == ReturnStatus.REJECTED.value
    assert ret.rejection_reason == "Wrong size"
    assert ret.rejected_at is not None
    assert await transactions_of(service, ret.id) == []


async def test_reject_approved_reverses_the_approval(service, db_session, tenant_id, order):
    ret = await service.create_return(partial(order.id, "P2"))
    await service.approve_return(ret.id)
    ret = await service.reject_return(ret.id)

    assert ret.rejection_reason == "Return rejected"
    [approval] = await transactions_of(service, ret.id, TransactionEntryType.RETURN_APPROVAL)
    [reversal] = await transactions_of(service, ret.id, TransactionEntryType.RETURN_REVERSAL)
    assert reversal.reversal_of_id == approval.id
    assert reversal.description == f"Return Rejected (Reverse): {ret.return_number}"
    assert await balance(db_session, tenant_id, "4100") == Decimal("0.00")
    assert await balance(db_session, tenant_id, "1200") == Decimal("0.00")


def record_locks(service, calls):
    """Wrap the row-lock helpers so their call order lands in ``calls``."""
    def wrap(name, fn):
        async def locked(*args, **kwargs):
            calls.append(name)
            return await fn(*args, **kwargs)
        return locked

    service._lock_return = wrap("return", service._lock_return)
    service._lock_order = wrap("order", service._lock_order)
    service.ledger._lock_accounts = wrap("accounts", service.ledger._lock_accounts)


async def test_reject_approved_locks_order_before_accounts(service, order):
    ret = await _approved(service, order.id)
    calls = []
    record_locks(service, calls)

    await service.reject_return(ret.id)

    assert calls[:3] == ["return", "order", "accounts"]


async def test_update_and_refund_lock_in_the_same_order(service, order):
    ret = await _approved(service, order.id)
    calls = []
    record_locks(service, calls)

    await service.update_return(ret.id, ReturnUpdate(reason="Edited"))
    assert calls[:3] == ["return", "order", "accounts"]

    calls.clear()
    await service.refund_return(ret.id, RefundRequest(refund_method="Credit to Account"))
    assert calls == ["return", "order", "accounts"]


# ==================== Illegal transitions ====================

async def _approved(service, order_id):
    ret = await service.create_return(partial(order_id, "P2"))
    return await service.approve_return(ret.id)


async def test_approve_twice_conflicts(service, order):
    return_id = (await _approved(service, order.id)).id
    with pytest.raises(StateConflictError):
        await service.approve_return(return_id)
    assert len(await transactions_of(service, return_id)) == 1


async def test_refund_pending_conflicts(service, order):
    return_id = (await service.create_return(partial(order.id, "P2"))).id
    with pytest.raises(StateConflictError):
        await service.refund_return(return_id, RefundRequest(refund_method="Cash"))
    assert (await service.get_return(return_id)).status == ReturnStatus.PENDING.value


async def test_terminal_states_cannot_change(service, order):
    order_id = order.id
    refunded_id = (await _approved(service, order_id)).id
    await service.refund_return(refunded_id, RefundRequest(refund_method="Cash"))

    with pytest.raises(StateConflictError):
        await service.reject_return(refunded_id)
    with pytest.raises(StateConflictError):
        await service.approve_return(refunded_id)
    with pytest.raises(StateConflictError):
        await service.update_return(refunded_id, ReturnUpdate(reason="late edit"))

    rejected_id = (await service.create_return(partial(order_id, "P1"))).id
    await service.reject_return(rejected_id)
    with pytest.raises(StateConflictError):
        await service.reject_return(rejected_id)
    with pytest.raises(StateConflictError):
        await service.refund_return(rejected_id, RefundRequest(refund_method="Cash"))


# ==================== Update ====================

async def test_edit_pending_recomputes_without_posting(service, order):
    ret = await service.create_return(partial(order.id, "P2"))
    ret = await service.update_return(
        ret.id, ReturnUpdate(selected_products=["P1", "P2"], reason="Both too small")
    )

    assert ret.status == ReturnStatus.PENDING.value
    assert ret.total_amount == Decimal("600.00")
    assert len(ret.items) == 2
    assert all(item.reason == "Both too small" for item in ret.items)
    assert ret.order.refund_amount == Decimal("600.00")
    assert await transactions_of(service, ret.id) == []


async def test_edit_approved_reverses_and_reposts(service, db_session, tenant_id, order):
    ret = await _approved(service, order.id)

    ret = await service.update_return(ret.id, ReturnUpdate(selected_products=["P1", "P2"]))
    assert ret.status == ReturnStatus.APPROVED.value
    assert ret.total_amount == Decimal("600.00")

    transactions = await transactions_of(service, ret.id)
    assert len(transactions) == 3
    [update] = [t for t in transactions if t.description == f"Return Update: {ret.return_number}"]
    assert update.total_debit == Decimal("800.00")
    [reversal] = await transactions_of(service, ret.id, TransactionEntryType.RETURN_REVERSAL)
    assert reversal.description == f"Return Update (Reverse): {ret.return_number}"
    assert await balance(db_session, tenant_id, "4100") == Decimal("-800.00")

    # A second edit reverses only the posting still open
    ret = await service.update_return(ret.id, ReturnUpdate(selected_products=["P2"]))
    assert len(await transactions_of(service, ret.id)) == 5
    open_approvals = await service.ledger.get_unreversed_transactions(
        tenant_id, ret.id, TransactionEntryType.RETURN_APPROVAL
    )
    assert len(open_approvals) == 1
    assert await balance(db_session, tenant_id, "4100") == Decimal("-400.00")

    await service.reject_return(ret.id)
    assert await balance(db_session, tenant_id, "4100") == Decimal("0.00")
    assert await balance(db_session, tenant_id, "1200") == Decimal("0.00")


async def test_edit_refund_override_and_bank_refund(service, db_session, tenant_id, order):
    ret = await service.create_return(partial(order.id, "P2"))
    ret = await service.update_return(
        ret.id, ReturnUpdate(refund_amount=Decimal("150"), refund_method="Bank Transfer")
    )
    assert ret.total_amount == Decimal("150.00")
    assert ret.refund_amount == Decimal("150.00")
    assert ret.refund_method == "Bank Transfer"

    await service.approve_return(ret.id)
    ret = await service.refund_return(ret.id, RefundRequest(refund_method="Bank Transfer"))
    assert ret.refund_amount == Decimal("150.00")
    assert await balance(db_session, tenant_id, "1100") == Decimal("-150.00")


async def test_edit_cannot_exceed_order_value(service, order):
    order_id = order.id
    other_id = (await service.create_return(partial(order_id, "P1", handling="FULL_REFUND"))).id
    return_id = (await service.create_return(partial(order_id, "P2"))).id

    with pytest.raises(OverReturnError):
        await service.update_return(return_id, ReturnUpdate(shipping_charge_handling="FULL_REFUND"))

    # Excluding the edited return itself, the same amounts still fit
    other = await service.update_return(other_id, ReturnUpdate(reason="Edited"))
    assert other.total_amount == Decimal("600.00")


# ==================== Refund ====================

async def test_refund_to_account_credits_customer(service, db_session, tenant_id, order, customer):
    ret = await _approved(service, order.id)
    ret = await service.refund_return(ret.id, RefundRequest(refund_method="Credit to Account"))

    await db_session.refresh(customer)
    assert customer.advance_balance == Decimal("200.00")
    assert await balance(db_session, tenant_id, "1210") == Decimal("-200.00")


async def test_refund_amount_override(service, db_session, tenant_id, order):
    ret = await _approved(service, order.id)
    ret = await service.refund_return(
        ret.id, RefundRequest(refund_method="Cash", refund_amount=Decimal("120"))
    )
    assert ret.refund_amount == Decimal("120.00")
    assert await balance(db_session, tenant_id, "1000") == Decimal("-120.00")


async def test_zero_value_return_can_be_refunded(service, db_session, tenant_id, order):
    # products worth exactly the shipping the customer pays
    ret = await service.create_return(partial(order.id, {"productId": "P2", "price": 200}))
    assert ret.total_amount == Decimal("0.00")
    await service.approve_return(ret.id)

    ret = await service.refund_return(ret.id, RefundRequest(refund_method="Cash"))

    assert ret.status == ReturnStatus.REFUNDED.value
    assert ret.refund_amount == Decimal("0.00")
    [refund] = await transactions_of(service, ret.id, TransactionEntryType.RETURN_REFUND)
    assert amounts(refund) == {
        ("4100", Decimal("0.00"), Decimal("0.00")),
        ("1000", Decimal("0.00"), Decimal("0.00")),
    }
    assert await balance(db_session, tenant_id, "1000") == Decimal("0.00")


async def test_unknown_refund_method_is_rejected(service, order):
    return_id = (await _approved(service, order.id)).id
    with pytest.raises(ValidationError):
        await service.refund_return(return_id, RefundRequest(refund_method="Cheque"))
    assert (await service.get_return(return_id)).status == ReturnStatus.APPROVED.value


# ==================== Advance balance ====================

async def test_advance_balance_covers_shipping_and_is_restored_on_reject(service, db_session, order, customer):
    customer.advance_balance = Decimal("150.00")
    await db_session.commit()

    ret = await service.create_return(partial(order.id, "P2", handling="DEDUCT_FROM_ADVANCE"))
    assert ret.advance_balance_used == Decimal("150.00")
    assert ret.total_amount == Decimal("350.00")
    await db_session.refresh(customer)
    assert customer.advance_balance == Decimal("0.00")

    await service.reject_return(ret.id)
    await db_session.refresh(customer)
    assert customer.advance_balance == Decimal("150.00")


async def test_advance_balance_adjusted_by_difference_on_edit(service, db_session, order, customer):
    customer.advance_balance = Decimal("150.00")
    await db_session.commit()

    ret = await service.create_return(partial(order.id, "P2", handling="DEDUCT_FROM_ADVANCE"))
    ret = await service.update_return(ret.id, ReturnUpdate(shipping_charge_amount=Decimal("100")))

    assert ret.advance_balance_used == Decimal("100.00")
    assert ret.total_amount == Decimal("400.00")
    await db_session.refresh(customer)
    assert customer.advance_balance == Decimal("50.00")


# ==================== Validation ====================

async def test_missing_order(service):
    with pytest.raises(NotFoundError):
        await service.create_return(full(uuid.uuid4()))


async def test_partial_needs_products(service, order):
    with pytest.raises(ValidationError):
        await service.create_return(partial(order.id))


async def test_unknown_shipping_handling(service, order):
    with pytest.raises(ValidationError):
        await service.create_return(partial(order.id, "P2", handling="SPLIT"))


async def test_shipping_deduction_larger_than_products(service, order):
    with pytest.raises(ValidationError):
        await service.create_return(partial(order.id, "P2", shipping_charge_amount=Decimal("500")))


async def test_returns_are_tenant_scoped(service, db_session, order):
    return_id = (await service.create_return(partial(order.id, "P2"))).id
    stranger = ReturnLifecycleService(db_session, uuid.uuid4(), restock_dispatcher=None)

    with pytest.raises(NotFoundError):
        await stranger.get_return(return_id)
    with pytest.raises(NotFoundError):
        await stranger.approve_return(return_id)
    assert (await service.get_return(return_id)).status == ReturnStatus.PENDING.value


# ==================== Queries ====================

async def test_list_returns_filters_and_pages(service, order):
    order_id = order.id
    first = await service.create_return(partial(order_id, "P2"))
    await service.create_return(partial(order_id, "P1"))
    await service.approve_return(first.id)

    approved, total = await service.list_returns(status=ReturnStatus.APPROVED)
    assert total == 1
    assert [r.id for r in approved] == [first.id]

    page, total = await service.list_returns(page=2, size=1, sort="created_at", order="asc")
    assert total == 2
    assert len(page) == 1

    by_order, total = await service.list_returns(order_id=order_id, return_type=ReturnType.FULL)
    assert (by_order, total) == ([], 0)

    with pytest.raises(ValidationError):
        await service.list_returns(sort="total_amount")


# ==================== Restock ====================

async def test_restock_failure_does_not_affect_approval(db_session, tenant_id, policy, order):
    def broken(*args):
        raise RuntimeError("queue unavailable")

    service = ReturnLifecycleService(db_session, tenant_id, policy, restock_dispatcher=broken)
    ret = await service.create_return(partial(order.id, "P2"))
    ret = await service.approve_return(ret.id)

    assert ret.status == ReturnStatus.APPROVED.value


async def test_restock_writes_stock_movements(service, db_session, order, restocks):
    ret = await service.create_return(partial(order.id, "P1", "P2"))
    await service.approve_return(ret.id)
    await db_session.commit()

    [(tenant, lines, return_id, return_number)] = restocks
    dispatch_restock_task(tenant, lines, return_id, return_number)
    await wait_for_restock_tasks()

    movements = (await db_session.scalars(
        select(StockMovement).where(StockMovement.reference_id == return_id)
    )).all()
    assert len(movements) == 2
    assert {m.product_id for m in movements} == {"P1", "P2"}
    assert all(m.movement_type == "RETURN_IN" and m.reference_number == return_number for m in movements)


async def test_restock_job_logs_and_swallows_errors(monkeypatch, caplog, tenant_id, session_factory):
    async def fail(self, *args, **kwargs):
        raise RuntimeError("warehouse offline")

    monkeypatch.setattr(InventoryService, "increase_from_return", fail)
    with caplog.at_level(logging.ERROR, logger=inventory_service.__name__):
        await run_restock(tenant_id, [], uuid.uuid4(), "RET-2026-0009")

    assert "Restock failed for return RET-2026-0009" in caplog.text
