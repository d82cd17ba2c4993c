"""Valuation: price resolution, shipping policies and the order bound."""
from decimal import Decimal
from types import SimpleNamespace

import pytest

from return_ledger.core.exceptions import OverReturnError, ValidationError
from return_ledger.models.return_order import ReturnType, ShippingChargeHandling
from return_ledger.services.valuation import (
    BoundRule,
    LineItem,
    ReturnPolicy,
    apply_shipping_handling,
    compute_order_total,
    compute_return_value,
    json_field,
    normalize_line,
    order_line_items,
    summarize_order_returns,
    to_money,
    validate_against_order,
)


def make_order(shipping="200", **overrides):
    data = dict(
        selected_products=[
            {"id": "P1", "variantId": "V1", "name": "Blue Shirt", "price": 400, "quantity": 1},
            {"id": "P2", "name": "Red Shirt", "price": 400, "quantity": 1},
        ],
        product_quantities={"P1_V1": 1, "P2": 1},
        product_prices={"P1_V1": 400, "P2": 400},
        shipping_charges=Decimal(shipping),
    )
    data.update(overrides)
    return SimpleNamespace(**data)


def existing(total, return_type=ReturnType.PARTIAL.value, status="PENDING"):
    return SimpleNamespace(total_amount=Decimal(total), return_type=return_type, status=status)


# ==================== Price resolution ====================

def test_explicit_price_wins_over_maps():
    line = normalize_line({"id": "P1", "price": "350"}, {}, {"P1": 400})
    assert line.unit_price == Decimal("350.00")


def test_composite_key_price_before_product_price():
    line = normalize_line(
        {"id": "P1", "variantId": "V1"},
        {"P1_V1": 3},
        {"P1_V1": 450, "P1": 400},
    )
    assert line.unit_price == Decimal("450.00")
    assert line.quantity == 3
    assert line.composite_key == "P1_V1"


def test_product_price_when_variant_has_no_entry():
    line = normalize_line({"id": "P1", "variantId": "V9"}, {}, {"P1": 400})
    assert line.unit_price == Decimal("400.00")
    assert line.quantity == 1


def test_catalog_price_fallbacks():
    assert normalize_line({"id": "P1", "catalog_price": 120}).unit_price == Decimal("120.00")
    assert normalize_line({"id": "P1", "currentRetailPrice": "99.5"}).unit_price == Decimal("99.50")
    assert normalize_line("P1").unit_price == Decimal("0.00")


def test_bare_product_id_resolves_through_maps():
    line = normalize_line("P2", {"P2": 2}, {"P2": "400"})
    assert (line.product_id, line.quantity, line.unit_price) == ("P2", 2, Decimal("400.00"))
    assert line.amount == Decimal("800.00")


@pytest.mark.parametrize("raw", [{"id": "P1", "price": -5}, {"id": "P1", "quantity": 0}, {"name": "no id"}])
def test_invalid_lines_are_rejected(raw):
    with pytest.raises(ValidationError):
        normalize_line(raw)


def test_order_json_strings_are_decoded():
    order = make_order(
        selected_products='[{"id": "P1", "price": 250, "quantity": 2}]',
        product_quantities="{}",
        product_prices="{}",
        shipping="50",
    )
    lines = order_line_items(order)
    assert lines == [LineItem(product_id="P1", quantity=2, unit_price=Decimal("250.00"))]
    assert compute_order_total(order) == Decimal("550.00")


def test_malformed_order_json_raises():
    order = make_order(selected_products="not json")
    with pytest.raises(ValidationError, match="Invalid order data"):
        compute_order_total(order)


def test_to_money_rounds_half_up():
    assert to_money(None) == Decimal("0.00")
    assert to_money("10.005") == Decimal("10.01")
    assert to_money(3) == Decimal("3.00")


def test_json_field_accepts_text_and_data():
    assert json_field('{"P1": 2}', {}) == {"P1": 2}
    assert json_field({"P1": 2}, {}) == {"P1": 2}
    assert json_field(None, []) == []


def test_example_order_total():
    assert compute_order_total(make_order()) == Decimal("1000.00")


# ==================== Shipping ====================

def test_full_refund_adds_shipping():
    outcome = apply_shipping_handling(Decimal("400"), Decimal("200"), ShippingChargeHandling.FULL_REFUND)
    assert outcome.final_amount == Decimal("600.00")
    assert outcome.advance_balance_used == Decimal("0.00")


def test_customer_pays_deducts_shipping():
    outcome = apply_shipping_handling(Decimal("400"), Decimal("200"), "CUSTOMER_PAYS")
    assert outcome.final_amount == Decimal("200.00")


def test_advance_covers_shipping_fully():
    outcome = apply_shipping_handling(Decimal("400"), Decimal("200"), "DEDUCT_FROM_ADVANCE", Decimal("500"))
    assert outcome.final_amount == Decimal("400.00")
    assert outcome.advance_balance_used == Decimal("200.00")


def test_advance_shortfall_is_deducted():
    outcome = apply_shipping_handling(Decimal("400"), Decimal("200"), "DEDUCT_FROM_ADVANCE", Decimal("150"))
    assert outcome.final_amount == Decimal("350.00")
    assert outcome.advance_balance_used == Decimal("150.00")


def test_unknown_shipping_handling_raises():
    with pytest.raises(ValidationError) as exc_info:
        apply_shipping_handling(Decimal("400"), Decimal("200"), "FREE_SHIPPING")
    assert exc_info.value.details["rule"] == "INVALID_SHIPPING_HANDLING"


# ==================== Order bound ====================

def test_partial_within_remaining_value_passes(policy):
    check = validate_against_order(make_order(), [existing("600")], ReturnType.PARTIAL, Decimal("400"), policy)
    assert check.ok
    assert check.remaining == Decimal("400.00")


def test_partial_exceeding_order_value_fails(policy):
    check = validate_against_order(make_order(), [existing("600")], ReturnType.PARTIAL, Decimal("600"), policy)
    assert check.rule == BoundRule.EXCEEDS_ORDER_VALUE
    with pytest.raises(OverReturnError) as exc_info:
        check.raise_for_violation()
    assert exc_info.value.details["remaining"] == "400.00"


def test_one_percent_rounding_headroom(policy):
    assert validate_against_order(make_order(), [], ReturnType.PARTIAL, Decimal("1010"), policy).ok
    assert not validate_against_order(make_order(), [], ReturnType.PARTIAL, Decimal("1010.01"), policy).ok


def test_second_full_return_fails(policy):
    check = validate_against_order(
        make_order(), [existing("100", ReturnType.FULL.value)], ReturnType.FULL, Decimal("100"), policy
    )
    assert check.rule == BoundRule.FULL_RETURN_EXISTS


def test_full_return_after_order_fully_returned_fails(policy):
    check = validate_against_order(make_order(), [existing("990")], ReturnType.FULL, Decimal("0"), policy)
    assert check.rule == BoundRule.ORDER_FULLY_RETURNED


def test_rejected_returns_do_not_count(policy):
    check = validate_against_order(
        make_order(), [existing("1000", status="REJECTED")], ReturnType.FULL, Decimal("1000"), policy
    )
    assert check.ok


def test_custom_policy_tightens_the_bound():
    strict = ReturnPolicy(over_return_tolerance=Decimal("0"))
    assert not validate_against_order(make_order(), [], ReturnType.PARTIAL, Decimal("1000.01"), strict).ok


# ==================== Order aggregates ====================

def test_summary_statuses(policy):
    assert summarize_order_returns(Decimal("1000"), [], policy) == (Decimal("0.00"), "NONE")
    assert summarize_order_returns(Decimal("1000"), [existing("200")], policy) == (Decimal("200.00"), "PARTIAL")
    assert summarize_order_returns(Decimal("1000"), [existing("990")], policy) == (Decimal("990.00"), "FULL")
    assert summarize_order_returns(
        Decimal("1000"), [existing("50", ReturnType.FULL.value)], policy
    ) == (Decimal("50.00"), "FULL")


def test_return_value_excludes_shipping():
    lines = [
        LineItem(product_id="P1", quantity=2, unit_price=Decimal("199.99")),
        LineItem(product_id="P2", quantity=1, unit_price=Decimal("0.02")),
    ]
    assert compute_return_value(lines) == Decimal("400.00")
