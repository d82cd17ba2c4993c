"""
Return Valuation

Pure money arithmetic for returns. No database access: every function works
on plain values or already-loaded rows and can be called repeatedly.

PRICE RESOLUTION (per line, first hit wins):
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
1. explicit ``price`` on the line
2. price map entry for "{product_id}_{variant_id}", then for "{product_id}"
3. catalog default on the line (``catalog_price``, then ``currentRetailPrice``)
4. zero

Quantities resolve the same way (explicit, map, then 1).

SHIPPING HANDLING:
━━━━━━━━━━━━━━━━━
• FULL_REFUND          final = products + shipping
• DEDUCT_FROM_ADVANCE  advance covers shipping; any shortfall is deducted
• CUSTOMER_PAYS        final = products - shipping
"""
import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional

from return_ledger.core.enum_utils import get_enum_value, to_enum, enum_comment
from return_ledger.core.exceptions import OverReturnError, ValidationError
from return_ledger.models.order import OrderReturnStatus
from return_ledger.models.return_order import ReturnStatus, ReturnType, ShippingChargeHandling


TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(v) -> Decimal:
    """Quantize any numeric value to two places; None is zero."""
    if v is None:
        return ZERO
    return Decimal(str(v)).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def _to_decimal(value: Any, field: str) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount for {field}: {value!r}", {"field": field})


def _to_quantity(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        quantity = int(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid quantity: {value!r}", {"field": "quantity"})
    if quantity <= 0:
        raise ValidationError("Quantity must be greater than zero", {"field": "quantity", "value": quantity})
    return quantity


# ==================== Policy ====================

@dataclass(frozen=True)
class ReturnPolicy:
    """Tolerances applied when checking a return against its order."""
    full_return_threshold: Decimal = Decimal("0.99")
    over_return_tolerance: Decimal = Decimal("0.01")

    @classmethod
    def from_settings(cls, settings=None) -> "ReturnPolicy":
        if settings is None:
            from return_ledger.config import settings
        return cls(
            full_return_threshold=Decimal(str(settings.FULL_RETURN_THRESHOLD)),
            over_return_tolerance=Decimal(str(settings.OVER_RETURN_TOLERANCE)),
        )


DEFAULT_POLICY = ReturnPolicy()


# ==================== Line items ====================

@dataclass(frozen=True)
class LineItem:
    """A returned or ordered line with its price and quantity resolved."""
    product_id: str
    quantity: int
    unit_price: Decimal
    name: Optional[str] = None
    variant_id: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None

    @property
    def composite_key(self) -> str:
        if self.variant_id:
            return f"{self.product_id}_{self.variant_id}"
        return self.product_id

    @property
    def amount(self) -> Decimal:
        return self.unit_price * self.quantity


def _lookup(mapping: Mapping, composite_key: str, product_id: str):
    if not mapping:
        return None
    value = mapping.get(composite_key)
    if value is None:
        value = mapping.get(product_id)
    return value


def normalize_line(
    raw: Any,
    quantities: Optional[Mapping] = None,
    prices: Optional[Mapping] = None,
) -> LineItem:
    """
    Turn a bare product id or a product object into a LineItem.

    Product objects may carry ``id``/``productId``, ``variantId``/
    ``productVariantId``, ``price``, ``quantity``, ``name``, ``color``,
    ``size`` and a catalog default price.
    """
    quantities = quantities or {}
    prices = prices or {}

    if isinstance(raw, Mapping):
        data = raw
    elif isinstance(raw, (str, int)) and not isinstance(raw, bool):
        data = {"id": raw}
    else:
        raise ValidationError(f"Unsupported product line: {raw!r}")

    product_id = data.get("id") or data.get("productId") or data.get("product_id")
    if product_id in (None, ""):
        raise ValidationError("Product line is missing a product id", {"line": dict(data)})
    product_id = str(product_id)

    variant_id = data.get("variantId") or data.get("productVariantId") or data.get("variant_id")
    variant_id = str(variant_id) if variant_id not in (None, "") else None
    composite_key = f"{product_id}_{variant_id}" if variant_id else product_id

    quantity = _to_quantity(data.get("quantity"))
    if quantity is None:
        quantity = _to_quantity(_lookup(quantities, composite_key, product_id)) or 1

    unit_price = _to_decimal(data.get("price"), "price")
    if unit_price is None:
        unit_price = _to_decimal(_lookup(prices, composite_key, product_id), "price")
    if unit_price is None:
        catalog = data.get("catalog_price", data.get("currentRetailPrice"))
        unit_price = _to_decimal(catalog, "price")
    if unit_price is None:
        unit_price = ZERO
    if unit_price < 0:
        raise ValidationError("Price cannot be negative", {"product_id": product_id})

    return LineItem(
        product_id=product_id,
        quantity=quantity,
        unit_price=to_money(unit_price),
        name=data.get("name") or data.get("product_name"),
        variant_id=variant_id,
        color=data.get("color"),
        size=data.get("size"),
    )


def normalize_lines(
    raw_lines: Iterable[Any],
    quantities: Optional[Mapping] = None,
    prices: Optional[Mapping] = None,
) -> List[LineItem]:
    return [normalize_line(raw, quantities, prices) for raw in raw_lines or []]


def json_field(value: Any, default):
    """Order JSON column as Python data; tolerates JSON stored as text."""
    if value is None:
        return default
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            raise ValidationError("Invalid order data")
    return value


def order_line_items(order) -> List[LineItem]:
    """Resolve the order's JSON line data into LineItems."""
    return normalize_lines(
        json_field(order.selected_products, []),
        json_field(order.product_quantities, {}),
        json_field(order.product_prices, {}),
    )


def order_maps(order) -> tuple:
    """(quantities, prices) maps of an order, decoded."""
    return (
        json_field(order.product_quantities, {}),
        json_field(order.product_prices, {}),
    )


def compute_order_total(order) -> Decimal:
    """Sum of line amounts plus the order's shipping charge."""
    products = sum((line.amount for line in order_line_items(order)), ZERO)
    return to_money(products + to_money(order.shipping_charges))


def compute_return_value(lines: Iterable[LineItem]) -> Decimal:
    """Product value of the given lines, shipping excluded."""
    return to_money(sum((line.amount for line in lines), ZERO))


# ==================== Shipping ====================

@dataclass(frozen=True)
class ShippingOutcome:
    final_amount: Decimal
    advance_balance_used: Decimal


def parse_shipping_handling(value: Any) -> ShippingChargeHandling:
    handling = to_enum(value, ShippingChargeHandling)
    if handling is None:
        raise ValidationError(
            f"Unrecognized shipping charge handling: {get_enum_value(value)!r}",
            {
                "rule": "INVALID_SHIPPING_HANDLING",
                "allowed": enum_comment(ShippingChargeHandling),
            },
        )
    return handling


def apply_shipping_handling(
    products_value,
    shipping_charges,
    handling,
    available_advance_balance=ZERO,
) -> ShippingOutcome:
    """
    Apply the shipping policy to the products value.

    Raises ValidationError for a policy outside ShippingChargeHandling.
    """
    handling = parse_shipping_handling(handling)
    products_value = to_money(products_value)
    shipping = to_money(shipping_charges)
    available = max(to_money(available_advance_balance), ZERO)

    if handling == ShippingChargeHandling.FULL_REFUND:
        return ShippingOutcome(products_value + shipping, ZERO)

    if handling == ShippingChargeHandling.DEDUCT_FROM_ADVANCE:
        used = min(available, shipping)
        shortfall = max(ZERO, shipping - available)
        return ShippingOutcome(products_value - shortfall, used)

    return ShippingOutcome(products_value - shipping, ZERO)


# ==================== Return bound ====================

class BoundRule(str, Enum):
    FULL_RETURN_EXISTS = "FULL_RETURN_EXISTS"
    ORDER_FULLY_RETURNED = "ORDER_FULLY_RETURNED"
    EXCEEDS_ORDER_VALUE = "EXCEEDS_ORDER_VALUE"


@dataclass(frozen=True)
class ReturnBoundCheck:
    """Outcome of checking a candidate return against its order."""
    order_total: Decimal
    already_returned: Decimal
    candidate_value: Decimal
    rule: Optional[BoundRule] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.rule is None

    @property
    def remaining(self) -> Decimal:
        return self.order_total - self.already_returned

    def raise_for_violation(self) -> None:
        if self.ok:
            return
        raise OverReturnError(
            self.message,
            {
                "rule": self.rule.value,
                "order_total": str(self.order_total),
                "already_returned": str(self.already_returned),
                "remaining": str(self.remaining),
                "candidate_value": str(self.candidate_value),
            },
        )


def _is_active(ret) -> bool:
    status = getattr(ret, "status", None)
    return status is None or status != ReturnStatus.REJECTED.value


def validate_against_order(
    order,
    existing_active_returns: Iterable,
    candidate_type,
    candidate_value,
    policy: ReturnPolicy = DEFAULT_POLICY,
) -> ReturnBoundCheck:
    """
    Check a candidate return against what is left of the order value.

    ``existing_active_returns`` must exclude the candidate itself when an
    existing return is being edited.
    """
    order_total = compute_order_total(order)
    active = [r for r in existing_active_returns if _is_active(r)]
    already = to_money(sum((to_money(r.total_amount) for r in active), ZERO))
    candidate_value = to_money(candidate_value)
    candidate_type = get_enum_value(candidate_type)

    def failed(rule: BoundRule, message: str) -> ReturnBoundCheck:
        return ReturnBoundCheck(order_total, already, candidate_value, rule, message)

    if candidate_type == ReturnType.FULL.value:
        if any(r.return_type == ReturnType.FULL.value for r in active):
            return failed(
                BoundRule.FULL_RETURN_EXISTS,
                "A full return already exists for this order. Cannot create another full return.",
            )
        if already >= order_total * policy.full_return_threshold:
            return failed(
                BoundRule.ORDER_FULLY_RETURNED,
                "This order has already been fully returned.",
            )

    if already + candidate_value > order_total * (1 + policy.over_return_tolerance):
        return failed(
            BoundRule.EXCEEDS_ORDER_VALUE,
            f"This return would exceed the order value. Remaining order value: "
            f"Rs. {order_total - already}, Return amount: Rs. {candidate_value}",
        )

    return ReturnBoundCheck(order_total, already, candidate_value)


def summarize_order_returns(order_total, active_returns: Iterable, policy: ReturnPolicy = DEFAULT_POLICY) -> tuple:
    """(refund_amount, return_status) aggregate of an order's active returns."""
    active = [r for r in active_returns if _is_active(r)]
    total = to_money(sum((to_money(r.total_amount) for r in active), ZERO))
    order_total = to_money(order_total)

    if any(r.return_type == ReturnType.FULL.value for r in active):
        status = OrderReturnStatus.FULL
    elif order_total > 0 and total >= order_total * policy.full_return_threshold:
        status = OrderReturnStatus.FULL
    elif active:
        status = OrderReturnStatus.PARTIAL
    else:
        status = OrderReturnStatus.NONE
    return total, status.value
