import math
from datetime import datetime
from typing import List, Optional

from .models import (
    BuyNGetMValue,
    CartItem,
    DiscountRule,
    FixedAmountValue,
    PercentageValue,
    TieredAmountValue,
    UnitPriceValue,
    VoucherAmountValue,
    to_utc_naive,
    utc_now,
)

# Promotions (1+1, 2+1) go first, cumulative payment discounts last
CATEGORY_ORDER = {
    "promotion": 1,
    "coupon": 2,
    "telecom": 3,
    "event": 4,
    "payment_event": 5,
    "voucher": 6,
    "payment_instant": 7,
    "payment_compound": 8,
}

PAYMENT_EVENT_ROUNDING_UNIT = 10


def compute_cart_value(items: List[CartItem]) -> int:
    return sum(item.unitPrice * item.quantity for item in items)


def compute_items_count(items: List[CartItem]) -> int:
    return sum(item.quantity for item in items)


def is_within_date_range(rule: DiscountRule, now: Optional[datetime] = None) -> bool:
    now = to_utc_naive(now) or utc_now()
    return rule.validFrom <= now <= rule.validTo


def category_rank(rule: DiscountRule) -> int:
    return CATEGORY_ORDER[rule.category]


def sort_by_category(rules: List[DiscountRule]) -> List[DiscountRule]:
    """Application order: category rank, then `priority` within a category.

    The sort is stable, so rules with equal rank and priority keep their input order.
    """
    return sorted(rules, key=lambda r: (category_rank(r), r.priority))


def matches_product(
    rule: DiscountRule,
    barcode: Optional[str],
    category: Optional[str],
    brand: Optional[str],
    product_id: Optional[str] = None,
) -> bool:
    if rule.applicableProducts:
        if barcode not in rule.applicableProducts and product_id not in rule.applicableProducts:
            return False

    if rule.applicableCategories:
        if not category or category not in rule.applicableCategories:
            return False

    if rule.applicableBrands:
        if not brand or brand not in rule.applicableBrands:
            return False

    return True


def matches_item(rule: DiscountRule, item: CartItem) -> bool:
    return matches_product(rule, item.barcode, item.category, item.brand, item.productId)


def compute_discount(
    rule: DiscountRule,
    base_amount: int,
    quantity: int,
    unit_price: int,
) -> int:
    """
    Discount produced by one rule against `base_amount`.

    quantity / unit_price describe the units behind the base amount and are
    only used by the unit-based formulas (buy_n_get_m, unit_price).
    The result never exceeds base_amount and is never negative.
    """
    if base_amount <= 0:
        return 0

    value = rule.value
    if isinstance(value, PercentageValue):
        discount = math.floor(base_amount * value.percentage / 100)
        if rule.category == "payment_event":
            # receipts round payment event discounts up to 10 won
            unit = PAYMENT_EVENT_ROUNDING_UNIT
            discount = math.ceil(discount / unit) * unit
    elif isinstance(value, FixedAmountValue):
        if rule.minPurchaseAmount is not None and base_amount < rule.minPurchaseAmount:
            discount = 0
        else:
            discount = value.fixedAmount
    elif isinstance(value, TieredAmountValue):
        discount = (base_amount // value.tierUnit) * value.tierAmount
    elif isinstance(value, VoucherAmountValue):
        discount = value.amount
    elif isinstance(value, BuyNGetMValue):
        sets = quantity // (value.buyQuantity + value.getQuantity)
        discount = sets * value.getQuantity * unit_price
    elif isinstance(value, UnitPriceValue):
        discount = value.amountPerUnit * quantity
    else:
        raise TypeError(f"Unsupported discount value: {type(value).__name__}")

    if rule.maxDiscountAmount is not None:
        discount = min(discount, rule.maxDiscountAmount)

    # discount cannot exceed the base and cannot be negative
    return max(0, min(discount, base_amount))


def describe_value(rule: DiscountRule) -> str:
    value = rule.value
    if isinstance(value, PercentageValue):
        text = f"{value.percentage:g}% off"
    elif isinstance(value, FixedAmountValue):
        text = f"{value.fixedAmount} off"
    elif isinstance(value, TieredAmountValue):
        text = f"{value.tierAmount} off per {value.tierUnit}"
    elif isinstance(value, VoucherAmountValue):
        text = f"voucher {value.amount}"
    elif isinstance(value, BuyNGetMValue):
        text = f"{value.buyQuantity}+{value.getQuantity}"
    elif isinstance(value, UnitPriceValue):
        text = f"{value.amountPerUnit} off per unit"
    else:
        raise TypeError(f"Unsupported discount value: {type(value).__name__}")

    if rule.maxDiscountAmount is not None:
        text += f" (max {rule.maxDiscountAmount})"
    return text
