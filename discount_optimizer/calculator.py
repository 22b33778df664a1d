"""
Sequential discount calculator.

Applies one conflict-free, category-ordered list of rules to a cart in two
phases: per-item rules first (line by line, most expensive lines first),
then cart-total rules against the running aggregate. Amounts are integer
currency units; every formula floors.
"""
from datetime import datetime
from typing import List, Optional

from .logic import compute_cart_value, compute_discount, describe_value, matches_item
from .models import (
    AppliedItem,
    CalculationResult,
    CalculationStep,
    CartItem,
    DiscountBreakdown,
    DiscountRule,
    UserProfile,
    to_utc_naive,
)


def usage_allowance(
    rule: DiscountRule,
    profile: UserProfile,
    now: Optional[datetime] = None,
) -> Optional[int]:
    """
    Units the rule may still discount, or None when unlimited.

    Limits come from the rule's `dailyItemLimit` and the remaining counters of
    the subscription linked to the rule (by its own id, else `requiresDiscountId`).
    """
    limits = []
    if rule.dailyItemLimit is not None:
        limits.append(rule.dailyItemLimit)

    subscription = profile.find_subscription(rule.id)
    if subscription is None and rule.requiresDiscountId:
        subscription = profile.find_subscription(rule.requiresDiscountId)

    if subscription is not None:
        if now is not None:
            if subscription.validFrom is not None and now < subscription.validFrom:
                return 0
            if subscription.validTo is not None and now > subscription.validTo:
                return 0
        for counter in (subscription.dailyUsageRemaining, subscription.totalUsageRemaining):
            if counter is not None:
                limits.append(max(0, counter))

    return min(limits) if limits else None


def _unmatched_warning(rule: DiscountRule, items: List[CartItem]) -> str:
    if not items:
        return f"'{rule.name}' could not be applied: the cart is empty."
    labels = ", ".join(item.label for item in items)
    return f"'{rule.name}' could not be applied to any cart item ({labels})."


def _details(rule: DiscountRule) -> str:
    text = describe_value(rule)
    if rule.is_original_price_based:
        text += " on original price"
    return text


def _spread(discount: int, indexes: List[int], amounts: List[int]) -> None:
    """Subtract `discount` from the given lines in proportion to their current amounts."""
    available = sum(amounts[i] for i in indexes)
    if available <= 0:
        return

    left = discount
    for pos, i in enumerate(indexes):
        if pos == len(indexes) - 1:
            share = left
        else:
            share = discount * amounts[i] // available
        share = min(share, amounts[i], left)
        amounts[i] -= share
        left -= share

    # leftovers from floor division go to any line that still has room
    for i in indexes:
        if left <= 0:
            break
        take = min(left, amounts[i])
        amounts[i] -= take
        left -= take


def apply_per_item_rule(
    rule: DiscountRule,
    items: List[CartItem],
    amounts: List[int],
    profile: UserProfile,
    now: Optional[datetime],
    warnings: List[str],
) -> Optional[DiscountBreakdown]:
    matched = [i for i, item in enumerate(items) if matches_item(rule, item)]
    if not matched:
        warnings.append(_unmatched_warning(rule, items))
        return None

    # highest unit price first so a usage limit benefits the most expensive units
    matched.sort(key=lambda i: items[i].unitPrice, reverse=True)
    remaining = usage_allowance(rule, profile, now)

    total = 0
    total_base = 0
    steps = []
    applied = []
    for i in matched:
        if remaining is not None and remaining <= 0:
            break

        item = items[i]
        current = amounts[i]
        if current <= 0:
            continue

        units = item.quantity if remaining is None else min(item.quantity, remaining)
        source = item.line_total if rule.is_original_price_based else current
        base = source if units == item.quantity else source * units // item.quantity

        discount = compute_discount(rule, base, units, item.unitPrice)
        if rule.maxDiscountPerItem is not None:
            discount = min(discount, rule.maxDiscountPerItem)
        if rule.maxDiscountAmount is not None:
            discount = min(discount, rule.maxDiscountAmount - total)
        discount = min(discount, current)
        if discount <= 0:
            continue

        if remaining is not None:
            remaining -= units
        amounts[i] -= discount
        total += discount
        total_base += base

        steps.append(CalculationStep(
            discountId=rule.id,
            discountName=rule.name,
            category=rule.category,
            baseAmount=base,
            isOriginalPriceBased=rule.is_original_price_based,
            discountAmount=discount,
            amountAfterDiscount=amounts[i],
            calculationDetails=f"{_details(rule)} x{units} {item.label}",
        ))
        applied.append(AppliedItem(
            productId=item.productId,
            barcode=item.barcode,
            name=item.name,
            quantity=units,
            unitPrice=item.unitPrice,
            baseAmount=base,
            discountAmount=discount,
        ))

    return DiscountBreakdown(
        discountId=rule.id,
        discountName=rule.name,
        category=rule.category,
        amount=total,
        baseAmount=total_base,
        steps=steps,
        appliedItems=applied,
    )


def apply_cart_rule(
    rule: DiscountRule,
    items: List[CartItem],
    amounts: List[int],
    warnings: List[str],
) -> Optional[DiscountBreakdown]:
    matched = [i for i, item in enumerate(items) if matches_item(rule, item)]
    if not matched:
        warnings.append(_unmatched_warning(rule, items))
        return None

    available = sum(amounts[i] for i in matched)
    if rule.is_original_price_based:
        base = sum(items[i].line_total for i in matched)
    else:
        base = available
    quantity = sum(items[i].quantity for i in matched)
    cheapest = min(items[i].unitPrice for i in matched)

    discount = min(compute_discount(rule, base, quantity, cheapest), available)
    before = {i: amounts[i] for i in matched}
    _spread(discount, matched, amounts)

    step = CalculationStep(
        discountId=rule.id,
        discountName=rule.name,
        category=rule.category,
        baseAmount=base,
        isOriginalPriceBased=rule.is_original_price_based,
        discountAmount=discount,
        amountAfterDiscount=sum(amounts),
        calculationDetails=_details(rule),
    )
    return DiscountBreakdown(
        discountId=rule.id,
        discountName=rule.name,
        category=rule.category,
        amount=discount,
        baseAmount=base,
        steps=[step],
        appliedItems=[
            AppliedItem(
                productId=items[i].productId,
                barcode=items[i].barcode,
                name=items[i].name,
                quantity=items[i].quantity,
                unitPrice=items[i].unitPrice,
                baseAmount=before[i],
                discountAmount=before[i] - amounts[i],
            )
            for i in matched
        ],
    )


def _is_gift_item(rule: DiscountRule, item: CartItem) -> bool:
    gifts = rule.value.giftProducts
    return item.barcode in gifts or item.productId in gifts


def apply_gift_rule(
    rule: DiscountRule,
    items: List[CartItem],
    amounts: List[int],
    warnings: List[str],
) -> Optional[DiscountBreakdown]:
    """
    Combo promotion: buying `buyQuantity` of the scoped items frees
    `getQuantity` units of a different gift item already in the cart.

    Bought units are pooled across all scoped lines; the first gift line in
    cart order receives the discount.
    """
    value = rule.value
    bought = [
        i for i, item in enumerate(items)
        if matches_item(rule, item) and not _is_gift_item(rule, item)
    ]
    if not bought:
        warnings.append(_unmatched_warning(rule, items))
        return None

    gift_index = next((i for i, item in enumerate(items) if _is_gift_item(rule, item)), None)
    if gift_index is None:
        warnings.append(f"'{rule.name}': add the gift item to the cart.")
        return None

    sets = sum(items[i].quantity for i in bought) // value.buyQuantity
    if sets == 0:
        warnings.append(f"'{rule.name}': buy at least {value.buyQuantity} to get the gift.")
        return None

    gift = items[gift_index]
    free = min(sets * value.getQuantity, gift.quantity)
    base = amounts[gift_index]
    discount = gift.unitPrice * free
    if rule.maxDiscountAmount is not None:
        discount = min(discount, rule.maxDiscountAmount)
    discount = max(0, min(discount, base))
    amounts[gift_index] -= discount

    step = CalculationStep(
        discountId=rule.id,
        discountName=rule.name,
        category=rule.category,
        baseAmount=base,
        isOriginalPriceBased=False,
        discountAmount=discount,
        amountAfterDiscount=amounts[gift_index],
        calculationDetails=f"{_details(rule)} gift x{free} {gift.label}",
    )
    return DiscountBreakdown(
        discountId=rule.id,
        discountName=rule.name,
        category=rule.category,
        amount=discount,
        baseAmount=base,
        steps=[step],
        appliedItems=[AppliedItem(
            productId=gift.productId,
            barcode=gift.barcode,
            name=gift.name,
            quantity=free,
            unitPrice=gift.unitPrice,
            baseAmount=base,
            discountAmount=discount,
        )],
    )


def calculate_combination(
    items: List[CartItem],
    rules: List[DiscountRule],
    profile: UserProfile,
    current_date: Optional[datetime] = None,
) -> CalculationResult:
    """
    Apply `rules` (already in category order, conflict-free) to `items`.

    Per-item rules (and combo gift promotions) run first, then cart-total
    rules stack on the running amount.
    A rule that matches no cart line contributes nothing and leaves a warning.
    """
    current_date = to_utc_naive(current_date)
    original = compute_cart_value(items)
    amounts = [item.line_total for item in items]
    warnings: List[str] = []
    breakdown: List[DiscountBreakdown] = []

    for rule in rules:
        if rule.is_gift_pairing:
            entry = apply_gift_rule(rule, items, amounts, warnings)
        elif rule.applicationMethod == "per_item":
            entry = apply_per_item_rule(rule, items, amounts, profile, current_date, warnings)
        else:
            continue
        if entry is not None:
            breakdown.append(entry)

    for rule in rules:
        if rule.applicationMethod != "per_item" and not rule.is_gift_pairing:
            entry = apply_cart_rule(rule, items, amounts, warnings)
            if entry is not None:
                breakdown.append(entry)

    final = max(0, sum(amounts))
    total_discount = original - final
    return CalculationResult(
        originalPrice=original,
        finalPrice=final,
        totalDiscount=total_discount,
        totalDiscountRate=total_discount / original if original > 0 else 0.0,
        warnings=warnings,
        breakdown=breakdown,
    )
