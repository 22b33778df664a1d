"""
Eligibility checks for discount rules against a user profile and cart.

Every check returns an EligibilityResult; an ineligible rule is a normal
outcome with a reason, not an error.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from .logic import is_within_date_range
from .models import (
    DiscountRule,
    EligibilityContext,
    EligibilityResult,
    Subscription,
    UserProfile,
    to_utc_naive,
    utc_now,
)

logger = logging.getLogger(__name__)

ELIGIBLE = EligibilityResult(isEligible=True)


def _reject(reason: str) -> EligibilityResult:
    return EligibilityResult(isEligible=False, reason=reason)


def check_discount_validity(rule: DiscountRule, now: datetime) -> EligibilityResult:
    if not rule.isActive:
        return _reject("Discount is inactive.")
    if now < rule.validFrom:
        return _reject("Discount period has not started yet.")
    if not is_within_date_range(rule, now):
        return _reject("Discount period has ended.")
    return ELIGIBLE


def check_payment_method(rule: DiscountRule, profile: UserProfile) -> EligibilityResult:
    if not rule.requiredPaymentMethods:
        return ELIGIBLE

    if not profile.paymentMethods:
        return _reject("No payment method registered.")

    owned = {pm.method for pm in profile.paymentMethods}
    if not owned.intersection(rule.requiredPaymentMethods):
        names = rule.paymentMethodNames or rule.requiredPaymentMethods
        return _reject(f"Requires payment method: {', '.join(names)}")

    return ELIGIBLE


def check_qr_requirement(rule: DiscountRule, profile: UserProfile) -> EligibilityResult:
    if rule.category == "payment_event" and rule.requiresQR and not profile.hasQRScanner:
        return _reject("A QR scanner is required.")
    return ELIGIBLE


def check_subscription_entry(
    subscription: Optional[Subscription],
    missing_reason: str,
    now: datetime,
) -> EligibilityResult:
    if subscription is None:
        return _reject(missing_reason)
    if not subscription.isActive:
        return _reject(f"Subscription '{subscription.name}' is inactive.")
    if subscription.validFrom is not None and now < subscription.validFrom:
        return _reject(f"Subscription '{subscription.name}' has not started yet.")
    if subscription.validTo is not None and now > subscription.validTo:
        return _reject(f"Subscription '{subscription.name}' has expired.")
    if subscription.dailyUsageRemaining is not None and subscription.dailyUsageRemaining <= 0:
        return _reject(f"Subscription '{subscription.name}' has no uses left today.")
    if subscription.totalUsageRemaining is not None and subscription.totalUsageRemaining <= 0:
        return _reject(f"Subscription '{subscription.name}' has no uses left.")
    return ELIGIBLE


def check_subscription_requirement(
    rule: DiscountRule,
    profile: UserProfile,
    now: datetime,
) -> EligibilityResult:
    # the rule is itself a subscription / membership benefit
    if rule.is_subscription_based:
        result = check_subscription_entry(
            profile.find_subscription(rule.id),
            f"Subscription '{rule.name}' is not registered in the preset.",
            now,
        )
        if not result.isEligible:
            return result

    # the rule depends on another subscription
    if rule.requiresDiscountId:
        result = check_subscription_entry(
            profile.find_subscription(rule.requiresDiscountId),
            "Required subscription or membership is not registered.",
            now,
        )
        if not result.isEligible:
            return result

    return ELIGIBLE


def check_product_eligibility(
    rule: DiscountRule,
    barcode: Optional[str],
    category: Optional[str] = None,
    brand: Optional[str] = None,
    product_id: Optional[str] = None,
) -> EligibilityResult:
    # applicableProducts may list barcodes or product ids, as in cart matching
    if rule.applicableProducts and not (
        barcode in rule.applicableProducts or product_id in rule.applicableProducts
    ):
        return _reject("Product is not covered by this discount.")
    if rule.applicableCategories and (not category or category not in rule.applicableCategories):
        return _reject("Product category is not covered by this discount.")
    if rule.applicableBrands and (not brand or brand not in rule.applicableBrands):
        return _reject("Product brand is not covered by this discount.")
    return ELIGIBLE


def check_minimum_purchase(
    rule: DiscountRule,
    total_amount: int,
    total_quantity: int,
) -> EligibilityResult:
    if rule.minPurchaseAmount and total_amount < rule.minPurchaseAmount:
        return _reject(f"Minimum purchase amount is {rule.minPurchaseAmount}.")
    if rule.minQuantity and total_quantity < rule.minQuantity:
        return _reject(f"Minimum purchase quantity is {rule.minQuantity}.")
    return ELIGIBLE


def check_discount_eligibility(
    rule: DiscountRule,
    profile: UserProfile,
    context: Optional[EligibilityContext] = None,
) -> EligibilityResult:
    """
    Decide whether `rule` applies for `profile` and the cart described by `context`.

    Checks run in a fixed order and stop at the first failure:
    validity window, payment method, QR scanner, subscription,
    product scope (only when a product is given), purchase minimums
    (only when cart aggregates are given).
    """
    if context is None:
        context = EligibilityContext()
    now = to_utc_naive(context.currentDate) or utc_now()

    checks = [
        lambda: check_discount_validity(rule, now),
        lambda: check_payment_method(rule, profile),
        lambda: check_qr_requirement(rule, profile),
        lambda: check_subscription_requirement(rule, profile, now),
    ]
    if context.productBarcode or context.productId:
        checks.append(lambda: check_product_eligibility(
            rule,
            context.productBarcode,
            context.productCategory,
            context.productBrand,
            context.productId,
        ))
    if context.totalAmount is not None or context.totalQuantity is not None:
        checks.append(lambda: check_minimum_purchase(
            rule, context.totalAmount or 0, context.totalQuantity or 0
        ))

    for check in checks:
        result = check()
        if not result.isEligible:
            return result
    return ELIGIBLE


def get_discount_eligibility_map(
    rules: List[DiscountRule],
    profile: UserProfile,
    context: Optional[EligibilityContext] = None,
) -> Dict[str, EligibilityResult]:
    return {rule.id: check_discount_eligibility(rule, profile, context) for rule in rules}


def filter_eligible_discounts(
    rules: List[DiscountRule],
    profile: UserProfile,
    context: Optional[EligibilityContext] = None,
) -> List[DiscountRule]:
    """
    Rules admitted for `profile`, in input order.

    A rule with `requiresDiscountId` is kept only while the referenced rule is
    admitted too; removals cascade until the set is stable.
    """
    eligible = []
    for rule in rules:
        result = check_discount_eligibility(rule, profile, context)
        if result.isEligible:
            eligible.append(rule)
        else:
            logger.debug("Excluded discount %s (%s): %s", rule.id, rule.name, result.reason)

    changed = True
    while changed:
        admitted_ids = {rule.id for rule in eligible}
        kept = [
            rule for rule in eligible
            if not rule.requiresDiscountId or rule.requiresDiscountId in admitted_ids
        ]
        changed = len(kept) != len(eligible)
        kept_ids = {rule.id for rule in kept}
        for rule in eligible:
            if rule.id not in kept_ids:
                logger.debug(
                    "Excluded discount %s: required discount %s is not eligible",
                    rule.id, rule.requiresDiscountId,
                )
        eligible = kept

    return eligible
