import logging
from datetime import datetime
from typing import List, Optional, Tuple, Union

from .calculator import calculate_combination
from .conflicts import generate_combinations
from .eligibility import filter_eligible_discounts
from .logic import compute_cart_value, compute_items_count, sort_by_category
from .models import (
    CalculationError,
    CartItem,
    DiscountCombination,
    DiscountRule,
    EligibilityContext,
    OptimizationResult,
    OptimizerOptions,
    UserProfile,
    to_utc_naive,
    utc_now,
)

logger = logging.getLogger(__name__)

ScoredCombination = Union[DiscountCombination, CalculationError]


def score_combination(
    items: List[CartItem],
    rules: List[DiscountRule],
    profile: UserProfile,
    current_date: datetime,
) -> ScoredCombination:
    """Calculate one combination; a failure is returned, not raised."""
    ordered = sort_by_category(rules)
    ids = [rule.id for rule in ordered]
    try:
        result = calculate_combination(items, ordered, profile, current_date)
    except Exception as exc:
        logger.warning("Error calculating combination %s: %s", ids, exc)
        return CalculationError(discountIds=ids, message=str(exc))

    return DiscountCombination(
        discountIds=ids,
        totalDiscount=result.totalDiscount,
        totalDiscountRate=result.totalDiscountRate,
        finalPrice=result.finalPrice,
        originalPrice=result.originalPrice,
        warnings=result.warnings,
        discountBreakdown=result.breakdown,
    )


def rank_combinations(
    scored: List[ScoredCombination],
) -> List[DiscountCombination]:
    """
    Successful combinations, best first.

    Rule:
     1. Highest total discount
     2. If tie, more discounts in the combination
     3. If still tie, earlier generation order
    """
    indexed: List[Tuple[int, DiscountCombination]] = [
        (index, combo) for index, combo in enumerate(scored)
        if isinstance(combo, DiscountCombination)
    ]
    indexed.sort(
        key=lambda ic: (
            -ic[1].totalDiscount,
            -len(ic[1].discountIds),
            ic[0],
        )
    )
    return [combo for _, combo in indexed]


def _empty_cart_result() -> OptimizationResult:
    return OptimizationResult(
        optimal=DiscountCombination(
            discountIds=[],
            totalDiscount=0,
            totalDiscountRate=0.0,
            finalPrice=0,
            originalPrice=0,
            isOptimal=True,
            warnings=["The cart is empty."],
        ),
        alternatives=[],
    )


def _is_meaningful(combination: DiscountCombination) -> bool:
    """At least one discount in the combination actually saved something."""
    if not combination.discountBreakdown:
        return combination.totalDiscount > 0
    return any(entry.amount > 0 for entry in combination.discountBreakdown)


def _distinct_alternatives(
    ranked: List[DiscountCombination],
    limit: int,
) -> List[DiscountCombination]:
    # one alternative per saving amount; the optimal's amount is already taken
    seen = {ranked[0].totalDiscount}
    alternatives = []
    for combo in ranked[1:]:
        if len(alternatives) >= limit:
            break
        if combo.totalDiscount not in seen:
            alternatives.append(combo)
            seen.add(combo.totalDiscount)
    return alternatives


def find_optimal_discount_combination(
    cart_items: List[CartItem],
    rules: List[DiscountRule],
    profile: UserProfile,
    options: Optional[OptimizerOptions] = None,
    current_date: Optional[datetime] = None,
) -> OptimizationResult:
    """
    Search the conflict-free combinations of eligible rules for the lowest final price.

    Returns the best combination (marked `isOptimal`) and up to
    `options.maxAlternatives` runners-up, each with a different saving.
    Combinations in which no discount saves anything are dropped. When nothing
    is eligible, or no combination calculates to a saving, `optimal` is None.
    """
    if options is None:
        options = OptimizerOptions()
    current_date = to_utc_naive(current_date) or utc_now()

    if not cart_items:
        return _empty_cart_result()

    context = EligibilityContext(
        totalAmount=compute_cart_value(cart_items),
        totalQuantity=compute_items_count(cart_items),
        currentDate=current_date,
    )
    eligible = filter_eligible_discounts(rules, profile, context)
    logger.debug("%d of %d discounts eligible", len(eligible), len(rules))
    if not eligible:
        return OptimizationResult()

    candidates = generate_combinations(eligible, options.maxCombinations, exclude_conflicts=True)
    logger.debug("%d conflict-free combinations to score", len(candidates))

    scored = [score_combination(cart_items, combo, profile, current_date) for combo in candidates]
    ranked = [combo for combo in rank_combinations(scored) if _is_meaningful(combo)]
    if not ranked:
        return OptimizationResult()

    optimal = ranked[0].model_copy(update={"isOptimal": True})
    alternatives: List[DiscountCombination] = []
    if options.includeAlternatives:
        alternatives = _distinct_alternatives(ranked, options.maxAlternatives)

    return OptimizationResult(optimal=optimal, alternatives=alternatives)


def generate_combination_description(
    combination: DiscountCombination,
    rules: List[DiscountRule],
) -> str:
    if not combination.discountIds:
        return "No discount"

    names = {rule.id: rule.name for rule in rules}
    label = " + ".join(names.get(discount_id, "Unknown") for discount_id in combination.discountIds)
    return f"{label} ({combination.totalDiscountRate * 100:.1f}% saved)"
