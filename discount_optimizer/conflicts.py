import logging
from functools import partial
from itertools import combinations
from typing import Iterator, List, Optional

from .models import CombinationValidation, ConflictDetail, DiscountRule

logger = logging.getLogger(__name__)

DEFAULT_MAX_COMBINATIONS = 100


def _one_way_conflict(a: DiscountRule, b: DiscountRule) -> Optional[str]:
    """Reason why `a` refuses to be combined with `b`, or None."""
    if b.category in a.cannotCombineWithCategories:
        return f"'{a.name}' cannot be combined with {b.category} discounts"

    if b.id in a.cannotCombineWithIds:
        return f"'{a.name}' cannot be combined with '{b.name}'"

    if a.cannotCombineWithPromotionGiftTypes and b.category == "promotion":
        gift_type = getattr(b.value, "giftSelectionType", "same")
        if gift_type in a.cannotCombineWithPromotionGiftTypes:
            return f"'{a.name}' cannot be combined with {gift_type} promotions"

    if a.category == "telecom" and b.category == "telecom":
        if b.provider and b.provider in a.restrictedProviders:
            return f"'{a.name}' cannot be combined with {b.provider}"

    return None


def conflict_reason(a: DiscountRule, b: DiscountRule) -> Optional[str]:
    if a.id == b.id:
        return f"'{a.name}' cannot be applied twice"
    return _one_way_conflict(a, b) or _one_way_conflict(b, a)


def check_discount_conflict(a: DiscountRule, b: DiscountRule) -> bool:
    """True when `a` and `b` may not be applied together.

    Exclusions may be declared on one side only, so both directions are checked.
    """
    reason = conflict_reason(a, b)
    if reason is not None:
        logger.debug("Conflict %s <-> %s: %s", a.id, b.id, reason)
        return True
    return False


def is_valid_combination(rules: List[DiscountRule]) -> bool:
    for a, b in combinations(rules, 2):
        if check_discount_conflict(a, b):
            return False
    return True


def validate_combination(rules: List[DiscountRule]) -> CombinationValidation:
    conflicts = []
    for a, b in combinations(rules, 2):
        reason = conflict_reason(a, b)
        if reason is not None:
            conflicts.append(ConflictDetail(discount1=a.id, discount2=b.id, reason=reason))
    return CombinationValidation(isValid=not conflicts, conflicts=conflicts)


def _conflict_free_subsets(rules: List[DiscountRule], size: int) -> Iterator[List[DiscountRule]]:
    """Subsets of exactly `size` rules with no conflicting pair, in index order.

    Iterative backtracking: a rule is only added when it is compatible with
    everything already chosen, so conflicting branches are never expanded.
    """
    if size == 0:
        yield []
        return

    n = len(rules)
    chosen: List[int] = []
    candidate = 0
    while True:
        if len(chosen) == size:
            yield [rules[i] for i in chosen]
            candidate = chosen.pop() + 1
            continue
        # not enough rules left to fill the subset
        if candidate > n - (size - len(chosen)):
            if not chosen:
                return
            candidate = chosen.pop() + 1
            continue
        if all(conflict_reason(rules[i], rules[candidate]) is None for i in chosen):
            chosen.append(candidate)
        candidate += 1


def generate_combinations(
    rules: List[DiscountRule],
    max_combinations: int = DEFAULT_MAX_COMBINATIONS,
    exclude_conflicts: bool = False,
) -> List[List[DiscountRule]]:
    """
    Candidate subsets of `rules`: the empty set, singletons, then sizes 2..n.

    With `exclude_conflicts`, subsets holding a conflicting pair are skipped
    during enumeration and do not count against `max_combinations`.

    When there are more than `max_combinations` subsets, the largest ones are
    kept (stable by generation order). Larger sets tend to save more, but
    this truncation means small sets may never be scored.
    """
    if exclude_conflicts:
        subsets_of_size = partial(_conflict_free_subsets, rules)
    else:
        subsets_of_size = partial(combinations, rules)

    total = 2 ** len(rules)
    if total <= max_combinations:
        return [
            list(combo)
            for size in range(len(rules) + 1)
            for combo in subsets_of_size(size)
        ]

    logger.debug("Truncating %d combinations to the %d largest", total, max_combinations)
    # walk sizes from largest down so the full power set is never built
    candidates: List[List[DiscountRule]] = []
    for size in range(len(rules), -1, -1):
        for combo in subsets_of_size(size):
            candidates.append(list(combo))
            if len(candidates) == max_combinations:
                return candidates
    return candidates
