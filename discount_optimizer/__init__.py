from .eligibility import check_discount_eligibility, filter_eligible_discounts
from .optimizer import find_optimal_discount_combination

__all__ = [
    "check_discount_eligibility",
    "filter_eligible_discounts",
    "find_optimal_discount_combination",
]
