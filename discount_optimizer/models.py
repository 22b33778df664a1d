from typing import Annotated, Dict, List, Literal, Optional, Union
from datetime import datetime, timezone

from pydantic import AfterValidator, BaseModel, Field


DiscountCategory = Literal[
    "promotion",
    "coupon",
    "telecom",
    "event",
    "payment_event",
    "voucher",
    "payment_instant",
    "payment_compound",
]

ApplicationMethod = Literal["per_item", "cart_total"]
BaseAmountType = Literal["current_amount", "original_price"]
GiftSelectionType = Literal["same", "cross", "combo"]


def to_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """All datetimes are compared as naive UTC; aware values are converted first."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


UtcDatetime = Annotated[datetime, AfterValidator(to_utc_naive)]


# ---------------------------
# Discount values (one variant per valueType)
# ---------------------------

class PercentageValue(BaseModel):
    valueType: Literal["percentage"] = "percentage"
    percentage: float = Field(..., ge=0, le=100)


class FixedAmountValue(BaseModel):
    valueType: Literal["fixed_amount"] = "fixed_amount"
    fixedAmount: int = Field(..., ge=0)


class TieredAmountValue(BaseModel):
    valueType: Literal["tiered_amount"] = "tiered_amount"
    tierUnit: int = Field(..., gt=0)  # e.g. every 1000 won
    tierAmount: int = Field(..., ge=0)  # e.g. 300 won off per tier


class VoucherAmountValue(BaseModel):
    valueType: Literal["voucher_amount"] = "voucher_amount"
    amount: int = Field(..., ge=0)
    voucherName: Optional[str] = None


class BuyNGetMValue(BaseModel):
    valueType: Literal["buy_n_get_m"] = "buy_n_get_m"
    buyQuantity: int = Field(..., ge=1)
    getQuantity: int = Field(..., ge=1)
    giftSelectionType: GiftSelectionType = "same"
    # combo: barcodes or product ids of the items given away
    giftProducts: List[str] = Field(default_factory=list)


class UnitPriceValue(BaseModel):
    valueType: Literal["unit_price"] = "unit_price"
    amountPerUnit: int = Field(..., ge=0)


DiscountValue = Annotated[
    Union[
        PercentageValue,
        FixedAmountValue,
        TieredAmountValue,
        VoucherAmountValue,
        BuyNGetMValue,
        UnitPriceValue,
    ],
    Field(discriminator="valueType"),
]


# ---------------------------
# Inputs
# ---------------------------

class DiscountRule(BaseModel):
    id: str
    name: str
    description: Optional[str] = None

    category: DiscountCategory
    value: DiscountValue
    applicationMethod: ApplicationMethod = "cart_total"
    baseAmountType: BaseAmountType = "current_amount"

    # Scope: empty list means "all"
    applicableProducts: List[str] = Field(default_factory=list)  # product ids or barcodes
    applicableCategories: List[str] = Field(default_factory=list)
    applicableBrands: List[str] = Field(default_factory=list)

    # Payment / membership requirements
    requiredPaymentMethods: List[str] = Field(default_factory=list)
    paymentMethodNames: List[str] = Field(default_factory=list)
    requiresQR: bool = False
    isSubscription: bool = False
    provider: Optional[str] = None
    restrictedProviders: List[str] = Field(default_factory=list)

    # Constraints
    minPurchaseAmount: Optional[int] = None
    minQuantity: Optional[int] = None
    maxDiscountAmount: Optional[int] = None
    maxDiscountPerItem: Optional[int] = None
    dailyItemLimit: Optional[int] = None

    # Combination rules
    cannotCombineWithCategories: List[DiscountCategory] = Field(default_factory=list)
    cannotCombineWithIds: List[str] = Field(default_factory=list)
    cannotCombineWithPromotionGiftTypes: List[GiftSelectionType] = Field(default_factory=list)
    requiresDiscountId: Optional[str] = None

    validFrom: UtcDatetime
    validTo: UtcDatetime
    isActive: bool = True
    priority: int = 0

    @property
    def is_subscription_based(self) -> bool:
        return self.isSubscription or self.category == "telecom"

    @property
    def is_original_price_based(self) -> bool:
        return self.baseAmountType == "original_price"

    @property
    def is_gift_pairing(self) -> bool:
        return isinstance(self.value, BuyNGetMValue) and self.value.giftSelectionType == "combo"


class PaymentMethodInfo(BaseModel):
    method: str  # e.g. "card", "naver_pay", "cu_pay"
    name: Optional[str] = None


class Subscription(BaseModel):
    discountId: str
    name: str
    isActive: bool = True
    validFrom: Optional[UtcDatetime] = None
    validTo: Optional[UtcDatetime] = None
    dailyUsageRemaining: Optional[int] = None
    totalUsageRemaining: Optional[int] = None


class UserProfile(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    paymentMethods: List[PaymentMethodInfo] = Field(default_factory=list)
    subscriptions: List[Subscription] = Field(default_factory=list)
    hasQRScanner: bool = False

    def find_subscription(self, discount_id: str) -> Optional[Subscription]:
        for sub in self.subscriptions:
            if sub.discountId == discount_id:
                return sub
        return None


class CartItem(BaseModel):
    productId: str
    barcode: str
    name: Optional[str] = None
    unitPrice: int = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    category: Optional[str] = None
    brand: Optional[str] = None

    @property
    def line_total(self) -> int:
        return self.unitPrice * self.quantity

    @property
    def label(self) -> str:
        return self.name or self.barcode


class OptimizerOptions(BaseModel):
    maxCombinations: int = Field(100, ge=1)
    includeAlternatives: bool = True
    maxAlternatives: int = Field(5, ge=0)


class EligibilityContext(BaseModel):
    totalAmount: Optional[int] = None
    totalQuantity: Optional[int] = None
    productId: Optional[str] = None
    productBarcode: Optional[str] = None
    productCategory: Optional[str] = None
    productBrand: Optional[str] = None
    currentDate: Optional[UtcDatetime] = None


# ---------------------------
# Outputs
# ---------------------------

class EligibilityResult(BaseModel):
    isEligible: bool
    reason: Optional[str] = None


class CalculationStep(BaseModel):
    discountId: str
    discountName: str
    category: DiscountCategory
    baseAmount: int
    isOriginalPriceBased: bool
    discountAmount: int
    amountAfterDiscount: int
    calculationDetails: Optional[str] = None


class AppliedItem(BaseModel):
    productId: str
    barcode: str
    name: Optional[str] = None
    quantity: int  # units that actually received the discount
    unitPrice: int
    baseAmount: int
    discountAmount: int


class DiscountBreakdown(BaseModel):
    discountId: str
    discountName: str
    category: DiscountCategory
    amount: int
    baseAmount: int
    steps: List[CalculationStep] = Field(default_factory=list)
    appliedItems: List[AppliedItem] = Field(default_factory=list)


class CalculationResult(BaseModel):
    originalPrice: int
    finalPrice: int
    totalDiscount: int
    totalDiscountRate: float
    warnings: List[str] = Field(default_factory=list)
    breakdown: List[DiscountBreakdown] = Field(default_factory=list)


class CalculationError(BaseModel):
    discountIds: List[str]
    message: str


class DiscountCombination(BaseModel):
    discountIds: List[str]
    totalDiscount: int
    totalDiscountRate: float
    finalPrice: int
    originalPrice: int
    isOptimal: bool = False
    warnings: List[str] = Field(default_factory=list)
    discountBreakdown: List[DiscountBreakdown] = Field(default_factory=list)


class OptimizationResult(BaseModel):
    optimal: Optional[DiscountCombination] = None
    alternatives: List[DiscountCombination] = Field(default_factory=list)


class ConflictDetail(BaseModel):
    discount1: str
    discount2: str
    reason: str


class CombinationValidation(BaseModel):
    isValid: bool
    conflicts: List[ConflictDetail] = Field(default_factory=list)


# ---------------------------
# HTTP payloads
# ---------------------------

class OptimizeRequest(BaseModel):
    cartItems: List[CartItem]
    rules: List[DiscountRule]
    profile: UserProfile = Field(default_factory=UserProfile)
    options: OptimizerOptions = Field(default_factory=OptimizerOptions)
    currentDate: Optional[UtcDatetime] = None


class EligibilityRequest(BaseModel):
    rule: DiscountRule
    profile: UserProfile = Field(default_factory=UserProfile)
    context: EligibilityContext = Field(default_factory=EligibilityContext)


class ValidateCombinationRequest(BaseModel):
    rules: List[DiscountRule]


EligibilityMap = Dict[str, EligibilityResult]
