from datetime import datetime, timedelta, timezone

from discount_optimizer.eligibility import (
    check_discount_eligibility,
    filter_eligible_discounts,
    get_discount_eligibility_map,
)
from discount_optimizer.models import EligibilityContext, UserProfile


def ctx(now, **kwargs):
    return EligibilityContext(currentDate=now, **kwargs)


def test_active_rule_without_requirements_is_eligible(make_rule, empty_profile, now):
    result = check_discount_eligibility(make_rule("c1"), empty_profile, ctx(now))
    assert result.isEligible
    assert result.reason is None


def test_inactive_rule_rejected(make_rule, empty_profile, now):
    result = check_discount_eligibility(make_rule("c1", isActive=False), empty_profile, ctx(now))
    assert not result.isEligible
    assert "inactive" in result.reason


def test_rule_outside_validity_window(make_rule, empty_profile, now):
    future = make_rule("c1", validFrom=datetime(2026, 2, 1))
    past = make_rule("c2", validTo=datetime(2026, 1, 10))

    assert "not started" in check_discount_eligibility(future, empty_profile, ctx(now)).reason
    assert "ended" in check_discount_eligibility(past, empty_profile, ctx(now)).reason


def test_payment_method_required(make_rule, profile, empty_profile, now):
    kakao = make_rule("p1", category="payment_instant", requiredPaymentMethods=["kakao_pay"],
                      paymentMethodNames=["KakaoPay"])
    naver = make_rule("p2", category="payment_instant", requiredPaymentMethods=["naver_pay"])

    assert "No payment method" in check_discount_eligibility(kakao, empty_profile, ctx(now)).reason
    assert "KakaoPay" in check_discount_eligibility(kakao, profile, ctx(now)).reason
    assert check_discount_eligibility(naver, profile, ctx(now)).isEligible


def test_payment_event_requires_qr_scanner(make_rule, profile, now):
    rule = make_rule("e1", category="payment_event", requiresQR=True)
    no_qr = profile.model_copy(update={"hasQRScanner": False})

    assert check_discount_eligibility(rule, profile, ctx(now)).isEligible
    assert "QR" in check_discount_eligibility(rule, no_qr, ctx(now)).reason


def test_telecom_rule_needs_registered_subscription(make_rule, empty_profile, now):
    rule = make_rule("t1", category="telecom", name="SKT")
    subscribed = UserProfile(subscriptions=[{"discountId": "t1", "name": "SKT"}])

    assert "not registered" in check_discount_eligibility(rule, empty_profile, ctx(now)).reason
    assert check_discount_eligibility(rule, subscribed, ctx(now)).isEligible


def test_subscription_state_checks(make_rule, now):
    rule = make_rule("s1", isSubscription=True)

    def reason_for(**sub):
        profile = UserProfile(subscriptions=[dict({"discountId": "s1", "name": "Lunch pass"}, **sub)])
        return check_discount_eligibility(rule, profile, ctx(now)).reason

    assert "inactive" in reason_for(isActive=False)
    assert "not started" in reason_for(validFrom=datetime(2026, 2, 1))
    assert "expired" in reason_for(validTo=datetime(2026, 1, 1))
    assert "today" in reason_for(dailyUsageRemaining=0)
    assert "no uses left" in reason_for(totalUsageRemaining=0)
    assert reason_for(dailyUsageRemaining=1) is None


def test_required_discount_subscription_checked(make_rule, now):
    rule = make_rule("c2", requiresDiscountId="m1")
    missing = UserProfile()
    expired = UserProfile(subscriptions=[
        {"discountId": "m1", "name": "Membership", "validTo": datetime(2025, 12, 31)},
    ])

    assert "Required subscription" in check_discount_eligibility(rule, missing, ctx(now)).reason
    assert "expired" in check_discount_eligibility(rule, expired, ctx(now)).reason


def test_product_scope_checked_only_with_product(make_rule, empty_profile, now):
    rule = make_rule("c1", applicableCategories=["도시락"], applicableBrands=["CU"])

    assert check_discount_eligibility(rule, empty_profile, ctx(now)).isEligible
    wrong_category = ctx(now, productBarcode="8801", productCategory="음료", productBrand="CU")
    wrong_brand = ctx(now, productBarcode="8801", productCategory="도시락", productBrand="GS")
    right = ctx(now, productBarcode="8801", productCategory="도시락", productBrand="CU")

    assert "category" in check_discount_eligibility(rule, empty_profile, wrong_category).reason
    assert "brand" in check_discount_eligibility(rule, empty_profile, wrong_brand).reason
    assert check_discount_eligibility(rule, empty_profile, right).isEligible


def test_minimum_purchase(make_rule, empty_profile, now):
    rule = make_rule("c1", minPurchaseAmount=5000, minQuantity=2)

    assert "amount" in check_discount_eligibility(
        rule, empty_profile, ctx(now, totalAmount=4000, totalQuantity=3)).reason
    assert "quantity" in check_discount_eligibility(
        rule, empty_profile, ctx(now, totalAmount=6000, totalQuantity=1)).reason
    assert check_discount_eligibility(
        rule, empty_profile, ctx(now, totalAmount=6000, totalQuantity=2)).isEligible


def test_checks_stop_at_first_failure(make_rule, empty_profile, now):
    rule = make_rule("c1", isActive=False, requiredPaymentMethods=["card"], minPurchaseAmount=10000)
    result = check_discount_eligibility(rule, empty_profile, ctx(now, totalAmount=100))
    assert result.reason == "Discount is inactive."


def test_filter_keeps_input_order(make_rule, profile, now):
    rules = [
        make_rule("a"),
        make_rule("b", requiredPaymentMethods=["kakao_pay"]),
        make_rule("c", category="voucher", value={"valueType": "voucher_amount", "amount": 1000}),
    ]
    eligible = filter_eligible_discounts(rules, profile, ctx(now))
    assert [rule.id for rule in eligible] == ["a", "c"]


def test_filter_drops_rule_whose_required_rule_is_not_eligible(make_rule, now):
    profile = UserProfile(subscriptions=[{"discountId": "m1", "name": "Membership"}])
    membership = make_rule("m1", isSubscription=True)
    dependent = make_rule("c1", requiresDiscountId="m1")
    second_level = make_rule("c2", requiresDiscountId="c1")

    kept = filter_eligible_discounts([membership, dependent], profile, ctx(now))
    assert [rule.id for rule in kept] == ["m1", "c1"]

    inactive_membership = make_rule("m1", isSubscription=True, isActive=False)
    profile_with_c1 = UserProfile(subscriptions=[
        {"discountId": "m1", "name": "Membership"},
        {"discountId": "c1", "name": "Coupon pass"},
    ])
    kept = filter_eligible_discounts(
        [inactive_membership, dependent, second_level], profile_with_c1, ctx(now)
    )
    assert kept == []


def test_eligibility_map_has_entry_per_rule(make_rule, empty_profile, now):
    rules = [make_rule("a"), make_rule("b", isActive=False)]
    result = get_discount_eligibility_map(rules, empty_profile, ctx(now))

    assert set(result) == {"a", "b"}
    assert result["a"].isEligible
    assert not result["b"].isEligible


def test_product_scope_accepts_product_id(make_rule, empty_profile, now):
    rule = make_rule("c1", applicableProducts=["p-100"])

    by_id = ctx(now, productId="p-100", productBarcode="8809999")
    other = ctx(now, productId="p-200", productBarcode="8809999")

    assert check_discount_eligibility(rule, empty_profile, by_id).isEligible
    assert "Product is not covered" in check_discount_eligibility(rule, empty_profile, other).reason


def test_timezone_aware_dates_are_compared_in_utc(make_rule, empty_profile, now):
    # 20:00 in Seoul is 11:00 UTC, an hour before `now`
    rule = make_rule("c1", validTo=datetime(2026, 1, 15, 20, 0, tzinfo=timezone(timedelta(hours=9))))

    assert rule.validTo == datetime(2026, 1, 15, 11, 0)
    assert "ended" in check_discount_eligibility(rule, empty_profile, ctx(now)).reason

    seoul_context = EligibilityContext(currentDate="2026-01-15T19:00:00+09:00")
    assert check_discount_eligibility(rule, empty_profile, seoul_context).isEligible
