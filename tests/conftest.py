from datetime import datetime

import pytest

from discount_optimizer.models import CartItem, DiscountRule, UserProfile


NOW = datetime(2026, 1, 15, 12, 0)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_rule():
    def _make(rule_id, category="coupon", value=None, **overrides):
        data = {
            "id": rule_id,
            "name": overrides.pop("name", rule_id),
            "category": category,
            "value": value or {"valueType": "percentage", "percentage": 10},
            "validFrom": datetime(2026, 1, 1),
            "validTo": datetime(2026, 12, 31, 23, 59),
        }
        data.update(overrides)
        return DiscountRule.model_validate(data)

    return _make


@pytest.fixture
def make_item():
    def _make(product_id, unit_price, quantity=1, category=None, brand=None, name=None):
        return CartItem(
            productId=product_id,
            barcode=f"880{product_id}",
            name=name or product_id,
            unitPrice=unit_price,
            quantity=quantity,
            category=category,
            brand=brand,
        )

    return _make


@pytest.fixture
def profile():
    return UserProfile(
        id="preset-1",
        name="Lunch",
        paymentMethods=[{"method": "card"}, {"method": "naver_pay"}],
        hasQRScanner=True,
    )


@pytest.fixture
def empty_profile():
    return UserProfile()
