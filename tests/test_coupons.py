from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from storefront.coupons import (
    BELOW_MINIMUM,
    EXHAUSTED,
    EXPIRED,
    INACTIVE,
    apply_partial_update,
    compute_discount,
    coupon_state,
    evaluate,
    is_redeemable,
    matches_state,
    normalize_code,
    redeem,
)
from storefront.errors import CouponNotRedeemable, UsageLimitExceeded
from storefront.schemas import Coupon, CouponUpdate

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_coupon(**overrides):
    fields = dict(
        code="WELCOME10",
        discount_type="percentage",
        value=10,
        min_order_value=500,
        max_discount=200,
        usage_limit=100,
        used_count=25,
        expiry_date=NOW + timedelta(days=30),
        is_active=True,
    )
    fields.update(overrides)
    return Coupon(**fields)


def test_percentage_under_cap():
    coupon = make_coupon()
    assert is_redeemable(coupon, 1500, NOW)
    assert compute_discount(coupon, 1500, NOW) == 150


def test_percentage_hits_cap():
    coupon = make_coupon()
    assert compute_discount(coupon, 5000, NOW) == 200


def test_percentage_without_cap_is_uncapped():
    coupon = make_coupon(max_discount=None)
    assert compute_discount(coupon, 50_000, NOW) == 5000


def test_fixed_below_minimum_is_not_redeemable():
    coupon = make_coupon(code="FLAT50", discount_type="fixed", value=50,
                         min_order_value=300, max_discount=None)
    assert not is_redeemable(coupon, 200, NOW)
    assert compute_discount(coupon, 200, NOW) == 0
    assert compute_discount(coupon, 300, NOW) == 50


def test_fixed_larger_than_subtotal_caps_at_subtotal():
    coupon = make_coupon(discount_type="fixed", value=800, min_order_value=0, max_discount=None)
    assert compute_discount(coupon, 300, NOW) == 300


def test_exhausted_coupon_never_redeemable():
    coupon = make_coupon(usage_limit=100, used_count=100)
    for subtotal in (0, 500, 10_000):
        assert not is_redeemable(coupon, subtotal, NOW)
    assert not is_redeemable(coupon, 10_000, NOW - timedelta(days=365))


def test_expiry_dominates_active_flag():
    coupon = make_coupon(expiry_date=NOW - timedelta(seconds=1), is_active=True)
    assert not is_redeemable(coupon, 1500, NOW)
    assert evaluate(coupon, 1500, NOW).reason == EXPIRED
    assert coupon_state(coupon, NOW) == EXPIRED


def test_expires_exactly_at_expiry_date():
    coupon = make_coupon(expiry_date=NOW)
    assert not is_redeemable(coupon, 1500, NOW)


def test_naive_expiry_is_treated_as_utc():
    coupon = make_coupon(expiry_date=datetime(2026, 6, 2))
    assert is_redeemable(coupon, 1500, NOW)


@pytest.mark.parametrize("overrides, subtotal, reason", [
    ({"is_active": False}, 1500, INACTIVE),
    ({"used_count": 100}, 1500, EXHAUSTED),
    ({}, 499, BELOW_MINIMUM),
])
def test_evaluate_reports_reason(overrides, subtotal, reason):
    result = evaluate(make_coupon(**overrides), subtotal, NOW)
    assert not result.applied
    assert result.discount == 0
    assert result.reason == reason
    assert result.message
    with pytest.raises(CouponNotRedeemable) as exc:
        result.raise_for_reason()
    assert exc.value.reason == reason


def test_evaluate_applied():
    result = evaluate(make_coupon(), 1500, NOW)
    assert result.applied
    assert result.discount == 150
    assert result.reason is None
    result.raise_for_reason()


def test_discount_bounds_over_many_subtotals():
    coupons = [
        make_coupon(min_order_value=0),
        make_coupon(min_order_value=0, max_discount=None, value=100),
        make_coupon(min_order_value=0, discount_type="fixed", value=75, max_discount=None),
    ]
    for coupon in coupons:
        for subtotal in range(0, 3000, 13):
            discount = compute_discount(coupon, subtotal, NOW)
            assert 0 <= discount <= subtotal


def test_code_is_canonical_upper_case():
    assert normalize_code("  welcome10 ") == "WELCOME10"
    assert make_coupon(code=" flat50").code == "FLAT50"


def test_redeem_increments_once():
    coupon = make_coupon(used_count=99)
    redeemed = redeem(coupon)
    assert redeemed.used_count == 100
    assert coupon.used_count == 99
    with pytest.raises(UsageLimitExceeded):
        redeem(redeemed)


def test_used_count_cannot_exceed_limit():
    with pytest.raises(ValidationError):
        make_coupon(usage_limit=5, used_count=6)


def test_percentage_value_above_100_rejected():
    with pytest.raises(ValidationError):
        make_coupon(value=150)


def test_coupon_state():
    assert coupon_state(make_coupon(), NOW) == "active"
    assert coupon_state(make_coupon(is_active=False), NOW) == INACTIVE


def test_state_buckets_overlap_for_disabled_expired_coupon():
    coupon = make_coupon(is_active=False, expiry_date=NOW - timedelta(days=1))
    assert coupon_state(coupon, NOW) == EXPIRED
    assert matches_state(coupon, INACTIVE, NOW)
    assert matches_state(coupon, EXPIRED, NOW)
    assert not matches_state(coupon, "active", NOW)
    assert matches_state(make_coupon(), "active", NOW)
    assert not matches_state(make_coupon(), "archived", NOW)


def test_blank_code_rejected():
    with pytest.raises(ValidationError):
        make_coupon(code="   ")


def test_evaluation_is_immutable():
    result = evaluate(make_coupon(), 1500, NOW)
    assert result.model_dump() == {"code": "WELCOME10", "applied": True, "discount": 150, "reason": None}
    with pytest.raises(ValidationError):
        result.discount = 0


def test_partial_update_only_touches_sent_fields():
    coupon = make_coupon()
    updated = apply_partial_update(coupon, CouponUpdate(value=15, code="welcome15"))
    assert updated.value == 15
    assert updated.code == "WELCOME15"
    assert updated.min_order_value == coupon.min_order_value
    assert updated.max_discount == 200
    assert updated.used_count == 25


def test_partial_update_can_remove_cap():
    updated = apply_partial_update(make_coupon(), CouponUpdate.model_validate({"max_discount": None}))
    assert updated.max_discount is None


def test_partial_update_is_revalidated():
    with pytest.raises(ValidationError):
        apply_partial_update(make_coupon(used_count=25), CouponUpdate(usage_limit=10))


def test_update_body_rejects_percentage_over_100():
    with pytest.raises(ValidationError):
        CouponUpdate(discount_type="percentage", value=500)
    assert CouponUpdate(value=500).value == 500
