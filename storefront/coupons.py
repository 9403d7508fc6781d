"""
Coupon evaluation.

A coupon is redeemable for a subtotal at time ``now`` only when all of these
hold: it is active, it has not expired, it still has uses left, and the
subtotal reaches its minimum order value. Expiry wins over the active flag.

Everything here is pure; the persistent usage counter lives in
``storefront.database.redeem_coupon``.
"""
from __future__ import annotations
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from storefront.cart import round_half_up
from storefront.errors import CouponNotRedeemable, UsageLimitExceeded
from storefront.schemas import Coupon, CouponUpdate

INACTIVE = "inactive"
EXPIRED = "expired"
EXHAUSTED = "exhausted"
BELOW_MINIMUM = "below_minimum"

REASON_MESSAGES = {
    INACTIVE: "This coupon is not active.",
    EXPIRED: "This coupon has expired.",
    EXHAUSTED: "This coupon has reached its usage limit.",
    BELOW_MINIMUM: "Your order does not reach the minimum value for this coupon.",
}


class CouponEvaluation(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    applied: bool
    discount: int
    reason: Optional[str] = None

    @property
    def message(self) -> Optional[str]:
        return REASON_MESSAGES.get(self.reason) if self.reason else None

    def raise_for_reason(self) -> None:
        if not self.applied:
            raise CouponNotRedeemable(self.code, self.reason or INACTIVE)


def normalize_code(code: str) -> str:
    return code.strip().upper()


def as_utc(dt: datetime) -> datetime:
    # Mongo hands back naive datetimes that are in UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _now(now: Optional[datetime]) -> datetime:
    return as_utc(now) if now is not None else datetime.now(timezone.utc)


def rejection_reason(coupon: Coupon, subtotal: int, now: Optional[datetime] = None) -> Optional[str]:
    """Return why ``coupon`` cannot be used, or None if it can."""
    now = _now(now)
    if now >= as_utc(coupon.expiry_date):
        return EXPIRED
    if not coupon.is_active:
        return INACTIVE
    if coupon.used_count >= coupon.usage_limit:
        return EXHAUSTED
    if subtotal < coupon.min_order_value:
        return BELOW_MINIMUM
    return None


def is_redeemable(coupon: Coupon, subtotal: int, now: Optional[datetime] = None) -> bool:
    return rejection_reason(coupon, subtotal, now) is None


def _raw_discount(coupon: Coupon, subtotal: int) -> int:
    if coupon.discount_type == "percentage":
        amount = round_half_up(Decimal(subtotal) * Decimal(coupon.value) / 100)
        if coupon.max_discount is not None:
            amount = min(amount, coupon.max_discount)
    else:
        amount = coupon.value
    return max(0, min(amount, subtotal))


def compute_discount(coupon: Coupon, subtotal: int, now: Optional[datetime] = None) -> int:
    if not is_redeemable(coupon, subtotal, now):
        return 0
    return _raw_discount(coupon, subtotal)


def evaluate(coupon: Coupon, subtotal: int, now: Optional[datetime] = None) -> CouponEvaluation:
    reason = rejection_reason(coupon, subtotal, now)
    if reason is not None:
        return CouponEvaluation(code=coupon.code, applied=False, discount=0, reason=reason)
    return CouponEvaluation(code=coupon.code, applied=True, discount=_raw_discount(coupon, subtotal))


def redeem(coupon: Coupon) -> Coupon:
    """Return ``coupon`` with one more use recorded.

    In-memory counterpart of ``database.redeem_coupon``; callers sharing a
    coupon record across requests must go through the database version.
    """
    if coupon.used_count >= coupon.usage_limit:
        raise UsageLimitExceeded(coupon.code, coupon.usage_limit)
    return coupon.model_copy(update={"used_count": coupon.used_count + 1})


def coupon_state(coupon: Coupon, now: Optional[datetime] = None) -> str:
    if _now(now) >= as_utc(coupon.expiry_date):
        return EXPIRED
    if not coupon.is_active:
        return INACTIVE
    return "active"


def matches_state(coupon: Coupon, state: str, now: Optional[datetime] = None) -> bool:
    """Admin listing buckets. ``inactive`` and ``expired`` overlap: a disabled
    coupon past its expiry date is listed under both."""
    expired = _now(now) >= as_utc(coupon.expiry_date)
    if state == EXPIRED:
        return expired
    if state == INACTIVE:
        return not coupon.is_active
    if state == "active":
        return coupon.is_active and not expired
    return False


def apply_partial_update(coupon: Coupon, patch: CouponUpdate) -> Coupon:
    """Merge the fields set on ``patch`` into ``coupon`` and revalidate."""
    changes = patch.model_dump(exclude_unset=True)
    # None on a required field means "not sent"; only max_discount is nullable
    changes = {k: v for k, v in changes.items() if v is not None or k == "max_discount"}
    merged = {**coupon.model_dump(), **changes}
    return Coupon.model_validate(merged)
