"""
Coupon validity and discount rules.

Pure functions over an immutable Coupon snapshot. Nothing here reads the
clock or the database: callers pass `now` and whatever usage counts they
looked up. Redemption (the used_count increment) lives in CouponService
because it has to be atomic against storage.
"""

from datetime import datetime
from uuid import UUID

from core.exceptions import (
    CouponBelowMinimumPurchase,
    CouponNotApplicable,
    CouponPerCustomerLimitExceeded,
)
from core.models import Coupon, CouponType
from utils.money import apply_rate


def invalid_reason(coupon: Coupon, now: datetime) -> str | None:
    """
    Explain why a coupon cannot be used at `now`, or None if it can.

    Checks, in order: activation flag, start date, end date, global usage cap.
    Both window edges are inclusive.
    """
    if not coupon.is_active:
        return f"Coupon '{coupon.code}' is not active"
    if now < coupon.start_date:
        return f"Coupon '{coupon.code}' is not valid yet"
    if coupon.end_date is not None and now > coupon.end_date:
        return f"Coupon '{coupon.code}' has expired"
    if coupon.remaining_uses == 0:
        return f"Coupon '{coupon.code}' has reached its usage limit"
    return None


def is_valid(coupon: Coupon, now: datetime) -> bool:
    """Whether the coupon may be applied at `now`. No side effects."""
    return invalid_reason(coupon, now) is None


def calculate_discount(coupon: Coupon, subtotal_cents: int) -> int:
    """
    Discount in cents that the coupon yields on `subtotal_cents`.

    Percentage coupons take `value` basis points of the subtotal (half-up to
    the cent); fixed coupons take `value` cents. The result is capped by
    max_discount_cents when set and always lands in [0, subtotal].

    Does not check validity, minimum purchase or per-customer limits.
    """
    if subtotal_cents < 0:
        raise ValueError("subtotal_cents must be non-negative")

    if coupon.type == CouponType.PERCENTAGE:
        raw = apply_rate(subtotal_cents, coupon.value)
    else:
        raw = coupon.value

    if coupon.max_discount_cents is not None:
        raw = min(raw, coupon.max_discount_cents)

    return max(0, min(raw, subtotal_cents))


def check_applicable(
    coupon: Coupon,
    now: datetime,
    subtotal_cents: int,
    customer_redemptions: int = 0,
    merchant_id: UUID | None = None,
) -> int:
    """
    Run every applicability rule and return the discount in cents.

    Args:
        coupon: Coupon snapshot
        now: Evaluation time
        subtotal_cents: Cart subtotal the discount would apply to
        customer_redemptions: Times this customer already redeemed the coupon
        merchant_id: Merchant the purchase is from, if it should be matched

    Raises:
        CouponNotApplicable: Fails is_valid, or belongs to another merchant
        CouponPerCustomerLimitExceeded: Customer used up their redemptions
        CouponBelowMinimumPurchase: Subtotal below min_purchase_cents
    """
    reason = invalid_reason(coupon, now)
    if reason is not None:
        raise CouponNotApplicable(coupon.code, reason)

    if merchant_id is not None and coupon.merchant_id != merchant_id:
        raise CouponNotApplicable(
            coupon.code, f"Coupon '{coupon.code}' is not valid for this merchant"
        )

    if (
        coupon.per_customer_limit is not None
        and customer_redemptions >= coupon.per_customer_limit
    ):
        raise CouponPerCustomerLimitExceeded(coupon.code, coupon.per_customer_limit)

    if coupon.min_purchase_cents is not None and subtotal_cents < coupon.min_purchase_cents:
        raise CouponBelowMinimumPurchase(coupon.code, coupon.min_purchase_cents, subtotal_cents)

    return calculate_discount(coupon, subtotal_cents)
