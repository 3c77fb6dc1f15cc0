"""
Cart/order pricing pipeline.

One function prices both a cart preview and an order at checkout, so the
two can never disagree. The steps run in a fixed order:

    subtotal -> discount -> taxable base -> tax -> shipping -> total

Tax is charged on the discounted base; shipping is added after tax and is
never discounted. Everything is integer cents; the only rounding happens
where a rate is applied (discount percentage, tax), half-up.
"""

import logging
from datetime import datetime
from typing import Protocol, Sequence

from core.coupon_engine import calculate_discount, is_valid
from core.exceptions import PricingInvariantViolation
from core.models import Coupon, PricingBreakdown
from utils.money import apply_rate

logger = logging.getLogger(__name__)


class PricedLine(Protocol):
    """Anything with a unit price and a quantity (cart items, order items)."""

    unit_price_cents: int
    quantity: int


def verify_identity(subtotal: int, discount: int, tax: int, shipping: int, total: int) -> None:
    """
    Check total == subtotal - discount + tax + shipping.

    Raises:
        PricingInvariantViolation: The numbers don't add up (logged first)
    """
    if total != subtotal - discount + tax + shipping:
        logger.error(
            "Pricing identity violated: subtotal=%s discount=%s tax=%s shipping=%s total=%s",
            subtotal, discount, tax, shipping, total,
        )
        raise PricingInvariantViolation(subtotal, discount, tax, shipping, total)


def price_items(
    items: Sequence[PricedLine],
    coupon: Coupon | None,
    now: datetime,
    tax_rate_bps: int,
    shipping_cents: int,
) -> PricingBreakdown:
    """
    Price a set of line items.

    Args:
        items: Lines to price; order is irrelevant
        coupon: The single applied coupon, if any. Ignored when not valid at `now`.
            Minimum purchase and per-customer limits are the caller's job.
        now: Evaluation time for the coupon's validity window
        tax_rate_bps: Tax rate in basis points (1000 = 10%)
        shipping_cents: Shipping cost supplied by the shipping collaborator

    Returns:
        PricingBreakdown. An empty item list prices to all zeros (no
        discount, tax or shipping).

    Raises:
        ValueError: Negative price, rate or shipping; quantity below 1
        PricingInvariantViolation: Internal arithmetic inconsistency
    """
    if tax_rate_bps < 0:
        raise ValueError("tax_rate_bps must be non-negative")
    if shipping_cents < 0:
        raise ValueError("shipping_cents must be non-negative")

    for item in items:
        if item.unit_price_cents < 0:
            raise ValueError("unit_price_cents must be non-negative")
        if item.quantity < 1:
            raise ValueError("quantity must be at least 1")

    if not items:
        return PricingBreakdown(
            subtotal_cents=0,
            discount_cents=0,
            taxable_base_cents=0,
            tax_rate_bps=tax_rate_bps,
            tax_cents=0,
            shipping_cents=0,
            total_cents=0,
        )

    subtotal = sum(item.unit_price_cents * item.quantity for item in items)

    discount = 0
    coupon_code = None
    if coupon is not None and is_valid(coupon, now):
        discount = calculate_discount(coupon, subtotal)
        coupon_code = coupon.code

    taxable_base = subtotal - discount
    if taxable_base < 0:
        # unreachable while calculate_discount clamps to the subtotal
        logger.warning("Discount %s exceeded subtotal %s; clamping", discount, subtotal)
        discount = subtotal
        taxable_base = 0

    tax = apply_rate(taxable_base, tax_rate_bps)
    total = taxable_base + tax + shipping_cents

    verify_identity(subtotal, discount, tax, shipping_cents, total)

    return PricingBreakdown(
        subtotal_cents=subtotal,
        discount_cents=discount,
        taxable_base_cents=taxable_base,
        tax_rate_bps=tax_rate_bps,
        tax_cents=tax,
        shipping_cents=shipping_cents,
        total_cents=total,
        coupon_code=coupon_code,
    )
