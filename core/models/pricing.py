"""Pricing pipeline output. All amounts in cents."""

from pydantic import BaseModel


class PricingBreakdown(BaseModel):
    """
    Result of pricing a set of line items.

    total_cents == subtotal_cents - discount_cents + tax_cents + shipping_cents
    always holds; the pipeline refuses to return anything else.
    """

    subtotal_cents: int
    discount_cents: int
    taxable_base_cents: int
    tax_rate_bps: int
    tax_cents: int
    shipping_cents: int
    total_cents: int
    coupon_code: str | None = None

    model_config = {"frozen": True}
