"""Cart domain models.

Unit prices are captured in cents when a product is added; later catalog
price changes do not touch lines already in the cart.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from core.models.pricing import PricingBreakdown


class CartItemCreate(BaseModel):
    """Add a product to the acting customer's cart."""

    product_id: UUID
    quantity: int = Field(1, ge=1)


class CartItem(BaseModel):
    """One product line in a cart."""

    id: UUID
    cart_id: UUID
    product_id: UUID
    quantity: int
    unit_price_cents: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


class Cart(BaseModel):
    """A customer's cart. Totals are never stored, only derived."""

    id: UUID
    customer_id: UUID
    coupon_code: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class CartSummary(BaseModel):
    """Priced view of a cart for display."""

    cart_id: UUID
    items: list[CartItem]
    item_count: int
    pricing: PricingBreakdown
    # Why an attached coupon was left out of this preview, if it was.
    coupon_rejection: str | None = None
