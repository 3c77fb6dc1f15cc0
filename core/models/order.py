"""Order domain models.

An order is a frozen snapshot of a priced cart. Amounts are cents and never
change after creation; only statuses and their timestamps move.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class OrderStatus(str, Enum):
    """Order lifecycle status."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class ShippingStatus(str, Enum):
    PENDING = "pending"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"


# Allowed moves; anything not listed is rejected.
ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}


class CheckoutRequest(BaseModel):
    """
    Data required to turn the acting customer's cart into an order.

    Shipping comes either from a merchant shipping method (quoted by the
    shipping service) or as an explicit cost from an external carrier.
    """

    merchant_id: UUID
    coupon_code: str | None = Field(None, max_length=50)
    shipping_method: str | None = Field(None, max_length=50)
    shipping_cost_cents: int | None = Field(None, ge=0)
    shipping_weight: int = Field(0, ge=0)
    shipping_distance: int = Field(0, ge=0)
    shipping_address: dict[str, Any] | None = None
    payment_method: str | None = Field(None, max_length=50)
    notes: str | None = Field(None, max_length=2000)

    @model_validator(mode="after")
    def one_shipping_source(self) -> "CheckoutRequest":
        """A shipping method and an explicit cost are mutually exclusive."""
        if self.shipping_method is not None and self.shipping_cost_cents is not None:
            raise ValueError("Provide shipping_method or shipping_cost_cents, not both")
        return self


class OrderItem(BaseModel):
    """A line of a placed order."""

    id: UUID
    order_id: UUID
    product_id: UUID
    quantity: int
    unit_price_cents: int
    total_price_cents: int

    model_config = {"from_attributes": True}


class Order(BaseModel):
    """Full order entity as stored."""

    id: UUID
    customer_id: UUID
    merchant_id: UUID
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    shipping_status: ShippingStatus
    subtotal_cents: int
    discount_cents: int
    tax_rate_bps: int
    tax_cents: int
    shipping_cents: int
    total_cents: int
    coupon_code: str | None = None
    payment_method: str | None = None
    shipping_method: str | None = None
    shipping_address: dict[str, Any] | None = None
    tracking_number: str | None = None
    customer_notes: str | None = None
    confirmed_at: datetime | None = None
    processing_at: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_cancellable(self) -> bool:
        return OrderStatus.CANCELLED in ORDER_TRANSITIONS[self.status]


class OrderStatusHistory(BaseModel):
    """One recorded status change."""

    id: UUID
    order_id: UUID
    status: OrderStatus
    notes: str | None
    changed_by: UUID | None
    changed_at: datetime

    model_config = {"from_attributes": True}
