"""Core domain models."""

from core.models.coupon import Coupon, CouponCreate, CouponUpdate, CouponType, CouponUsage
from core.models.pricing import PricingBreakdown
from core.models.cart import Cart, CartItem, CartItemCreate, CartSummary
from core.models.order import (
    Order, OrderItem, OrderStatus, OrderStatusHistory,
    PaymentStatus, ShippingStatus, CheckoutRequest, ORDER_TRANSITIONS,
)
from core.models.invoice import Invoice, InvoiceStatus, InvoiceStats, INVOICE_TRANSITIONS
from core.models.shipping import ShippingMethod, ShippingMethodCreate, CalculationType, RateTier

__all__ = [
    # Coupon
    "Coupon", "CouponCreate", "CouponUpdate", "CouponType", "CouponUsage",
    # Pricing
    "PricingBreakdown",
    # Cart
    "Cart", "CartItem", "CartItemCreate", "CartSummary",
    # Order
    "Order", "OrderItem", "OrderStatus", "OrderStatusHistory",
    "PaymentStatus", "ShippingStatus", "CheckoutRequest", "ORDER_TRANSITIONS",
    # Invoice
    "Invoice", "InvoiceStatus", "InvoiceStats", "INVOICE_TRANSITIONS",
    # Shipping
    "ShippingMethod", "ShippingMethodCreate", "CalculationType", "RateTier",
]
