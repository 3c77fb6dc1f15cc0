"""
Domain events for the marketplace.

Immutable event objects describing things that already happened. Services
publish them after their writes commit; handlers react (generate invoices,
sync payment status) without the publisher knowing who listens.

Event Categories:
- CouponEvent: Coupon lifecycle (create, redeem)
- OrderEvent: Order lifecycle (placed, status change, cancel)
- InvoiceEvent: Invoice lifecycle (issued, paid)

Events carry the full domain object so handlers don't need to re-fetch state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class MarketplaceEvent:
    """Base class for all marketplace domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# COUPON EVENTS
# =============================================================================


@dataclass(frozen=True)
class CouponEvent(MarketplaceEvent):
    """Events related to coupon lifecycle."""
    pass


@dataclass(frozen=True)
class CouponCreated(CouponEvent):
    """A merchant created a coupon."""
    coupon: Any = None  # Coupon

    @classmethod
    def create(cls, coupon: Any) -> "CouponCreated":
        return cls(coupon=coupon)


@dataclass(frozen=True)
class CouponRedeemed(CouponEvent):
    """A coupon was consumed by a placed order."""
    coupon: Any = None
    order: Any = None
    discount_cents: int = 0

    @classmethod
    def create(cls, coupon: Any, order: Any, discount_cents: int) -> "CouponRedeemed":
        return cls(coupon=coupon, order=order, discount_cents=discount_cents)


# =============================================================================
# ORDER EVENTS
# =============================================================================


@dataclass(frozen=True)
class OrderEvent(MarketplaceEvent):
    """Events related to order lifecycle."""
    pass


@dataclass(frozen=True)
class OrderPlaced(OrderEvent):
    """Checkout committed a new order in PENDING status."""
    order: Any = None

    @classmethod
    def create(cls, order: Any) -> "OrderPlaced":
        return cls(order=order)


@dataclass(frozen=True)
class OrderStatusChanged(OrderEvent):
    """Order moved between statuses (other than cancellation)."""
    order: Any = None
    previous_status: str = ""

    @classmethod
    def create(cls, order: Any, previous_status: str) -> "OrderStatusChanged":
        return cls(order=order, previous_status=previous_status)


@dataclass(frozen=True)
class OrderCancelled(OrderEvent):
    """Order was cancelled."""
    order: Any = None
    reason: str = ""

    @classmethod
    def create(cls, order: Any, reason: str = "") -> "OrderCancelled":
        return cls(order=order, reason=reason)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(MarketplaceEvent):
    """Events related to invoice lifecycle."""
    pass


@dataclass(frozen=True)
class InvoiceIssued(InvoiceEvent):
    """An invoice was generated for an order."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceIssued":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Invoice was fully paid."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoicePaid":
        return cls(invoice=invoice)
