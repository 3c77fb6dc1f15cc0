"""Invoice domain models.

All amounts are stored in cents (integer) to avoid floating point issues.
An invoice mirrors the order it was generated from:
total_cents == subtotal_cents - discount_cents + tax_cents + shipping_cents.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


INVOICE_TRANSITIONS: dict[InvoiceStatus, set[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: {InvoiceStatus.SENT, InvoiceStatus.PAID, InvoiceStatus.CANCELLED},
    InvoiceStatus.SENT: {InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED},
    InvoiceStatus.OVERDUE: {InvoiceStatus.PAID, InvoiceStatus.CANCELLED},
    InvoiceStatus.PAID: set(),
    InvoiceStatus.CANCELLED: set(),
}


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    order_id: UUID
    merchant_id: UUID
    invoice_number: str
    status: InvoiceStatus
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    shipping_cents: int
    total_cents: int
    items: list[dict[str, Any]] = []
    issued_at: datetime
    due_at: datetime | None
    paid_at: datetime | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_paid(self) -> bool:
        """Whether invoice is fully paid."""
        return self.status == InvoiceStatus.PAID

    @property
    def is_open(self) -> bool:
        """Still awaiting payment."""
        return self.status in (InvoiceStatus.DRAFT, InvoiceStatus.SENT, InvoiceStatus.OVERDUE)


class InvoiceStats(BaseModel):
    """Per-merchant invoice totals."""

    total_invoices: int
    paid_invoices: int
    pending_invoices: int
    overdue_invoices: int
    total_revenue_cents: int
    pending_amount_cents: int
