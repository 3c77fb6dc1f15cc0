"""
Handler for OrderCancelled events.

On order cancellation, cancels the order's invoice if it is still open.
Paid invoices are left alone; the order itself records the refund.
"""

import logging
from typing import Callable

from core.events import OrderCancelled
from core.models import InvoiceStatus

logger = logging.getLogger(__name__)


def handle_order_cancelled(invoice_service) -> Callable:
    """
    Factory that returns an OrderCancelled handler.

    Args:
        invoice_service: InvoiceService instance

    Returns:
        Handler callable that cancels the open invoice for the order
    """

    def handler(event: OrderCancelled):
        order = event.order
        invoice = invoice_service.cancel_for_order(order.id)

        if invoice is not None and invoice.status == InvoiceStatus.CANCELLED:
            logger.info(f"Invoice {invoice.invoice_number} cancelled with order {order.order_number}")

    return handler
