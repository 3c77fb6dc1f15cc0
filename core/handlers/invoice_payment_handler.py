"""
Handler for InvoicePaid events.

On invoice payment, marks the invoiced order as paid.
"""

import logging
from typing import Callable

from core.events import InvoicePaid

logger = logging.getLogger(__name__)


def handle_invoice_paid(order_service) -> Callable:
    """
    Factory that returns an InvoicePaid handler.

    Args:
        order_service: OrderService instance

    Returns:
        Handler callable that records payment on the order
    """

    def handler(event: InvoicePaid):
        order = order_service.mark_paid(event.invoice.order_id)
        logger.info(f"Order {order.order_number} paid via invoice {event.invoice.invoice_number}")

    return handler
