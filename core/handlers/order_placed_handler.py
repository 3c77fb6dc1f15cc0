"""
Handler for OrderPlaced events.

Every placed order gets its invoice straight away, in DRAFT status.
"""

import logging
from typing import Callable

from core.events import OrderPlaced

logger = logging.getLogger(__name__)


def handle_order_placed(invoice_service) -> Callable:
    """
    Factory that returns an OrderPlaced handler.

    Args:
        invoice_service: InvoiceService instance

    Returns:
        Handler callable that generates the order's invoice
    """

    def handler(event: OrderPlaced):
        invoice = invoice_service.create_for_order(event.order)
        logger.debug(f"Order {event.order.order_number} billed as {invoice.invoice_number}")

    return handler
