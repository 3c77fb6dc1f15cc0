"""Application wiring: services, event handlers and the FastAPI app."""

import logging

from fastapi import FastAPI

from api.actions import create_actions_router
from api.data import create_data_router
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware, UserContextMiddleware
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from core.audit import AuditLogger
from core.config import PricingConfig
from core.event_bus import EventBus
from core.events import InvoicePaid, OrderCancelled, OrderPlaced
from core.handlers.invoice_payment_handler import handle_invoice_paid
from core.handlers.order_cancellation_handler import handle_order_cancelled
from core.handlers.order_placed_handler import handle_order_placed
from core.numbering import DocumentNumberGenerator, RandomSequence, ValkeySequence
from core.services.cart_service import CartService
from core.services.coupon_service import CouponService
from core.services.invoice_service import InvoiceService
from core.services.order_service import OrderService
from core.services.shipping_service import ShippingService
from utils.timezone import Clock, now_utc

logger = logging.getLogger(__name__)


def build_services(
    postgres: PostgresClient,
    valkey: ValkeyClient | None = None,
    config: PricingConfig | None = None,
    clock: Clock = now_utc,
) -> dict:
    """
    Construct every service and subscribe the event handlers.

    Without a Valkey client, document numbers fall back to random
    suffixes and rely on the retry loop for uniqueness.
    """
    config = config or PricingConfig()
    audit = AuditLogger(postgres)
    event_bus = EventBus()

    sequence = ValkeySequence(valkey) if valkey is not None else RandomSequence()
    numbers = DocumentNumberGenerator(sequence, max_attempts=config.number_max_attempts)

    coupon = CouponService(postgres, audit, event_bus, clock=clock)
    shipping = ShippingService(postgres, audit, clock=clock)
    cart = CartService(postgres, audit, coupon, config, clock=clock)
    order = OrderService(postgres, audit, coupon, shipping, numbers, event_bus, config, clock=clock)
    invoice = InvoiceService(postgres, audit, numbers, event_bus, config, clock=clock)

    event_bus.subscribe(OrderPlaced, handle_order_placed(invoice))
    event_bus.subscribe(OrderCancelled, handle_order_cancelled(invoice))
    event_bus.subscribe(InvoicePaid, handle_invoice_paid(order))

    return {
        "coupon": coupon,
        "cart": cart,
        "order": order,
        "invoice": invoice,
        "shipping": shipping,
    }


def create_app(services: dict) -> FastAPI:
    """FastAPI app with user context, error handlers, and data/actions routes."""
    app = FastAPI(title="Marketplace Pricing")
    app.add_middleware(UserContextMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(create_data_router(services), prefix="/api")
    app.include_router(create_actions_router(services), prefix="/api")

    return app


def create_app_from_vault() -> FastAPI:
    """Build the production app with connection strings read from Vault."""
    from clients.vault_client import get_database_url, get_pricing_settings, get_valkey_url

    postgres = PostgresClient(get_database_url())
    valkey = ValkeyClient(get_valkey_url())
    config = PricingConfig.model_validate(get_pricing_settings())
    logger.info(f"Marketplace services initialised (tax {config.tax_rate_bps} bps, {config.currency})")

    return create_app(build_services(postgres, valkey, config))
