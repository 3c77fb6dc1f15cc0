"""API test fixtures: gateway-authenticated TestClients over mocked services."""

from unittest.mock import Mock

import pytest
from starlette.testclient import TestClient

from api.app import create_app
from core.services.cart_service import CartService
from core.services.coupon_service import CouponService
from core.services.invoice_service import InvoiceService
from core.services.order_service import OrderService
from core.services.shipping_service import ShippingService


# =============================================================================
# SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def coupon_service():
    return Mock(spec=CouponService)


@pytest.fixture
def cart_service():
    return Mock(spec=CartService)


@pytest.fixture
def order_service():
    return Mock(spec=OrderService)


@pytest.fixture
def invoice_service():
    return Mock(spec=InvoiceService)


@pytest.fixture
def shipping_service():
    return Mock(spec=ShippingService)


# =============================================================================
# SERVICES DICT
# =============================================================================


@pytest.fixture
def services(coupon_service, cart_service, order_service, invoice_service, shipping_service):
    return {
        "coupon": coupon_service,
        "cart": cart_service,
        "order": order_service,
        "invoice": invoice_service,
        "shipping": shipping_service,
    }


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def app(services):
    """FastAPI app with user context, error handlers, and data/actions routes."""
    return create_app(services)


@pytest.fixture
def client(app, test_user_id):
    """Client acting as the customer."""
    return TestClient(app, raise_server_exceptions=False, headers={"X-User-ID": str(test_user_id)})


@pytest.fixture
def merchant_client(app, merchant_id):
    """Client acting as the merchant."""
    return TestClient(app, raise_server_exceptions=False, headers={"X-User-ID": str(merchant_id)})


@pytest.fixture
def unauthed_client(app):
    """Client without a gateway user header."""
    return TestClient(app, raise_server_exceptions=False)
