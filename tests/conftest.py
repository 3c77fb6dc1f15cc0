"""Shared test fixtures for the marketplace pricing test suite."""

import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock, Mock
from uuid import UUID, uuid4

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._shared_client = None
vault_module._cache.clear()

from clients.postgres_client import PostgresClient, Transaction
from core.audit import AuditLogger
from core.event_bus import EventBus
from core.models import (
    Coupon, CouponType, Order, OrderStatus, PaymentStatus, ShippingStatus,
    Invoice, InvoiceStatus,
)
from utils.timezone import fixed_clock
from utils.user_context import user_context, clear_current_user_id


# =============================================================================
# TEST USER CONSTANTS
# =============================================================================

# Customer placing orders - use for cart and checkout tests
TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")

# Merchant owning coupons, shipping methods and invoices
TEST_MERCHANT_ID = UUID("00000000-0000-0000-0000-000000000002")

# A fixed "now" for every pinned-clock test
NOW = datetime(2025, 3, 14, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# USER CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_user_context():
    """Ensure clean user context before and after each test."""
    clear_current_user_id()
    yield
    clear_current_user_id()


@pytest.fixture
def test_user_id() -> UUID:
    """The customer's ID."""
    return TEST_USER_ID


@pytest.fixture
def merchant_id() -> UUID:
    """The merchant's ID."""
    return TEST_MERCHANT_ID


@pytest.fixture
def as_test_user(test_user_id):
    """Act as the customer."""
    with user_context(test_user_id):
        yield test_user_id


@pytest.fixture
def as_merchant(merchant_id):
    """Act as the merchant."""
    with user_context(merchant_id):
        yield merchant_id


# =============================================================================
# CLOCK
# =============================================================================


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock(now):
    return fixed_clock(now)


# =============================================================================
# INFRASTRUCTURE DOUBLES: no live Postgres, Valkey or Vault needed
# =============================================================================


@pytest.fixture
def tx():
    """Open-transaction double. savepoint() is a real context manager."""
    return MagicMock(spec=Transaction)


@pytest.fixture
def postgres(tx):
    """PostgresClient double whose transaction() yields the `tx` fixture."""
    db = MagicMock(spec=PostgresClient)
    db.transaction.return_value.__enter__.return_value = tx
    db.transaction.return_value.__exit__.return_value = False
    return db


@pytest.fixture
def audit():
    return Mock(spec=AuditLogger)


@pytest.fixture
def event_bus():
    return Mock(spec=EventBus)


# =============================================================================
# ENTITY BUILDERS
# =============================================================================


def coupon_row(**overrides) -> dict:
    """A coupons row as the database would return it."""
    row = {
        "id": uuid4(),
        "merchant_id": TEST_MERCHANT_ID,
        "code": "SAVE10",
        "description": None,
        "type": CouponType.PERCENTAGE.value,
        "value": 1000,
        "min_purchase_cents": None,
        "max_discount_cents": None,
        "usage_limit": None,
        "used_count": 0,
        "per_customer_limit": None,
        "start_date": NOW - timedelta(days=1),
        "end_date": NOW + timedelta(days=30),
        "is_active": True,
        "created_at": NOW - timedelta(days=2),
        "updated_at": NOW - timedelta(days=2),
    }
    row.update(overrides)
    return row


def order_row(**overrides) -> dict:
    """An orders row for a 100.00 purchase with 10% tax and 5.00 shipping."""
    row = {
        "id": uuid4(),
        "customer_id": TEST_USER_ID,
        "merchant_id": TEST_MERCHANT_ID,
        "order_number": "ORD-20250314-000001",
        "status": OrderStatus.PENDING.value,
        "payment_status": PaymentStatus.PENDING.value,
        "shipping_status": ShippingStatus.PENDING.value,
        "subtotal_cents": 10000,
        "discount_cents": 0,
        "tax_rate_bps": 1000,
        "tax_cents": 1000,
        "shipping_cents": 500,
        "total_cents": 11500,
        "coupon_code": None,
        "payment_method": None,
        "shipping_method": None,
        "shipping_address": None,
        "tracking_number": None,
        "customer_notes": None,
        "confirmed_at": None,
        "processing_at": None,
        "shipped_at": None,
        "delivered_at": None,
        "cancelled_at": None,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


def invoice_row(**overrides) -> dict:
    row = {
        "id": uuid4(),
        "order_id": uuid4(),
        "merchant_id": TEST_MERCHANT_ID,
        "invoice_number": "INV-20250314-000001",
        "status": InvoiceStatus.DRAFT.value,
        "subtotal_cents": 10000,
        "discount_cents": 0,
        "tax_cents": 1000,
        "shipping_cents": 500,
        "total_cents": 11500,
        "items": [],
        "issued_at": NOW,
        "due_at": NOW + timedelta(days=7),
        "paid_at": None,
        "notes": None,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


@pytest.fixture
def make_coupon():
    """Build a Coupon snapshot: make_coupon(type=CouponType.FIXED, value=500)."""
    def _make(**overrides) -> Coupon:
        if isinstance(overrides.get("type"), CouponType):
            overrides["type"] = overrides["type"].value
        return Coupon.model_validate(coupon_row(**overrides))
    return _make


@pytest.fixture
def make_order():
    def _make(**overrides) -> Order:
        return Order.model_validate(order_row(**overrides))
    return _make


@pytest.fixture
def make_invoice():
    def _make(**overrides) -> Invoice:
        return Invoice.model_validate(invoice_row(**overrides))
    return _make
