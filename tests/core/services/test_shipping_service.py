"""Tests for ShippingService and shipping cost calculation."""

from uuid import uuid4

import pytest
from psycopg2.extras import Json

from core.models import CalculationType, ShippingMethod, ShippingMethodCreate, RateTier
from core.services.shipping_service import calculate_cost
from tests.conftest import NOW, TEST_MERCHANT_ID


def method_row(**overrides) -> dict:
    row = {
        "id": uuid4(),
        "merchant_id": TEST_MERCHANT_ID,
        "name": "Standard",
        "code": "standard",
        "description": None,
        "base_cost_cents": 500,
        "calculation_type": CalculationType.FLAT.value,
        "rates": None,
        "estimated_days": 3,
        "is_active": True,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


def tiered(calculation_type: CalculationType) -> ShippingMethod:
    return ShippingMethod.model_validate(method_row(
        calculation_type=calculation_type.value,
        rates=[{"threshold": 1000, "cost_cents": 200}, {"threshold": 5000, "cost_cents": 800}],
    ))


@pytest.fixture
def shipping_service(postgres, audit, clock):
    from core.services.shipping_service import ShippingService
    return ShippingService(postgres, audit, clock=clock)


class TestCalculateCost:
    """Flat and tiered quotes."""

    def test_flat_is_base_cost(self):
        method = ShippingMethod.model_validate(method_row())
        assert calculate_cost(method, weight=99999) == 500

    def test_weight_below_first_tier(self):
        assert calculate_cost(tiered(CalculationType.WEIGHT_BASED), weight=999) == 500

    def test_weight_tiers_accumulate(self):
        method = tiered(CalculationType.WEIGHT_BASED)
        assert calculate_cost(method, weight=1000) == 700
        assert calculate_cost(method, weight=6000) == 1500

    def test_distance_based_ignores_weight(self):
        method = tiered(CalculationType.DISTANCE_BASED)
        assert calculate_cost(method, weight=9000, distance=10) == 500
        assert calculate_cost(method, distance=1500) == 700

    def test_negative_measure_rejected(self):
        with pytest.raises(ValueError):
            calculate_cost(tiered(CalculationType.WEIGHT_BASED), weight=-1)


class TestCreateMethod:

    def test_stores_rates_as_json(self, shipping_service, postgres, audit, as_merchant):
        postgres.execute_single.return_value = None
        postgres.execute_returning.return_value = [method_row(code="heavy")]

        shipping_service.create_method(ShippingMethodCreate(
            name="Heavy", code="Heavy", base_cost_cents=500,
            calculation_type=CalculationType.WEIGHT_BASED,
            rates=[RateTier(threshold=1000, cost_cents=200)],
            estimated_days=5,
        ))

        params = postgres.execute_returning.call_args.args[1]
        assert params[1] == as_merchant
        assert params[3] == "heavy"
        assert isinstance(params[7], Json)
        assert params[7].adapted == [{"threshold": 1000, "cost_cents": 200}]
        assert audit.log_change.call_args.kwargs["entity_type"] == "shipping_method"

    def test_duplicate_code_per_merchant_rejected(self, shipping_service, postgres, as_merchant):
        postgres.execute_single.return_value = method_row()

        with pytest.raises(ValueError, match="already exists"):
            shipping_service.create_method(ShippingMethodCreate(
                name="Standard", code="standard", base_cost_cents=500, estimated_days=3,
            ))


class TestQuote:

    def test_quotes_by_code(self, shipping_service, postgres):
        postgres.execute_single.return_value = method_row(
            calculation_type=CalculationType.WEIGHT_BASED.value,
            rates=[{"threshold": 1000, "cost_cents": 250}],
        )

        assert shipping_service.quote(TEST_MERCHANT_ID, "STANDARD", weight=2000) == 750
        assert postgres.execute_single.call_args.args[1] == (TEST_MERCHANT_ID, "standard")

    def test_unknown_method(self, shipping_service, postgres):
        postgres.execute_single.return_value = None

        with pytest.raises(ValueError, match="not found"):
            shipping_service.quote(TEST_MERCHANT_ID, "teleport")

    def test_inactive_method_is_not_quoted(self, shipping_service, postgres):
        postgres.execute_single.return_value = method_row(is_active=False)

        with pytest.raises(ValueError, match="not found"):
            shipping_service.quote(TEST_MERCHANT_ID, "standard")

    def test_list_active_only_by_default(self, shipping_service, postgres):
        postgres.execute.return_value = [method_row()]

        methods = shipping_service.list_for_merchant(TEST_MERCHANT_ID)

        assert [m.code for m in methods] == ["standard"]
        assert "is_active = true" in postgres.execute.call_args.args[0]
