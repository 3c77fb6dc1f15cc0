"""
Shipping service for merchant shipping methods and cost quotes.

The pricing pipeline never computes shipping itself; it is handed the cost
this service quotes (or an explicit carrier cost at checkout).
"""

import logging
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from core.audit import AuditLogger, AuditAction
from core.models import CalculationType, ShippingMethod, ShippingMethodCreate
from utils.timezone import Clock, now_utc
from utils.user_context import get_current_user_id

logger = logging.getLogger(__name__)


def calculate_cost(method: ShippingMethod, weight: int = 0, distance: int = 0) -> int:
    """
    Quote a shipping cost in cents.

    Flat methods charge the base cost. Tiered methods add the surcharge of
    every tier whose threshold the shipment reaches.

    Args:
        method: Shipping method
        weight: Shipment weight in grams
        distance: Shipping distance in kilometres

    Raises:
        ValueError: Negative weight or distance
    """
    if weight < 0 or distance < 0:
        raise ValueError("weight and distance must be non-negative")

    if method.calculation_type == CalculationType.FLAT:
        return method.base_cost_cents

    measure = weight if method.calculation_type == CalculationType.WEIGHT_BASED else distance
    surcharge = sum(tier.cost_cents for tier in method.rates if measure >= tier.threshold)
    return method.base_cost_cents + surcharge


class ShippingService:
    """Service for shipping method operations."""

    def __init__(self, postgres: PostgresClient, audit: AuditLogger, clock: Clock = now_utc):
        self.postgres = postgres
        self.audit = audit
        self.clock = clock

    def create_method(self, data: ShippingMethodCreate) -> ShippingMethod:
        """
        Create a shipping method for the acting merchant.

        Raises:
            ValueError: If the merchant already has a method with this code
        """
        merchant_id = get_current_user_id()

        if self.get_by_code(merchant_id, data.code) is not None:
            raise ValueError(f"Shipping method {data.code} already exists")

        now = self.clock()

        row = self.postgres.execute_returning(
            """
            INSERT INTO shipping_methods (
                id, merchant_id, name, code, description,
                base_cost_cents, calculation_type, rates,
                estimated_days, is_active, created_at, updated_at
            ) VALUES (
                %s, %s, %s, %s, %s,
                %s, %s, %s,
                %s, %s, %s, %s
            )
            RETURNING *
            """,
            (
                uuid4(), merchant_id, data.name, data.code, data.description,
                data.base_cost_cents, data.calculation_type.value,
                Json([tier.model_dump() for tier in data.rates]),
                data.estimated_days, data.is_active, now, now
            )
        )[0]

        method = ShippingMethod.model_validate(row)

        self.audit.log_change(
            entity_type="shipping_method",
            entity_id=method.id,
            action=AuditAction.CREATE,
            changes={"created": data.model_dump(mode="json", exclude_none=True)}
        )

        return method

    def get_by_code(self, merchant_id: UUID, code: str) -> ShippingMethod | None:
        row = self.postgres.execute_single(
            "SELECT * FROM shipping_methods WHERE merchant_id = %s AND code = %s",
            (merchant_id, code.strip().lower())
        )

        if row is None:
            return None

        return ShippingMethod.model_validate(row)

    def list_for_merchant(self, merchant_id: UUID, active_only: bool = True) -> list[ShippingMethod]:
        """List a merchant's shipping methods, cheapest first."""
        active_clause = "AND is_active = true" if active_only else ""

        rows = self.postgres.execute(
            f"""
            SELECT * FROM shipping_methods
            WHERE merchant_id = %s {active_clause}
            ORDER BY base_cost_cents ASC, name ASC
            """,
            (merchant_id,)
        )

        return [ShippingMethod.model_validate(row) for row in rows]

    def quote(self, merchant_id: UUID, code: str, weight: int = 0, distance: int = 0) -> int:
        """
        Quote a merchant's shipping method by code.

        Raises:
            ValueError: Unknown or inactive method
        """
        method = self.get_by_code(merchant_id, code)
        if method is None or not method.is_active:
            raise ValueError(f"Shipping method {code} not found")

        return calculate_cost(method, weight, distance)
