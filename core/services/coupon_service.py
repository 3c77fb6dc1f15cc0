"""
Coupon service for merchant coupon management and redemption.

Merchants create and retire coupons. Customers never touch coupon rows
directly: the cart validates a code through validate(), and checkout
consumes a redemption through redeem() inside its transaction.
"""

import logging
from uuid import UUID, uuid4

from psycopg2.errors import UniqueViolation

from clients.postgres_client import PostgresClient, Transaction
from core import coupon_engine
from core.audit import AuditLogger, AuditAction, compute_changes
from core.event_bus import EventBus
from core.events import CouponCreated
from core.exceptions import CouponNotApplicable, CouponNotFound
from core.models import Coupon, CouponCreate, CouponUpdate, CouponType, CouponUsage
from core.models.coupon import MAX_PERCENTAGE_BPS, normalize_code
from utils.timezone import Clock, now_utc
from utils.user_context import get_current_user_id

logger = logging.getLogger(__name__)

_UPDATABLE_COLUMNS = {
    "description", "value", "min_purchase_cents", "max_discount_cents",
    "usage_limit", "per_customer_limit", "start_date", "end_date", "is_active",
}


class CouponService:
    """Service for coupon operations."""

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        event_bus: EventBus | None = None,
        clock: Clock = now_utc,
    ):
        self.postgres = postgres
        self.audit = audit
        self.event_bus = event_bus
        self.clock = clock

    def create(self, data: CouponCreate) -> Coupon:
        """
        Create a coupon owned by the acting merchant.

        Args:
            data: Coupon creation data (code already normalized)

        Returns:
            Created coupon with used_count 0

        Raises:
            ValueError: If the code is already taken
        """
        merchant_id = get_current_user_id()

        if self.get_by_code(data.code) is not None:
            raise ValueError(f"Coupon code {data.code} already exists")

        coupon_id = uuid4()
        now = self.clock()

        try:
            row = self.postgres.execute_returning(
                """
                INSERT INTO coupons (
                    id, merchant_id, code, description, type, value,
                    min_purchase_cents, max_discount_cents,
                    usage_limit, used_count, per_customer_limit,
                    start_date, end_date, is_active,
                    created_at, updated_at
                ) VALUES (
                    %s, %s, %s, %s, %s, %s,
                    %s, %s,
                    %s, %s, %s,
                    %s, %s, %s,
                    %s, %s
                )
                RETURNING *
                """,
                (
                    coupon_id, merchant_id, data.code, data.description, data.type.value, data.value,
                    data.min_purchase_cents, data.max_discount_cents,
                    data.usage_limit, 0, data.per_customer_limit,
                    data.start_date, data.end_date, data.is_active,
                    now, now
                )
            )[0]
        except UniqueViolation as e:
            raise ValueError(f"Coupon code {data.code} already exists") from e

        coupon = Coupon.model_validate(row)

        self.audit.log_change(
            entity_type="coupon",
            entity_id=coupon.id,
            action=AuditAction.CREATE,
            changes={"created": data.model_dump(mode="json", exclude_none=True)}
        )

        if self.event_bus is not None:
            self.event_bus.publish(CouponCreated.create(coupon=coupon))

        return coupon

    def get_by_id(self, coupon_id: UUID) -> Coupon | None:
        """Get coupon by ID, None if missing."""
        row = self.postgres.execute_single(
            "SELECT * FROM coupons WHERE id = %s",
            (coupon_id,)
        )

        if row is None:
            return None

        return Coupon.model_validate(row)

    def get_by_code(self, code: str, db: PostgresClient | Transaction | None = None) -> Coupon | None:
        """
        Get coupon by code (case-insensitive).

        Args:
            code: Coupon code as typed by the customer
            db: Open transaction to read through, defaults to the pool
        """
        db = db or self.postgres
        row = db.execute_single(
            "SELECT * FROM coupons WHERE code = %s",
            (normalize_code(code),)
        )

        if row is None:
            return None

        return Coupon.model_validate(row)

    def update(self, coupon_id: UUID, data: CouponUpdate) -> Coupon:
        """
        Update a coupon's terms.

        Raises:
            ValueError: If coupon not found, not owned by the acting merchant,
                or the merged terms are inconsistent
        """
        current = self.get_by_id(coupon_id)
        if current is None or current.merchant_id != get_current_user_id():
            raise ValueError(f"Coupon {coupon_id} not found")

        updates = {
            k: v for k, v in data.model_dump(exclude_unset=True).items()
            if k in _UPDATABLE_COLUMNS
        }
        if not updates:
            return current

        start = updates.get("start_date", current.start_date)
        end = updates.get("end_date", current.end_date)
        if end is not None and end <= start:
            raise ValueError("end_date must be after start_date")

        value = updates.get("value", current.value)
        if current.type == CouponType.PERCENTAGE and value > MAX_PERCENTAGE_BPS:
            raise ValueError("percentage value cannot exceed 10000 bps (100%)")

        set_parts = []
        params = []
        for field, field_value in updates.items():
            set_parts.append(f"{field} = %s")
            params.append(field_value)

        set_parts.append("updated_at = %s")
        params.append(self.clock())
        params.append(coupon_id)

        row = self.postgres.execute_returning(
            f"""
            UPDATE coupons
            SET {', '.join(set_parts)}
            WHERE id = %s
            RETURNING *
            """,
            tuple(params)
        )[0]

        updated = Coupon.model_validate(row)

        changes = compute_changes(
            current.model_dump(mode="json"),
            updated.model_dump(mode="json")
        )
        if changes:
            self.audit.log_change(
                entity_type="coupon",
                entity_id=coupon_id,
                action=AuditAction.UPDATE,
                changes=changes
            )

        return updated

    def deactivate(self, coupon_id: UUID) -> Coupon:
        """Retire a coupon. It stays on record; it just stops validating."""
        return self.update(coupon_id, CouponUpdate(is_active=False))

    def list_for_merchant(
        self,
        merchant_id: UUID | None = None,
        active_only: bool = False,
        limit: int = 50
    ) -> list[Coupon]:
        """
        List a merchant's coupons, newest first.

        Args:
            merchant_id: Defaults to the acting merchant
            active_only: Only coupons whose flag is on
            limit: Maximum results
        """
        merchant_id = merchant_id or get_current_user_id()
        active_clause = "AND is_active = true" if active_only else ""

        rows = self.postgres.execute(
            f"""
            SELECT * FROM coupons
            WHERE merchant_id = %s {active_clause}
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (merchant_id, limit)
        )

        return [Coupon.model_validate(row) for row in rows]

    def customer_redemptions(
        self,
        coupon_id: UUID,
        customer_id: UUID,
        db: PostgresClient | Transaction | None = None
    ) -> int:
        """How many times a customer has redeemed a coupon."""
        db = db or self.postgres
        row = db.execute_single(
            "SELECT COUNT(*) AS redemptions FROM coupon_usages WHERE coupon_id = %s AND customer_id = %s",
            (coupon_id, customer_id)
        )
        return row["redemptions"] if row else 0

    def validate(
        self,
        code: str,
        customer_id: UUID,
        subtotal_cents: int,
        merchant_id: UUID | None = None,
        db: PostgresClient | Transaction | None = None
    ) -> tuple[Coupon, int]:
        """
        Resolve a code and run every applicability rule.

        Args:
            code: Coupon code
            customer_id: Customer who wants to use it
            subtotal_cents: Subtotal the discount would apply to
            merchant_id: Merchant being purchased from, if known
            db: Open transaction to read through, defaults to the pool

        Returns:
            (coupon snapshot, discount in cents)

        Raises:
            CouponNotFound, CouponNotApplicable, CouponPerCustomerLimitExceeded,
            CouponBelowMinimumPurchase
        """
        coupon = self.get_by_code(code, db=db)
        if coupon is None:
            raise CouponNotFound(normalize_code(code))

        redemptions = 0
        if coupon.per_customer_limit is not None:
            redemptions = self.customer_redemptions(coupon.id, customer_id, db=db)

        discount = coupon_engine.check_applicable(
            coupon,
            self.clock(),
            subtotal_cents,
            customer_redemptions=redemptions,
            merchant_id=merchant_id,
        )
        return coupon, discount

    def redeem(
        self,
        tx: Transaction,
        coupon: Coupon,
        order_id: UUID,
        customer_id: UUID,
        discount_cents: int
    ) -> CouponUsage:
        """
        Consume one redemption inside the checkout transaction.

        The increment is a single conditional UPDATE, so two checkouts racing
        for the last redemption cannot both win: the loser sees zero affected
        rows and its whole checkout rolls back.

        Raises:
            CouponNotApplicable: Coupon became invalid or exhausted since validate()
        """
        now = self.clock()

        affected = tx.execute_rowcount(
            """
            UPDATE coupons
            SET used_count = used_count + 1, updated_at = %s
            WHERE id = %s
              AND is_active = true
              AND start_date <= %s
              AND (end_date IS NULL OR end_date >= %s)
              AND (usage_limit IS NULL OR used_count < usage_limit)
            """,
            (now, coupon.id, now, now)
        )

        if affected == 0:
            logger.info(f"Coupon {coupon.code} lost redemption race for order {order_id}")
            raise CouponNotApplicable(
                coupon.code, f"Coupon '{coupon.code}' is no longer available"
            )

        row = tx.execute_returning(
            """
            INSERT INTO coupon_usages (id, coupon_id, order_id, customer_id, discount_cents, created_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (uuid4(), coupon.id, order_id, customer_id, discount_cents, now)
        )[0]

        return CouponUsage.model_validate(row)
