"""
Order service for checkout and the order lifecycle.

Checkout freezes the acting customer's cart into an order inside one
database transaction: the cart row is locked, the cart is priced by the
same pipeline as the cart preview, the order is stored under a fresh
number, the coupon redemption is consumed and the cart is emptied. Any
failure rolls all of it back.

After checkout only statuses move; amounts never change.
"""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from psycopg2.errors import UniqueViolation
from psycopg2.extras import Json

from clients.postgres_client import PostgresClient, Transaction
from core.audit import AuditLogger, AuditAction
from core.config import PricingConfig
from core.event_bus import EventBus
from core.events import CouponRedeemed, OrderCancelled, OrderPlaced, OrderStatusChanged
from core.exceptions import DuplicateNumberCollision, EmptyCartError, InvalidStatusTransition
from core.models import (
    Cart, CartItem, CheckoutRequest, Order, OrderItem, OrderStatus,
    OrderStatusHistory, PaymentStatus, PricingBreakdown, ShippingStatus, ORDER_TRANSITIONS,
)
from core.numbering import ORDER_PREFIX, DocumentNumberGenerator
from core.pricing import price_items
from core.services.coupon_service import CouponService
from core.services.shipping_service import ShippingService
from utils.timezone import Clock, now_utc
from utils.user_context import get_current_user_id

logger = logging.getLogger(__name__)

_STATUS_TIMESTAMPS = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.PROCESSING: "processing_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


class OrderService:
    """Service for order operations."""

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        coupons: CouponService,
        shipping: ShippingService,
        numbers: DocumentNumberGenerator,
        event_bus: EventBus | None = None,
        config: PricingConfig | None = None,
        clock: Clock = now_utc,
    ):
        self.postgres = postgres
        self.audit = audit
        self.coupons = coupons
        self.shipping = shipping
        self.numbers = numbers
        self.event_bus = event_bus
        self.config = config or PricingConfig()
        self.clock = clock

    # -------------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------------

    def place_order(self, data: CheckoutRequest) -> Order:
        """
        Turn the acting customer's cart into an order.

        Args:
            data: Merchant, shipping choice, optional coupon override

        Returns:
            Created order in PENDING status

        Raises:
            EmptyCartError: Nothing to check out
            CouponError: Attached coupon fails validation, or the last
                redemption was taken by a concurrent checkout
            ValueError: Unknown shipping method
            PricingInvariantViolation: Pricing arithmetic inconsistency
            DuplicateNumberCollision: No free order number after retries
        """
        customer_id = get_current_user_id()
        now = self.clock()

        if data.shipping_method is not None:
            shipping_cents = self.shipping.quote(
                data.merchant_id, data.shipping_method,
                weight=data.shipping_weight, distance=data.shipping_distance,
            )
        else:
            shipping_cents = data.shipping_cost_cents or 0

        with self.postgres.transaction() as tx:
            cart_row = tx.execute_single(
                "SELECT * FROM carts WHERE customer_id = %s FOR UPDATE",
                (customer_id,)
            )
            if cart_row is None:
                raise EmptyCartError("Cart is empty")
            cart = Cart.model_validate(cart_row)

            items = [
                CartItem.model_validate(row)
                for row in tx.execute(
                    "SELECT * FROM cart_items WHERE cart_id = %s ORDER BY created_at ASC",
                    (cart.id,)
                )
            ]
            if not items:
                raise EmptyCartError("Cart is empty")

            coupon = None
            code = data.coupon_code or cart.coupon_code
            if code:
                subtotal = sum(item.line_total_cents for item in items)
                coupon, _ = self.coupons.validate(
                    code, customer_id, subtotal, merchant_id=data.merchant_id, db=tx
                )

            pricing = price_items(
                items,
                coupon,
                now,
                tax_rate_bps=self.config.tax_rate_bps,
                shipping_cents=shipping_cents,
            )

            order = self.numbers.assign(
                ORDER_PREFIX,
                now,
                lambda number: self._insert_order(tx, number, customer_id, data, pricing, now),
            )

            order_items = [self._insert_item(tx, order.id, item) for item in items]

            if coupon is not None and pricing.coupon_code is not None:
                self.coupons.redeem(tx, coupon, order.id, customer_id, pricing.discount_cents)

            self._record_status(tx, order.id, OrderStatus.PENDING, "Order placed", now)

            tx.execute("DELETE FROM cart_items WHERE cart_id = %s", (cart.id,))
            tx.execute(
                "UPDATE carts SET coupon_code = NULL, updated_at = %s WHERE id = %s",
                (now, cart.id)
            )

            self.audit.log_change(
                entity_type="order",
                entity_id=order.id,
                action=AuditAction.CREATE,
                changes={
                    "created": {
                        "order_number": order.order_number,
                        "items": [item.model_dump(mode="json") for item in order_items],
                        **pricing.model_dump(mode="json"),
                    }
                },
                db=tx,
            )

        logger.info(f"Order {order.order_number} placed: total {order.total_cents} cents")

        if self.event_bus is not None:
            self.event_bus.publish(OrderPlaced.create(order=order))
            if coupon is not None and pricing.coupon_code is not None:
                self.event_bus.publish(CouponRedeemed.create(
                    coupon=coupon, order=order, discount_cents=pricing.discount_cents
                ))

        return order

    def _insert_order(
        self,
        tx: Transaction,
        order_number: str,
        customer_id: UUID,
        data: CheckoutRequest,
        pricing: PricingBreakdown,
        now: datetime,
    ) -> Order:
        """Insert the order row; a taken number surfaces as DuplicateNumberCollision."""
        try:
            with tx.savepoint():
                row = tx.execute_returning(
                    """
                    INSERT INTO orders (
                        id, customer_id, merchant_id, order_number,
                        status, payment_status, shipping_status,
                        subtotal_cents, discount_cents, tax_rate_bps, tax_cents,
                        shipping_cents, total_cents, coupon_code,
                        payment_method, shipping_method, shipping_address, customer_notes,
                        created_at, updated_at
                    ) VALUES (
                        %s, %s, %s, %s,
                        %s, %s, %s,
                        %s, %s, %s, %s,
                        %s, %s, %s,
                        %s, %s, %s, %s,
                        %s, %s
                    )
                    RETURNING *
                    """,
                    (
                        uuid4(), customer_id, data.merchant_id, order_number,
                        OrderStatus.PENDING.value, PaymentStatus.PENDING.value, ShippingStatus.PENDING.value,
                        pricing.subtotal_cents, pricing.discount_cents, pricing.tax_rate_bps, pricing.tax_cents,
                        pricing.shipping_cents, pricing.total_cents, pricing.coupon_code,
                        data.payment_method, data.shipping_method,
                        Json(data.shipping_address) if data.shipping_address is not None else None,
                        data.notes,
                        now, now
                    )
                )[0]
        except UniqueViolation as e:
            raise DuplicateNumberCollision(order_number) from e

        return Order.model_validate(row)

    def _insert_item(self, tx: Transaction, order_id: UUID, item: CartItem) -> OrderItem:
        row = tx.execute_returning(
            """
            INSERT INTO order_items (id, order_id, product_id, quantity, unit_price_cents, total_price_cents)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (uuid4(), order_id, item.product_id, item.quantity, item.unit_price_cents, item.line_total_cents)
        )[0]
        return OrderItem.model_validate(row)

    def _record_status(
        self,
        db: PostgresClient | Transaction,
        order_id: UUID,
        status: OrderStatus,
        notes: str | None,
        now: datetime,
    ) -> None:
        db.execute(
            """
            INSERT INTO order_status_history (id, order_id, status, notes, changed_by, changed_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (uuid4(), order_id, status.value, notes, get_current_user_id(), now)
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_by_id(self, order_id: UUID) -> Order | None:
        """
        Get order by ID.

        Returns:
            Order if found, None otherwise.
        """
        row = self.postgres.execute_single(
            "SELECT * FROM orders WHERE id = %s",
            (order_id,)
        )

        if row is None:
            return None

        return Order.model_validate(row)

    def get_for_party(self, order_id: UUID) -> Order:
        """
        Get an order the acting user is the customer or merchant of.

        Raises:
            ValueError: If not found or not visible to the acting user
        """
        order = self.get_by_id(order_id)
        user_id = get_current_user_id()
        if order is None or user_id not in (order.customer_id, order.merchant_id):
            raise ValueError(f"Order {order_id} not found")
        return order

    def get_items(self, order_id: UUID) -> list[OrderItem]:
        rows = self.postgres.execute(
            "SELECT * FROM order_items WHERE order_id = %s",
            (order_id,)
        )
        return [OrderItem.model_validate(row) for row in rows]

    def get_history(self, order_id: UUID) -> list[OrderStatusHistory]:
        """Status history, oldest first."""
        rows = self.postgres.execute(
            "SELECT * FROM order_status_history WHERE order_id = %s ORDER BY changed_at ASC",
            (order_id,)
        )
        return [OrderStatusHistory.model_validate(row) for row in rows]

    def list_for_customer(self, customer_id: UUID | None = None, limit: int = 50) -> list[Order]:
        customer_id = customer_id or get_current_user_id()
        rows = self.postgres.execute(
            """
            SELECT * FROM orders
            WHERE customer_id = %s
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (customer_id, limit)
        )
        return [Order.model_validate(row) for row in rows]

    def list_for_merchant(
        self,
        merchant_id: UUID | None = None,
        status: OrderStatus | None = None,
        limit: int = 50
    ) -> list[Order]:
        """
        List a merchant's orders, newest first.

        Args:
            merchant_id: Defaults to the acting merchant
            status: Only orders in this status
            limit: Maximum results
        """
        merchant_id = merchant_id or get_current_user_id()
        params: list[Any] = [merchant_id]
        status_clause = ""
        if status is not None:
            status_clause = "AND status = %s"
            params.append(status.value)
        params.append(limit)

        rows = self.postgres.execute(
            f"""
            SELECT * FROM orders
            WHERE merchant_id = %s {status_clause}
            ORDER BY created_at DESC
            LIMIT %s
            """,
            tuple(params)
        )
        return [Order.model_validate(row) for row in rows]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _get_for_merchant(self, order_id: UUID) -> Order:
        order = self.get_by_id(order_id)
        if order is None or order.merchant_id != get_current_user_id():
            raise ValueError(f"Order {order_id} not found")
        return order

    def _transition(
        self,
        current: Order,
        target: OrderStatus,
        notes: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> Order:
        """
        Move an order to `target`, stamping its timestamp and recording history.

        The UPDATE is conditional on the status just read, so two racing
        transitions cannot both apply.

        Raises:
            InvalidStatusTransition: Not allowed from the current status
        """
        if target not in ORDER_TRANSITIONS[current.status]:
            raise InvalidStatusTransition("order", current.status.value, target.value)

        now = self.clock()
        updates: dict[str, Any] = {"status": target.value, _STATUS_TIMESTAMPS[target]: now}
        updates.update(extra or {})

        set_parts = [f"{field} = %s" for field in updates]
        set_parts.append("updated_at = %s")
        params = [*updates.values(), now, current.id, current.status.value]

        with self.postgres.transaction() as tx:
            rows = tx.execute_returning(
                f"""
                UPDATE orders
                SET {', '.join(set_parts)}
                WHERE id = %s AND status = %s
                RETURNING *
                """,
                tuple(params)
            )
            if not rows:
                raise InvalidStatusTransition("order", current.status.value, target.value)

            self._record_status(tx, current.id, target, notes, now)

            old_state = current.model_dump(mode="json")
            self.audit.log_change(
                entity_type="order",
                entity_id=current.id,
                action=AuditAction.UPDATE,
                changes={
                    field: {
                        "old": old_state.get(field),
                        "new": value.isoformat() if isinstance(value, datetime) else value,
                    }
                    for field, value in updates.items()
                },
                db=tx,
            )

        updated = Order.model_validate(rows[0])

        if self.event_bus is not None:
            if target == OrderStatus.CANCELLED:
                self.event_bus.publish(OrderCancelled.create(order=updated, reason=notes or ""))
            else:
                self.event_bus.publish(OrderStatusChanged.create(
                    order=updated, previous_status=current.status.value
                ))

        return updated

    def confirm(self, order_id: UUID) -> Order:
        """Merchant accepts a pending order."""
        return self._transition(self._get_for_merchant(order_id), OrderStatus.CONFIRMED, "Order confirmed")

    def process(self, order_id: UUID) -> Order:
        """Merchant starts fulfilment."""
        return self._transition(self._get_for_merchant(order_id), OrderStatus.PROCESSING, "Order processing")

    def ship(self, order_id: UUID, tracking_number: str | None = None) -> Order:
        """
        Merchant hands the order to a carrier.

        Args:
            order_id: Order UUID
            tracking_number: Carrier tracking number, if any
        """
        extra: dict[str, Any] = {"shipping_status": ShippingStatus.SHIPPED.value}
        if tracking_number:
            extra["tracking_number"] = tracking_number
        return self._transition(
            self._get_for_merchant(order_id), OrderStatus.SHIPPED, "Order shipped", extra
        )

    def deliver(self, order_id: UUID) -> Order:
        return self._transition(
            self._get_for_merchant(order_id),
            OrderStatus.DELIVERED,
            "Order delivered",
            {"shipping_status": ShippingStatus.DELIVERED.value},
        )

    def cancel(self, order_id: UUID, reason: str | None = None) -> Order:
        """
        Cancel an order that has not started processing.

        Either party may cancel. A paid order is marked refunded. The
        coupon redemption is not given back.

        Raises:
            ValueError: Order not found
            InvalidStatusTransition: Order is already processing or beyond
        """
        current = self.get_for_party(order_id)
        if not current.is_cancellable:
            raise InvalidStatusTransition("order", current.status.value, OrderStatus.CANCELLED.value)

        extra: dict[str, Any] = {}
        if current.payment_status == PaymentStatus.PAID:
            extra["payment_status"] = PaymentStatus.REFUNDED.value

        return self._transition(current, OrderStatus.CANCELLED, reason or "Order cancelled", extra)

    def mark_paid(self, order_id: UUID) -> Order:
        """
        Record that an order has been paid.

        Raises:
            ValueError: Order not found or cancelled
        """
        current = self.get_by_id(order_id)
        if current is None:
            raise ValueError(f"Order {order_id} not found")

        if current.payment_status == PaymentStatus.PAID:
            return current

        if current.status == OrderStatus.CANCELLED:
            raise ValueError(f"Order {order_id} is cancelled")

        row = self.postgres.execute_returning(
            """
            UPDATE orders
            SET payment_status = %s, updated_at = %s
            WHERE id = %s
            RETURNING *
            """,
            (PaymentStatus.PAID.value, self.clock(), order_id)
        )[0]

        self.audit.log_change(
            entity_type="order",
            entity_id=order_id,
            action=AuditAction.UPDATE,
            changes={"payment_status": {"old": current.payment_status.value, "new": PaymentStatus.PAID.value}}
        )

        return Order.model_validate(row)
