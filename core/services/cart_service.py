"""
Cart service for the acting customer's cart.

A cart stores lines and at most one coupon code; it never stores totals.
Every summary is priced from scratch by the same pipeline checkout uses,
so what the customer sees is what the order will charge.
"""

import logging
from uuid import UUID, uuid4

from clients.postgres_client import PostgresClient
from core.audit import AuditLogger, AuditAction
from core.config import PricingConfig
from core.exceptions import CouponError
from core.models import Cart, CartItem, CartItemCreate, CartSummary
from core.pricing import price_items
from core.services.coupon_service import CouponService
from utils.timezone import Clock, now_utc
from utils.user_context import get_current_user_id

logger = logging.getLogger(__name__)


class CartService:
    """Service for cart operations. Always acts on the current user's cart."""

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        coupons: CouponService,
        config: PricingConfig | None = None,
        clock: Clock = now_utc,
    ):
        self.postgres = postgres
        self.audit = audit
        self.coupons = coupons
        self.config = config or PricingConfig()
        self.clock = clock

    def get_or_create(self) -> Cart:
        """Return the acting customer's cart, creating an empty one on first use."""
        customer_id = get_current_user_id()

        row = self.postgres.execute_single(
            "SELECT * FROM carts WHERE customer_id = %s",
            (customer_id,)
        )
        if row is not None:
            return Cart.model_validate(row)

        now = self.clock()
        row = self.postgres.execute_returning(
            """
            INSERT INTO carts (id, customer_id, coupon_code, created_at, updated_at)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING *
            """,
            (uuid4(), customer_id, None, now, now)
        )[0]

        return Cart.model_validate(row)

    def get_items(self, cart_id: UUID) -> list[CartItem]:
        rows = self.postgres.execute(
            "SELECT * FROM cart_items WHERE cart_id = %s ORDER BY created_at ASC",
            (cart_id,)
        )
        return [CartItem.model_validate(row) for row in rows]

    def _get_item(self, cart: Cart, item_id: UUID) -> CartItem:
        row = self.postgres.execute_single(
            "SELECT * FROM cart_items WHERE id = %s AND cart_id = %s",
            (item_id, cart.id)
        )
        if row is None:
            raise ValueError(f"Cart item {item_id} not found")
        return CartItem.model_validate(row)

    def add_item(self, data: CartItemCreate) -> CartItem:
        """
        Add a product to the cart.

        The unit price is captured from the catalog now. Adding a product
        that is already in the cart increases that line's quantity instead
        of creating a second line.

        Raises:
            ValueError: Product not found or unavailable
        """
        cart = self.get_or_create()

        product = self.postgres.execute_single(
            "SELECT id, price_cents FROM products WHERE id = %s AND is_active = true",
            (data.product_id,)
        )
        if product is None:
            raise ValueError(f"Product {data.product_id} not found")

        now = self.clock()
        existing = self.postgres.execute_single(
            "SELECT * FROM cart_items WHERE cart_id = %s AND product_id = %s",
            (cart.id, data.product_id)
        )

        if existing is not None:
            row = self.postgres.execute_returning(
                """
                UPDATE cart_items
                SET quantity = quantity + %s, updated_at = %s
                WHERE id = %s
                RETURNING *
                """,
                (data.quantity, now, existing["id"])
            )[0]
        else:
            row = self.postgres.execute_returning(
                """
                INSERT INTO cart_items (id, cart_id, product_id, quantity, unit_price_cents, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (uuid4(), cart.id, data.product_id, data.quantity, product["price_cents"], now, now)
            )[0]

        item = CartItem.model_validate(row)

        self.audit.log_change(
            entity_type="cart",
            entity_id=cart.id,
            action=AuditAction.UPDATE,
            changes={"item_added": {"product_id": str(data.product_id), "quantity": data.quantity}}
        )

        return item

    def update_item(self, item_id: UUID, quantity: int) -> CartItem | None:
        """
        Set a line's quantity. Zero removes the line.

        Returns:
            Updated line, or None if it was removed

        Raises:
            ValueError: Line not in this cart, or negative quantity
        """
        if quantity < 0:
            raise ValueError("quantity must be non-negative")

        cart = self.get_or_create()
        current = self._get_item(cart, item_id)

        if quantity == 0:
            self.remove_item(item_id)
            return None

        row = self.postgres.execute_returning(
            """
            UPDATE cart_items
            SET quantity = %s, updated_at = %s
            WHERE id = %s
            RETURNING *
            """,
            (quantity, self.clock(), item_id)
        )[0]

        self.audit.log_change(
            entity_type="cart",
            entity_id=cart.id,
            action=AuditAction.UPDATE,
            changes={"quantity": {"old": current.quantity, "new": quantity, "item_id": str(item_id)}}
        )

        return CartItem.model_validate(row)

    def remove_item(self, item_id: UUID) -> None:
        """
        Raises:
            ValueError: Line not in this cart
        """
        cart = self.get_or_create()
        current = self._get_item(cart, item_id)

        self.postgres.execute(
            "DELETE FROM cart_items WHERE id = %s",
            (item_id,)
        )

        self.audit.log_change(
            entity_type="cart",
            entity_id=cart.id,
            action=AuditAction.UPDATE,
            changes={"item_removed": current.model_dump(mode="json")}
        )

    def clear(self) -> Cart:
        """Empty the cart and drop its coupon."""
        cart = self.get_or_create()

        self.postgres.execute("DELETE FROM cart_items WHERE cart_id = %s", (cart.id,))
        row = self.postgres.execute_returning(
            "UPDATE carts SET coupon_code = NULL, updated_at = %s WHERE id = %s RETURNING *",
            (self.clock(), cart.id)
        )[0]

        self.audit.log_change(
            entity_type="cart",
            entity_id=cart.id,
            action=AuditAction.UPDATE,
            changes={"cleared": True}
        )

        return Cart.model_validate(row)

    def apply_coupon(self, code: str) -> Cart:
        """
        Attach a coupon to the cart, replacing any coupon already attached.

        The coupon is fully checked against the current subtotal first; a
        rejected coupon leaves the cart untouched.

        Raises:
            CouponNotFound, CouponNotApplicable, CouponPerCustomerLimitExceeded,
            CouponBelowMinimumPurchase
        """
        cart = self.get_or_create()
        items = self.get_items(cart.id)
        subtotal = sum(item.line_total_cents for item in items)

        coupon, _ = self.coupons.validate(code, cart.customer_id, subtotal)

        row = self.postgres.execute_returning(
            "UPDATE carts SET coupon_code = %s, updated_at = %s WHERE id = %s RETURNING *",
            (coupon.code, self.clock(), cart.id)
        )[0]

        self.audit.log_change(
            entity_type="cart",
            entity_id=cart.id,
            action=AuditAction.UPDATE,
            changes={"coupon_code": {"old": cart.coupon_code, "new": coupon.code}}
        )

        return Cart.model_validate(row)

    def remove_coupon(self) -> Cart:
        cart = self.get_or_create()
        if cart.coupon_code is None:
            return cart

        row = self.postgres.execute_returning(
            "UPDATE carts SET coupon_code = NULL, updated_at = %s WHERE id = %s RETURNING *",
            (self.clock(), cart.id)
        )[0]

        self.audit.log_change(
            entity_type="cart",
            entity_id=cart.id,
            action=AuditAction.UPDATE,
            changes={"coupon_code": {"old": cart.coupon_code, "new": None}}
        )

        return Cart.model_validate(row)

    def summary(self, shipping_cents: int = 0) -> CartSummary:
        """
        Price the cart for display.

        Read-only: calling it twice without changes in between gives the
        same numbers. An attached coupon that no longer applies is left out of
        the pricing and the reason is reported in coupon_rejection; the
        code stays on the cart.

        Args:
            shipping_cents: Shipping quote to include
        """
        cart = self.get_or_create()
        items = self.get_items(cart.id)
        subtotal = sum(item.line_total_cents for item in items)

        coupon = None
        rejection = None
        if cart.coupon_code is not None and items:
            try:
                coupon, _ = self.coupons.validate(cart.coupon_code, cart.customer_id, subtotal)
            except CouponError as e:
                logger.warning(f"Cart {cart.id} coupon {cart.coupon_code} no longer applies: {e.code}")
                rejection = e.reason

        pricing = price_items(
            items,
            coupon,
            self.clock(),
            tax_rate_bps=self.config.tax_rate_bps,
            shipping_cents=shipping_cents,
        )

        return CartSummary(
            cart_id=cart.id,
            items=items,
            item_count=sum(item.quantity for item in items),
            pricing=pricing,
            coupon_rejection=rejection,
        )
