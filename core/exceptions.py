"""Typed exceptions for pricing, coupons, numbering and order lifecycle."""


class CouponError(Exception):
    """
    Base class for coupon rejections.

    Every subclass is recoverable at the cart/checkout boundary. `code` is
    stable and machine-readable; the message is safe to show the customer.
    """

    code = "COUPON_ERROR"

    def __init__(self, coupon_code: str, reason: str):
        self.coupon_code = coupon_code
        self.reason = reason
        super().__init__(reason)


class CouponNotFound(CouponError):
    """No coupon exists with the given code."""

    code = "COUPON_NOT_FOUND"

    def __init__(self, coupon_code: str):
        super().__init__(coupon_code, f"Coupon '{coupon_code}' does not exist")


class CouponNotApplicable(CouponError):
    """
    Coupon exists but cannot be used right now.

    Inactive, not started, expired, exhausted, or owned by another merchant.
    Also raised when a concurrent checkout consumed the last redemption.
    """

    code = "COUPON_NOT_APPLICABLE"


class CouponBelowMinimumPurchase(CouponError):
    """Subtotal is below the coupon's minimum purchase."""

    code = "COUPON_BELOW_MINIMUM_PURCHASE"

    def __init__(self, coupon_code: str, min_purchase_cents: int, subtotal_cents: int):
        self.min_purchase_cents = min_purchase_cents
        self.subtotal_cents = subtotal_cents
        super().__init__(
            coupon_code,
            f"Coupon '{coupon_code}' requires a minimum purchase of "
            f"{min_purchase_cents} cents (cart subtotal is {subtotal_cents})",
        )


class CouponPerCustomerLimitExceeded(CouponError):
    """Customer has already redeemed this coupon the maximum number of times."""

    code = "COUPON_PER_CUSTOMER_LIMIT_EXCEEDED"

    def __init__(self, coupon_code: str, limit: int):
        self.limit = limit
        super().__init__(
            coupon_code,
            f"Coupon '{coupon_code}' can only be used {limit} time(s) per customer",
        )


class PricingInvariantViolation(Exception):
    """
    total != subtotal - discount + tax + shipping after computation.

    Never recoverable locally. Aborts the checkout; the details belong in
    the log, not in front of the customer.
    """

    def __init__(self, subtotal: int, discount: int, tax: int, shipping: int, total: int):
        self.subtotal = subtotal
        self.discount = discount
        self.tax = tax
        self.shipping = shipping
        self.total = total
        super().__init__(
            f"Pricing identity broken: {subtotal} - {discount} + {tax} + {shipping} != {total}"
        )


class DuplicateNumberCollision(Exception):
    """
    A generated document number already exists.

    Retried internally by the number generator; only escapes once the
    retry budget is spent.
    """

    def __init__(self, number: str, attempts: int = 1):
        self.number = number
        self.attempts = attempts
        super().__init__(f"Document number {number} already taken (attempt {attempts})")


class InvalidStatusTransition(Exception):
    """Requested order/invoice status change is not allowed from the current status."""

    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {entity} from '{current}' to '{target}'")


class EmptyCartError(Exception):
    """Checkout attempted on a cart with no items."""
