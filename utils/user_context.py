"""
Acting user for the current request or handler.

The gateway authenticates callers; UserContextMiddleware copies the
X-User-ID it forwards into a ContextVar so services, the audit trail and
the Postgres session can attribute work without threading an argument
through every call. Customers and merchants share the same ID space.
"""

from contextlib import contextmanager
from contextvars import ContextVar, Token
from uuid import UUID

_acting_user: ContextVar[UUID | None] = ContextVar("acting_user_id", default=None)


def get_current_user_id() -> UUID:
    """
    The acting user's ID.

    Raises:
        RuntimeError: Nobody is acting. Carts, checkouts and coupon
            management always run on someone's behalf, so this is a
            caller bug.
    """
    user_id = _acting_user.get()
    if user_id is None:
        raise RuntimeError(
            "No user context set; user-scoped code was called outside "
            "a gateway-authenticated request"
        )
    return user_id


def peek_current_user_id() -> UUID | None:
    """The acting user's ID, or None outside a request."""
    return _acting_user.get()


def set_current_user_id(user_id: UUID) -> Token:
    """Act as user_id. Pass the returned token to reset_current_user_id()."""
    return _acting_user.set(user_id)


def reset_current_user_id(token: Token) -> None:
    """Restore whoever was acting before the matching set_current_user_id()."""
    _acting_user.reset(token)


def clear_current_user_id() -> None:
    _acting_user.set(None)


@contextmanager
def user_context(user_id: UUID):
    """
    Act as user_id for the duration of the block.

    Nested blocks restore the outer user on exit, e.g. an event handler
    acting as the merchant inside a customer's checkout:

        with user_context(order.merchant_id):
            invoice_service.create_for_order(order)
    """
    token = set_current_user_id(user_id)
    try:
        yield user_id
    finally:
        reset_current_user_id(token)
