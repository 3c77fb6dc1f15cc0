"""Unified API response envelope and error codes."""

from contextvars import ContextVar
from typing import Any
from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from utils.timezone import now_utc

# Set by RequestIDMiddleware so the envelope and the X-Request-ID header agree.
current_request_id: ContextVar[str | None] = ContextVar("current_request_id", default=None)


class APIError(BaseModel):
    """Error details in API response."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")


class APIMeta(BaseModel):
    """Metadata included in every API response."""

    timestamp: datetime = Field(..., description="Response timestamp (UTC)")
    request_id: str = Field(..., description="Request identifier, echoed in X-Request-ID")


class APIResponse(BaseModel):
    """
    Envelope for every /api response: {success, data, error, meta}.

    Amounts inside `data` are always integer cents.
    """

    success: bool
    data: Any | None = None
    error: APIError | None = None
    meta: APIMeta


def _meta() -> APIMeta:
    # Outside a request (scripts, unit tests) a fresh id is minted.
    return APIMeta(
        timestamp=now_utc(),
        request_id=current_request_id.get() or str(uuid4()),
    )


def success_response(data: Any) -> APIResponse:
    """Wrap a payload in a success envelope."""
    return APIResponse(success=True, data=data, meta=_meta())


def error_response(code: str, message: str) -> APIResponse:
    """Wrap an error code and customer-safe message in a failure envelope."""
    return APIResponse(
        success=False,
        error=APIError(code=code, message=message),
        meta=_meta(),
    )


class ErrorCodes:
    """
    Standard error codes for consistent error handling.

    Coupon rejections reuse the exception's own `code` attribute, so the
    COUPON_* values here must match core/exceptions.py.
    """

    # Authentication
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"

    # Resource Errors
    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"

    # Validation Errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"

    # Coupons
    COUPON_NOT_FOUND = "COUPON_NOT_FOUND"
    COUPON_NOT_APPLICABLE = "COUPON_NOT_APPLICABLE"
    COUPON_BELOW_MINIMUM_PURCHASE = "COUPON_BELOW_MINIMUM_PURCHASE"
    COUPON_PER_CUSTOMER_LIMIT_EXCEEDED = "COUPON_PER_CUSTOMER_LIMIT_EXCEEDED"

    # Cart & Order Lifecycle
    CART_EMPTY = "CART_EMPTY"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"

    # Pricing
    PRICING_ERROR = "PRICING_ERROR"

    # Infrastructure
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
