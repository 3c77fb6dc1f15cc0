"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from core.exceptions import (
    CouponError,
    CouponNotFound,
    DuplicateNumberCollision,
    EmptyCartError,
    InvalidStatusTransition,
    PricingInvariantViolation,
)

logger = logging.getLogger(__name__)


def _respond(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message).model_dump(mode="json"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(CouponError)
    async def coupon_error_handler(request: Request, exc: CouponError):
        status_code = 404 if isinstance(exc, CouponNotFound) else 422
        return _respond(status_code, exc.code, exc.reason)

    @app.exception_handler(EmptyCartError)
    async def empty_cart_handler(request: Request, exc: EmptyCartError):
        return _respond(400, ErrorCodes.CART_EMPTY, "Cart is empty")

    @app.exception_handler(InvalidStatusTransition)
    async def transition_error_handler(request: Request, exc: InvalidStatusTransition):
        return _respond(409, ErrorCodes.INVALID_STATUS_TRANSITION, str(exc))

    @app.exception_handler(PricingInvariantViolation)
    async def pricing_error_handler(request: Request, exc: PricingInvariantViolation):
        logger.error(f"Pricing invariant violated: {exc}")
        return _respond(
            500,
            ErrorCodes.PRICING_ERROR,
            "Order could not be priced, please retry",
        )

    @app.exception_handler(DuplicateNumberCollision)
    async def numbering_error_handler(request: Request, exc: DuplicateNumberCollision):
        logger.error(f"Gave up assigning a document number after {exc.attempts} attempts")
        return _respond(
            503,
            ErrorCodes.SERVICE_UNAVAILABLE,
            "Could not assign a document number, please retry",
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        message = str(exc)
        if "not found" in message.lower():
            return _respond(404, ErrorCodes.NOT_FOUND, message)
        if "already exists" in message.lower():
            return _respond(409, ErrorCodes.ALREADY_EXISTS, message)
        return _respond(400, ErrorCodes.INVALID_REQUEST, message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _respond(422, ErrorCodes.VALIDATION_ERROR, str(exc.errors()))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return _respond(500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")
