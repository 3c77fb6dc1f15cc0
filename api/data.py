"""GET /api/data: unified read endpoint."""

from uuid import UUID

from fastapi import APIRouter, Query, Request

from api.base import success_response
from core.models import OrderStatus, InvoiceStatus
from utils.money import format_cents
from utils.user_context import get_current_user_id


VALID_TYPES = {"coupons", "cart", "orders", "invoices", "shipping_methods"}


def create_data_router(services: dict) -> APIRouter:
    router = APIRouter()

    coupon_svc = services["coupon"]
    cart_svc = services["cart"]
    order_svc = services["order"]
    invoice_svc = services["invoice"]
    shipping_svc = services["shipping"]

    @router.get("/data")
    async def get_data(
        request: Request,
        type: str | None = Query(None),
        id: str | None = Query(None),
        code: str | None = Query(None),
        order_id: str | None = Query(None),
        merchant_id: str | None = Query(None),
        shipping_method: str | None = Query(None),
        weight: int = Query(0, ge=0),
        distance: int = Query(0, ge=0),
        status: str | None = Query(None),
        include: str | None = Query(None),
        filter: str | None = Query(None),
        limit: int = Query(50, ge=1, le=500),
    ):
        if type is None:
            raise ValueError("'type' query parameter is required")

        if type not in VALID_TYPES:
            raise ValueError(f"Unknown type '{type}'. Valid types: {', '.join(sorted(VALID_TYPES))}")

        includes = set(include.split(",")) if include else set()

        if type == "coupons":
            return _handle_coupons(coupon_svc, code, filter, limit)

        if type == "cart":
            return _handle_cart(
                cart_svc, shipping_svc, merchant_id, shipping_method, weight, distance
            )

        if type == "orders":
            return _handle_orders(order_svc, id, status, includes, filter, limit)

        if type == "invoices":
            return _handle_invoices(invoice_svc, order_svc, id, order_id, status, filter, limit)

        if type == "shipping_methods":
            return _handle_shipping_methods(shipping_svc, merchant_id, code, weight, distance)

    return router


def _handle_coupons(coupon_svc, code, filter, limit):
    if code:
        coupon = coupon_svc.get_by_code(code)
        if coupon is None:
            raise ValueError(f"Coupon {code} not found")
        return success_response(coupon.model_dump(mode="json")).model_dump(mode="json")

    coupons = coupon_svc.list_for_merchant(active_only=filter == "active", limit=limit)
    return success_response(
        [c.model_dump(mode="json") for c in coupons]
    ).model_dump(mode="json")


def _handle_cart(cart_svc, shipping_svc, merchant_id, shipping_method, weight, distance):
    shipping_cents = 0
    if shipping_method:
        if not merchant_id:
            raise ValueError("'shipping_method' requires 'merchant_id' parameter")
        shipping_cents = shipping_svc.quote(UUID(merchant_id), shipping_method, weight, distance)

    summary = cart_svc.summary(shipping_cents=shipping_cents)
    data = summary.model_dump(mode="json")
    data["pricing"]["total_display"] = format_cents(summary.pricing.total_cents)
    return success_response(data).model_dump(mode="json")


def _handle_orders(order_svc, id, status, includes, filter, limit):
    if id:
        order = order_svc.get_for_party(UUID(id))

        data = order.model_dump(mode="json")
        if "items" in includes:
            items = order_svc.get_items(order.id)
            data["items"] = [i.model_dump(mode="json") for i in items]
        if "history" in includes:
            history = order_svc.get_history(order.id)
            data["history"] = [h.model_dump(mode="json") for h in history]

        return success_response(data).model_dump(mode="json")

    if filter == "merchant":
        orders = order_svc.list_for_merchant(
            status=OrderStatus(status) if status else None, limit=limit
        )
    else:
        orders = order_svc.list_for_customer(limit=limit)

    return success_response(
        [o.model_dump(mode="json") for o in orders]
    ).model_dump(mode="json")


def _handle_invoices(invoice_svc, order_svc, id, order_id, status, filter, limit):
    if id:
        invoice = invoice_svc.get_owned(UUID(id))
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    if order_id:
        order = order_svc.get_for_party(UUID(order_id))
        invoice = invoice_svc.get_for_order(order.id)
        if invoice is None:
            raise ValueError(f"Invoice for order {order_id} not found")
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    if filter == "stats":
        stats = invoice_svc.merchant_stats()
        return success_response(stats.model_dump(mode="json")).model_dump(mode="json")

    invoices = invoice_svc.list_for_merchant(
        status=InvoiceStatus(status) if status else None, limit=limit
    )
    return success_response(
        [i.model_dump(mode="json") for i in invoices]
    ).model_dump(mode="json")


def _handle_shipping_methods(shipping_svc, merchant_id, code, weight, distance):
    merchant = UUID(merchant_id) if merchant_id else get_current_user_id()

    if code:
        cost = shipping_svc.quote(merchant, code, weight, distance)
        return success_response({
            "code": code,
            "weight": weight,
            "distance": distance,
            "cost_cents": cost,
        }).model_dump(mode="json")

    methods = shipping_svc.list_for_merchant(merchant)
    return success_response(
        [m.model_dump(mode="json") for m in methods]
    ).model_dump(mode="json")
