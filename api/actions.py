"""POST /api/actions: unified mutation endpoint."""

from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel

from api.base import success_response
from core.models import (
    CouponCreate, CouponUpdate,
    CartItemCreate,
    CheckoutRequest,
    ShippingMethodCreate,
)


class ActionRequest(BaseModel):
    domain: str
    action: str
    data: dict


def create_actions_router(services: dict) -> APIRouter:
    router = APIRouter()

    handlers = {
        "coupon": CouponHandler(services["coupon"]),
        "cart": CartHandler(services["cart"]),
        "order": OrderHandler(services["order"]),
        "invoice": InvoiceHandler(services["invoice"]),
        "shipping": ShippingHandler(services["shipping"]),
    }

    @router.post("/actions")
    async def perform_action(request: Request, body: ActionRequest):
        handler = handlers.get(body.domain)
        if handler is None:
            raise ValueError(
                f"Unknown domain '{body.domain}'. "
                f"Valid domains: {', '.join(sorted(handlers.keys()))}"
            )

        if body.action not in handler.ALLOWED_ACTIONS:
            raise ValueError(
                f"Action '{body.action}' not allowed on '{body.domain}'. "
                f"Allowed: {', '.join(sorted(handler.ALLOWED_ACTIONS))}"
            )

        method = getattr(handler, f"_handle_{body.action}", None)
        result = method(body.data)
        return success_response(result).model_dump(mode="json")

    return router


# =============================================================================
# HANDLER CLASSES
# =============================================================================


class CouponHandler:
    ALLOWED_ACTIONS = {"create", "update", "deactivate"}

    def __init__(self, service):
        self.service = service

    def _handle_create(self, data: dict):
        coupon = self.service.create(CouponCreate(**data))
        return coupon.model_dump(mode="json")

    def _handle_update(self, data: dict):
        coupon_id = UUID(data.pop("id"))
        coupon = self.service.update(coupon_id, CouponUpdate(**data))
        return coupon.model_dump(mode="json")

    def _handle_deactivate(self, data: dict):
        coupon = self.service.deactivate(UUID(data["id"]))
        return coupon.model_dump(mode="json")


class CartHandler:
    ALLOWED_ACTIONS = {"add_item", "update_item", "remove_item", "clear", "apply_coupon", "remove_coupon"}

    def __init__(self, service):
        self.service = service

    def _handle_add_item(self, data: dict):
        item = self.service.add_item(CartItemCreate(**data))
        return item.model_dump(mode="json")

    def _handle_update_item(self, data: dict):
        item = self.service.update_item(UUID(data["id"]), int(data["quantity"]))
        if item is None:
            return {"removed": True}
        return item.model_dump(mode="json")

    def _handle_remove_item(self, data: dict):
        self.service.remove_item(UUID(data["id"]))
        return {"removed": True}

    def _handle_clear(self, data: dict):
        cart = self.service.clear()
        return cart.model_dump(mode="json")

    def _handle_apply_coupon(self, data: dict):
        if not data.get("code"):
            raise ValueError("'code' is required")
        cart = self.service.apply_coupon(data["code"])
        return cart.model_dump(mode="json")

    def _handle_remove_coupon(self, data: dict):
        cart = self.service.remove_coupon()
        return cart.model_dump(mode="json")


class OrderHandler:
    ALLOWED_ACTIONS = {"place", "confirm", "process", "ship", "deliver", "cancel"}

    def __init__(self, service):
        self.service = service

    def _handle_place(self, data: dict):
        order = self.service.place_order(CheckoutRequest(**data))
        return order.model_dump(mode="json")

    def _handle_confirm(self, data: dict):
        order = self.service.confirm(UUID(data["id"]))
        return order.model_dump(mode="json")

    def _handle_process(self, data: dict):
        order = self.service.process(UUID(data["id"]))
        return order.model_dump(mode="json")

    def _handle_ship(self, data: dict):
        order = self.service.ship(UUID(data["id"]), data.get("tracking_number"))
        return order.model_dump(mode="json")

    def _handle_deliver(self, data: dict):
        order = self.service.deliver(UUID(data["id"]))
        return order.model_dump(mode="json")

    def _handle_cancel(self, data: dict):
        order = self.service.cancel(UUID(data["id"]), data.get("reason"))
        return order.model_dump(mode="json")


class InvoiceHandler:
    ALLOWED_ACTIONS = {"send", "mark_paid", "mark_overdue", "cancel"}

    def __init__(self, service):
        self.service = service

    def _handle_send(self, data: dict):
        invoice = self.service.send(UUID(data["id"]))
        return invoice.model_dump(mode="json")

    def _handle_mark_paid(self, data: dict):
        invoice = self.service.mark_paid(UUID(data["id"]))
        return invoice.model_dump(mode="json")

    def _handle_mark_overdue(self, data: dict):
        invoice = self.service.mark_overdue(UUID(data["id"]))
        return invoice.model_dump(mode="json")

    def _handle_cancel(self, data: dict):
        invoice = self.service.cancel(UUID(data["id"]))
        return invoice.model_dump(mode="json")


class ShippingHandler:
    ALLOWED_ACTIONS = {"create_method"}

    def __init__(self, service):
        self.service = service

    def _handle_create_method(self, data: dict):
        method = self.service.create_method(ShippingMethodCreate(**data))
        return method.model_dump(mode="json")
