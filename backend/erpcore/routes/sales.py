# backend/erpcore/routes/sales.py
"""
Sales order routes.

Stock leaves when the order is created; any line short of stock fails the
whole request with 409 insufficient_stock. Status changes follow the
fulfillment lifecycle and cancelling puts the stock back.
"""
from flask import Blueprint, request, jsonify

from ..services import audit_service
from ..services import order_service
from ..services.concurrency import unit_of_work
from ..extensions import db
from ..validation import coerce_choice, coerce_date, coerce_int, coerce_positive_int, optional_str, require_items


sales_bp = Blueprint("sales", __name__, url_prefix="/api/orders")


def _parse_order_items(data: dict) -> list[dict]:
    return [
        {
            "product_id": coerce_positive_int(raw.get("product_id"), f"items[{index}].product_id"),
            "quantity": coerce_positive_int(raw.get("quantity"), f"items[{index}].quantity"),
        }
        for index, raw in enumerate(require_items(data), start=1)
    ]


@sales_bp.post("")
def create_order_route():
    """
    Create a sales order and deduct its stock.

    Request body:
    {
        "items": [{"product_id": 3, "quantity": 2}],
        "client_id": 9,               (optional)
        "customer_name": "Walk-in",   (optional)
        "payment_method": "cash",     (optional, default: cash)
        "shipping_address": "..."     (optional)
    }

    Returns:
        200: {"id", "total_amount_cents"}
        409: insufficient_stock
    """
    data = request.get_json(silent=True) or {}
    items = _parse_order_items(data)
    client_id = coerce_int(data.get("client_id"), "client_id", required=False)
    customer_name = optional_str(data.get("customer_name"), "customer_name")
    payment_method = optional_str(data.get("payment_method"), "payment_method", max_length=32) or "cash"
    shipping_address = optional_str(data.get("shipping_address"), "shipping_address", max_length=2000)
    user_id = coerce_int(data.get("user_id"), "user_id", required=False)

    with unit_of_work() as session:
        order = order_service.create_order(
            session,
            items=items,
            client_id=client_id,
            customer_name=customer_name,
            payment_method=payment_method,
            shipping_address=shipping_address,
            performed_by_user_id=user_id,
        )
        result = {"id": order.id, "total_amount_cents": order.total_amount_cents}

    audit_service.log_action(
        action="CREATE_ORDER",
        entity_type="order",
        entity_id=result["id"],
        user_id=user_id,
        new_values={"items": items, "total_amount_cents": result["total_amount_cents"]},
    )
    return jsonify(result), 200


@sales_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    return jsonify(order_service.get_order_summary(db.session, order_id)), 200


@sales_bp.put("/<int:order_id>/status")
def update_order_status_route(order_id: int):
    data = request.get_json(silent=True) or {}
    status = coerce_choice(
        data.get("status"),
        "status",
        order_service.ORDER_STATUSES | set(order_service.ORDER_STATUS_ALIASES),
    )
    user_id = coerce_int(data.get("user_id"), "user_id", required=False)

    with unit_of_work() as session:
        order = order_service.transition_order_status(
            session,
            order_id,
            status,
            performed_by_user_id=user_id,
        )
        payload = order.to_dict()

    audit_service.log_action(
        action="UPDATE_ORDER_STATUS",
        entity_type="order",
        entity_id=order_id,
        user_id=user_id,
        new_values={"status": payload["status"]},
    )
    return jsonify(payload), 200


@sales_bp.post("/<int:order_id>/dispatch")
def dispatch_order_route(order_id: int):
    """
    Stamp shipping data. shipping_method "pickup" marks the order delivered.
    """
    data = request.get_json(silent=True) or {}
    shipping = {
        "shipping_method": optional_str(data.get("shipping_method"), "shipping_method", max_length=32),
        "tracking_number": optional_str(data.get("tracking_number"), "tracking_number", max_length=64),
        "estimated_delivery": coerce_date(data.get("estimated_delivery"), "estimated_delivery"),
        "shipping_address": optional_str(data.get("shipping_address"), "shipping_address", max_length=2000),
        "recipient_name": optional_str(data.get("recipient_name"), "recipient_name"),
        "recipient_dni": optional_str(data.get("recipient_dni"), "recipient_dni", max_length=32),
    }
    user_id = coerce_int(data.get("user_id"), "user_id", required=False)

    with unit_of_work() as session:
        order = order_service.dispatch_order(session, order_id, **shipping)
        payload = order.to_dict()

    audit_service.log_action(
        action="DISPATCH_ORDER",
        entity_type="order",
        entity_id=order_id,
        user_id=user_id,
        new_values={"status": payload["status"], "shipping_method": shipping["shipping_method"]},
    )
    return jsonify(payload), 200


@sales_bp.post("/<int:order_id>/deliver")
def deliver_order_route(order_id: int):
    data = request.get_json(silent=True) or {}
    recipient_name = optional_str(data.get("recipient_name"), "recipient_name")
    recipient_dni = optional_str(data.get("recipient_dni"), "recipient_dni", max_length=32)
    delivery_notes = optional_str(data.get("delivery_notes"), "delivery_notes", max_length=2000)
    user_id = coerce_int(data.get("user_id"), "user_id", required=False)

    with unit_of_work() as session:
        order = order_service.deliver_order(
            session,
            order_id,
            recipient_name=recipient_name,
            recipient_dni=recipient_dni,
            delivery_notes=delivery_notes,
        )
        payload = order.to_dict()

    audit_service.log_action(
        action="DELIVER_ORDER",
        entity_type="order",
        entity_id=order_id,
        user_id=user_id,
        new_values={"status": payload["status"], "recipient_name": recipient_name},
    )
    return jsonify(payload), 200


@sales_bp.put("/items/<int:item_id>/pick")
def pick_order_item_route(item_id: int):
    data = request.get_json(silent=True) or {}
    picked_quantity = coerce_int(data.get("picked_quantity"), "picked_quantity")
    user_id = coerce_int(data.get("user_id"), "user_id", required=False)

    with unit_of_work() as session:
        item = order_service.pick_order_item(session, item_id, picked_quantity)
        payload = item.to_dict()

    audit_service.log_action(
        action="PICK_ORDER_ITEM",
        entity_type="order_item",
        entity_id=item_id,
        user_id=user_id,
        new_values={"picked_quantity": payload["picked_quantity"]},
    )
    return jsonify(payload), 200
