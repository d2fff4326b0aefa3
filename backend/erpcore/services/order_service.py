# Overview: Sales order fulfillment; stock leaves at creation, comes back on cancellation.

from __future__ import annotations

from datetime import date

from ..models import Order, OrderItem, Product
from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from erpcore.time_utils import utcnow
from . import stock_ledger
from .concurrency import lock_for_update


ORDER_STATUSES = {"pending", "picking", "packed", "dispatched", "delivered", "completed", "cancelled"}

# Labels older clients still send
ORDER_STATUS_ALIASES = {"confirmed": "picking", "paid": "packed"}

ORDER_TRANSITIONS = {
    "pending": {"picking", "cancelled"},
    "picking": {"packed", "cancelled"},
    # packed -> delivered is customer pickup
    "packed": {"dispatched", "delivered", "cancelled"},
    "dispatched": {"delivered", "cancelled"},
    "delivered": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}


def normalize_order_status(status: str | None) -> str:
    raw = (status or "").strip().lower()
    return ORDER_STATUS_ALIASES.get(raw, raw)


def can_transition(current_status: str, next_status: str) -> bool:
    current = normalize_order_status(current_status)
    target = normalize_order_status(next_status)
    if current == target:
        return True
    return target in ORDER_TRANSITIONS.get(current, set())


def _assert_transition(current_status: str, next_status: str) -> str:
    current = normalize_order_status(current_status)
    target = normalize_order_status(next_status)
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot move order from {current} to {target}",
            code="INVALID_ORDER_TRANSITION",
            details={"from": current, "to": target},
        )
    return target


def _reject_repeat(order: Order, target: str) -> None:
    if normalize_order_status(order.status) == target:
        raise InvalidTransitionError(
            f"Order is already {target}",
            code="INVALID_ORDER_TRANSITION",
            details={"from": target, "to": target},
        )


def _lock_order(session, order_id: int) -> Order:
    order = lock_for_update(
        session.query(Order).filter(Order.id == order_id, Order.deleted_at.is_(None))
    ).first()
    if order is None:
        raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")
    return order


def create_order(
    session,
    *,
    items: list[dict],
    client_id: int | None = None,
    customer_name: str | None = None,
    payment_method: str = "cash",
    shipping_address: str | None = None,
    performed_by_user_id: int | None = None,
) -> Order:
    """
    Create a pending order and take its stock.

    items: [{"product_id", "quantity"}]. Prices come from the catalog, never
    from the request. A shortfall on any line aborts the whole order.
    """
    if not items:
        raise ValidationError("An order needs at least one item")

    product_ids = {item["product_id"] for item in items}
    products = {p.id: p for p in session.query(Product).filter(Product.id.in_(product_ids)).all()}
    for item in items:
        if item["product_id"] not in products:
            raise NotFoundError(f"Product {item['product_id']} not found", code="PRODUCT_NOT_FOUND")

    order = Order(
        client_id=client_id,
        customer_name=customer_name,
        status="pending",
        payment_status="pending",
        payment_method=payment_method or "cash",
        shipping_address=shipping_address,
        total_amount_cents=sum(item["quantity"] * products[item["product_id"]].sale_price_cents for item in items),
    )
    session.add(order)
    session.flush()

    for item in items:
        product = products[item["product_id"]]
        stock_ledger.decrease(
            session,
            product.id,
            item["quantity"],
            reference_type="order",
            reference_id=order.id,
            reason=f"Order {order.id}",
            movement_type="sale",
            performed_by_user_id=performed_by_user_id,
        )
        order.items.append(
            OrderItem(
                product_id=product.id,
                quantity=item["quantity"],
                unit_price_cents=product.sale_price_cents,
                picked_quantity=0,
            )
        )

    session.flush()
    return order


def get_order(session, order_id: int) -> Order:
    order = session.query(Order).filter(Order.id == order_id, Order.deleted_at.is_(None)).first()
    if order is None:
        raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")
    return order


def transition_order_status(
    session,
    order_id: int,
    status: str,
    *,
    performed_by_user_id: int | None = None,
) -> Order:
    """
    Move an order along its lifecycle.

    Same-status requests are no-ops. Cancelling returns the stock taken at
    creation to the lots it came from.
    """
    target = normalize_order_status(status)
    if target not in ORDER_STATUSES:
        raise ValidationError(f"Unknown order status: {status}")

    order = _lock_order(session, order_id)
    target = _assert_transition(order.status, target)
    if normalize_order_status(order.status) == target:
        return order

    if target == "cancelled":
        stock_ledger.restore_order_stock(session, order.id, performed_by_user_id=performed_by_user_id)

    order.status = target
    session.flush()
    return order


def dispatch_order(
    session,
    order_id: int,
    *,
    shipping_method: str | None = None,
    tracking_number: str | None = None,
    estimated_delivery: date | None = None,
    shipping_address: str | None = None,
    recipient_name: str | None = None,
    recipient_dni: str | None = None,
) -> Order:
    """Stamp shipping data once. Customer pickup goes straight to delivered."""
    order = _lock_order(session, order_id)

    is_pickup = shipping_method == "pickup"
    target = "delivered" if is_pickup else "dispatched"
    _reject_repeat(order, target)
    _assert_transition(order.status, target)

    now = utcnow()
    order.status = target
    order.shipping_method = shipping_method
    order.tracking_number = tracking_number
    order.estimated_delivery = estimated_delivery
    if shipping_address:
        order.shipping_address = shipping_address
    order.recipient_name = recipient_name
    order.recipient_dni = recipient_dni
    order.dispatched_at = now
    if is_pickup:
        order.delivered_at = now

    session.flush()
    return order


def deliver_order(
    session,
    order_id: int,
    *,
    recipient_name: str | None = None,
    recipient_dni: str | None = None,
    delivery_notes: str | None = None,
) -> Order:
    order = _lock_order(session, order_id)
    _reject_repeat(order, "delivered")
    order.status = _assert_transition(order.status, "delivered")
    order.recipient_name = recipient_name
    order.recipient_dni = recipient_dni
    order.delivery_notes = delivery_notes
    order.delivered_at = utcnow()
    session.flush()
    return order


def pick_order_item(session, item_id: int, picked_quantity: int) -> OrderItem:
    """Record picking progress. No stock moves here."""
    item = lock_for_update(session.query(OrderItem).filter_by(id=item_id)).first()
    if item is None:
        raise NotFoundError("Order item not found", code="ORDER_ITEM_NOT_FOUND")
    if picked_quantity < 0 or picked_quantity > item.quantity:
        raise ValidationError(
            f"picked_quantity must be between 0 and {item.quantity}",
            details={"item_id": item.id, "quantity": item.quantity},
        )
    if item.order.status in {"cancelled", "completed"}:
        raise InvalidTransitionError(
            f"Cannot pick items of a {item.order.status} order",
            code="INVALID_ORDER_TRANSITION",
        )

    item.picked_quantity = picked_quantity
    session.flush()
    return item


def get_order_summary(session, order_id: int) -> dict:
    order = get_order(session, order_id)
    items = list(order.items)
    total_items = sum(i.quantity for i in items)
    total_picked = sum(i.picked_quantity or 0 for i in items)
    return {
        "order": order.to_dict(),
        "items": [i.to_dict() for i in items],
        "summary": {
            "total_items": total_items,
            "total_picked": total_picked,
            "completion_percent": round(total_picked * 100 / total_items) if total_items else 0,
        },
    }
