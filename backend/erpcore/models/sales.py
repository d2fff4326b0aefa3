from __future__ import annotations

from ..extensions import db
from erpcore.time_utils import to_utc_z, to_iso_date


class Order(db.Model):
    """
    Sales order.

    LIFECYCLE:
    pending -> picking -> packed -> dispatched -> delivered -> completed
    (packed -> delivered for customer pickup), and -> cancelled from any
    non-terminal state.

    Stock is deducted when the order is created. Dispatch and delivery only
    stamp shipping metadata. Cancellation restocks the exact lots debited.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=True)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="pending")
    payment_method = db.Column(db.String(32), nullable=False, default="cash")

    shipping_method = db.Column(db.String(32), nullable=True)
    shipping_address = db.Column(db.Text, nullable=True)
    tracking_number = db.Column(db.String(64), nullable=True)
    estimated_delivery = db.Column(db.Date, nullable=True)
    recipient_name = db.Column(db.String(255), nullable=True)
    recipient_dni = db.Column(db.String(32), nullable=True)
    delivery_notes = db.Column(db.Text, nullable=True)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self, *, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "client_id": self.client_id,
            "customer_name": self.customer_name,
            "total_amount_cents": self.total_amount_cents,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "shipping_method": self.shipping_method,
            "shipping_address": self.shipping_address,
            "tracking_number": self.tracking_number,
            "estimated_delivery": to_iso_date(self.estimated_delivery),
            "recipient_name": self.recipient_name,
            "recipient_dni": self.recipient_dni,
            "delivery_notes": self.delivery_notes,
            "dispatched_at": to_utc_z(self.dispatched_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    picked_quantity = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "picked_quantity": self.picked_quantity,
        }
