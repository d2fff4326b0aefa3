from __future__ import annotations

from ..extensions import db
from erpcore.time_utils import to_utc_z, to_iso_date


class Supplier(db.Model):
    """
    Supplier master data (CRUD lives elsewhere).

    account_balance_cents is what we owe the supplier; supplier returns
    and payments lower it, never below zero.
    """
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    tax_id = db.Column(db.String(32), nullable=True)
    account_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "tax_id": self.tax_id,
            "account_balance_cents": self.account_balance_cents,
            "is_active": self.is_active,
        }


class PurchaseOrder(db.Model):
    """
    Purchase order to a supplier.

    LIFECYCLE:
    draft -> sent/ordered -> partial -> completed, or -> cancelled.
    partial/completed are normally reached through reception approval,
    which recomputes the status from the item quantities.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("po_number", name="uq_purchase_orders_po_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    po_number = db.Column(db.String(32), nullable=False)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    order_date = db.Column(db.Date, nullable=False)
    expected_delivery_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    supplier = db.relationship("Supplier")
    items = db.relationship(
        "PurchaseOrderItem",
        backref="purchase_order",
        lazy=True,
        order_by="PurchaseOrderItem.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self, *, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "po_number": self.po_number,
            "supplier_id": self.supplier_id,
            "order_date": to_iso_date(self.order_date),
            "expected_delivery_date": to_iso_date(self.expected_delivery_date),
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseOrderItem(db.Model):
    __tablename__ = "purchase_order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity_ordered = db.Column(db.Integer, nullable=False)
    # Running total across all approved receptions
    quantity_received = db.Column(db.Integer, nullable=False, default=0)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "product_id": self.product_id,
            "quantity_ordered": self.quantity_ordered,
            "quantity_received": self.quantity_received,
            "unit_cost_cents": self.unit_cost_cents,
        }


class Reception(db.Model):
    """
    Goods physically received, optionally against a purchase order.

    LIFECYCLE:
    - pending_qc: created, waiting for quality check / approval
    - approved: stock increased; immutable from here on
    - rejected: discarded without stock effect
    - partially_approved: accepted by the schema for legacy rows; the
      approval operation never produces it
    """
    __tablename__ = "receptions"
    __table_args__ = (
        db.UniqueConstraint("reception_number", name="uq_receptions_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reception_number = db.Column(db.String(32), nullable=False)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    remito_number = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(24), nullable=False, default="pending_qc", index=True)
    notes = db.Column(db.Text, nullable=True)

    approved_by_user_id = db.Column(db.Integer, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    purchase_order = db.relationship("PurchaseOrder", backref=db.backref("receptions", lazy=True))
    supplier = db.relationship("Supplier")
    items = db.relationship(
        "ReceptionItem",
        backref="reception",
        lazy=True,
        order_by="ReceptionItem.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self, *, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "reception_number": self.reception_number,
            "purchase_order_id": self.purchase_order_id,
            "supplier_id": self.supplier_id,
            "remito_number": self.remito_number,
            "status": self.status,
            "notes": self.notes,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class ReceptionItem(db.Model):
    __tablename__ = "reception_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    reception_id = db.Column(db.Integer, db.ForeignKey("receptions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    po_item_id = db.Column(db.Integer, db.ForeignKey("purchase_order_items.id"), nullable=True)

    quantity_expected = db.Column(db.Integer, nullable=False, default=0)
    quantity_received = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    location_assigned = db.Column(db.String(64), nullable=True)

    batch_number = db.Column(db.String(64), nullable=True)
    expiration_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reception_id": self.reception_id,
            "product_id": self.product_id,
            "po_item_id": self.po_item_id,
            "quantity_expected": self.quantity_expected,
            "quantity_received": self.quantity_received,
            "unit_cost_cents": self.unit_cost_cents,
            "location_assigned": self.location_assigned,
            "batch_number": self.batch_number,
            "expiration_date": to_iso_date(self.expiration_date),
            "notes": self.notes,
        }


class SupplierReturn(db.Model):
    """
    Goods sent back to a supplier.

    LIFECYCLE: draft -> approved (one way). Approval decreases stock and
    posts an aggregate expense transaction.
    """
    __tablename__ = "supplier_returns"
    __table_args__ = (
        db.UniqueConstraint("return_number", name="uq_supplier_returns_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_number = db.Column(db.String(32), nullable=False)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    supplier = db.relationship("Supplier")
    items = db.relationship(
        "SupplierReturnItem",
        backref="supplier_return",
        lazy=True,
        order_by="SupplierReturnItem.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self, *, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "return_number": self.return_number,
            "supplier_id": self.supplier_id,
            "status": self.status,
            "total_amount_cents": self.total_amount_cents,
            "notes": self.notes,
            "approved_at": to_utc_z(self.approved_at),
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SupplierReturnItem(db.Model):
    __tablename__ = "supplier_return_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("supplier_returns.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    reason = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "reason": self.reason,
        }


class SupplierPayment(db.Model):
    """
    Money paid to a supplier. One row per payment line; a single request
    may carry several lines (cash plus transfer, ...).
    """
    __tablename__ = "supplier_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_supplier_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_date = db.Column(db.Date, nullable=False)
    payment_method = db.Column(db.String(100), nullable=False, default="cash")
    reference_number = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    supplier = db.relationship("Supplier")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier.name if self.supplier else None,
            "amount_cents": self.amount_cents,
            "payment_date": to_iso_date(self.payment_date),
            "payment_method": self.payment_method,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class QualityCheck(db.Model):
    """
    Inspection result for one product of a pending reception.

    Recording a check does not move stock; approve_reception still decides.
    quantity_passed + quantity_failed never exceeds quantity_checked.
    """
    __tablename__ = "quality_checks"
    __table_args__ = (
        db.CheckConstraint(
            "quantity_passed + quantity_failed <= quantity_checked",
            name="ck_quality_checks_quantities",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reception_id = db.Column(db.Integer, db.ForeignKey("receptions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    inspector_user_id = db.Column(db.Integer, nullable=True)
    result = db.Column(db.String(16), nullable=False)
    quantity_checked = db.Column(db.Integer, nullable=False, default=0)
    quantity_passed = db.Column(db.Integer, nullable=False, default=0)
    quantity_failed = db.Column(db.Integer, nullable=False, default=0)
    defect_description = db.Column(db.Text, nullable=True)
    action_taken = db.Column(db.String(32), nullable=False, default="approve")
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    reception = db.relationship("Reception", backref=db.backref("quality_checks", lazy=True, order_by="QualityCheck.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reception_id": self.reception_id,
            "product_id": self.product_id,
            "inspector_user_id": self.inspector_user_id,
            "result": self.result,
            "quantity_checked": self.quantity_checked,
            "quantity_passed": self.quantity_passed,
            "quantity_failed": self.quantity_failed,
            "defect_description": self.defect_description,
            "action_taken": self.action_taken,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
