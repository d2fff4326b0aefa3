from __future__ import annotations

from ..extensions import db
from erpcore.time_utils import to_utc_z, to_iso_date


MOVEMENT_TYPES = {"reception", "sale", "restock", "return", "adjustment", "transfer"}


class Product(db.Model):
    """
    Catalog product.

    Owned by catalog management. The transaction core reads prices and the
    default location but never mutates a product row. On-hand quantity lives
    in StockLot, not here.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    purchase_price_cents = db.Column(db.Integer, nullable=False, default=0)
    sale_price_cents = db.Column(db.Integer, nullable=False, default=0)

    # Default shelf location used when nothing else is specified
    location = db.Column(db.String(64), nullable=True)
    stock_min = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "purchase_price_cents": self.purchase_price_cents,
            "sale_price_cents": self.sale_price_cents,
            "location": self.location,
            "stock_min": self.stock_min,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockLot(db.Model):
    """
    On-hand quantity of one product at one location.

    Derived state: always equal to the signed sum of InventoryMovement rows
    touching (product_id, location). Only services.stock_ledger writes it.
    """
    __tablename__ = "inventory"
    __table_args__ = (
        db.UniqueConstraint("product_id", "location", name="uq_inventory_product_location"),
        db.CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        db.Index("ix_inventory_product_quantity", "product_id", "quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location = db.Column(db.String(64), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("stock_lots", lazy=True))

    def __repr__(self) -> str:
        return f"<StockLot product_id={self.product_id} location={self.location!r} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location": self.location,
            "quantity": self.quantity,
            "min_stock_level": self.min_stock_level,
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryMovement(db.Model):
    """
    Immutable stock ledger entry.

    quantity is always positive; direction comes from the locations:
    - to_location only   -> stock entered   (+quantity)
    - from_location only -> stock left      (-quantity)
    - both               -> moved in place  (0 net)
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_inventory_movements_quantity_positive"),
        db.Index("ix_invmov_product_created", "product_id", "created_at"),
        db.Index("ix_invmov_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(32), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    from_location = db.Column(db.String(64), nullable=True)
    to_location = db.Column(db.String(64), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)

    # Informational only; no cost-layer accounting is derived from it
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    reason = db.Column(db.String(255), nullable=True)
    reference_type = db.Column(db.String(32), nullable=False, default="manual")
    reference_id = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    performed_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product")

    @property
    def signed_quantity(self) -> int:
        if self.to_location and not self.from_location:
            return self.quantity
        if self.from_location and not self.to_location:
            return -self.quantity
        return 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "product_id": self.product_id,
            "from_location": self.from_location,
            "to_location": self.to_location,
            "quantity": self.quantity,
            "signed_quantity": self.signed_quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "reason": self.reason,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "performed_by_user_id": self.performed_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class ProductBatch(db.Model):
    """
    Batch (lot number) traceability for received goods.

    A second reception of the same (product, batch_number) attaches to the
    existing row instead of creating a new one.
    """
    __tablename__ = "product_batches"
    __table_args__ = (
        db.UniqueConstraint("product_id", "batch_number", name="uq_product_batches_product_batch"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_number = db.Column(db.String(64), nullable=False)
    manufacturing_date = db.Column(db.Date, nullable=True)
    expiration_date = db.Column(db.Date, nullable=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True)
    reception_id = db.Column(db.Integer, db.ForeignKey("receptions.id"), nullable=True)

    quantity_initial = db.Column(db.Integer, nullable=False)
    quantity_current = db.Column(db.Integer, nullable=False)
    location = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="active")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "batch_number": self.batch_number,
            "manufacturing_date": to_iso_date(self.manufacturing_date),
            "expiration_date": to_iso_date(self.expiration_date),
            "supplier_id": self.supplier_id,
            "reception_id": self.reception_id,
            "quantity_initial": self.quantity_initial,
            "quantity_current": self.quantity_current,
            "location": self.location,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }
