from __future__ import annotations

from ..extensions import db
from erpcore.time_utils import to_utc_z


class CashRegister(db.Model):
    """
    Physical cash register.

    status flips closed -> open when a shift starts and back when it ends;
    current_shift_id points at the single open CashShift.
    """
    __tablename__ = "cash_registers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="closed", index=True)
    current_shift_id = db.Column(
        db.Integer,
        db.ForeignKey("cash_shifts.id", use_alter=True, name="fk_cash_registers_current_shift"),
        nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "current_shift_id": self.current_shift_id,
        }


class CashShift(db.Model):
    """
    One open-to-close cycle of a register.

    expected_balance_cents is derived: opening balance plus inflows minus
    outflows over this shift's ShiftPayment rows. It is recomputed from the
    payments after every change, never incremented in place.
    """
    __tablename__ = "cash_shifts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)
    opened_by_user_id = db.Column(db.Integer, nullable=True)
    closed_by_user_id = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="open", index=True)

    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    expected_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    actual_balance_cents = db.Column(db.Integer, nullable=True)
    difference_cents = db.Column(db.Integer, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    cash_register = db.relationship(
        "CashRegister",
        foreign_keys=[cash_register_id],
        backref=db.backref("shifts", lazy=True),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cash_register_id": self.cash_register_id,
            "opened_by_user_id": self.opened_by_user_id,
            "closed_by_user_id": self.closed_by_user_id,
            "status": self.status,
            "opening_balance_cents": self.opening_balance_cents,
            "expected_balance_cents": self.expected_balance_cents,
            "actual_balance_cents": self.actual_balance_cents,
            "difference_cents": self.difference_cents,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "notes": self.notes,
        }


class ShiftPayment(db.Model):
    """Append-only cash entry for a shift. sale/income add, refund/expense subtract."""
    __tablename__ = "shift_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_shift_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("cash_shifts.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, nullable=True)
    payment_method = db.Column(db.String(32), nullable=False, default="cash")
    amount_cents = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(16), nullable=False, default="sale")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "order_id": self.order_id,
            "payment_method": self.payment_method,
            "amount_cents": self.amount_cents,
            "type": self.type,
            "created_at": to_utc_z(self.created_at),
        }


class FinancialTransaction(db.Model):
    """Append-only money movement (sales collections, supplier returns, cash adjustments)."""
    __tablename__ = "transactions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)
    client_id = db.Column(db.Integer, nullable=True, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "reference_id": self.reference_id,
            "supplier_id": self.supplier_id,
            "client_id": self.client_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
