# Overview: Payments to suppliers; settles the supplier account and posts the matching expense.

from __future__ import annotations

from datetime import date

from ..models import FinancialTransaction, Supplier, SupplierPayment
from ..errors import NotFoundError, ValidationError
from erpcore.time_utils import utcnow
from .concurrency import lock_for_update


def create_supplier_payment(
    session,
    *,
    supplier_id: int,
    payments: list[dict],
    payment_date: date | None = None,
    notes: str | None = None,
) -> tuple[list[SupplierPayment], int]:
    """
    Record one or more payment lines to a supplier.

    payments: [{"amount_cents", "payment_method"?, "reference_number"?}].
    Lines with a non-positive amount are skipped; if nothing is left the
    request is rejected. The total is posted as one expense transaction
    and taken off the supplier balance, which never goes below zero.

    Returns (payment rows, total_cents).
    """
    supplier = lock_for_update(session.query(Supplier).filter_by(id=supplier_id)).first()
    if supplier is None:
        raise NotFoundError(f"Supplier {supplier_id} not found", code="SUPPLIER_NOT_FOUND")

    payment_date = payment_date or utcnow().date()
    rows = []
    for line in payments:
        amount = line.get("amount_cents") or 0
        if amount <= 0:
            continue
        rows.append(
            SupplierPayment(
                supplier_id=supplier.id,
                amount_cents=amount,
                payment_date=payment_date,
                payment_method=line.get("payment_method") or "cash",
                reference_number=line.get("reference_number"),
                notes=notes,
            )
        )

    total = sum(row.amount_cents for row in rows)
    if total <= 0:
        raise ValidationError("Payment total must be positive")

    session.add_all(rows)
    session.flush()

    session.add(
        FinancialTransaction(
            type="expense",
            amount_cents=total,
            description="Supplier payment",
            reference_id=rows[0].id,
            supplier_id=supplier.id,
        )
    )
    supplier.account_balance_cents = max((supplier.account_balance_cents or 0) - total, 0)

    session.flush()
    return rows, total


def list_supplier_payments(session, *, supplier_id: int | None = None) -> list[SupplierPayment]:
    query = session.query(SupplierPayment)
    if supplier_id is not None:
        query = query.filter(SupplierPayment.supplier_id == supplier_id)
    return query.order_by(
        SupplierPayment.payment_date.desc(),
        SupplierPayment.created_at.desc(),
        SupplierPayment.id.desc(),
    ).all()
