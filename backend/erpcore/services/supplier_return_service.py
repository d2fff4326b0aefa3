# Overview: Returns of goods to suppliers; approval takes stock out and credits the supplier account.

from __future__ import annotations

from ..models import FinancialTransaction, Product, Supplier, SupplierReturn, SupplierReturnItem
from ..errors import AlreadyApprovedError, EmptyItemsError, NotFoundError
from erpcore.time_utils import utcnow
from . import stock_ledger
from .concurrency import lock_for_update
from .document_service import next_supplier_return_number


def create_supplier_return(
    session,
    *,
    supplier_id: int,
    items: list[dict],
    notes: str | None = None,
) -> SupplierReturn:
    """
    Draft a return. Nothing moves until approval.

    items: [{"product_id", "quantity", "unit_cost_cents"?, "reason"?}]
    """
    if session.get(Supplier, supplier_id) is None:
        raise NotFoundError(f"Supplier {supplier_id} not found", code="SUPPLIER_NOT_FOUND")

    product_ids = {item["product_id"] for item in items}
    products = {p.id: p for p in session.query(Product).filter(Product.id.in_(product_ids)).all()} if product_ids else {}
    missing = sorted(product_ids - set(products))
    if missing:
        raise NotFoundError(f"Product {missing[0]} not found", code="PRODUCT_NOT_FOUND")

    supplier_return = SupplierReturn(
        return_number=next_supplier_return_number(session),
        supplier_id=supplier_id,
        status="draft",
        notes=notes,
    )
    for item in items:
        unit_cost = item.get("unit_cost_cents")
        if unit_cost is None:
            unit_cost = products[item["product_id"]].purchase_price_cents
        supplier_return.items.append(
            SupplierReturnItem(
                product_id=item["product_id"],
                quantity=item["quantity"],
                unit_cost_cents=unit_cost,
                reason=item.get("reason"),
            )
        )
    supplier_return.total_amount_cents = sum(i.quantity * i.unit_cost_cents for i in supplier_return.items)

    session.add(supplier_return)
    session.flush()
    return supplier_return


def get_supplier_return(session, return_id: int) -> SupplierReturn:
    supplier_return = session.get(SupplierReturn, return_id)
    if supplier_return is None:
        raise NotFoundError("Supplier return not found", code="SUPPLIER_RETURN_NOT_FOUND")
    return supplier_return


def approve_supplier_return(session, return_id: int, *, performed_by_user_id: int | None = None) -> SupplierReturn:
    """
    Approve a draft return.

    Stock leaves through the shared decrease algorithm, so a shortfall on
    any item aborts the whole approval. One expense transaction is posted
    for the total and the supplier balance drops by the same amount,
    never below zero.
    """
    supplier_return = lock_for_update(session.query(SupplierReturn).filter_by(id=return_id)).first()
    if supplier_return is None:
        raise NotFoundError("Supplier return not found", code="SUPPLIER_RETURN_NOT_FOUND")
    if supplier_return.status == "approved":
        raise AlreadyApprovedError("Supplier return already approved")

    items = list(supplier_return.items)
    if not items:
        raise EmptyItemsError("Supplier return has no items")

    total = 0
    for item in items:
        stock_ledger.decrease(
            session,
            item.product_id,
            item.quantity,
            reference_type="supplier_return",
            reference_id=supplier_return.id,
            reason=item.reason or "Return to supplier",
            movement_type="return",
            performed_by_user_id=performed_by_user_id,
        )
        total += item.quantity * item.unit_cost_cents

    session.add(
        FinancialTransaction(
            type="expense",
            amount_cents=total,
            description=f"Supplier return {supplier_return.return_number}",
            reference_id=supplier_return.id,
            supplier_id=supplier_return.supplier_id,
        )
    )

    supplier = lock_for_update(session.query(Supplier).filter_by(id=supplier_return.supplier_id)).first()
    if supplier is not None:
        supplier.account_balance_cents = max((supplier.account_balance_cents or 0) - total, 0)

    supplier_return.status = "approved"
    supplier_return.total_amount_cents = total
    supplier_return.approved_at = utcnow()
    session.flush()
    return supplier_return
