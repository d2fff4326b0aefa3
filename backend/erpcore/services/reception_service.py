# Overview: Purchase orders and goods receptions; approval turns a reception into stock.

from __future__ import annotations

"""
Reception pipeline

Reception LIFECYCLE:
- pending_qc -> approved  (terminal; stock increased exactly once)
- pending_qc -> rejected  (terminal; no stock effect)
- partially_approved is a legal stored value but approval never produces it.

Approval runs in the caller's unit of work. Any failure (unknown product,
over-receipt under the reject policy, ...) rolls back every stock increase
made before it.

Purchase order status is not edited by approval directly. After the
received quantities are applied, reduce_purchase_order_status() derives
the new status from the item states.
"""

from datetime import date

from flask import current_app

from ..models import (
    Product,
    ProductBatch,
    QualityCheck,
    PurchaseOrder,
    PurchaseOrderItem,
    Reception,
    ReceptionItem,
    Supplier,
)
from ..errors import (
    AlreadyApprovedError,
    EmptyItemsError,
    InvalidStatusError,
    InvalidTransitionError,
    NotFoundError,
    OverReceiptError,
    ValidationError,
)
from erpcore.time_utils import utcnow
from . import stock_ledger
from .concurrency import lock_for_update
from .document_service import next_purchase_order_number, next_reception_number


PO_STATUSES = {"draft", "sent", "ordered", "partial", "completed", "cancelled"}
PO_STATUS_ALIASES = {"received": "completed"}

PO_TRANSITIONS = {
    "draft": {"sent", "ordered", "cancelled"},
    "sent": {"ordered", "partial", "completed", "cancelled"},
    "ordered": {"partial", "completed", "cancelled"},
    "partial": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}

RECEPTION_STATUSES = {"pending_qc", "approved", "partially_approved", "rejected"}

QUALITY_CHECK_RESULTS = {"pass", "fail", "conditional"}
QUALITY_CHECK_ACTIONS = {"approve", "reject", "return_to_supplier", "discount"}

OVER_RECEIPT_ALLOW = "allow"
OVER_RECEIPT_REJECT = "reject"


def _get_supplier(session, supplier_id: int) -> Supplier:
    supplier = session.get(Supplier, supplier_id)
    if supplier is None:
        raise NotFoundError(f"Supplier {supplier_id} not found", code="SUPPLIER_NOT_FOUND")
    return supplier


def _require_products(session, product_ids) -> dict[int, Product]:
    ids = set(product_ids)
    products = {p.id: p for p in session.query(Product).filter(Product.id.in_(ids)).all()}
    missing = sorted(ids - set(products))
    if missing:
        raise NotFoundError(
            f"Product {missing[0]} not found",
            code="PRODUCT_NOT_FOUND",
            details={"product_ids": missing},
        )
    return products


def _apply_tax(subtotal_cents: int, tax_rate_bps: int) -> int:
    # Half-up rounding to the cent
    return (subtotal_cents * tax_rate_bps + 5000) // 10000


# =============================================================================
# PURCHASE ORDERS
# =============================================================================

def create_purchase_order(
    session,
    *,
    supplier_id: int,
    items: list[dict],
    order_date: date | None = None,
    expected_delivery_date: date | None = None,
    notes: str | None = None,
    tax_rate_bps: int = 2100,
) -> PurchaseOrder:
    """
    Create a draft purchase order.

    items: [{"product_id", "quantity_ordered", "unit_cost_cents"?}]
    A missing unit cost falls back to the product's purchase price.
    """
    if not items:
        raise EmptyItemsError("A purchase order needs at least one item")

    _get_supplier(session, supplier_id)
    products = _require_products(session, [item["product_id"] for item in items])

    order_date = order_date or utcnow().date()
    po = PurchaseOrder(
        po_number=next_purchase_order_number(session, year=order_date.year),
        supplier_id=supplier_id,
        order_date=order_date,
        expected_delivery_date=expected_delivery_date,
        status="draft",
        notes=notes,
    )

    subtotal = 0
    for item in items:
        unit_cost = item.get("unit_cost_cents")
        if unit_cost is None:
            unit_cost = products[item["product_id"]].purchase_price_cents
        subtotal += item["quantity_ordered"] * unit_cost
        po.items.append(
            PurchaseOrderItem(
                product_id=item["product_id"],
                quantity_ordered=item["quantity_ordered"],
                quantity_received=0,
                unit_cost_cents=unit_cost,
            )
        )

    po.subtotal_cents = subtotal
    po.tax_amount_cents = _apply_tax(subtotal, tax_rate_bps)
    po.total_amount_cents = subtotal + po.tax_amount_cents

    session.add(po)
    session.flush()
    return po


def get_purchase_order(session, po_id: int) -> PurchaseOrder:
    po = session.get(PurchaseOrder, po_id)
    if po is None:
        raise NotFoundError("Purchase order not found", code="PURCHASE_ORDER_NOT_FOUND")
    return po


def normalize_po_status(status: str | None) -> str:
    normalized = (status or "").strip().lower()
    normalized = PO_STATUS_ALIASES.get(normalized, normalized)
    if normalized not in PO_STATUSES:
        raise InvalidStatusError(f"Invalid purchase order status: {status}")
    return normalized


def update_purchase_order_status(session, po_id: int, status: str) -> PurchaseOrder:
    """Manual status change (send, confirm, cancel, force-complete)."""
    target = normalize_po_status(status)

    po = lock_for_update(session.query(PurchaseOrder).filter_by(id=po_id)).first()
    if po is None:
        raise NotFoundError("Purchase order not found", code="PURCHASE_ORDER_NOT_FOUND")

    if po.status == target:
        return po

    if target not in PO_TRANSITIONS.get(po.status, set()):
        raise InvalidTransitionError(
            f"Cannot change purchase order from {po.status} to {target}",
            details={"from": po.status, "to": target},
        )

    po.status = target
    session.flush()
    return po


def reduce_purchase_order_status(current_status: str, items) -> str:
    """
    Derive a purchase order's status from its items.

    - completed: every item received at least what was ordered
    - partial: some item made progress and the PO was sent/ordered
    - otherwise the current status is kept
    """
    items = list(items)
    if items and all(item.quantity_received >= item.quantity_ordered for item in items):
        return "completed"
    if current_status in {"sent", "ordered"} and any(item.quantity_received > 0 for item in items):
        return "partial"
    return current_status


# =============================================================================
# RECEPTIONS
# =============================================================================

def create_reception(
    session,
    *,
    items: list[dict],
    purchase_order_id: int | None = None,
    supplier_id: int | None = None,
    remito_number: str | None = None,
    notes: str | None = None,
    default_location: str = "General",
) -> Reception:
    """
    Register goods at the dock, waiting for quality check.

    items: [{"product_id", "quantity_received", "po_item_id"?, "quantity_expected"?,
             "unit_cost_cents"?, "location_assigned"?, "batch_number"?,
             "expiration_date"?, "notes"?}]
    The supplier falls back to the purchase order's supplier.
    """
    if not items:
        raise EmptyItemsError("A reception needs at least one item")

    po = None
    if purchase_order_id is not None:
        po = get_purchase_order(session, purchase_order_id)
        if po.status == "cancelled":
            raise InvalidTransitionError("Cannot receive against a cancelled purchase order")
        supplier_id = supplier_id or po.supplier_id

    if supplier_id is None:
        raise ValidationError("supplier_id is required")
    _get_supplier(session, supplier_id)
    _require_products(session, [item["product_id"] for item in items])

    reception = Reception(
        reception_number=next_reception_number(session),
        purchase_order_id=po.id if po else None,
        supplier_id=supplier_id,
        remito_number=remito_number,
        status="pending_qc",
        notes=notes,
    )
    for item in items:
        reception.items.append(
            ReceptionItem(
                product_id=item["product_id"],
                po_item_id=item.get("po_item_id"),
                quantity_expected=item.get("quantity_expected") or 0,
                quantity_received=item["quantity_received"],
                unit_cost_cents=item.get("unit_cost_cents") or 0,
                location_assigned=item.get("location_assigned") or default_location,
                batch_number=item.get("batch_number"),
                expiration_date=item.get("expiration_date"),
                notes=item.get("notes"),
            )
        )

    session.add(reception)
    session.flush()
    return reception


def get_reception(session, reception_id: int) -> Reception:
    reception = session.get(Reception, reception_id)
    if reception is None:
        raise NotFoundError("Reception not found", code="RECEPTION_NOT_FOUND")
    return reception


def list_receptions(
    session,
    *,
    status: str | None = None,
    purchase_order_id: int | None = None,
    supplier_id: int | None = None,
    limit: int = 100,
) -> list[Reception]:
    query = session.query(Reception)
    if status is not None:
        if status not in RECEPTION_STATUSES:
            raise ValidationError(f"Unknown reception status: {status}")
        query = query.filter(Reception.status == status)
    if purchase_order_id is not None:
        query = query.filter(Reception.purchase_order_id == purchase_order_id)
    if supplier_id is not None:
        query = query.filter(Reception.supplier_id == supplier_id)
    limit = min(max(limit, 1), 500)
    return query.order_by(Reception.created_at.desc(), Reception.id.desc()).limit(limit).all()


def _attach_batch(session, reception: Reception, item: ReceptionItem) -> ProductBatch:
    batch = lock_for_update(
        session.query(ProductBatch).filter_by(product_id=item.product_id, batch_number=item.batch_number)
    ).first()
    if batch is None:
        batch = ProductBatch(
            product_id=item.product_id,
            batch_number=item.batch_number,
            expiration_date=item.expiration_date,
            supplier_id=reception.supplier_id,
            reception_id=reception.id,
            quantity_initial=item.quantity_received,
            quantity_current=item.quantity_received,
            location=item.location_assigned,
            status="active",
        )
        session.add(batch)
    else:
        batch.quantity_current += item.quantity_received
        if item.expiration_date is not None:
            batch.expiration_date = item.expiration_date
    return batch


def _match_po_item(po_items: list[PurchaseOrderItem], item: ReceptionItem) -> PurchaseOrderItem | None:
    if item.po_item_id is not None:
        for po_item in po_items:
            if po_item.id == item.po_item_id:
                return po_item
    for po_item in po_items:
        if po_item.product_id == item.product_id:
            return po_item
    return None


def _reconcile_purchase_order(session, reception: Reception, over_receipt_policy: str) -> PurchaseOrder:
    po = lock_for_update(session.query(PurchaseOrder).filter_by(id=reception.purchase_order_id)).first()
    if po is None:
        raise NotFoundError("Purchase order not found", code="PURCHASE_ORDER_NOT_FOUND")

    po_items = list(po.items)
    for item in reception.items:
        po_item = _match_po_item(po_items, item)
        if po_item is None:
            current_app.logger.warning(
                "Reception %s item for product %s has no matching line on PO %s",
                reception.reception_number, item.product_id, po.po_number,
            )
            continue

        new_total = po_item.quantity_received + item.quantity_received
        if new_total > po_item.quantity_ordered:
            if over_receipt_policy == OVER_RECEIPT_REJECT:
                raise OverReceiptError(
                    f"Receiving {item.quantity_received} would exceed the {po_item.quantity_ordered} ordered",
                    details={
                        "po_item_id": po_item.id,
                        "quantity_ordered": po_item.quantity_ordered,
                        "quantity_received": new_total,
                    },
                )
            current_app.logger.warning(
                "Over-receipt on PO %s item %s: %s received, %s ordered",
                po.po_number, po_item.id, new_total, po_item.quantity_ordered,
            )
        po_item.quantity_received = new_total

    po.status = reduce_purchase_order_status(po.status, po_items)
    return po


def approve_reception(
    session,
    reception_id: int,
    *,
    approved_by_user_id: int | None = None,
    over_receipt_policy: str = OVER_RECEIPT_ALLOW,
) -> Reception:
    """
    Approve a reception: stock in, batches, purchase order reconciliation.

    Exactly once per reception. The row lock makes a concurrent second
    approval wait and then fail with RECEPTION_ALREADY_APPROVED.
    """
    reception = lock_for_update(session.query(Reception).filter_by(id=reception_id)).first()
    if reception is None:
        raise NotFoundError("Reception not found", code="RECEPTION_NOT_FOUND")
    if reception.status == "approved":
        raise AlreadyApprovedError(
            "Reception already approved",
            code="RECEPTION_ALREADY_APPROVED",
            error="reception_already_approved",
        )
    if reception.status != "pending_qc":
        raise InvalidTransitionError(f"Cannot approve a reception in status {reception.status}")
    if not reception.items:
        raise EmptyItemsError(
            "Reception has no items",
            code="RECEPTION_HAS_NO_ITEMS",
            error="reception_without_items",
        )

    for item in reception.items:
        stock_ledger.increase(
            session,
            item.product_id,
            item.location_assigned,
            item.quantity_received,
            unit_cost_cents=item.unit_cost_cents,
            movement_type="reception",
            reason=f"Reception {reception.reception_number}",
            reference_type="reception",
            reference_id=reception.id,
            performed_by_user_id=approved_by_user_id,
        )
        if item.batch_number:
            _attach_batch(session, reception, item)

    if reception.purchase_order_id is not None:
        _reconcile_purchase_order(session, reception, over_receipt_policy)

    reception.status = "approved"
    reception.approved_by_user_id = approved_by_user_id
    reception.approved_at = utcnow()
    session.flush()
    return reception


def reject_reception(session, reception_id: int, *, reason: str | None = None) -> Reception:
    reception = lock_for_update(session.query(Reception).filter_by(id=reception_id)).first()
    if reception is None:
        raise NotFoundError("Reception not found", code="RECEPTION_NOT_FOUND")
    if reception.status == "approved":
        raise AlreadyApprovedError(
            "Reception already approved",
            code="RECEPTION_ALREADY_APPROVED",
            error="reception_already_approved",
        )
    if reception.status != "pending_qc":
        raise InvalidTransitionError(f"Cannot reject a reception in status {reception.status}")

    reception.status = "rejected"
    reception.rejected_at = utcnow()
    reception.rejection_reason = reason
    session.flush()
    return reception


def list_batches(session, *, product_id: int | None = None, status: str | None = None) -> list[dict]:
    """Batches newest first, each with its product name."""
    query = session.query(ProductBatch, Product.name).join(Product, Product.id == ProductBatch.product_id)
    if product_id is not None:
        query = query.filter(ProductBatch.product_id == product_id)
    if status:
        query = query.filter(ProductBatch.status == status)

    rows = query.order_by(ProductBatch.created_at.desc(), ProductBatch.id.desc()).all()
    return [{**batch.to_dict(), "product_name": product_name} for batch, product_name in rows]


def create_quality_check(
    session,
    reception_id: int,
    *,
    product_id: int,
    result: str,
    quantity_checked: int,
    quantity_passed: int,
    quantity_failed: int,
    inspector_user_id: int | None = None,
    defect_description: str | None = None,
    action_taken: str = "approve",
    notes: str | None = None,
) -> QualityCheck:
    """
    Record an inspection of a pending reception.

    The product must be one of the reception's lines and the inspected
    quantity cannot exceed what was received for it.
    """
    if result not in QUALITY_CHECK_RESULTS:
        raise ValidationError(f"Unknown quality check result: {result}")
    if action_taken not in QUALITY_CHECK_ACTIONS:
        raise ValidationError(f"Unknown quality check action: {action_taken}")
    if min(quantity_checked, quantity_passed, quantity_failed) < 0:
        raise ValidationError("Quality check quantities cannot be negative")
    if quantity_passed + quantity_failed > quantity_checked:
        raise ValidationError(
            "quantity_passed + quantity_failed cannot exceed quantity_checked",
            details={
                "quantity_checked": quantity_checked,
                "quantity_passed": quantity_passed,
                "quantity_failed": quantity_failed,
            },
        )

    reception = lock_for_update(session.query(Reception).filter_by(id=reception_id)).first()
    if reception is None:
        raise NotFoundError("Reception not found", code="RECEPTION_NOT_FOUND")
    if reception.status != "pending_qc":
        raise InvalidTransitionError(f"Cannot inspect a reception in status {reception.status}")

    lines = [i for i in reception.items if i.product_id == product_id]
    if not lines:
        raise ValidationError(
            f"Product {product_id} is not part of reception {reception.reception_number}",
            details={"reception_id": reception.id, "product_id": product_id},
        )
    received = sum(i.quantity_received for i in lines)
    if quantity_checked > received:
        raise ValidationError(
            f"quantity_checked cannot exceed the {received} units received",
            details={"product_id": product_id, "quantity_received": received},
        )

    check = QualityCheck(
        reception_id=reception.id,
        product_id=product_id,
        inspector_user_id=inspector_user_id,
        result=result,
        quantity_checked=quantity_checked,
        quantity_passed=quantity_passed,
        quantity_failed=quantity_failed,
        defect_description=defect_description,
        action_taken=action_taken,
        notes=notes,
    )
    session.add(check)
    session.flush()
    return check
