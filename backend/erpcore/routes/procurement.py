# backend/erpcore/routes/procurement.py
"""
Procurement routes: purchase orders, receptions, quality checks, supplier
returns, supplier payments.

Payloads are validated before any transaction opens. Each mutating route
runs one unit of work and writes its audit entry only after the commit.
Domain errors are rendered by the app-level error handler.
"""
from flask import Blueprint, request, jsonify, current_app

from ..services import audit_service
from ..services import reception_service
from ..services import supplier_payment_service
from ..services import supplier_return_service
from ..services.concurrency import unit_of_work
from ..extensions import db
from ..validation import (
    coerce_amount_cents,
    coerce_choice,
    coerce_date,
    coerce_int,
    coerce_positive_int,
    optional_str,
    require_items,
)


procurement_bp = Blueprint("procurement", __name__, url_prefix="/api")


def _actor_id(data: dict) -> int | None:
    return coerce_int(data.get("user_id"), "user_id", required=False)


def _parse_po_items(data: dict) -> list[dict]:
    items = []
    for index, raw in enumerate(require_items(data), start=1):
        quantity = raw.get("quantity_ordered", raw.get("quantity"))
        unit_cost = raw.get("unit_cost_cents")
        items.append({
            "product_id": coerce_positive_int(raw.get("product_id"), f"items[{index}].product_id"),
            "quantity_ordered": coerce_positive_int(quantity, f"items[{index}].quantity_ordered"),
            "unit_cost_cents": None if unit_cost is None else coerce_amount_cents(unit_cost, f"items[{index}].unit_cost_cents"),
        })
    return items


def _parse_reception_items(data: dict) -> list[dict]:
    items = []
    for index, raw in enumerate(require_items(data), start=1):
        prefix = f"items[{index}]"
        items.append({
            "product_id": coerce_positive_int(raw.get("product_id"), f"{prefix}.product_id"),
            "po_item_id": coerce_int(raw.get("po_item_id"), f"{prefix}.po_item_id", required=False),
            "quantity_expected": coerce_int(raw.get("quantity_expected"), f"{prefix}.quantity_expected", required=False, default=0),
            "quantity_received": coerce_positive_int(raw.get("quantity_received"), f"{prefix}.quantity_received"),
            "unit_cost_cents": coerce_amount_cents(raw.get("unit_cost_cents", 0), f"{prefix}.unit_cost_cents"),
            "location_assigned": optional_str(raw.get("location_assigned"), f"{prefix}.location_assigned", max_length=64),
            "batch_number": optional_str(raw.get("batch_number"), f"{prefix}.batch_number", max_length=64),
            "expiration_date": coerce_date(raw.get("expiration_date"), f"{prefix}.expiration_date"),
            "notes": optional_str(raw.get("notes"), f"{prefix}.notes", max_length=2000),
        })
    return items


def _parse_return_items(data: dict) -> list[dict]:
    items = []
    for index, raw in enumerate(require_items(data), start=1):
        prefix = f"items[{index}]"
        unit_cost = raw.get("unit_cost_cents")
        items.append({
            "product_id": coerce_positive_int(raw.get("product_id"), f"{prefix}.product_id"),
            "quantity": coerce_positive_int(raw.get("quantity"), f"{prefix}.quantity"),
            "unit_cost_cents": None if unit_cost is None else coerce_amount_cents(unit_cost, f"{prefix}.unit_cost_cents"),
            "reason": optional_str(raw.get("reason"), f"{prefix}.reason"),
        })
    return items


# =============================================================================
# PURCHASE ORDERS
# =============================================================================

@procurement_bp.post("/purchase-orders")
def create_purchase_order_route():
    """
    Create a draft purchase order.

    Request body:
    {
        "supplier_id": 1,
        "order_date": "2024-05-01",            (optional, default: today)
        "expected_delivery_date": "2024-05-10", (optional)
        "items": [{"product_id": 3, "quantity_ordered": 10, "unit_cost_cents": 450}],
        "notes": "..."                          (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    user_id = _actor_id(data)
    supplier_id = coerce_positive_int(data.get("supplier_id"), "supplier_id")
    items = _parse_po_items(data)
    order_date = coerce_date(data.get("order_date"), "order_date")
    expected_delivery_date = coerce_date(data.get("expected_delivery_date"), "expected_delivery_date")
    notes = optional_str(data.get("notes"), "notes", max_length=2000)

    with unit_of_work() as session:
        po = reception_service.create_purchase_order(
            session,
            supplier_id=supplier_id,
            items=items,
            order_date=order_date,
            expected_delivery_date=expected_delivery_date,
            notes=notes,
            tax_rate_bps=current_app.config["DEFAULT_TAX_RATE_BPS"],
        )
        result = {"id": po.id, "po_number": po.po_number}
        snapshot = po.to_dict(include_items=True)

    audit_service.log_action(
        action="CREATE_PURCHASE_ORDER",
        entity_type="purchase_order",
        entity_id=result["id"],
        user_id=user_id,
        new_values=snapshot,
    )
    return jsonify(result), 200


@procurement_bp.get("/purchase-orders/<int:po_id>")
def get_purchase_order_route(po_id: int):
    po = reception_service.get_purchase_order(db.session, po_id)
    return jsonify(po.to_dict(include_items=True)), 200


@procurement_bp.put("/purchase-orders/<int:po_id>/status")
def update_purchase_order_status_route(po_id: int):
    data = request.get_json(silent=True) or {}
    user_id = _actor_id(data)
    status = reception_service.normalize_po_status(data.get("status"))

    with unit_of_work() as session:
        po = reception_service.update_purchase_order_status(session, po_id, status)
        payload = po.to_dict(include_items=True)

    audit_service.log_action(
        action="UPDATE_PURCHASE_ORDER_STATUS",
        entity_type="purchase_order",
        entity_id=po_id,
        user_id=user_id,
        new_values={"status": payload["status"]},
    )
    return jsonify(payload), 200


# =============================================================================
# RECEPTIONS
# =============================================================================

@procurement_bp.post("/receptions")
def create_reception_route():
    """
    Register a reception (status: pending_qc).

    Request body:
    {
        "purchase_order_id": 7,   (optional)
        "supplier_id": 1,         (optional when purchase_order_id is given)
        "remito_number": "R-0001-00001234",
        "items": [{"product_id": 3, "quantity_received": 10, "po_item_id": 12,
                   "location_assigned": "A1", "batch_number": "L-22", "expiration_date": "2025-01-31"}]
    }
    """
    data = request.get_json(silent=True) or {}
    user_id = _actor_id(data)
    purchase_order_id = coerce_int(data.get("purchase_order_id"), "purchase_order_id", required=False)
    supplier_id = coerce_int(data.get("supplier_id"), "supplier_id", required=False)
    items = _parse_reception_items(data)
    remito_number = optional_str(data.get("remito_number"), "remito_number", max_length=64)
    notes = optional_str(data.get("notes"), "notes", max_length=2000)

    with unit_of_work() as session:
        reception = reception_service.create_reception(
            session,
            items=items,
            purchase_order_id=purchase_order_id,
            supplier_id=supplier_id,
            remito_number=remito_number,
            notes=notes,
            default_location=current_app.config["DEFAULT_LOCATION"],
        )
        result = {"id": reception.id, "reception_number": reception.reception_number}
        snapshot = reception.to_dict(include_items=True)

    audit_service.log_action(
        action="CREATE_RECEPTION",
        entity_type="reception",
        entity_id=result["id"],
        user_id=user_id,
        new_values=snapshot,
    )
    return jsonify(result), 200


@procurement_bp.get("/receptions")
def list_receptions_route():
    """Query params: status, purchase_order_id, supplier_id, limit (default 100, max 500)."""
    args = request.args
    status = args.get("status")
    if status:
        status = coerce_choice(status, "status", reception_service.RECEPTION_STATUSES)

    receptions = reception_service.list_receptions(
        db.session,
        status=status or None,
        purchase_order_id=coerce_int(args.get("purchase_order_id"), "purchase_order_id", required=False),
        supplier_id=coerce_int(args.get("supplier_id"), "supplier_id", required=False),
        limit=coerce_int(args.get("limit"), "limit", required=False, default=100),
    )
    return jsonify({"receptions": [r.to_dict() for r in receptions], "count": len(receptions)}), 200


@procurement_bp.get("/receptions/<int:reception_id>")
def get_reception_route(reception_id: int):
    reception = reception_service.get_reception(db.session, reception_id)
    return jsonify(reception.to_dict(include_items=True)), 200


@procurement_bp.post("/receptions/<int:reception_id>/approve")
def approve_reception_route(reception_id: int):
    """
    Approve a reception: stock in, batches, purchase order reconciliation.

    Returns:
        200: {"success": true}
        404: reception not found
        409: reception_already_approved / over_receipt / invalid_transition
        400: reception_without_items
    """
    data = request.get_json(silent=True) or {}
    approved_by = coerce_int(data.get("approved_by"), "approved_by", required=False)

    with unit_of_work() as session:
        reception = reception_service.approve_reception(
            session,
            reception_id,
            approved_by_user_id=approved_by,
            over_receipt_policy=current_app.config["OVER_RECEIPT_POLICY"],
        )
        purchase_order_id = reception.purchase_order_id

    audit_service.log_action(
        action="APPROVE_RECEPTION",
        entity_type="reception",
        entity_id=reception_id,
        user_id=approved_by,
        old_values={"status": "pending_qc"},
        new_values={"status": "approved", "approved_by": approved_by, "purchase_order_id": purchase_order_id},
    )
    return jsonify({"success": True}), 200


@procurement_bp.post("/receptions/<int:reception_id>/reject")
def reject_reception_route(reception_id: int):
    data = request.get_json(silent=True) or {}
    user_id = _actor_id(data)
    reason = optional_str(data.get("reason"), "reason", max_length=2000)

    with unit_of_work() as session:
        reception = reception_service.reject_reception(session, reception_id, reason=reason)
        payload = reception.to_dict()

    audit_service.log_action(
        action="REJECT_RECEPTION",
        entity_type="reception",
        entity_id=reception_id,
        user_id=user_id,
        old_values={"status": "pending_qc"},
        new_values={"status": "rejected", "reason": reason},
    )
    return jsonify(payload), 200


@procurement_bp.post("/receptions/<int:reception_id>/quality-checks")
def create_quality_check_route(reception_id: int):
    """
    Record an inspection of a pending reception. No stock moves here.

    Request body:
    {
        "product_id": 3,
        "result": "pass",             (pass | fail | conditional)
        "quantity_checked": 10,
        "quantity_passed": 9,
        "quantity_failed": 1,
        "inspector_id": 4,            (optional)
        "defect_description": "...", (optional)
        "action_taken": "approve",    (optional: approve | reject | return_to_supplier | discount)
        "notes": "..."                (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    inspector_id = coerce_int(data.get("inspector_id"), "inspector_id", required=False)
    user_id = _actor_id(data) or inspector_id
    fields = {
        "product_id": coerce_positive_int(data.get("product_id"), "product_id"),
        "result": coerce_choice(data.get("result"), "result", reception_service.QUALITY_CHECK_RESULTS),
        "quantity_checked": coerce_int(data.get("quantity_checked"), "quantity_checked"),
        "quantity_passed": coerce_int(data.get("quantity_passed"), "quantity_passed"),
        "quantity_failed": coerce_int(data.get("quantity_failed"), "quantity_failed"),
        "defect_description": optional_str(data.get("defect_description"), "defect_description", max_length=2000),
        "action_taken": coerce_choice(
            data.get("action_taken"), "action_taken", reception_service.QUALITY_CHECK_ACTIONS, default="approve"
        ),
        "notes": optional_str(data.get("notes"), "notes", max_length=2000),
    }

    with unit_of_work() as session:
        check = reception_service.create_quality_check(
            session,
            reception_id,
            inspector_user_id=inspector_id,
            **fields,
        )
        snapshot = check.to_dict()

    audit_service.log_action(
        action="CREATE_QUALITY_CHECK",
        entity_type="quality_check",
        entity_id=snapshot["id"],
        user_id=user_id,
        new_values=snapshot,
    )
    return jsonify({"id": snapshot["id"], "success": True}), 200


@procurement_bp.get("/receptions/<int:reception_id>/quality-checks")
def list_quality_checks_route(reception_id: int):
    reception = reception_service.get_reception(db.session, reception_id)
    return jsonify([check.to_dict() for check in reception.quality_checks]), 200


# =============================================================================
# SUPPLIER RETURNS
# =============================================================================

@procurement_bp.post("/returns")
def create_supplier_return_route():
    data = request.get_json(silent=True) or {}
    user_id = _actor_id(data)
    supplier_id = coerce_positive_int(data.get("supplier_id"), "supplier_id")
    items = _parse_return_items(data)
    notes = optional_str(data.get("notes"), "notes", max_length=2000)

    with unit_of_work() as session:
        supplier_return = supplier_return_service.create_supplier_return(
            session,
            supplier_id=supplier_id,
            items=items,
            notes=notes,
        )
        result = {"id": supplier_return.id, "return_number": supplier_return.return_number}
        snapshot = supplier_return.to_dict(include_items=True)

    audit_service.log_action(
        action="CREATE_SUPPLIER_RETURN",
        entity_type="supplier_return",
        entity_id=result["id"],
        user_id=user_id,
        new_values=snapshot,
    )
    return jsonify(result), 200


@procurement_bp.get("/returns/<int:return_id>")
def get_supplier_return_route(return_id: int):
    supplier_return = supplier_return_service.get_supplier_return(db.session, return_id)
    return jsonify(supplier_return.to_dict(include_items=True)), 200


@procurement_bp.post("/returns/<int:return_id>/approve")
def approve_supplier_return_route(return_id: int):
    data = request.get_json(silent=True) or {}
    user_id = _actor_id(data)

    with unit_of_work() as session:
        supplier_return = supplier_return_service.approve_supplier_return(
            session,
            return_id,
            performed_by_user_id=user_id,
        )
        total = supplier_return.total_amount_cents

    audit_service.log_action(
        action="APPROVE_SUPPLIER_RETURN",
        entity_type="supplier_return",
        entity_id=return_id,
        user_id=user_id,
        old_values={"status": "draft"},
        new_values={"status": "approved", "total_amount_cents": total},
    )
    return jsonify({"success": True}), 200


# =============================================================================
# SUPPLIER PAYMENTS
# =============================================================================

def _parse_payment_lines(data: dict) -> list[dict]:
    lines = []
    for index, raw in enumerate(require_items(data, "payments"), start=1):
        prefix = f"payments[{index}]"
        lines.append({
            "amount_cents": coerce_amount_cents(raw.get("amount_cents"), f"{prefix}.amount_cents", allow_zero=False),
            "payment_method": optional_str(raw.get("payment_method"), f"{prefix}.payment_method", max_length=100),
            "reference_number": optional_str(raw.get("reference_number"), f"{prefix}.reference_number", max_length=64),
        })
    return lines


@procurement_bp.post("/supplier-payments")
def create_supplier_payment_route():
    """
    Pay a supplier.

    Request body:
    {
        "supplier_id": 1,
        "payment_date": "2024-05-01",   (optional, default: today)
        "notes": "...",                 (optional)
        "payments": [{"amount_cents": 5000, "payment_method": "transfer", "reference_number": "TR-99"}]
    }

    Returns:
        200: {"ids", "total_amount_cents", "account_balance_cents"}
    """
    data = request.get_json(silent=True) or {}
    user_id = _actor_id(data)
    supplier_id = coerce_positive_int(data.get("supplier_id"), "supplier_id")
    lines = _parse_payment_lines(data)
    payment_date = coerce_date(data.get("payment_date"), "payment_date")
    notes = optional_str(data.get("notes"), "notes", max_length=2000)

    with unit_of_work() as session:
        payments, total = supplier_payment_service.create_supplier_payment(
            session,
            supplier_id=supplier_id,
            payments=lines,
            payment_date=payment_date,
            notes=notes,
        )
        result = {
            "ids": [p.id for p in payments],
            "total_amount_cents": total,
            "account_balance_cents": payments[0].supplier.account_balance_cents,
        }

    audit_service.log_action(
        action="CREATE_SUPPLIER_PAYMENT",
        entity_type="supplier_payment",
        entity_id=result["ids"][0],
        user_id=user_id,
        new_values={"supplier_id": supplier_id, "payments": lines, "total_amount_cents": total},
    )
    return jsonify(result), 200


@procurement_bp.get("/supplier-payments")
def list_supplier_payments_route():
    supplier_id = coerce_int(request.args.get("supplier_id"), "supplier_id", required=False)
    payments = supplier_payment_service.list_supplier_payments(db.session, supplier_id=supplier_id)
    return jsonify([p.to_dict() for p in payments]), 200
