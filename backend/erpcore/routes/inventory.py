# backend/erpcore/routes/inventory.py
"""
Inventory routes: stock per product, movement history, batches, manual corrections.

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- start_date / end_date filters are inclusive; a bare YYYY-MM-DD end_date covers that whole day.
"""
from flask import Blueprint, request, jsonify, current_app

from ..models import MOVEMENT_TYPES
from ..services import audit_service
from ..services import reception_service
from ..services import stock_ledger
from ..services.concurrency import unit_of_work
from ..extensions import db
from ..validation import coerce_choice, coerce_date_bound, coerce_int, coerce_positive_int, optional_str
from ..errors import ValidationError


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/products/<int:product_id>/stock")
def get_stock_route(product_id: int):
    return jsonify(stock_ledger.get_stock(db.session, product_id)), 200


@inventory_bp.get("/movements")
def list_movements_route():
    """
    Movement history, newest first.

    Query params: product_id, type, start_date, end_date, reference_type,
    reference_id, limit (default 100, max 500).
    """
    args = request.args
    movement_type = args.get("type")
    if movement_type:
        movement_type = coerce_choice(movement_type, "type", MOVEMENT_TYPES)

    movements = stock_ledger.list_movements(
        db.session,
        product_id=coerce_int(args.get("product_id"), "product_id", required=False),
        movement_type=movement_type,
        start_date=coerce_date_bound(args.get("start_date"), "start_date"),
        end_date=coerce_date_bound(args.get("end_date"), "end_date"),
        reference_type=args.get("reference_type") or None,
        reference_id=coerce_int(args.get("reference_id"), "reference_id", required=False),
        limit=coerce_int(args.get("limit"), "limit", required=False, default=100),
    )
    return jsonify({"movements": [m.to_dict() for m in movements], "count": len(movements)}), 200


@inventory_bp.get("/batches")
def list_batches_route():
    """Batches newest first. Query params: product_id, status."""
    batches = reception_service.list_batches(
        db.session,
        product_id=coerce_int(request.args.get("product_id"), "product_id", required=False),
        status=optional_str(request.args.get("status"), "status", max_length=16),
    )
    return jsonify(batches), 200


@inventory_bp.post("/adjustments")
def adjust_inventory_route():
    """
    Manual correction at one location.

    Request body:
    {
        "product_id": 3,
        "location": "A1",          (optional, default: DEFAULT_LOCATION)
        "quantity_change": -2,     (non-zero)
        "reason": "Damaged",
        "notes": "..."             (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    product_id = coerce_positive_int(data.get("product_id"), "product_id")
    quantity_change = coerce_int(data.get("quantity_change"), "quantity_change")
    if quantity_change == 0:
        raise ValidationError("quantity_change cannot be zero")
    location = optional_str(data.get("location"), "location", max_length=64) or current_app.config["DEFAULT_LOCATION"]
    reason = optional_str(data.get("reason"), "reason")
    notes = optional_str(data.get("notes"), "notes", max_length=2000)
    user_id = coerce_int(data.get("user_id"), "user_id", required=False)

    with unit_of_work() as session:
        movement = stock_ledger.adjust(
            session,
            product_id,
            location,
            quantity_change,
            reason=reason,
            notes=notes,
            performed_by_user_id=user_id,
        )
        payload = movement.to_dict()

    audit_service.log_action(
        action="ADJUST_INVENTORY",
        entity_type="inventory_movement",
        entity_id=payload["id"],
        user_id=user_id,
        new_values={"product_id": product_id, "location": location, "quantity_change": quantity_change, "reason": reason},
    )
    return jsonify(payload), 200


@inventory_bp.post("/transfers")
def transfer_inventory_route():
    data = request.get_json(silent=True) or {}
    product_id = coerce_positive_int(data.get("product_id"), "product_id")
    quantity = coerce_positive_int(data.get("quantity"), "quantity")
    from_location = optional_str(data.get("from_location"), "from_location", max_length=64)
    to_location = optional_str(data.get("to_location"), "to_location", max_length=64)
    if not from_location or not to_location:
        raise ValidationError("from_location and to_location are required")
    reason = optional_str(data.get("reason"), "reason")
    notes = optional_str(data.get("notes"), "notes", max_length=2000)
    user_id = coerce_int(data.get("user_id"), "user_id", required=False)

    with unit_of_work() as session:
        movement = stock_ledger.transfer(
            session,
            product_id,
            from_location,
            to_location,
            quantity,
            reason=reason,
            notes=notes,
            performed_by_user_id=user_id,
        )
        payload = movement.to_dict()

    audit_service.log_action(
        action="TRANSFER_INVENTORY",
        entity_type="inventory_movement",
        entity_id=payload["id"],
        user_id=user_id,
        new_values={
            "product_id": product_id,
            "from_location": from_location,
            "to_location": to_location,
            "quantity": quantity,
        },
    )
    return jsonify(payload), 200
