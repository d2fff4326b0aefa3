# backend/erpcore/routes/registers.py
"""
Cash register routes: shift open/close, shift payments, manual cash movements.

Amounts are integer cents. expected_balance_cents in every response is
recomputed from the shift's payments inside the same transaction.
"""
from flask import Blueprint, request, jsonify

from ..services import audit_service
from ..services import register_service
from ..services.concurrency import unit_of_work
from ..validation import coerce_amount_cents, coerce_choice, coerce_int, coerce_positive_int, optional_str


registers_bp = Blueprint("registers", __name__, url_prefix="/api")


@registers_bp.post("/cash-registers/<int:register_id>/open")
def open_shift_route(register_id: int):
    """
    Request body:
    {
        "opening_balance_cents": 10000,
        "opened_by": 4   (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    opening_balance = coerce_amount_cents(data.get("opening_balance_cents", 0), "opening_balance_cents")
    opened_by = coerce_int(data.get("opened_by"), "opened_by", required=False)

    with unit_of_work() as session:
        shift = register_service.open_shift(
            session,
            register_id,
            opening_balance_cents=opening_balance,
            opened_by_user_id=opened_by,
        )
        shift_id = shift.id

    audit_service.log_action(
        action="OPEN_SHIFT",
        entity_type="cash_shift",
        entity_id=shift_id,
        user_id=opened_by,
        new_values={"cash_register_id": register_id, "opening_balance_cents": opening_balance},
    )
    return jsonify({"id": shift_id, "success": True}), 200


@registers_bp.get("/cash-registers/<int:register_id>/open-shift")
def get_open_shift_route(register_id: int):
    with unit_of_work() as session:
        shift, summary = register_service.get_open_shift(session, register_id)
        payload = {**shift.to_dict(), "summary": summary}
    return jsonify(payload), 200


@registers_bp.post("/cash-shifts/<int:shift_id>/payments")
def add_shift_payment_route(shift_id: int):
    data = request.get_json(silent=True) or {}
    amount = coerce_amount_cents(data.get("amount_cents"), "amount_cents", allow_zero=False)
    payment_type = coerce_choice(data.get("type"), "type", register_service.PAYMENT_TYPES, default="sale")
    payment_method = optional_str(data.get("payment_method"), "payment_method", max_length=32) or "cash"
    order_id = coerce_int(data.get("order_id"), "order_id", required=False)
    user_id = coerce_int(data.get("user_id"), "user_id", required=False)

    with unit_of_work() as session:
        payment, shift = register_service.add_shift_payment(
            session,
            shift_id,
            amount_cents=amount,
            type=payment_type,
            payment_method=payment_method,
            order_id=order_id,
        )
        payment_id = payment.id
        expected = shift.expected_balance_cents

    audit_service.log_action(
        action="ADD_SHIFT_PAYMENT",
        entity_type="shift_payment",
        entity_id=payment_id,
        user_id=user_id,
        new_values={
            "shift_id": shift_id,
            "amount_cents": amount,
            "type": payment_type,
            "expected_balance_cents": expected,
        },
    )
    return jsonify({"id": payment_id, "expected_balance_cents": expected}), 200


@registers_bp.post("/cash-shifts/<int:shift_id>/close")
def close_shift_route(shift_id: int):
    data = request.get_json(silent=True) or {}
    actual_balance = coerce_amount_cents(data.get("actual_balance_cents"), "actual_balance_cents")
    closed_by = coerce_int(data.get("closed_by"), "closed_by", required=False)
    notes = optional_str(data.get("notes"), "notes", max_length=2000)

    with unit_of_work() as session:
        shift = register_service.close_shift(
            session,
            shift_id,
            actual_balance_cents=actual_balance,
            closed_by_user_id=closed_by,
            notes=notes,
        )
        result = {
            "expected_balance_cents": shift.expected_balance_cents,
            "actual_balance_cents": shift.actual_balance_cents,
            "difference_cents": shift.difference_cents,
        }

    audit_service.log_action(
        action="CLOSE_SHIFT",
        entity_type="cash_shift",
        entity_id=shift_id,
        user_id=closed_by,
        old_values={"status": "open"},
        new_values={"status": "closed", **result},
    )
    return jsonify(result), 200


@registers_bp.post("/cash-transactions")
def create_cash_transaction_route():
    """
    Manual cash in/out on an open register.

    Request body:
    {
        "register_id": 1,
        "type": "income" | "expense",
        "amount_cents": 2500,
        "reason": "Change float top-up",
        "notes": "..."   (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    register_id = coerce_positive_int(data.get("register_id"), "register_id")
    cash_type = coerce_choice(data.get("type"), "type", {"income", "expense"})
    amount = coerce_amount_cents(data.get("amount_cents"), "amount_cents", allow_zero=False)
    reason = optional_str(data.get("reason"), "reason")
    notes = optional_str(data.get("notes"), "notes", max_length=2000)
    user_id = coerce_int(data.get("user_id"), "user_id", required=False)

    with unit_of_work() as session:
        payment, shift = register_service.create_cash_transaction(
            session,
            register_id,
            type=cash_type,
            amount_cents=amount,
            reason=reason,
            notes=notes,
        )
        result = {"id": payment.id, "success": True, "expected_balance_cents": shift.expected_balance_cents}

    audit_service.log_action(
        action="CREATE_CASH_TRANSACTION",
        entity_type="shift_payment",
        entity_id=result["id"],
        user_id=user_id,
        new_values={
            "register_id": register_id,
            "type": cash_type,
            "amount_cents": amount,
            "reason": reason,
            "expected_balance_cents": result["expected_balance_cents"],
        },
    )
    return jsonify(result), 200
