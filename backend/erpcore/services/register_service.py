# Overview: Cash register shifts; expected balance is always recomputed from the shift's payments.

from __future__ import annotations

from sqlalchemy import case, func

from ..models import CashRegister, CashShift, FinancialTransaction, ShiftPayment
from ..errors import (
    AlreadyClosedError,
    AlreadyOpenError,
    ClosedRegisterError,
    NotFoundError,
    ValidationError,
)
from erpcore.time_utils import utcnow
from .concurrency import lock_for_update


INFLOW_TYPES = ("sale", "income")
OUTFLOW_TYPES = ("refund", "expense")
PAYMENT_TYPES = set(INFLOW_TYPES) | set(OUTFLOW_TYPES)


# =============================================================================
# BALANCE
# =============================================================================

def calculate_expected_balance(session, shift: CashShift) -> dict:
    """
    expected = opening + sum(sale, income) - sum(refund, expense)

    Computed from the ShiftPayment rows every time; never incremented.
    """
    inflow, outflow = (
        session.query(
            func.coalesce(func.sum(case((ShiftPayment.type.in_(INFLOW_TYPES), ShiftPayment.amount_cents), else_=0)), 0),
            func.coalesce(func.sum(case((ShiftPayment.type.in_(OUTFLOW_TYPES), ShiftPayment.amount_cents), else_=0)), 0),
        )
        .filter(ShiftPayment.shift_id == shift.id)
        .one()
    )
    opening = shift.opening_balance_cents or 0
    return {
        "opening_balance_cents": opening,
        "inflow_cents": int(inflow),
        "outflow_cents": int(outflow),
        "expected_balance_cents": opening + int(inflow) - int(outflow),
    }


def _refresh_expected_balance(session, shift: CashShift) -> int:
    session.flush()
    shift.expected_balance_cents = calculate_expected_balance(session, shift)["expected_balance_cents"]
    return shift.expected_balance_cents


# =============================================================================
# SHIFT MANAGEMENT
# =============================================================================

def open_shift(
    session,
    register_id: int,
    *,
    opening_balance_cents: int = 0,
    opened_by_user_id: int | None = None,
) -> CashShift:
    """
    Open a shift on a register.

    The register row is locked before its status is read, so two
    concurrent opens cannot both succeed.
    """
    register = lock_for_update(session.query(CashRegister).filter_by(id=register_id)).first()
    if register is None:
        raise NotFoundError("Cash register not found", code="REGISTER_NOT_FOUND")
    if register.status == "open":
        raise AlreadyOpenError(
            "Cash register already has an open shift",
            details={"current_shift_id": register.current_shift_id},
        )

    shift = CashShift(
        cash_register_id=register.id,
        opened_by_user_id=opened_by_user_id,
        status="open",
        opening_balance_cents=opening_balance_cents,
        expected_balance_cents=opening_balance_cents,
        opened_at=utcnow(),
    )
    session.add(shift)
    session.flush()

    register.status = "open"
    register.current_shift_id = shift.id
    session.flush()
    return shift


def add_shift_payment(
    session,
    shift_id: int,
    *,
    amount_cents: int,
    type: str = "sale",
    payment_method: str = "cash",
    order_id: int | None = None,
) -> tuple[ShiftPayment, CashShift]:
    if type not in PAYMENT_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(sorted(PAYMENT_TYPES))}")
    if amount_cents <= 0:
        raise ValidationError("amount_cents must be positive")

    shift = lock_for_update(session.query(CashShift).filter_by(id=shift_id, status="open")).first()
    if shift is None:
        raise NotFoundError("Open shift not found", code="SHIFT_NOT_FOUND")

    payment = ShiftPayment(
        shift_id=shift.id,
        order_id=order_id,
        payment_method=payment_method or "cash",
        amount_cents=amount_cents,
        type=type,
    )
    session.add(payment)
    _refresh_expected_balance(session, shift)
    session.flush()
    return payment, shift


def close_shift(
    session,
    shift_id: int,
    *,
    actual_balance_cents: int,
    closed_by_user_id: int | None = None,
    notes: str | None = None,
) -> CashShift:
    """
    Close a shift and compute the cash difference.

    difference = actual - expected (negative means cash is missing).
    IMMUTABLE: a closed shift is never reopened.
    """
    shift = lock_for_update(session.query(CashShift).filter_by(id=shift_id)).first()
    if shift is None:
        raise NotFoundError("Shift not found", code="SHIFT_NOT_FOUND")
    if shift.status != "open":
        raise AlreadyClosedError("Shift already closed")

    expected = _refresh_expected_balance(session, shift)

    shift.status = "closed"
    shift.actual_balance_cents = actual_balance_cents
    shift.difference_cents = actual_balance_cents - expected
    shift.closed_by_user_id = closed_by_user_id
    shift.closed_at = utcnow()
    shift.notes = notes

    register = lock_for_update(session.query(CashRegister).filter_by(id=shift.cash_register_id)).first()
    if register is not None:
        register.status = "closed"
        register.current_shift_id = None

    session.flush()
    return shift


def get_open_shift(session, register_id: int) -> tuple[CashShift, dict]:
    """Live shift of a register with a freshly computed balance summary."""
    register = session.get(CashRegister, register_id)
    if register is None:
        raise NotFoundError("Cash register not found", code="REGISTER_NOT_FOUND")

    shift = None
    if register.status == "open" and register.current_shift_id:
        shift = session.query(CashShift).filter_by(id=register.current_shift_id, status="open").first()
    if shift is None:
        raise NotFoundError("Cash register has no open shift", code="NO_OPEN_SHIFT", error="no_open_shift")

    summary = calculate_expected_balance(session, shift)
    shift.expected_balance_cents = summary["expected_balance_cents"]
    session.flush()
    return shift, summary


def create_cash_transaction(
    session,
    register_id: int,
    *,
    type: str,
    amount_cents: int,
    reason: str | None = None,
    notes: str | None = None,
) -> tuple[ShiftPayment, CashShift]:
    """
    Manual cash in/out outside the sales flow.

    Writes the shift payment and a mirrored adjustment transaction, then
    recomputes the shift's expected balance.
    """
    if type not in {"income", "expense"}:
        raise ValidationError("type must be income or expense")
    if amount_cents <= 0:
        raise ValidationError("amount_cents must be positive")

    register = lock_for_update(session.query(CashRegister).filter_by(id=register_id)).first()
    if register is None:
        raise NotFoundError("Cash register not found", code="REGISTER_NOT_FOUND")
    if register.status != "open" or not register.current_shift_id:
        raise ClosedRegisterError("Cash register must be open to record cash movements")

    shift = lock_for_update(session.query(CashShift).filter_by(id=register.current_shift_id)).first()
    if shift is None or shift.status != "open":
        raise ClosedRegisterError(
            "Cash register has no open shift",
            details={"register_id": register.id, "shift_id": register.current_shift_id},
        )

    payment = ShiftPayment(
        shift_id=shift.id,
        payment_method="cash",
        amount_cents=amount_cents,
        type=type,
    )
    session.add(payment)
    session.flush()

    label = "Cash income" if type == "income" else "Cash expense"
    description = f"{label}: {reason or 'manual'}"
    if notes:
        description = f"{description} ({notes})"
    session.add(
        FinancialTransaction(
            type="adjustment",
            amount_cents=amount_cents,
            description=description[:255],
            reference_id=payment.id,
        )
    )

    _refresh_expected_balance(session, shift)
    session.flush()
    return payment, shift
