# Overview: Stock ledger; the only writer of StockLot quantities and InventoryMovement rows.

from __future__ import annotations

"""
Stock ledger invariants (authoritative)

Model:
- StockLot holds the on-hand quantity of one product at one location.
- InventoryMovement rows are immutable. Every lot change is paired with
  exactly one movement in the same transaction.
- Signed movement value: +quantity when only to_location is set,
  -quantity when only from_location is set, 0 net for a transfer.

Business invariants:
- A lot never goes below zero (also enforced by a CHECK constraint).
- For every (product, location): lot.quantity equals the sum of inbound
  movements minus outbound movements at that location.
- decrease() locks every lot of the product with quantity > 0, computes
  availability from that locked set and fails before any write when it
  falls short. No partial consumption is ever visible.
- Non-positive quantities are rejected, never clamped.

Allocation:
- Policies are plain functions (lots) -> ordered lots.
- largest_first is the default: quantity descending, ties by location.
  It keeps the number of touched rows low for single-location stock
  while still spilling over to other locations.
"""

from datetime import date, datetime, time, timedelta

from sqlalchemy import and_, case, func

from ..models import InventoryMovement, Product, StockLot, MOVEMENT_TYPES
from ..errors import InsufficientStockError, NotFoundError, ValidationError
from .concurrency import lock_for_update


# =============================================================================
# ALLOCATION POLICIES
# =============================================================================

def largest_first(lots: list[StockLot]) -> list[StockLot]:
    return sorted(lots, key=lambda lot: (-lot.quantity, lot.location))


def oldest_first(lots: list[StockLot]) -> list[StockLot]:
    # Lot ids are assigned in creation order
    return sorted(lots, key=lambda lot: lot.id)


# =============================================================================
# HELPERS
# =============================================================================

def _require_positive_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity must be an integer")
    if quantity <= 0:
        raise ValidationError("quantity must be positive")
    return quantity


def _get_product(session, product_id: int) -> Product:
    product = session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", code="PRODUCT_NOT_FOUND")
    return product


def _lock_lot(session, product_id: int, location: str, *, create: bool = True) -> StockLot | None:
    """Lock the (product, location) lot, creating an empty one when missing."""
    lot = lock_for_update(
        session.query(StockLot).filter_by(product_id=product_id, location=location)
    ).first()
    if lot is None and create:
        lot = StockLot(product_id=product_id, location=location, quantity=0)
        session.add(lot)
        session.flush()
    return lot


# =============================================================================
# CORE OPERATIONS
# =============================================================================

def record_movement(
    session,
    movement_type: str,
    product_id: int,
    quantity: int,
    *,
    from_location: str | None = None,
    to_location: str | None = None,
    unit_cost_cents: int = 0,
    reason: str | None = None,
    reference_type: str = "manual",
    reference_id: int | None = None,
    notes: str | None = None,
    performed_by_user_id: int | None = None,
) -> InventoryMovement:
    """Insert one immutable ledger row. Does not touch any lot."""
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement type: {movement_type}")
    _require_positive_quantity(quantity)
    if not from_location and not to_location:
        raise ValidationError("A movement needs from_location, to_location or both")

    movement = InventoryMovement(
        type=movement_type,
        product_id=product_id,
        from_location=from_location,
        to_location=to_location,
        quantity=quantity,
        unit_cost_cents=unit_cost_cents or 0,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        performed_by_user_id=performed_by_user_id,
    )
    session.add(movement)
    return movement


def increase(
    session,
    product_id: int,
    location: str,
    quantity: int,
    *,
    unit_cost_cents: int = 0,
    movement_type: str = "reception",
    reason: str | None = None,
    reference_type: str = "manual",
    reference_id: int | None = None,
    notes: str | None = None,
    performed_by_user_id: int | None = None,
) -> StockLot:
    """
    Add quantity to the (product, location) lot and record the inbound movement.

    The lot is created on first use.
    """
    _require_positive_quantity(quantity)
    if not location:
        raise ValidationError("location is required")
    _get_product(session, product_id)

    lot = _lock_lot(session, product_id, location)
    lot.quantity += quantity

    record_movement(
        session,
        movement_type,
        product_id,
        quantity,
        to_location=location,
        unit_cost_cents=unit_cost_cents,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        performed_by_user_id=performed_by_user_id,
    )
    session.flush()
    return lot


def decrease(
    session,
    product_id: int,
    quantity: int,
    *,
    reference_type: str = "order",
    reference_id: int | None = None,
    reason: str | None = None,
    movement_type: str = "sale",
    policy=largest_first,
    performed_by_user_id: int | None = None,
) -> list[InventoryMovement]:
    """
    Consume quantity across the product's lots.

    Every lot with stock is locked first. If the locked total is short the
    call raises InsufficientStockError without having written anything;
    otherwise lots are drained in policy order and one outbound movement
    is written per lot touched.
    """
    _require_positive_quantity(quantity)
    product = _get_product(session, product_id)

    lots = lock_for_update(
        session.query(StockLot)
        .filter(StockLot.product_id == product_id, StockLot.quantity > 0)
        .order_by(StockLot.quantity.desc(), StockLot.location)
    ).all()

    available = sum(lot.quantity for lot in lots)
    if available < quantity:
        raise InsufficientStockError(product_id, quantity, available, product_name=product.name)

    remaining = quantity
    movements = []
    for lot in policy(lots):
        if remaining <= 0:
            break
        take = min(lot.quantity, remaining)
        lot.quantity -= take
        remaining -= take
        movements.append(
            record_movement(
                session,
                movement_type,
                product_id,
                take,
                from_location=lot.location,
                unit_cost_cents=product.purchase_price_cents,
                reason=reason,
                reference_type=reference_type,
                reference_id=reference_id,
                performed_by_user_id=performed_by_user_id,
            )
        )

    session.flush()
    return movements


def transfer(
    session,
    product_id: int,
    from_location: str,
    to_location: str,
    quantity: int,
    *,
    reason: str | None = None,
    notes: str | None = None,
    performed_by_user_id: int | None = None,
) -> InventoryMovement:
    """
    Move stock between two locations of the same product.

    Both lots are locked in location-name order so two opposite transfers
    cannot deadlock each other. Net product quantity is unchanged.
    """
    _require_positive_quantity(quantity)
    if not from_location or not to_location:
        raise ValidationError("from_location and to_location are required")
    if from_location == to_location:
        raise ValidationError("from_location and to_location must differ")
    product = _get_product(session, product_id)

    locked = {
        lot.location: lot
        for lot in lock_for_update(
            session.query(StockLot)
            .filter(
                StockLot.product_id == product_id,
                StockLot.location.in_([from_location, to_location]),
            )
            .order_by(StockLot.location)
        ).all()
    }

    source = locked.get(from_location)
    available = source.quantity if source is not None else 0
    if available < quantity:
        raise InsufficientStockError(product_id, quantity, available, product_name=product.name)

    destination = locked.get(to_location)
    if destination is None:
        destination = StockLot(product_id=product_id, location=to_location, quantity=0)
        session.add(destination)

    source.quantity -= quantity
    destination.quantity += quantity

    movement = record_movement(
        session,
        "transfer",
        product_id,
        quantity,
        from_location=from_location,
        to_location=to_location,
        unit_cost_cents=product.purchase_price_cents,
        reason=reason,
        reference_type="transfer",
        notes=notes,
        performed_by_user_id=performed_by_user_id,
    )
    session.flush()
    return movement


def adjust(
    session,
    product_id: int,
    location: str,
    quantity_change: int,
    *,
    reason: str | None = None,
    notes: str | None = None,
    performed_by_user_id: int | None = None,
) -> InventoryMovement:
    """
    Manual correction at one location (count differences, damage, ...).

    Positive changes add stock, negative changes remove it. A correction
    may not take the lot below zero.
    """
    if isinstance(quantity_change, bool) or not isinstance(quantity_change, int):
        raise ValidationError("quantity_change must be an integer")
    if quantity_change == 0:
        raise ValidationError("quantity_change cannot be zero")
    if not location:
        raise ValidationError("location is required")
    product = _get_product(session, product_id)

    if quantity_change > 0:
        lot = _lock_lot(session, product_id, location)
        lot.quantity += quantity_change
        movement = record_movement(
            session,
            "adjustment",
            product_id,
            quantity_change,
            to_location=location,
            unit_cost_cents=product.purchase_price_cents,
            reason=reason,
            reference_type="adjustment",
            notes=notes,
            performed_by_user_id=performed_by_user_id,
        )
    else:
        removed = -quantity_change
        lot = _lock_lot(session, product_id, location, create=False)
        available = lot.quantity if lot is not None else 0
        if available < removed:
            raise InsufficientStockError(product_id, removed, available, product_name=product.name)
        lot.quantity -= removed
        movement = record_movement(
            session,
            "adjustment",
            product_id,
            removed,
            from_location=location,
            unit_cost_cents=product.purchase_price_cents,
            reason=reason,
            reference_type="adjustment",
            notes=notes,
            performed_by_user_id=performed_by_user_id,
        )

    session.flush()
    return movement


def restore_order_stock(session, order_id: int, *, performed_by_user_id: int | None = None) -> list[InventoryMovement]:
    """
    Put back exactly what an order consumed.

    Reads the order's sale movements and credits each source location with
    a restock movement. Used when an order is cancelled.
    """
    consumed = (
        session.query(
            InventoryMovement.product_id,
            InventoryMovement.from_location,
            func.sum(InventoryMovement.quantity),
        )
        .filter(
            InventoryMovement.type == "sale",
            InventoryMovement.reference_type == "order",
            InventoryMovement.reference_id == order_id,
            InventoryMovement.from_location.isnot(None),
        )
        .group_by(InventoryMovement.product_id, InventoryMovement.from_location)
        .order_by(InventoryMovement.product_id, InventoryMovement.from_location)
        .all()
    )

    movements = []
    for product_id, location, quantity in consumed:
        lot = _lock_lot(session, product_id, location)
        lot.quantity += int(quantity)
        movements.append(
            record_movement(
                session,
                "restock",
                product_id,
                int(quantity),
                to_location=location,
                reason="Order cancelled",
                reference_type="order",
                reference_id=order_id,
                performed_by_user_id=performed_by_user_id,
            )
        )

    session.flush()
    return movements


# =============================================================================
# QUERIES
# =============================================================================

def get_stock(session, product_id: int) -> dict:
    """Lots of one product plus the total across locations."""
    product = _get_product(session, product_id)
    lots = (
        session.query(StockLot)
        .filter_by(product_id=product_id)
        .order_by(StockLot.location)
        .all()
    )
    return {
        "product_id": product.id,
        "product_name": product.name,
        "total_quantity": sum(lot.quantity for lot in lots),
        "lots": [lot.to_dict() for lot in lots],
    }


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min)


def list_movements(
    session,
    *,
    product_id: int | None = None,
    movement_type: str | None = None,
    start_date: date | datetime | None = None,
    end_date: date | datetime | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    limit: int = 100,
) -> list[InventoryMovement]:
    """
    Movement history, newest first.

    Both bounds are inclusive. A plain date bound covers the whole day:
    end_date=2026-03-01 keeps everything before 2026-03-02 00:00.
    """
    query = session.query(InventoryMovement)
    if product_id is not None:
        query = query.filter(InventoryMovement.product_id == product_id)
    if movement_type:
        query = query.filter(InventoryMovement.type == movement_type)
    if start_date is not None:
        if not isinstance(start_date, datetime):
            start_date = _day_start(start_date)
        query = query.filter(InventoryMovement.created_at >= start_date)
    if end_date is not None:
        if isinstance(end_date, datetime):
            query = query.filter(InventoryMovement.created_at <= end_date)
        else:
            query = query.filter(InventoryMovement.created_at < _day_start(end_date + timedelta(days=1)))
    if reference_type:
        query = query.filter(InventoryMovement.reference_type == reference_type)
    if reference_id is not None:
        query = query.filter(InventoryMovement.reference_id == reference_id)

    if limit < 1:
        limit = 1
    if limit > 500:
        limit = 500

    return query.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc()).limit(limit).all()


def movement_balance(session, product_id: int, location: str | None = None) -> int:
    """
    Signed sum of the product's movements.

    With a location, transfers count on both sides: inbound where they
    land, outbound where they leave.
    """
    if location is None:
        signed = case(
            (and_(InventoryMovement.to_location.isnot(None), InventoryMovement.from_location.is_(None)), InventoryMovement.quantity),
            (and_(InventoryMovement.from_location.isnot(None), InventoryMovement.to_location.is_(None)), -InventoryMovement.quantity),
            else_=0,
        )
    else:
        signed = case(
            (InventoryMovement.to_location == location, InventoryMovement.quantity),
            else_=0,
        ) - case(
            (InventoryMovement.from_location == location, InventoryMovement.quantity),
            else_=0,
        )

    total = (
        session.query(func.coalesce(func.sum(signed), 0))
        .filter(InventoryMovement.product_id == product_id)
        .scalar()
    )
    return int(total or 0)


def verify_ledger(session) -> list[dict]:
    """
    Compare every lot with the movements recorded for its location.

    Returns one entry per (product, location) that disagrees; an empty
    list means the snapshot and the ledger are consistent.
    """
    ledger: dict[tuple[int, str], int] = {}

    inbound = (
        session.query(InventoryMovement.product_id, InventoryMovement.to_location, func.sum(InventoryMovement.quantity))
        .filter(InventoryMovement.to_location.isnot(None))
        .group_by(InventoryMovement.product_id, InventoryMovement.to_location)
        .all()
    )
    for product_id, location, quantity in inbound:
        ledger[(product_id, location)] = ledger.get((product_id, location), 0) + int(quantity)

    outbound = (
        session.query(InventoryMovement.product_id, InventoryMovement.from_location, func.sum(InventoryMovement.quantity))
        .filter(InventoryMovement.from_location.isnot(None))
        .group_by(InventoryMovement.product_id, InventoryMovement.from_location)
        .all()
    )
    for product_id, location, quantity in outbound:
        ledger[(product_id, location)] = ledger.get((product_id, location), 0) - int(quantity)

    snapshot = {
        (lot.product_id, lot.location): lot.quantity
        for lot in session.query(StockLot).all()
    }

    discrepancies = []
    for key in sorted(set(ledger) | set(snapshot)):
        lot_quantity = snapshot.get(key, 0)
        ledger_quantity = ledger.get(key, 0)
        if lot_quantity != ledger_quantity:
            discrepancies.append({
                "product_id": key[0],
                "location": key[1],
                "lot_quantity": lot_quantity,
                "ledger_quantity": ledger_quantity,
            })
    return discrepancies
