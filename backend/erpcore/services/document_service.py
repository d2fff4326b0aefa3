# Overview: Document number allocation (purchase orders, receptions, supplier returns, invoices).

from __future__ import annotations

import re

from sqlalchemy import insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from ..models import DocumentSequence, PurchaseOrder, Reception, SupplierReturn
from erpcore.time_utils import utcnow
from .concurrency import lock_for_update


PURCHASE_ORDER_SCOPE = "purchase_order"
RECEPTION_SCOPE = "reception"
SUPPLIER_RETURN_SCOPE = "supplier_return"
INVOICE_SCOPE = "invoice"

# scope -> (model, number column, prefix) used by the one-time backfill
_NUMBERED_DOCUMENTS = {
    PURCHASE_ORDER_SCOPE: (PurchaseOrder, PurchaseOrder.po_number, "PO"),
    RECEPTION_SCOPE: (Reception, Reception.reception_number, "REC"),
    SUPPLIER_RETURN_SCOPE: (SupplierReturn, SupplierReturn.return_number, "SR"),
}


def _scope_key(entity: str, year: int) -> str:
    return f"{entity}:{year}"


def _ensure_counter(session, scope: str) -> None:
    """Insert the counter row for scope unless it already exists."""
    dialect = session.get_bind().dialect.name
    values = {"scope": scope, "last_value": 0}
    if dialect == "postgresql":
        stmt = pg_insert(DocumentSequence).values(**values).on_conflict_do_nothing(index_elements=["scope"])
    elif dialect == "sqlite":
        stmt = sqlite_insert(DocumentSequence).values(**values).on_conflict_do_nothing(index_elements=["scope"])
    else:
        # MySQL / MariaDB
        stmt = insert(DocumentSequence).values(**values).prefix_with("IGNORE")
    session.execute(stmt)


def _lock_counter(session, scope: str) -> DocumentSequence:
    _ensure_counter(session, scope)
    return lock_for_update(session.query(DocumentSequence).filter_by(scope=scope)).one()


def next_sequence(session, scope: str, minimum_value: int = 0) -> int:
    """
    Allocate the next value for scope.

    Locks the counter row, takes max(last_value, minimum_value), persists
    the incremented value and returns it. Must run inside the transaction
    that inserts the row consuming the number; a rollback releases the
    number (gaps are allowed, duplicates are not).
    """
    if not scope:
        raise ValueError("scope is required")

    counter = _lock_counter(session, scope)
    value = max(counter.last_value or 0, minimum_value or 0) + 1
    counter.last_value = value
    session.flush()
    return value


def backfill_sequence(session, scope: str, value: int) -> int:
    """Raise the counter for scope to at least value. Never lowers it."""
    counter = _lock_counter(session, scope)
    if (counter.last_value or 0) < value:
        counter.last_value = value
        session.flush()
    return counter.last_value


def next_purchase_order_number(session, *, year: int | None = None) -> str:
    year = year or utcnow().year
    seq = next_sequence(session, _scope_key(PURCHASE_ORDER_SCOPE, year))
    return f"PO-{year}-{seq:03d}"


def next_reception_number(session, *, year: int | None = None) -> str:
    year = year or utcnow().year
    seq = next_sequence(session, _scope_key(RECEPTION_SCOPE, year))
    return f"REC-{year}-{seq:03d}"


def next_supplier_return_number(session, *, year: int | None = None) -> str:
    year = year or utcnow().year
    seq = next_sequence(session, _scope_key(SUPPLIER_RETURN_SCOPE, year))
    return f"SR-{year}-{seq:04d}"


def next_invoice_number(
    session,
    invoice_type: str = "B",
    point_of_sale: int = 1,
    *,
    minimum_value: int = 0,
) -> str:
    """
    Invoice number per (type, point of sale): "B-0001-00000042".

    Invoice counters never reset by year. minimum_value lets a caller that
    already knows the highest stored number start above it.
    """
    invoice_type = (invoice_type or "B").strip().upper()
    point_of_sale = int(point_of_sale)
    if not invoice_type:
        raise ValueError("invoice_type is required")
    if point_of_sale < 1:
        raise ValueError("point_of_sale must be positive")

    seq = next_sequence(session, f"{INVOICE_SCOPE}:{invoice_type}:{point_of_sale}", minimum_value=minimum_value)
    return f"{invoice_type}-{point_of_sale:04d}-{seq:08d}"


def scan_existing_numbers(session) -> dict[str, int]:
    """
    Highest number already used per scope, read from the document tables.

    Numbers that do not follow the PREFIX-YEAR-SEQ shape are ignored.
    """
    highest: dict[str, int] = {}
    for entity, (_model, column, prefix) in _NUMBERED_DOCUMENTS.items():
        pattern = re.compile(rf"^{prefix}-(\d{{4}})-(\d+)$")
        for (number,) in session.query(column).all():
            match = pattern.match(number or "")
            if not match:
                continue
            scope = _scope_key(entity, int(match.group(1)))
            highest[scope] = max(highest.get(scope, 0), int(match.group(2)))
    return highest


def backfill_all_sequences(session) -> dict[str, int]:
    """One-time migration step: align every counter with the rows already stored."""
    results = {}
    for scope, value in sorted(scan_existing_numbers(session).items()):
        results[scope] = backfill_sequence(session, scope, value)
    return results
