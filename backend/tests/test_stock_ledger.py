"""
Stock ledger tests: multi-location decrease, atomic shortfall, transfers,
adjustments and lot/movement consistency.
"""

from datetime import datetime, time, timedelta

import pytest

from erpcore.errors import InsufficientStockError, NotFoundError, ValidationError
from erpcore.models import InventoryMovement
from erpcore.services import stock_ledger
from erpcore.time_utils import utcnow

from conftest import lot_quantities, stock


class TestDecrease:
    def test_spills_over_largest_lot_first(self, db_session, product):
        stock(db_session, product.id, {"A": 3, "B": 2})

        movements = stock_ledger.decrease(db_session, product.id, 4, reference_id=77)
        db_session.commit()

        assert lot_quantities(db_session, product.id) == {"A": 0, "B": 1}
        assert [(m.from_location, m.quantity) for m in movements] == [("A", 3), ("B", 1)]
        assert all(m.type == "sale" and m.reference_type == "order" and m.reference_id == 77 for m in movements)
        assert all(m.to_location is None for m in movements)

    def test_shortfall_raises_before_any_write(self, db_session, product):
        stock(db_session, product.id, {"A": 3, "B": 2})
        movements_before = db_session.query(InventoryMovement).count()

        with pytest.raises(InsufficientStockError) as excinfo:
            stock_ledger.decrease(db_session, product.id, 10)
        db_session.rollback()

        err = excinfo.value
        assert err.code == "INSUFFICIENT_STOCK"
        assert err.status_code == 409
        assert err.requested == 10
        assert err.available == 5
        assert err.details == {"product_id": product.id, "requested": 10, "available": 5}
        assert lot_quantities(db_session, product.id) == {"A": 3, "B": 2}
        assert db_session.query(InventoryMovement).count() == movements_before

    def test_oldest_first_policy_drains_first_created_lot(self, db_session, product):
        stock(db_session, product.id, {"B": 1, "A": 5})

        stock_ledger.decrease(db_session, product.id, 2, policy=stock_ledger.oldest_first)
        db_session.commit()

        assert lot_quantities(db_session, product.id) == {"A": 4, "B": 0}

    def test_exact_quantity_empties_every_lot(self, db_session, product):
        stock(db_session, product.id, {"A": 3, "B": 2})

        stock_ledger.decrease(db_session, product.id, 5)
        db_session.commit()

        assert lot_quantities(db_session, product.id) == {"A": 0, "B": 0}

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_rejects_non_positive_quantity(self, db_session, product, quantity):
        stock(db_session, product.id, {"A": 3})

        with pytest.raises(ValidationError):
            stock_ledger.decrease(db_session, product.id, quantity)

        assert lot_quantities(db_session, product.id) == {"A": 3}

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError) as excinfo:
            stock_ledger.decrease(db_session, 9999, 1)
        assert excinfo.value.code == "PRODUCT_NOT_FOUND"


class TestIncrease:
    def test_creates_lot_on_first_use(self, db_session, product):
        lot = stock_ledger.increase(db_session, product.id, "Dock", 7, unit_cost_cents=400)
        db_session.commit()

        assert lot.quantity == 7
        movement = db_session.query(InventoryMovement).one()
        assert movement.type == "reception"
        assert movement.to_location == "Dock"
        assert movement.from_location is None
        assert movement.signed_quantity == 7

    def test_rejects_zero(self, db_session, product):
        with pytest.raises(ValidationError):
            stock_ledger.increase(db_session, product.id, "Dock", 0)


class TestTransferAndAdjust:
    def test_transfer_keeps_product_total(self, db_session, product):
        stock(db_session, product.id, {"A": 5})

        movement = stock_ledger.transfer(db_session, product.id, "A", "B", 2)
        db_session.commit()

        assert lot_quantities(db_session, product.id) == {"A": 3, "B": 2}
        assert movement.type == "transfer"
        assert movement.signed_quantity == 0
        assert stock_ledger.get_stock(db_session, product.id)["total_quantity"] == 5

    def test_transfer_short_source(self, db_session, product):
        stock(db_session, product.id, {"A": 1, "B": 9})

        with pytest.raises(InsufficientStockError):
            stock_ledger.transfer(db_session, product.id, "A", "B", 2)
        db_session.rollback()

        assert lot_quantities(db_session, product.id) == {"A": 1, "B": 9}

    def test_transfer_same_location(self, db_session, product):
        with pytest.raises(ValidationError):
            stock_ledger.transfer(db_session, product.id, "A", "A", 1)

    def test_negative_adjustment_cannot_go_below_zero(self, db_session, product):
        stock(db_session, product.id, {"A": 2})

        with pytest.raises(InsufficientStockError):
            stock_ledger.adjust(db_session, product.id, "A", -3)
        db_session.rollback()

        stock_ledger.adjust(db_session, product.id, "A", -2, reason="Damaged")
        stock_ledger.adjust(db_session, product.id, "C", 4, reason="Count")
        db_session.commit()

        assert lot_quantities(db_session, product.id) == {"A": 0, "C": 4}

    def test_zero_adjustment_rejected(self, db_session, product):
        with pytest.raises(ValidationError):
            stock_ledger.adjust(db_session, product.id, "A", 0)


class TestLedgerConsistency:
    def test_lots_match_movement_sums(self, db_session, product, other_product):
        stock(db_session, product.id, {"A": 3, "B": 2})
        stock(db_session, other_product.id, {"A": 10})

        stock_ledger.decrease(db_session, product.id, 4)
        stock_ledger.transfer(db_session, other_product.id, "A", "Z", 6)
        stock_ledger.adjust(db_session, other_product.id, "Z", -1)
        db_session.commit()

        assert stock_ledger.verify_ledger(db_session) == []
        assert stock_ledger.movement_balance(db_session, product.id) == 1
        assert stock_ledger.movement_balance(db_session, product.id, "B") == 1
        assert stock_ledger.movement_balance(db_session, other_product.id) == 9
        assert stock_ledger.movement_balance(db_session, other_product.id, "A") == 4
        assert stock_ledger.movement_balance(db_session, other_product.id, "Z") == 5

    def test_verify_reports_lot_edited_outside_ledger(self, db_session, product):
        stock(db_session, product.id, {"A": 3})
        lot = product.stock_lots[0]
        lot.quantity = 8
        db_session.commit()

        assert stock_ledger.verify_ledger(db_session) == [
            {"product_id": product.id, "location": "A", "lot_quantity": 8, "ledger_quantity": 3}
        ]


class TestListMovements:
    def test_filters_by_reference(self, db_session, product):
        stock(db_session, product.id, {"A": 5})
        stock_ledger.decrease(db_session, product.id, 1, reference_id=1)
        stock_ledger.decrease(db_session, product.id, 2, reference_id=2)
        db_session.commit()

        movements = stock_ledger.list_movements(db_session, reference_type="order", reference_id=2)
        assert [m.quantity for m in movements] == [2]

        sales = stock_ledger.list_movements(db_session, product_id=product.id, movement_type="sale")
        assert len(sales) == 2

    def test_date_bounds_cover_the_whole_day(self, db_session, product):
        stock(db_session, product.id, {"A": 5})
        today = utcnow().date()

        assert len(stock_ledger.list_movements(db_session, start_date=today, end_date=today)) == 1
        assert len(stock_ledger.list_movements(db_session, end_date=today - timedelta(days=1))) == 0
        assert len(stock_ledger.list_movements(db_session, start_date=today + timedelta(days=1))) == 0

    def test_datetime_end_bound_is_exact(self, db_session, product):
        stock(db_session, product.id, {"A": 5})
        midnight = datetime.combine(utcnow().date(), time.min)

        assert len(stock_ledger.list_movements(db_session, end_date=midnight - timedelta(seconds=1))) == 0

    def test_limit_is_clamped(self, db_session, product):
        stock(db_session, product.id, {"A": 1, "B": 1, "C": 1})
        assert len(stock_ledger.list_movements(db_session, limit=0)) == 1
        assert len(stock_ledger.list_movements(db_session, limit=10_000)) == 3
