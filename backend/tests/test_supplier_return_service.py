import pytest

from erpcore.errors import AlreadyApprovedError, EmptyItemsError, InsufficientStockError, NotFoundError
from erpcore.models import FinancialTransaction, InventoryMovement
from erpcore.services import supplier_return_service
from erpcore.services.concurrency import unit_of_work

from conftest import lot_quantities, stock


class TestSupplierReturns:
    def test_approval_moves_stock_and_posts_expense(self, db_session, supplier, product):
        supplier.account_balance_cents = 5000
        db_session.commit()
        stock(db_session, product.id, {"A": 3, "B": 2})

        supplier_return = supplier_return_service.create_supplier_return(
            db_session,
            supplier_id=supplier.id,
            items=[{"product_id": product.id, "quantity": 4, "reason": "Defective"}],
        )
        db_session.commit()
        assert supplier_return.status == "draft"
        assert supplier_return.total_amount_cents == 4 * 400
        assert supplier_return.return_number.startswith("SR-")
        assert lot_quantities(db_session, product.id) == {"A": 3, "B": 2}

        supplier_return_service.approve_supplier_return(db_session, supplier_return.id)
        db_session.commit()

        assert supplier_return.status == "approved"
        assert supplier_return.approved_at is not None
        assert lot_quantities(db_session, product.id) == {"A": 0, "B": 1}
        movements = db_session.query(InventoryMovement).filter_by(reference_type="supplier_return").all()
        assert {m.type for m in movements} == {"return"}
        assert sum(m.quantity for m in movements) == 4

        expense = db_session.query(FinancialTransaction).one()
        assert expense.type == "expense"
        assert expense.amount_cents == 1600
        assert expense.supplier_id == supplier.id
        assert supplier.account_balance_cents == 3400

    def test_supplier_balance_never_negative(self, db_session, supplier, product):
        supplier.account_balance_cents = 500
        db_session.commit()
        stock(db_session, product.id, {"A": 10})

        supplier_return = supplier_return_service.create_supplier_return(
            db_session,
            supplier_id=supplier.id,
            items=[{"product_id": product.id, "quantity": 2, "unit_cost_cents": 1000}],
        )
        supplier_return_service.approve_supplier_return(db_session, supplier_return.id)
        db_session.commit()

        assert supplier.account_balance_cents == 0

    def test_shortfall_aborts_approval(self, db_session, supplier, product, other_product):
        stock(db_session, product.id, {"A": 5})
        stock(db_session, other_product.id, {"A": 1})
        supplier_return = supplier_return_service.create_supplier_return(
            db_session,
            supplier_id=supplier.id,
            items=[
                {"product_id": product.id, "quantity": 2},
                {"product_id": other_product.id, "quantity": 2},
            ],
        )
        db_session.commit()

        with pytest.raises(InsufficientStockError):
            with unit_of_work(db_session) as session:
                supplier_return_service.approve_supplier_return(session, supplier_return.id)

        assert supplier_return.status == "draft"
        assert lot_quantities(db_session, product.id) == {"A": 5}
        assert db_session.query(FinancialTransaction).count() == 0

    def test_second_approval_is_rejected(self, db_session, supplier, product):
        stock(db_session, product.id, {"A": 5})
        supplier_return = supplier_return_service.create_supplier_return(
            db_session,
            supplier_id=supplier.id,
            items=[{"product_id": product.id, "quantity": 1}],
        )
        supplier_return_service.approve_supplier_return(db_session, supplier_return.id)
        db_session.commit()

        with pytest.raises(AlreadyApprovedError):
            supplier_return_service.approve_supplier_return(db_session, supplier_return.id)
        assert lot_quantities(db_session, product.id) == {"A": 4}

    def test_empty_return_cannot_be_approved(self, db_session, supplier):
        supplier_return = supplier_return_service.create_supplier_return(
            db_session, supplier_id=supplier.id, items=[]
        )
        db_session.commit()

        with pytest.raises(EmptyItemsError):
            supplier_return_service.approve_supplier_return(db_session, supplier_return.id)

    def test_unknown_product(self, db_session, supplier):
        with pytest.raises(NotFoundError) as excinfo:
            supplier_return_service.create_supplier_return(
                db_session, supplier_id=supplier.id, items=[{"product_id": 999, "quantity": 1}]
            )
        assert excinfo.value.code == "PRODUCT_NOT_FOUND"
