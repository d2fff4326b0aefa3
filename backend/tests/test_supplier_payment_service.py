from datetime import date

import pytest

from erpcore.errors import NotFoundError, ValidationError
from erpcore.models import FinancialTransaction, SupplierPayment
from erpcore.services import supplier_payment_service


class TestSupplierPayments:
    def test_lines_expense_and_balance(self, db_session, supplier):
        supplier.account_balance_cents = 10000
        db_session.commit()

        payments, total = supplier_payment_service.create_supplier_payment(
            db_session,
            supplier_id=supplier.id,
            payments=[
                {"amount_cents": 3000},
                {"amount_cents": 1500, "payment_method": "transfer", "reference_number": "TR-99"},
            ],
            payment_date=date(2026, 5, 2),
            notes="May invoices",
        )
        db_session.commit()

        assert total == 4500
        assert [p.payment_method for p in payments] == ["cash", "transfer"]
        assert all(p.payment_date == date(2026, 5, 2) for p in payments)
        assert supplier.account_balance_cents == 5500

        expense = db_session.query(FinancialTransaction).one()
        assert expense.type == "expense"
        assert expense.amount_cents == 4500
        assert expense.description == "Supplier payment"
        assert expense.reference_id == payments[0].id
        assert expense.supplier_id == supplier.id

    def test_balance_never_negative(self, db_session, supplier):
        supplier.account_balance_cents = 1000
        db_session.commit()

        supplier_payment_service.create_supplier_payment(
            db_session,
            supplier_id=supplier.id,
            payments=[{"amount_cents": 2500}],
        )
        db_session.commit()

        assert supplier.account_balance_cents == 0

    def test_non_positive_lines_are_skipped(self, db_session, supplier):
        payments, total = supplier_payment_service.create_supplier_payment(
            db_session,
            supplier_id=supplier.id,
            payments=[{"amount_cents": 0}, {"amount_cents": 700}],
        )
        assert total == 700
        assert len(payments) == 1

    def test_nothing_to_pay(self, db_session, supplier):
        with pytest.raises(ValidationError):
            supplier_payment_service.create_supplier_payment(
                db_session,
                supplier_id=supplier.id,
                payments=[{"amount_cents": 0}],
            )
        db_session.rollback()

        assert db_session.query(SupplierPayment).count() == 0
        assert db_session.query(FinancialTransaction).count() == 0

    def test_unknown_supplier(self, db_session):
        with pytest.raises(NotFoundError) as excinfo:
            supplier_payment_service.create_supplier_payment(
                db_session,
                supplier_id=999,
                payments=[{"amount_cents": 100}],
            )
        assert excinfo.value.code == "SUPPLIER_NOT_FOUND"

    def test_listing_newest_payment_date_first(self, db_session, supplier):
        for day in (1, 15, 8):
            supplier_payment_service.create_supplier_payment(
                db_session,
                supplier_id=supplier.id,
                payments=[{"amount_cents": 100 * day}],
                payment_date=date(2026, 6, day),
            )
        db_session.commit()

        listed = supplier_payment_service.list_supplier_payments(db_session, supplier_id=supplier.id)
        assert [p.payment_date.day for p in listed] == [15, 8, 1]
        assert supplier_payment_service.list_supplier_payments(db_session, supplier_id=999) == []
