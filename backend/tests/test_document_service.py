import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from erpcore.extensions import db
from erpcore.models import DocumentSequence, Reception
from erpcore.services import document_service


class TestSequences:
    def test_values_are_strictly_increasing(self, db_session):
        values = [document_service.next_sequence(db_session, "reception:2026") for _ in range(5)]
        db_session.commit()

        assert values == [1, 2, 3, 4, 5]
        counter = db_session.query(DocumentSequence).filter_by(scope="reception:2026").one()
        assert counter.last_value == 5

    def test_scopes_are_independent(self, db_session):
        assert document_service.next_sequence(db_session, "purchase_order:2026") == 1
        assert document_service.next_sequence(db_session, "purchase_order:2027") == 1
        assert document_service.next_sequence(db_session, "purchase_order:2026") == 2

    def test_minimum_value(self, db_session):
        assert document_service.next_sequence(db_session, "supplier_return:2026", minimum_value=41) == 42
        assert document_service.next_sequence(db_session, "supplier_return:2026") == 43

    def test_rolled_back_allocation_is_released(self, db_session):
        document_service.next_sequence(db_session, "reception:2026")
        db_session.commit()
        document_service.next_sequence(db_session, "reception:2026")
        db_session.rollback()

        assert document_service.next_sequence(db_session, "reception:2026") == 2

    def test_number_formats(self, db_session):
        assert document_service.next_purchase_order_number(db_session, year=2026) == "PO-2026-001"
        assert document_service.next_reception_number(db_session, year=2026) == "REC-2026-001"
        assert document_service.next_supplier_return_number(db_session, year=2026) == "SR-2026-0001"
        assert document_service.next_supplier_return_number(db_session, year=2026) == "SR-2026-0002"


class TestBackfill:
    def test_counters_follow_stored_numbers(self, db_session, supplier):
        db_session.add_all([
            Reception(reception_number="REC-2025-007", supplier_id=supplier.id, status="approved"),
            Reception(reception_number="REC-2025-012", supplier_id=supplier.id, status="approved"),
            Reception(reception_number="legacy-1", supplier_id=supplier.id, status="approved"),
        ])
        db_session.commit()

        assert document_service.scan_existing_numbers(db_session) == {"reception:2025": 12}
        assert document_service.backfill_all_sequences(db_session) == {"reception:2025": 12}
        db_session.commit()

        assert document_service.next_reception_number(db_session, year=2025) == "REC-2025-013"

    def test_backfill_never_lowers_a_counter(self, db_session):
        for _ in range(20):
            document_service.next_sequence(db_session, "reception:2025")

        assert document_service.backfill_sequence(db_session, "reception:2025", 5) == 20


class TestInvoiceNumbers:
    def test_format(self, db_session):
        assert document_service.next_invoice_number(db_session) == "B-0001-00000001"
        assert document_service.next_invoice_number(db_session) == "B-0001-00000002"

    def test_scope_per_type_and_point_of_sale(self, db_session):
        assert document_service.next_invoice_number(db_session, "A", 1) == "A-0001-00000001"
        assert document_service.next_invoice_number(db_session, "B", 1) == "B-0001-00000001"
        assert document_service.next_invoice_number(db_session, "B", 3) == "B-0003-00000001"
        assert document_service.next_invoice_number(db_session, "a", 1) == "A-0001-00000002"
        db_session.commit()

        scopes = {c.scope for c in db_session.query(DocumentSequence).all()}
        assert scopes == {"invoice:A:1", "invoice:B:1", "invoice:B:3"}

    def test_minimum_value(self, db_session):
        assert document_service.next_invoice_number(db_session, "C", 2, minimum_value=1200) == "C-0002-00001201"

    def test_point_of_sale_must_be_positive(self, db_session):
        with pytest.raises(ValueError):
            document_service.next_invoice_number(db_session, "B", 0)


class TestSequencesAcrossSessions:
    """Counters shared by independent sessions on a file-backed database."""

    @pytest.fixture
    def engine(self, tmp_path):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'sequences.db'}",
            connect_args={"timeout": 30, "check_same_thread": False},
        )
        db.metadata.create_all(engine, tables=[DocumentSequence.__table__])
        yield engine
        engine.dispose()

    def test_interleaved_sessions_never_reuse_a_value(self, engine):
        first = Session(bind=engine)
        second = Session(bind=engine)
        values = []
        try:
            for _ in range(5):
                for session in (first, second):
                    values.append(document_service.next_sequence(session, "reception:2026"))
                    session.commit()
        finally:
            first.close()
            second.close()

        assert values == list(range(1, 11))

    def test_threads_get_distinct_increasing_values(self, engine):
        per_thread = {}
        errors = []

        def allocate(name):
            session = Session(bind=engine)
            taken = []
            try:
                for _ in range(10):
                    taken.append(document_service.next_sequence(session, "purchase_order:2026"))
                    session.commit()
            except Exception as exc:
                errors.append(exc)
                session.rollback()
            finally:
                session.close()
            per_thread[name] = taken

        threads = [threading.Thread(target=allocate, args=(f"worker-{i}",)) for i in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        every_value = [v for taken in per_thread.values() for v in taken]
        assert sorted(every_value) == list(range(1, 31))
        for taken in per_thread.values():
            assert taken == sorted(taken)
