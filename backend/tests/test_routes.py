"""
HTTP tests: request validation, JSON error shape, audit entries and the
main procurement, sales and register flows through the test client.
"""

import pytest

from erpcore.models import AuditLog
from erpcore.time_utils import utcnow

from conftest import stock


def _stock_total(client, product_id):
    response = client.get(f'/api/inventory/products/{product_id}/stock')
    assert response.status_code == 200
    return response.json['total_quantity']


class TestErrorShape:
    def test_validation_error_before_transaction(self, client, db_session):
        response = client.post('/api/orders', json={'items': []})
        assert response.status_code == 400
        assert response.json['error'] == 'validation_error'
        assert response.json['code'] == 'VALIDATION_ERROR'
        assert 'items' in response.json['message']

    @pytest.mark.parametrize('value', ['1.5', 2.5, True, '1e3'])
    def test_quantity_must_be_plain_integer(self, client, db_session, product, value):
        response = client.post('/api/orders', json={'items': [{'product_id': product.id, 'quantity': value}]})
        assert response.status_code == 400

    def test_not_found(self, client, db_session):
        response = client.get('/api/receptions/999')
        assert response.status_code == 404
        assert response.json == {
            'error': 'not_found',
            'code': 'RECEPTION_NOT_FOUND',
            'message': 'Reception not found',
        }

    def test_unknown_route_is_json(self, client, db_session):
        response = client.get('/api/nope')
        assert response.status_code == 404
        assert response.json['error'] == 'not_found'


class TestOrderRoutes:
    def test_create_and_cancel(self, client, db_session, product):
        stock(db_session, product.id, {'A': 3, 'B': 2})

        response = client.post('/api/orders', json={
            'items': [{'product_id': product.id, 'quantity': 4}],
            'user_id': 5,
        })
        assert response.status_code == 200
        order_id = response.json['id']
        assert response.json['total_amount_cents'] == 4000
        assert _stock_total(client, product.id) == 1

        response = client.put(f'/api/orders/{order_id}/status', json={'status': 'cancelled'})
        assert response.status_code == 200
        assert response.json['status'] == 'cancelled'
        assert _stock_total(client, product.id) == 5

        actions = [a.action for a in db_session.query(AuditLog).order_by(AuditLog.id).all()]
        assert actions == ['CREATE_ORDER', 'UPDATE_ORDER_STATUS']

    def test_insufficient_stock_is_409_and_writes_nothing(self, client, db_session, product):
        stock(db_session, product.id, {'A': 3, 'B': 2})

        response = client.post('/api/orders', json={'items': [{'product_id': product.id, 'quantity': 10}]})

        assert response.status_code == 409
        assert response.json['error'] == 'insufficient_stock'
        assert response.json['details'] == {'product_id': product.id, 'requested': 10, 'available': 5}
        assert _stock_total(client, product.id) == 5
        assert db_session.query(AuditLog).count() == 0

    def test_invalid_transition_is_409(self, client, db_session, product):
        stock(db_session, product.id, {'A': 1})
        order_id = client.post('/api/orders', json={'items': [{'product_id': product.id, 'quantity': 1}]}).json['id']

        response = client.put(f'/api/orders/{order_id}/status', json={'status': 'delivered'})
        assert response.status_code == 409
        assert response.json['code'] == 'INVALID_ORDER_TRANSITION'

    @pytest.mark.parametrize('body', [{}, {'status': 'shipped'}, {'status': 7}])
    def test_missing_or_unknown_status_is_400(self, client, db_session, product, body):
        stock(db_session, product.id, {'A': 1})
        order_id = client.post('/api/orders', json={'items': [{'product_id': product.id, 'quantity': 1}]}).json['id']

        response = client.put(f'/api/orders/{order_id}/status', json=body)
        assert response.status_code == 400
        assert response.json['error'] == 'validation_error'
        assert client.get(f'/api/orders/{order_id}').json['order']['status'] == 'pending'

    def test_status_alias_is_accepted(self, client, db_session, product):
        stock(db_session, product.id, {'A': 1})
        order_id = client.post('/api/orders', json={'items': [{'product_id': product.id, 'quantity': 1}]}).json['id']

        response = client.put(f'/api/orders/{order_id}/status', json={'status': 'Confirmed'})
        assert response.status_code == 200
        assert response.json['status'] == 'picking'

    def test_repeat_dispatch_is_409(self, client, db_session, product):
        stock(db_session, product.id, {'A': 1})
        order_id = client.post('/api/orders', json={'items': [{'product_id': product.id, 'quantity': 1}]}).json['id']
        for status in ('picking', 'packed'):
            client.put(f'/api/orders/{order_id}/status', json={'status': status})

        first = client.post(f'/api/orders/{order_id}/dispatch', json={'shipping_method': 'courier', 'tracking_number': 'TRK-1'})
        assert first.status_code == 200

        second = client.post(f'/api/orders/{order_id}/dispatch', json={'shipping_method': 'courier', 'tracking_number': 'TRK-2'})
        assert second.status_code == 409
        assert second.json['code'] == 'INVALID_ORDER_TRANSITION'
        assert client.get(f'/api/orders/{order_id}').json['order']['tracking_number'] == 'TRK-1'

    def test_summary(self, client, db_session, product):
        stock(db_session, product.id, {'A': 2})
        order_id = client.post('/api/orders', json={'items': [{'product_id': product.id, 'quantity': 2}]}).json['id']

        response = client.get(f'/api/orders/{order_id}')
        assert response.status_code == 200
        assert response.json['summary'] == {'total_items': 2, 'total_picked': 0, 'completion_percent': 0}


class TestProcurementRoutes:
    def test_purchase_order_to_stock(self, client, db_session, supplier, product):
        response = client.post('/api/purchase-orders', json={
            'supplier_id': supplier.id,
            'order_date': '2026-04-02',
            'items': [{'product_id': product.id, 'quantity_ordered': 5, 'unit_cost_cents': 450}],
        })
        assert response.status_code == 200
        po_id = response.json['id']
        assert response.json['po_number'] == 'PO-2026-001'

        assert client.put(f'/api/purchase-orders/{po_id}/status', json={'status': 'ordered'}).status_code == 200
        po_item_id = client.get(f'/api/purchase-orders/{po_id}').json['items'][0]['id']

        response = client.post('/api/receptions', json={
            'purchase_order_id': po_id,
            'items': [{
                'product_id': product.id,
                'po_item_id': po_item_id,
                'quantity_received': 5,
                'unit_cost_cents': 450,
                'location_assigned': 'Dock',
            }],
        })
        assert response.status_code == 200
        reception_id = response.json['id']

        response = client.post(f'/api/receptions/{reception_id}/approve', json={'approved_by': 2})
        assert response.status_code == 200
        assert response.json == {'success': True}

        response = client.post(f'/api/receptions/{reception_id}/approve', json={'approved_by': 2})
        assert response.status_code == 409
        assert response.json['error'] == 'reception_already_approved'
        assert response.json['code'] == 'RECEPTION_ALREADY_APPROVED'

        assert _stock_total(client, product.id) == 5
        assert client.get(f'/api/purchase-orders/{po_id}').json['status'] == 'completed'

    def test_bad_date_is_rejected(self, client, db_session, supplier, product):
        response = client.post('/api/purchase-orders', json={
            'supplier_id': supplier.id,
            'order_date': '02/04/2026',
            'items': [{'product_id': product.id, 'quantity_ordered': 1}],
        })
        assert response.status_code == 400

    def test_supplier_return(self, client, db_session, supplier, product):
        stock(db_session, product.id, {'A': 4})

        response = client.post('/api/returns', json={
            'supplier_id': supplier.id,
            'items': [{'product_id': product.id, 'quantity': 3}],
        })
        assert response.status_code == 200
        return_id = response.json['id']

        assert client.post(f'/api/returns/{return_id}/approve', json={}).status_code == 200
        assert _stock_total(client, product.id) == 1

        response = client.post(f'/api/returns/{return_id}/approve', json={})
        assert response.status_code == 409


class TestInventoryRoutes:
    def test_adjust_transfer_and_history(self, client, db_session, product):
        response = client.post('/api/inventory/adjustments', json={
            'product_id': product.id,
            'quantity_change': 6,
            'reason': 'Initial count',
        })
        assert response.status_code == 200
        assert response.json['to_location'] == 'General'

        response = client.post('/api/inventory/transfers', json={
            'product_id': product.id,
            'from_location': 'General',
            'to_location': 'Shelf',
            'quantity': 2,
        })
        assert response.status_code == 200

        response = client.get(f'/api/inventory/movements?product_id={product.id}')
        assert response.status_code == 200
        assert response.json['count'] == 2
        assert [m['type'] for m in response.json['movements']] == ['transfer', 'adjustment']

    def test_movement_type_filter_is_validated(self, client, db_session):
        response = client.get('/api/inventory/movements?type=teleport')
        assert response.status_code == 400

    def test_zero_adjustment(self, client, db_session, product):
        response = client.post('/api/inventory/adjustments', json={'product_id': product.id, 'quantity_change': 0})
        assert response.status_code == 400


class TestRegisterRoutes:
    def test_shift_flow(self, client, db_session, register):
        response = client.post(f'/api/cash-registers/{register.id}/open', json={'opening_balance_cents': 10000})
        assert response.status_code == 200
        shift_id = response.json['id']

        response = client.post(f'/api/cash-registers/{register.id}/open', json={})
        assert response.status_code == 409
        assert response.json['error'] == 'already_open'

        response = client.post(f'/api/cash-shifts/{shift_id}/payments', json={'amount_cents': 5000, 'type': 'sale'})
        assert response.json['expected_balance_cents'] == 15000

        response = client.post('/api/cash-transactions', json={
            'register_id': register.id,
            'type': 'expense',
            'amount_cents': 2000,
            'reason': 'Supplies',
        })
        assert response.status_code == 200
        assert response.json['expected_balance_cents'] == 13000

        response = client.get(f'/api/cash-registers/{register.id}/open-shift')
        assert response.json['summary']['expected_balance_cents'] == 13000

        response = client.post(f'/api/cash-shifts/{shift_id}/close', json={'actual_balance_cents': 12500})
        assert response.status_code == 200
        assert response.json == {
            'expected_balance_cents': 13000,
            'actual_balance_cents': 12500,
            'difference_cents': -500,
        }

        response = client.get(f'/api/cash-registers/{register.id}/open-shift')
        assert response.status_code == 404
        assert response.json['error'] == 'no_open_shift'

    def test_cash_transaction_on_closed_register(self, client, db_session, register):
        response = client.post('/api/cash-transactions', json={
            'register_id': register.id,
            'type': 'income',
            'amount_cents': 100,
        })
        assert response.status_code == 409
        assert response.json['error'] == 'closed_register'


class TestMovementDateFilter:
    def test_bare_end_date_includes_that_day(self, client, db_session, product):
        client.post('/api/inventory/adjustments', json={'product_id': product.id, 'quantity_change': 3})
        today = utcnow().date().isoformat()

        response = client.get(f'/api/inventory/movements?product_id={product.id}&end_date={today}')
        assert response.status_code == 200
        assert response.json['count'] == 1

        response = client.get(f'/api/inventory/movements?start_date={today}&end_date={today}')
        assert response.json['count'] == 1

    def test_bad_end_date(self, client, db_session):
        response = client.get('/api/inventory/movements?end_date=2026-13-01')
        assert response.status_code == 400


class TestBatchRoutes:
    def test_batches_listing(self, client, db_session, supplier, product):
        reception_id = client.post('/api/receptions', json={
            'supplier_id': supplier.id,
            'items': [{'product_id': product.id, 'quantity_received': 4, 'batch_number': 'L-9', 'expiration_date': '2027-02-28'}],
        }).json['id']
        client.post(f'/api/receptions/{reception_id}/approve', json={})

        response = client.get(f'/api/inventory/batches?product_id={product.id}')
        assert response.status_code == 200
        assert len(response.json) == 1
        batch = response.json[0]
        assert batch['batch_number'] == 'L-9'
        assert batch['product_name'] == 'Widget'
        assert batch['quantity_current'] == 4
        assert batch['expiration_date'] == '2027-02-28'

        assert client.get('/api/inventory/batches?status=expired').json == []


class TestReceptionListingAndQualityChecks:
    def _reception(self, client, supplier, product, quantity=10):
        return client.post('/api/receptions', json={
            'supplier_id': supplier.id,
            'items': [{'product_id': product.id, 'quantity_received': quantity}],
        }).json['id']

    def test_status_filter(self, client, db_session, supplier, product):
        reception_id = self._reception(client, supplier, product)

        response = client.get('/api/receptions?status=pending_qc')
        assert response.status_code == 200
        assert [r['id'] for r in response.json['receptions']] == [reception_id]
        assert client.get('/api/receptions?status=approved').json['count'] == 0

        response = client.get('/api/receptions?status=lost')
        assert response.status_code == 400

    def test_quality_check_flow(self, client, db_session, supplier, product):
        reception_id = self._reception(client, supplier, product)

        response = client.post(f'/api/receptions/{reception_id}/quality-checks', json={
            'product_id': product.id,
            'result': 'pass',
            'quantity_checked': 10,
            'quantity_passed': 10,
            'quantity_failed': 0,
            'inspector_id': 4,
        })
        assert response.status_code == 200
        check_id = response.json['id']

        checks = client.get(f'/api/receptions/{reception_id}/quality-checks').json
        assert [c['id'] for c in checks] == [check_id]
        assert checks[0]['action_taken'] == 'approve'
        assert checks[0]['inspector_user_id'] == 4

        entry = db_session.query(AuditLog).filter_by(action='CREATE_QUALITY_CHECK').one()
        assert entry.entity_id == check_id
        assert entry.user_id == 4

    @pytest.mark.parametrize('override', [
        {'result': 'maybe'},
        {'action_taken': 'shred'},
        {'quantity_passed': 8, 'quantity_failed': 5},
    ])
    def test_quality_check_validation(self, client, db_session, supplier, product, override):
        reception_id = self._reception(client, supplier, product)
        body = {
            'product_id': product.id,
            'result': 'fail',
            'quantity_checked': 10,
            'quantity_passed': 0,
            'quantity_failed': 10,
        }
        body.update(override)

        response = client.post(f'/api/receptions/{reception_id}/quality-checks', json=body)
        assert response.status_code == 400


class TestSupplierReturnRoutes:
    def test_get_return_with_items(self, client, db_session, supplier, product):
        response = client.post('/api/returns', json={
            'supplier_id': supplier.id,
            'items': [{'product_id': product.id, 'quantity': 2, 'reason': 'Broken'}],
        })
        return_id = response.json['id']

        response = client.get(f'/api/returns/{return_id}')
        assert response.status_code == 200
        assert response.json['status'] == 'draft'
        assert response.json['return_number'].startswith('SR-')
        assert [(i['product_id'], i['quantity'], i['reason']) for i in response.json['items']] == [(product.id, 2, 'Broken')]

    def test_missing_return(self, client, db_session):
        response = client.get('/api/returns/999')
        assert response.status_code == 404
        assert response.json['code'] == 'SUPPLIER_RETURN_NOT_FOUND'


class TestSupplierPaymentRoutes:
    def test_pay_and_list(self, client, db_session, supplier):
        supplier.account_balance_cents = 8000
        db_session.commit()

        response = client.post('/api/supplier-payments', json={
            'supplier_id': supplier.id,
            'payment_date': '2026-05-02',
            'payments': [
                {'amount_cents': 5000, 'payment_method': 'transfer', 'reference_number': 'TR-99'},
                {'amount_cents': 1000},
            ],
        })
        assert response.status_code == 200
        assert response.json['total_amount_cents'] == 6000
        assert response.json['account_balance_cents'] == 2000
        assert len(response.json['ids']) == 2

        listed = client.get(f'/api/supplier-payments?supplier_id={supplier.id}').json
        assert sorted(p['amount_cents'] for p in listed) == [1000, 5000]
        assert listed[0]['supplier_name'] == 'Acme Supplies'
        assert listed[0]['payment_date'] == '2026-05-02'

        entry = db_session.query(AuditLog).filter_by(action='CREATE_SUPPLIER_PAYMENT').one()
        assert entry.new_values['total_amount_cents'] == 6000

    @pytest.mark.parametrize('payments', [[], [{'amount_cents': 0}], [{'amount_cents': -5}], [{'amount_cents': '1.5'}]])
    def test_invalid_lines(self, client, db_session, supplier, payments):
        response = client.post('/api/supplier-payments', json={'supplier_id': supplier.id, 'payments': payments})
        assert response.status_code == 400

    def test_unknown_supplier(self, client, db_session):
        response = client.post('/api/supplier-payments', json={'supplier_id': 999, 'payments': [{'amount_cents': 100}]})
        assert response.status_code == 404
        assert response.json['code'] == 'SUPPLIER_NOT_FOUND'


class TestAuditRoutes:
    def test_entries_filtered_by_entity(self, client, db_session, product):
        stock(db_session, product.id, {'A': 2})
        first = client.post('/api/orders', json={'items': [{'product_id': product.id, 'quantity': 1}]}).json['id']
        second = client.post('/api/orders', json={'items': [{'product_id': product.id, 'quantity': 1}]}).json['id']
        client.put(f'/api/orders/{first}/status', json={'status': 'cancelled'})

        response = client.get(f'/api/audit-logs?entity_type=order&entity_id={first}')
        assert response.status_code == 200
        assert [e['action'] for e in response.json['entries']] == ['UPDATE_ORDER_STATUS', 'CREATE_ORDER']

        response = client.get('/api/audit-logs?entity_type=order&limit=1')
        assert response.json['count'] == 1
        assert response.json['entries'][0]['entity_id'] == first

        assert client.get(f'/api/audit-logs?entity_id={second}').json['count'] == 1

    def test_bad_limit(self, client, db_session):
        response = client.get('/api/audit-logs?limit=many')
        assert response.status_code == 400
