"""
Integration tests for the JSON endpoints.
"""

import pytest
from dailyfresh.models import Order, OrderStatus, Product, CartItem


@pytest.fixture
def order_payload(address, slot, scenario_a_items):
    return {
        'address_id': address.id,
        'slot_id': slot.id,
        'payment_method': 'upi',
        'items': scenario_a_items,
    }


class TestIdentity:

    def test_anonymous_caller_gets_401(self, client):
        response = client.get('/cart')
        assert response.status_code == 401
        assert response.get_json()['status'] == 'error'

    def test_guest_token_header_identifies_caller(self, client, session, products):
        response = client.post('/cart/items', json={'product_id': products['milk'].id, 'quantity': 2},
                               headers={'X-Guest-Token': 'abc123'})
        assert response.status_code == 200
        assert session.query(CartItem).filter_by(customer_ref='guest:abc123').count() == 1


class TestCartEndpoints:

    def test_add_update_remove(self, customer_client, products):
        apples = products['apples'].id

        response = customer_client.post('/cart/items', json={'product_id': apples, 'quantity': 2})
        assert response.get_json() == {
            'items': [{'product_id': apples, 'name': 'Apples 1kg', 'quantity': 2,
                       'unit_price': '10.00', 'line_total': '20.00'}],
            'subtotal': '20.00',
        }

        response = customer_client.patch(f'/cart/items/{apples}', json={'quantity': 5})
        assert response.get_json()['subtotal'] == '50.00'

        response = customer_client.delete(f'/cart/items/{apples}')
        assert response.get_json() == {'items': [], 'subtotal': '0.00'}

    def test_add_beyond_stock(self, customer_client, products):
        response = customer_client.post('/cart/items', json={'product_id': products['rice'].id, 'quantity': 6})
        assert response.status_code in (400, 409)

    def test_remove_missing_line(self, customer_client, products):
        assert customer_client.delete(f"/cart/items/{products['milk'].id}").status_code == 404

    def test_validate_reports_all_violations(self, customer_client, products):
        response = customer_client.post('/cart/validate', json={'items': [
            {'product_id': products['apples'].id, 'quantity': 2, 'price': '9.50'},
            {'product_id': products['rice'].id, 'quantity': 6, 'price': '60.00'},
        ]})
        data = response.get_json()
        assert response.status_code == 200
        assert data['valid'] is False
        assert len(data['violations']) == 2

    def test_validate_stored_cart(self, customer_client, session, products):
        session.add(CartItem(customer_ref='user:1', product_id=products['rice'].id, quantity=1))
        session.commit()
        response = customer_client.post('/cart/validate', json={})
        assert response.get_json() == {'valid': True, 'violations': []}


class TestOrderEndpoints:

    def test_place_order(self, customer_client, order_payload, session):
        response = customer_client.post('/orders', json=order_payload)
        assert response.status_code == 201

        data = response.get_json()
        assert data['total'] == '72.20'
        assert data['order_number'].startswith('DF')
        order = session.get(Order, data['order_id'], populate_existing=True)
        assert order.customer_ref == 'user:1'

    def test_validation_failure_is_400(self, customer_client, order_payload):
        order_payload['items'] = []
        response = customer_client.post('/orders', json=order_payload)
        assert response.status_code == 400
        assert response.get_json()['violations'] == ['Your cart is empty']

    def test_non_object_line_is_400(self, customer_client, order_payload):
        order_payload['items'] = [1]
        response = customer_client.post('/orders', json=order_payload)
        assert response.status_code == 400
        assert 'Invalid cart line' in response.get_json()['violations']

    def test_missing_slot_is_400(self, customer_client, order_payload):
        del order_payload['slot_id']
        assert customer_client.post('/orders', json=order_payload).status_code == 400

    def test_stock_shortage_is_409(self, customer_client, order_payload, products):
        order_payload['items'] = [{'product_id': products['rice'].id, 'quantity': 6, 'price': '60.00'}]
        response = customer_client.post('/orders', json=order_payload)
        assert response.status_code == 409
        assert response.get_json()['product'] == 'Basmati Rice 5kg'

    def test_full_slot_is_409(self, customer_client, order_payload, full_slot):
        order_payload['slot_id'] = full_slot.id
        assert customer_client.post('/orders', json=order_payload).status_code == 409

    def test_rejected_coupon_is_422(self, customer_client, order_payload, coupons):
        order_payload['coupon_code'] = 'OLD5'
        response = customer_client.post('/orders', json=order_payload)
        assert response.status_code == 422
        assert response.get_json()['reason'] == 'expired'

    def test_unknown_address_is_404(self, customer_client, order_payload):
        order_payload['address_id'] = 999
        assert customer_client.post('/orders', json=order_payload).status_code == 404

    def test_partial_failure_only_exposes_reference(self, customer_client, order_payload, monkeypatch):
        from dailyfresh.repositories import SlotRepository
        monkeypatch.setattr(SlotRepository, 'reserve', lambda self, slot_id: False)

        response = customer_client.post('/orders', json=order_payload)
        data = response.get_json()
        assert response.status_code == 500
        assert set(data) == {'status', 'message', 'reference'}
        assert data['reference'] in data['message']

    def test_list_detail_and_history(self, customer_client, order_payload):
        order_id = customer_client.post('/orders', json=order_payload).get_json()['order_id']

        orders = customer_client.get('/orders').get_json()['orders']
        assert [o['id'] for o in orders] == [order_id]

        detail = customer_client.get(f'/orders/{order_id}').get_json()
        assert detail['status'] == 'pending'
        assert len(detail['items']) == 2
        assert detail['tax_components'] == {'CGST': '3.60', 'SGST': '3.60'}

        history = customer_client.get(f'/orders/{order_id}/history').get_json()['history']
        assert [(h['status'], h['notes']) for h in history] == [('pending', 'Order created')]

    def test_cancel(self, customer_client, order_payload, products, fresh):
        order_id = customer_client.post('/orders', json=order_payload).get_json()['order_id']

        response = customer_client.post(f'/orders/{order_id}/cancel', json={'reason': 'Ordered twice'})
        assert response.status_code == 200
        assert response.get_json() == {}
        assert fresh(Order, order_id).status == OrderStatus.CANCELLED
        assert fresh(Product, products['apples'].id).stock_quantity == 50

        assert customer_client.post(f'/orders/{order_id}/cancel').status_code == 400

    def test_other_customers_order_is_404(self, client, place_order):
        order = place_order()
        with client.session_transaction() as sess:
            sess['user_id'] = 2
        assert client.get(f'/orders/{order.id}').status_code == 404
        assert client.post(f'/orders/{order.id}/cancel').status_code == 404

    def test_pay_cash_on_delivery(self, customer_client, order_payload):
        order_payload['payment_method'] = 'cod'
        order_id = customer_client.post('/orders', json=order_payload).get_json()['order_id']

        response = customer_client.post(f'/orders/{order_id}/pay', json={})
        assert response.get_json() == {'order_id': order_id, 'status': 'confirmed', 'payment_status': 'pending'}


class TestCouponAndDeliveryEndpoints:

    def test_apply_coupon(self, customer_client, coupons):
        response = customer_client.post('/coupons/apply', json={'code': 'save10', 'subtotal': '40.00'})
        assert response.status_code == 200
        assert response.get_json() == {'code': 'SAVE10', 'discount': '3.00', 'free_delivery': False}

    def test_apply_rejected_coupon(self, customer_client, coupons):
        response = customer_client.post('/coupons/apply', json={'code': 'FLAT50', 'subtotal': '40.00'})
        assert response.status_code == 422
        assert response.get_json()['reason'] == 'min_order_not_met'

    @pytest.mark.parametrize('subtotal', ['NaN', 'Infinity', 'abc', None])
    def test_apply_with_bad_subtotal_is_400(self, customer_client, coupons, subtotal):
        response = customer_client.post('/coupons/apply', json={'code': 'save10', 'subtotal': subtotal})
        assert response.status_code == 400
        assert response.get_json()['message'] == 'subtotal must be a number'

    def test_list_slots(self, client, slot, full_slot):
        response = client.get(f'/delivery/slots?date={slot.date.isoformat()}&type=standard')
        data = response.get_json()
        assert response.status_code == 200
        assert [s['id'] for s in data['slots']] == [slot.id]
        assert data['slots'][0]['remaining'] == 10

    def test_bad_slot_query(self, client):
        assert client.get('/delivery/slots?date=tomorrow').status_code == 400
        assert client.get('/delivery/slots?type=drone').status_code == 400


class TestAdminEndpoints:

    def test_requires_admin_session(self, client):
        assert client.get('/admin/reconciliation').status_code == 401

    def test_customer_is_forbidden(self, customer_client):
        assert customer_client.get('/admin/reconciliation').status_code == 403

    def test_status_update(self, admin_client, place_order):
        order = place_order()
        response = admin_client.post(f'/admin/orders/{order.id}/status', json={'status': 'confirmed'})
        assert response.status_code == 200
        assert response.get_json()['status'] == 'confirmed'

        response = admin_client.post(f'/admin/orders/{order.id}/status', json={'status': 'delivered'})
        assert response.status_code == 400

    def test_reconciliation_queue_and_repair(self, admin_client, place_order, monkeypatch):
        from dailyfresh.repositories import SlotRepository
        from dailyfresh.exceptions import PartialFailureError
        monkeypatch.setattr(SlotRepository, 'reserve', lambda self, slot_id: False)
        with pytest.raises(PartialFailureError) as exc:
            place_order()
        order_id = exc.value.order_id

        queue = admin_client.get('/admin/reconciliation').get_json()
        assert [f['order_id'] for f in queue['failures']] == [order_id]
        assert queue['failures'][0]['step'] == 'reserve_slot'

        response = admin_client.post(f'/admin/reconciliation/{order_id}')
        assert response.status_code == 200
        assert len(response.get_json()['restored_items']) == 2

        assert admin_client.get('/admin/reconciliation').get_json()['failures'] == []


class TestOperationalEndpoints:

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json()['database'] == 'connected'

    def test_cache_health_degrades_without_redis(self, client):
        response = client.get('/health/cache')
        assert response.status_code == 200
        assert response.get_json()['status'] == 'degraded'

    def test_metrics(self, client):
        response = client.get('/metrics')
        assert response.status_code == 200
        assert b'checkout_orders_created_total' in response.data

    def test_unknown_route_is_json_404(self, client):
        response = client.get('/nope')
        assert response.status_code == 404
        assert response.get_json() == {'status': 'error', 'message': 'Not Found'}
