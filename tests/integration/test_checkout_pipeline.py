"""
Integration tests for the checkout pipeline: pre-write checks, the happy
path, and partial failures after the order header was committed.
"""

import threading
import pytest
from decimal import Decimal
from dailyfresh.database import new_session
from dailyfresh.models import (
    Order, OrderStatus, PaymentStatus, Product, DeliverySlot, Coupon, CouponUsage, CartItem,
    OrderStatusHistory, CheckoutFailure, CheckoutStep, InventoryLog, Address
)
from dailyfresh.repositories import InventoryRepository, SlotRepository
from dailyfresh.exceptions import (
    StorefrontError, ValidationError, StockError, SlotError, CouponError, NotFoundError, PartialFailureError
)
from dailyfresh.services import checkout_service
from dailyfresh.services.cancellation_service import cancel_order


class TestHappyPath:

    def test_scenario_a_order(self, session, products, slot, coupons, place_order, fresh):
        session.add(CartItem(customer_ref='user:1', product_id=products['apples'].id, quantity=2))
        session.commit()

        order = place_order(coupon_code='save10')

        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert order.subtotal == Decimal('40.00')
        assert order.discount_amount == Decimal('3.00')
        assert order.tax_primary_amount == Decimal('3.33')
        assert order.tax_secondary_amount == Decimal('3.33')
        assert order.tax_amount == Decimal('6.66')
        assert order.delivery_charge == Decimal('25.00')
        assert order.total_amount == Decimal('68.66')
        assert order.total_amount == (
            order.subtotal - order.discount_amount + order.tax_amount + order.delivery_charge
        )
        assert order.coupon_code == 'SAVE10'
        assert order.delivery_address['city'] == 'Hosur'
        assert order.slot_reserved is True
        assert order.needs_reconciliation is False

    def test_side_effects_of_a_completed_checkout(self, session, products, slot, coupons, place_order, fresh):
        session.add(CartItem(customer_ref='user:1', product_id=products['milk'].id, quantity=1))
        session.commit()

        order = place_order(coupon_code='SAVE10')

        assert [(i.product_id, i.quantity) for i in order.items] == [
            (products['apples'].id, 2), (products['milk'].id, 1)
        ]
        assert fresh(Product, products['apples'].id).stock_quantity == 48
        assert fresh(Product, products['milk'].id).stock_quantity == 49
        assert fresh(DeliverySlot, slot.id).booked_count == 1

        coupon = fresh(Coupon, coupons['save10'].id)
        assert coupon.used_count == 1
        usage = session.query(CouponUsage).filter_by(order_id=order.id).one()
        assert usage.discount_amount == Decimal('3.00')

        assert session.query(CartItem).filter_by(customer_ref='user:1').count() == 0

        history = session.query(OrderStatusHistory).filter_by(order_id=order.id).all()
        assert len(history) == 1
        assert history[0].status == OrderStatus.PENDING
        assert history[0].notes == 'Order created'
        assert history[0].actor == 'user:1'

        logs = session.query(InventoryLog).filter_by(order_id=order.id).all()
        assert sorted(log.order_item_id for log in logs) == sorted(i.id for i in order.items)

    def test_order_number_format(self, place_order):
        order = place_order()
        assert order.order_number.startswith('DF')
        assert len(order.order_number) == 18
        assert order.order_number[2:].isdigit()

    def test_order_number_collision_is_retried(self, session, place_order, monkeypatch):
        monkeypatch.setattr(checkout_service, 'generate_order_number', lambda: 'DF0000000000000001')
        first = place_order()

        numbers = iter(['DF0000000000000001', 'DF0000000000000002'])
        monkeypatch.setattr(checkout_service, 'generate_order_number', lambda: next(numbers))
        second = place_order()

        assert first.order_number == 'DF0000000000000001'
        assert second.order_number == 'DF0000000000000002'
        assert session.query(Order).count() == 2

    def test_free_delivery_coupon(self, coupons, place_order):
        order = place_order(coupon_code='FREESHIP')
        assert order.delivery_charge == Decimal('0.00')
        assert order.discount_amount == Decimal('0.00')
        assert order.total_amount == Decimal('47.20')


class TestPreWriteChecks:
    """Nothing may be written when a check fails before the header insert."""

    def test_empty_cart(self, session, place_order):
        with pytest.raises(ValidationError):
            checkout_service.create_order(session, 'user:1', 1, 1, 'upi', [])
        assert session.query(Order).count() == 0

    def test_price_changed(self, session, products, place_order):
        items = [{'product_id': products['apples'].id, 'quantity': 4, 'price': '9.00'}]
        with pytest.raises(ValidationError) as exc:
            place_order(items=items)
        assert any('price changed' in v for v in exc.value.violations)
        assert session.query(Order).count() == 0

    def test_below_minimum_order_amount(self, session, products, place_order):
        items = [{'product_id': products['apples'].id, 'quantity': 1, 'price': '10.00'}]
        with pytest.raises(ValidationError) as exc:
            place_order(items=items)
        assert exc.value.violations == ['Minimum order amount is 30.00']

    def test_insufficient_stock_is_a_conflict(self, session, products, place_order, fresh):
        items = [{'product_id': products['rice'].id, 'quantity': 6, 'price': '60.00'}]
        with pytest.raises(StockError) as exc:
            place_order(items=items)
        assert 'only 5 left in stock' in exc.value.message
        assert exc.value.status_code == 409
        assert session.query(Order).count() == 0
        assert fresh(Product, products['rice'].id).stock_quantity == 5

    def test_unknown_payment_method(self, session, place_order):
        with pytest.raises(ValidationError):
            place_order(payment_method='bitcoin')
        assert session.query(Order).count() == 0

    def test_address_of_another_customer(self, session, place_order):
        with pytest.raises(NotFoundError):
            place_order(customer_ref='user:2')
        assert session.query(Order).count() == 0

    def test_full_slot(self, session, full_slot, place_order, fresh):
        with pytest.raises(SlotError):
            place_order(slot_id=full_slot.id)
        assert session.query(Order).count() == 0
        assert fresh(DeliverySlot, full_slot.id).booked_count == 10

    def test_expired_coupon(self, session, coupons, place_order):
        with pytest.raises(CouponError) as exc:
            place_order(coupon_code='OLD5')
        assert exc.value.reason == 'expired'
        assert session.query(Order).count() == 0


class TestPartialFailures:

    def test_stock_conflict_mid_loop_is_recorded(self, session, products, slot, place_order, fresh, monkeypatch):
        milk_id = products['milk'].id
        original = InventoryRepository.reserve

        def reserve_with_conflict(self, product_id, quantity, **kwargs):
            if product_id == milk_id:
                return False  # stock taken by a concurrent order after validation
            return original(self, product_id, quantity, **kwargs)

        monkeypatch.setattr(InventoryRepository, 'reserve', reserve_with_conflict)

        with pytest.raises(PartialFailureError) as exc:
            place_order()

        error = exc.value
        assert error.step == CheckoutStep.RESERVE_STOCK
        assert error.status_code == 500
        assert error.order_number in error.message
        assert 'contact support' in error.message

        order = fresh(Order, error.order_id)
        assert order.status == OrderStatus.PENDING
        assert order.needs_reconciliation is True
        assert order.reconciliation_reason == 'partial_reservation'
        assert order.slot_reserved is False

        failure = session.query(CheckoutFailure).filter_by(order_id=order.id).one()
        items = {i.product_id: i for i in order.items}
        assert failure.step == CheckoutStep.RESERVE_STOCK
        assert failure.order_item_id == items[milk_id].id
        assert failure.detail['reserved_item_ids'] == [items[products['apples'].id].id]

        # The first item stays reserved until reconciliation
        assert fresh(Product, products['apples'].id).stock_quantity == 48
        assert fresh(Product, milk_id).stock_quantity == 50
        assert fresh(DeliverySlot, slot.id).booked_count == 0

    def test_slot_conflict_after_stock_reserved(self, session, products, slot, place_order, fresh, monkeypatch):
        monkeypatch.setattr(SlotRepository, 'reserve', lambda self, slot_id: False)

        with pytest.raises(PartialFailureError) as exc:
            place_order()

        order = fresh(Order, exc.value.order_id)
        assert exc.value.step == CheckoutStep.RESERVE_SLOT
        assert order.needs_reconciliation is True
        assert order.reconciliation_reason == 'slot_unreserved'
        assert fresh(Product, products['apples'].id).stock_quantity == 48

    def test_coupon_exhausted_between_check_and_redeem(self, session, coupons, place_order, fresh, monkeypatch):
        from dailyfresh.repositories import CouponRepository
        monkeypatch.setattr(CouponRepository, 'redeem', lambda self, *args, **kwargs: False)

        with pytest.raises(PartialFailureError) as exc:
            place_order(coupon_code='SAVE10')

        assert exc.value.step == CheckoutStep.REDEEM_COUPON
        assert fresh(Coupon, coupons['save10'].id).used_count == 0
        assert fresh(Order, exc.value.order_id).reconciliation_reason == 'coupon_unredeemed'

    def test_flagged_order_cannot_be_confirmed(self, session, products, place_order, monkeypatch):
        from dailyfresh.services.order_status_service import transition_order
        monkeypatch.setattr(SlotRepository, 'reserve', lambda self, slot_id: False)
        with pytest.raises(PartialFailureError) as exc:
            place_order()

        with pytest.raises(ValidationError):
            transition_order(session, exc.value.order_id, OrderStatus.CONFIRMED, actor='admin:7')


class TestConcurrentCheckouts:

    def test_first_item_lost_after_the_checks_withdraws_the_order(self, session, products, slot,
                                                                   place_order, fresh, monkeypatch):
        """Another checkout takes the stock between the pre-write read and the reservation."""
        rice_id = products['rice'].id
        original = checkout_service.validate_cart

        def validate_then_sell_out(db_session, lines, min_order_amount):
            validation = original(db_session, lines, min_order_amount)
            InventoryRepository(db_session).reserve(rice_id, 3)
            db_session.commit()
            return validation

        monkeypatch.setattr(checkout_service, 'validate_cart', validate_then_sell_out)

        with pytest.raises(StockError) as exc:
            place_order(items=[{'product_id': rice_id, 'quantity': 3, 'price': '60.00'}])

        order_id = session.query(Order.id).scalar()
        order = fresh(Order, order_id)
        assert exc.value.status_code == 409
        assert exc.value.payload['reference'] == order.order_number
        assert order.status == OrderStatus.CANCELLED
        assert order.cancellation_reason == 'Out of stock at checkout: Basmati Rice 5kg'
        assert order.needs_reconciliation is False
        assert session.query(CheckoutFailure).count() == 0
        assert fresh(Product, rice_id).stock_quantity == 2
        assert fresh(DeliverySlot, slot.id).booked_count == 0

    def test_two_checkouts_for_the_last_units(self, app, session, products, slot, address, fresh):
        """Stock 5, two customers ordering 3 at once: one order, one StockError, nothing flagged."""
        rice_id = products['rice'].id
        other_address = Address(customer_ref='user:2', label='Home', street='4 Lake View', city='Hosur',
                                state='Tamil Nadu', zip_code='635109', phone='+91 90000 00001')
        session.add(other_address)
        session.commit()
        callers = [('user:1', address.id), ('user:2', other_address.id)]
        slot_id = slot.id

        outcomes = []
        errors = []
        barrier = threading.Barrier(2)

        def worker(customer_ref, address_id):
            with app.app_context():
                worker_session = new_session()
                try:
                    barrier.wait()
                    checkout_service.create_order(
                        worker_session, customer_ref=customer_ref, address_id=address_id, slot_id=slot_id,
                        payment_method='upi', items=[{'product_id': rice_id, 'quantity': 3, 'price': '60.00'}]
                    )
                    outcomes.append('ok')
                except StockError:
                    outcomes.append('StockError')
                except Exception as e:  # surfaced through `errors`
                    errors.append(e)
                finally:
                    worker_session.close()

        threads = [threading.Thread(target=worker, args=caller) for caller in callers]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert errors == []
        assert sorted(outcomes) == ['StockError', 'ok']
        assert fresh(Product, rice_id).stock_quantity == 2
        assert session.query(Order).filter_by(needs_reconciliation=True).count() == 0
        assert session.query(Order).filter_by(status=OrderStatus.PENDING).count() == 1
        assert session.query(CheckoutFailure).count() == 0


class TestCancellationDuringCheckout:

    @pytest.mark.parametrize('step, occurrence', [
        ('insert_header', 1),
        (CheckoutStep.RESERVE_STOCK, 1),
        (CheckoutStep.RESERVE_STOCK, 2),
        (CheckoutStep.RESERVE_SLOT, 1),
    ])
    def test_cancelled_order_holds_nothing(self, session, products, slot, place_order, fresh, monkeypatch,
                                           step, occurrence):
        original = checkout_service._log_step
        logged = []

        def log_then_cancel(order_id, logged_step, status, *args, **kwargs):
            original(order_id, logged_step, status, *args, **kwargs)
            if logged_step == step and status == 'ok':
                logged.append(order_id)
                if len(logged) == occurrence:
                    other = new_session()
                    try:
                        cancel_order(other, order_id, 'Changed my mind', actor='user:1')
                    finally:
                        other.close()

        monkeypatch.setattr(checkout_service, '_log_step', log_then_cancel)

        with pytest.raises(StorefrontError) as exc:
            place_order()
        assert exc.value.status_code == 409
        assert 'cancelled before checkout completed' in exc.value.message

        order_id = session.query(Order.id).scalar()
        order = fresh(Order, order_id)
        assert order.status == OrderStatus.CANCELLED
        assert order.needs_reconciliation is False
        assert fresh(Product, products['apples'].id).stock_quantity == 50
        assert fresh(Product, products['milk'].id).stock_quantity == 50
        assert fresh(Product, products['apples'].id).sold_count == 0
        assert fresh(DeliverySlot, slot.id).booked_count == 0
        assert session.query(CheckoutFailure).count() == 0
        assert session.query(OrderStatusHistory).filter_by(order_id=order_id, notes='Order created').count() == 0
