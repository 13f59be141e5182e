"""
Checkout pipeline.

Turns a validated cart into an order, then reserves stock per item, books the
delivery slot and redeems the coupon. Each step commits on its own. Once the
order header is committed, a failing step is never rolled back silently: it is
recorded as a CheckoutFailure, the order is flagged for reconciliation and the
caller gets a PartialFailureError carrying only the order reference.

Two exceptions: losing the race for the very first item withdraws the order
(nothing is held yet) and raises the StockError, and an order cancelled while
its checkout runs stops the pipeline before the next reservation.

Every step logs one line:
    [CHECKOUT] order=<id> step=<step> item=<id> status=<ok|failed>
"""
import logging
from decimal import Decimal
from typing import List, Dict, Any, Optional
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from dailyfresh.models import (
    Order, OrderItem, OrderStatus, PaymentStatus, PaymentMethod, Address, CheckoutStep
)
from dailyfresh.repositories import InventoryRepository, CouponRepository, OrderRepository
from dailyfresh.exceptions import (
    StorefrontError, ValidationError, NotFoundError, StockError, SlotError, PartialFailureError
)
from dailyfresh.services.cart_service import validate_cart, clear_cart
from dailyfresh.services.coupon_service import evaluate_coupon
from dailyfresh.services.cancellation_service import compensate_order
from dailyfresh.services.delivery_service import reserve_slot, slot_delivery_charge, invalidate_slot_listings
from dailyfresh.services.order_status_service import generate_order_number
from dailyfresh.services.pricing_service import calculate_totals, DeliveryPolicy, ZERO
from dailyfresh.services.reconciliation_service import record_failure
from dailyfresh.repositories.slots import SlotRepository
from dailyfresh.metrics import (
    checkout_orders_created_total, stock_reservation_conflicts_total, slot_reservation_conflicts_total
)

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 5


def parse_payment_method(raw: str) -> PaymentMethod:
    try:
        return PaymentMethod((raw or '').lower())
    except ValueError:
        raise ValidationError(f'Unsupported payment method: {raw}')


def _log_step(order_id, step, status, item_id=None, **extra):
    parts = [f"[CHECKOUT] order={order_id}", f"step={step}"]
    if item_id is not None:
        parts.append(f"item={item_id}")
    parts.append(f"status={status}")
    parts.extend(f"{k}={v}" for k, v in extra.items())
    line = ' '.join(parts)
    if status == 'ok':
        logger.info(line)
    else:
        logger.error(line)


def _partial_failure(session, order_id: int, order_number: str, step: str,
                     order_item_id: Optional[int] = None, detail: Optional[dict] = None) -> PartialFailureError:
    """Record the failure for reconciliation and build the error the caller sees."""
    _log_step(order_id, step, 'failed', order_item_id)
    try:
        record_failure(session, order_id, step, order_item_id=order_item_id, detail=detail)
    except SQLAlchemyError:
        # The log line above is then the only trace; reconcile-scan still finds item-less orders
        logger.critical(f"[CHECKOUT] order={order_id} step={step} status=unrecorded")
    return PartialFailureError(order_id, order_number, step, order_item_id=order_item_id, detail=detail)


def _abandon_cancelled(session, order_id: int, order_number: str, step: str, actor: str):
    """
    Stop a checkout whose order was cancelled while it ran.

    The cancellation compensated whatever had been reserved when it
    committed; compensating again picks up anything reserved since and is a
    no-op otherwise.
    """
    _log_step(order_id, step, 'abandoned', reason='order_cancelled')
    try:
        order = OrderRepository(session).get(order_id)
        result = compensate_order(session, order, actor)
        session.commit()
    except SQLAlchemyError as e:
        raise _partial_failure(session, order_id, order_number, step, detail={'error': str(e)}) from e
    if result.slot_released:
        invalidate_slot_listings()
    raise StorefrontError(
        f'Order {order_number} was cancelled before checkout completed', 409, {'reference': order_number}
    )


def _withdraw_order(session, order_id: int, order_number: str, stock_error: StockError, actor: str):
    """Cancel an order that lost the race for its first item, then raise the StockError."""
    orders = OrderRepository(session)
    reason = f'Out of stock at checkout: {stock_error.product_name}'
    try:
        if orders.transition(order_id, [OrderStatus.PENDING], OrderStatus.CANCELLED, cancellation_reason=reason):
            orders.append_history(order_id, OrderStatus.CANCELLED, notes=reason, actor=actor)
        session.commit()
    except SQLAlchemyError as e:
        raise _partial_failure(
            session, order_id, order_number, CheckoutStep.RESERVE_STOCK,
            detail={'reserved_item_ids': [], 'error': str(e)}
        ) from e
    _log_step(order_id, CheckoutStep.RESERVE_STOCK, 'withdrawn', product=stock_error.product_name)
    stock_error.payload['reference'] = order_number
    raise stock_error


def _insert_header(session, **fields) -> Order:
    """Insert the order header, drawing a fresh order number on a collision."""
    for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
        order = Order(order_number=generate_order_number(), **fields)
        try:
            with session.begin_nested():
                session.add(order)
                session.flush()
            return order
        except IntegrityError:
            logger.warning(f"[CHECKOUT] step=order_number attempt={attempt} status=collision")
    raise StorefrontError('Could not allocate an order number, please retry')


def create_order(session, customer_ref: str, address_id: int, slot_id: int, payment_method: str,
                 items: List[Dict[str, Any]], coupon_code: Optional[str] = None) -> Order:
    """
    Place an order for `customer_ref`.

    Nothing is written until the cart, address, slot and coupon have all
    been checked.

    Raises:
        ValidationError, NotFoundError, StockError, SlotError, CouponError:
            before any write.
        StockError: also raised, carrying the order reference, when another
            checkout took the stock of the first item after the checks.
        StorefrontError (409): the order was cancelled while this ran.
        PartialFailureError: a step after the header insert failed.
    """
    config = current_app.config
    method = parse_payment_method(payment_method)

    # 0. Pre-write checks
    validation = validate_cart(session, items, Decimal(config.get('MIN_ORDER_AMOUNT', '0')))
    if not validation.valid:
        if validation.shortages and len(validation.shortages) == len(validation.violations):
            product, requested, available = validation.shortages[0]
            raise StockError(product.name, requested, available)
        raise ValidationError(validation.violations[0], violations=validation.violations)

    address = session.query(Address).filter(
        Address.id == address_id, Address.customer_ref == customer_ref
    ).first()
    if address is None:
        raise NotFoundError('Address not found')

    slot = SlotRepository(session).get(slot_id)
    if slot is None:
        raise NotFoundError('Delivery slot not found')
    if not slot.is_available or slot.is_full:
        raise SlotError('The selected delivery slot is no longer available', slot_id=slot.id)

    evaluation = None
    if coupon_code:
        evaluation = evaluate_coupon(session, coupon_code, validation.subtotal, customer_ref)

    policy = DeliveryPolicy(
        flat_fee=slot_delivery_charge(slot, config),
        free_delivery_threshold=Decimal(config.get('FREE_DELIVERY_THRESHOLD', '500')),
    )
    breakdown = calculate_totals(
        [line.pricing_line() for line in validation.lines],
        policy,
        discount=evaluation.discount if evaluation else ZERO,
        free_delivery=evaluation.free_delivery if evaluation else False,
        default_tax_rate=Decimal(config.get('DEFAULT_TAX_RATE', '18')),
    )

    # 1-2. Order number and header; a failure here leaves nothing behind
    try:
        order = _insert_header(
            session,
            customer_ref=customer_ref,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            payment_method=method.value,
            subtotal=breakdown.subtotal,
            discount_amount=breakdown.discount,
            tax_primary_amount=breakdown.tax_primary,
            tax_secondary_amount=breakdown.tax_secondary,
            tax_amount=breakdown.tax_amount,
            delivery_charge=breakdown.delivery_charge,
            total_amount=breakdown.total,
            delivery_slot_id=slot.id,
            delivery_address=address.snapshot(),
            coupon_code=evaluation.coupon.code if evaluation else None,
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    order_id, order_number = order.id, order.order_number
    _log_step(order_id, 'insert_header', 'ok', number=order_number, total=breakdown.total)

    # 3. Items, in one flush
    try:
        order_items = [
            OrderItem(
                order_id=order_id,
                product_id=line.product.id,
                product_name=line.product.name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                line_total=line.line_total,
                tax_rate=line.product.tax_rate,
            )
            for line in validation.lines
        ]
        session.add_all(order_items)
        session.flush()
        item_refs = [(item.id, item.product_id, item.product_name, item.quantity) for item in order_items]
        session.commit()
    except SQLAlchemyError as e:
        raise _partial_failure(
            session, order_id, order_number, CheckoutStep.INSERT_ITEMS, detail={'error': str(e)}
        ) from e
    _log_step(order_id, CheckoutStep.INSERT_ITEMS, 'ok', count=len(item_refs))

    # 4. Stock, item by item, using the quantity recorded on the item
    orders = OrderRepository(session)
    inventory = InventoryRepository(session)
    reserved: List[int] = []
    for item_id, product_id, product_name, quantity in item_refs:
        try:
            pending = orders.hold_pending(order_id)
            ok = pending and inventory.reserve(
                product_id, quantity, order_id=order_id, order_item_id=item_id, actor=customer_ref
            )
            session.commit()
        except SQLAlchemyError as e:
            raise _partial_failure(
                session, order_id, order_number, CheckoutStep.RESERVE_STOCK, item_id,
                detail={'reserved_item_ids': list(reserved), 'error': str(e)}
            ) from e
        if not pending:
            _abandon_cancelled(session, order_id, order_number, CheckoutStep.RESERVE_STOCK, customer_ref)
        if not ok:
            stock_reservation_conflicts_total.inc()
            stock_error = StockError(product_name, quantity)
            if not reserved:
                # Nothing is held yet, so the order can simply be withdrawn
                _withdraw_order(session, order_id, order_number, stock_error, customer_ref)
            raise _partial_failure(
                session, order_id, order_number, CheckoutStep.RESERVE_STOCK, item_id,
                detail={
                    'reserved_item_ids': list(reserved),
                    'product_id': product_id,
                    'requested': quantity,
                    'error': stock_error.message,
                }
            ) from stock_error
        reserved.append(item_id)
        _log_step(order_id, CheckoutStep.RESERVE_STOCK, 'ok', item_id, qty=quantity)

    # 5. Delivery slot
    try:
        pending = orders.hold_pending(order_id)
        ok = pending and reserve_slot(session, slot_id)
        if ok:
            orders.mark_slot_reserved(order_id)
        session.commit()
    except SQLAlchemyError as e:
        raise _partial_failure(
            session, order_id, order_number, CheckoutStep.RESERVE_SLOT,
            detail={'reserved_item_ids': reserved, 'slot_id': slot_id, 'error': str(e)}
        ) from e
    if not pending:
        _abandon_cancelled(session, order_id, order_number, CheckoutStep.RESERVE_SLOT, customer_ref)
    if not ok:
        slot_reservation_conflicts_total.inc()
        slot_error = SlotError(slot_id=slot_id)
        raise _partial_failure(
            session, order_id, order_number, CheckoutStep.RESERVE_SLOT,
            detail={'reserved_item_ids': reserved, 'slot_id': slot_id, 'error': slot_error.message}
        ) from slot_error
    invalidate_slot_listings()
    _log_step(order_id, CheckoutStep.RESERVE_SLOT, 'ok', slot=slot_id)

    # 6. Coupon redemption, re-checked against the limits at write time
    if evaluation and (evaluation.discount > 0 or evaluation.free_delivery):
        coupon_id = evaluation.coupon.id
        try:
            pending = orders.hold_pending(order_id)
            ok = pending and CouponRepository(session).redeem(coupon_id, customer_ref, order_id, evaluation.discount)
            session.commit()
        except SQLAlchemyError as e:
            raise _partial_failure(
                session, order_id, order_number, CheckoutStep.REDEEM_COUPON,
                detail={'coupon_id': coupon_id, 'error': str(e)}
            ) from e
        if not pending:
            _abandon_cancelled(session, order_id, order_number, CheckoutStep.REDEEM_COUPON, customer_ref)
        if not ok:
            raise _partial_failure(
                session, order_id, order_number, CheckoutStep.REDEEM_COUPON,
                detail={'coupon_id': coupon_id, 'error': 'usage limit reached at redemption'}
            )
        _log_step(order_id, CheckoutStep.REDEEM_COUPON, 'ok', coupon=evaluation.coupon.code)

    # 7. Clear cart and open the history
    try:
        pending = orders.hold_pending(order_id)
        if pending:
            clear_cart(session, customer_ref, commit=False)
            orders.append_history(order_id, OrderStatus.PENDING, notes='Order created', actor=customer_ref)
        session.commit()
    except SQLAlchemyError as e:
        raise _partial_failure(
            session, order_id, order_number, CheckoutStep.FINALIZE, detail={'error': str(e)}
        ) from e
    if not pending:
        _abandon_cancelled(session, order_id, order_number, CheckoutStep.FINALIZE, customer_ref)
    _log_step(order_id, CheckoutStep.FINALIZE, 'ok')

    checkout_orders_created_total.inc()
    return orders.get_with_items(order_id)
