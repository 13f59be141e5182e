"""
Order status state machine and status history recording.

Every accepted transition is a conditional UPDATE on the expected current
status plus one appended history row, committed together.
"""
import logging
import random
from datetime import datetime, timezone
from typing import List, Optional
from flask import current_app, has_app_context
from dailyfresh.models import Order, OrderStatus, PaymentStatus, HistoryEntryType, OrderStatusHistory
from dailyfresh.repositories import OrderRepository
from dailyfresh.exceptions import ValidationError, NotFoundError

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PREPARING, OrderStatus.CANCELLED},
    OrderStatus.PREPARING: {OrderStatus.OUT_FOR_DELIVERY},
    OrderStatus.OUT_FOR_DELIVERY: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}


def can_transition(current: OrderStatus, new_status: OrderStatus) -> bool:
    return new_status in ALLOWED_TRANSITIONS.get(current, set())


def generate_order_number(prefix: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """
    Human order number: prefix + YYMMDDHHMMSS + 4 random digits.

    Uniqueness is enforced by the database; checkout retries on a collision.
    """
    if prefix is None:
        prefix = current_app.config.get('ORDER_NUMBER_PREFIX', 'DF') if has_app_context() else 'DF'
    now = now or datetime.now(timezone.utc)
    return f"{prefix}{now.strftime('%y%m%d%H%M%S')}{random.randint(0, 9999):04d}"


def parse_status(raw: str) -> OrderStatus:
    try:
        return OrderStatus((raw or '').lower())
    except ValueError:
        raise ValidationError(f'Unknown order status: {raw}')


def record_status(session, order_id: int, status: OrderStatus, notes: str = None, actor: str = None,
                  entry_type: HistoryEntryType = HistoryEntryType.STATUS_CHANGE) -> OrderStatusHistory:
    """Append a history row. The caller owns the commit."""
    return OrderRepository(session).append_history(order_id, status, notes=notes, actor=actor, entry_type=entry_type)


def get_status_history(session, order_id: int, customer_ref: Optional[str] = None) -> List[OrderStatusHistory]:
    repo = OrderRepository(session)
    if repo.get(order_id, customer_ref=customer_ref) is None:
        raise NotFoundError('Order not found')
    return repo.history(order_id)


def transition_order(session, order_id: int, new_status: OrderStatus, actor: str, notes: str = None) -> Order:
    """
    Move an order along the fulfilment path.

    Cancellation is refused here: it has to release stock and slot, so it
    goes through cancellation_service.cancel_order.

    Raises:
        NotFoundError: unknown order.
        ValidationError: transition not allowed, or the order awaits reconciliation.
    """
    repo = OrderRepository(session)
    try:
        order = repo.get(order_id)
        if order is None:
            raise NotFoundError('Order not found')

        if new_status == OrderStatus.CANCELLED:
            raise ValidationError('Use order cancellation to cancel an order')

        current = order.status
        if not can_transition(current, new_status):
            raise ValidationError(f'Cannot move order from {current.value} to {new_status.value}')

        if new_status == OrderStatus.CONFIRMED and order.needs_reconciliation:
            raise ValidationError('Order is awaiting reconciliation and cannot be confirmed')

        extra = {}
        if new_status == OrderStatus.DELIVERED and order.is_cash_on_delivery:
            extra['payment_status'] = PaymentStatus.PAID

        if not repo.transition(order_id, [current], new_status, **extra):
            # Someone else moved it between our read and the write
            raise ValidationError(f'Order status changed concurrently; it is no longer {current.value}')

        repo.append_history(order_id, new_status, notes=notes, actor=actor)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[STATUS] order={order_id} from={current.value} to={new_status.value} actor={actor}")
    return repo.refresh(order)
