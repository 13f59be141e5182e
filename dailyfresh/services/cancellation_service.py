"""
Order cancellation and compensation.

Compensation is keyed off the inventory log, not the order status: an item
is restored only when its reservation entry exists and no restoration entry
does. Running it twice, or after a partial checkout, restores each item at
most once.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional
from sqlalchemy import update
from dailyfresh.models import Order, OrderStatus, PaymentStatus, HistoryEntryType, CANCELLABLE_STATUSES
from dailyfresh.repositories import InventoryRepository, OrderRepository
from dailyfresh.exceptions import NotFoundError, ValidationError
from dailyfresh.services.delivery_service import release_slot, invalidate_slot_listings
from dailyfresh.metrics import order_cancellations_total

logger = logging.getLogger(__name__)


@dataclass
class CompensationResult:
    order_id: int
    restored_items: List[int] = field(default_factory=list)
    skipped_items: List[int] = field(default_factory=list)
    slot_released: bool = False
    refunded: bool = False

    def to_dict(self):
        return {
            'order_id': self.order_id,
            'restored_items': list(self.restored_items),
            'skipped_items': list(self.skipped_items),
            'slot_released': self.slot_released,
            'refunded': self.refunded,
        }


def compensate_order(session, order: Order, actor: str) -> CompensationResult:
    """
    Undo whatever reservations this order still holds.

    Flushes but does not commit; cancel_order and reconciliation commit
    the compensation together with their own writes.
    """
    result = CompensationResult(order_id=order.id)
    inventory = InventoryRepository(session)
    orders = OrderRepository(session)

    for item in orders.items(order.id):
        if not inventory.has_reservation(item.id) or inventory.has_compensation(item.id):
            result.skipped_items.append(item.id)
            logger.info(f"[CANCEL] order={order.id} item={item.id} step=restore_stock status=skipped")
            continue
        restored = inventory.restore(
            item.product_id, item.quantity, order.id, item.id,
            reason=f'Order {order.order_number} cancelled', actor=actor
        )
        if restored:
            result.restored_items.append(item.id)
            logger.info(
                f"[CANCEL] order={order.id} item={item.id} step=restore_stock status=ok qty={item.quantity}"
            )
        else:
            result.skipped_items.append(item.id)

    if order.delivery_slot_id is not None and orders.mark_slot_released(order.id):
        result.slot_released = release_slot(session, order.delivery_slot_id)
        logger.info(
            f"[CANCEL] order={order.id} step=release_slot slot={order.delivery_slot_id} "
            f"status={'ok' if result.slot_released else 'already_empty'}"
        )

    refund = session.execute(
        update(Order)
        .where(Order.id == order.id, Order.payment_status == PaymentStatus.PAID)
        .values(payment_status=PaymentStatus.REFUNDED, refund_amount=Order.total_amount)
        .returning(Order.total_amount, Order.status)
        .execution_options(synchronize_session=False)
    ).first()
    if refund is not None:
        amount, status = refund
        orders.append_history(
            order.id, status, notes=f'Refund initiated: {amount}', actor=actor,
            entry_type=HistoryEntryType.PAYMENT
        )
        result.refunded = True
        logger.info(f"[PAYMENT] order={order.id} step=refund status=initiated amount={amount}")

    return result


def cancel_order(session, order_id: int, reason: str, actor: str,
                 customer_ref: Optional[str] = None) -> CompensationResult:
    """
    Cancel a pending or confirmed order and compensate it.

    Raises:
        NotFoundError: no such order, or it belongs to another customer.
        ValidationError: the order is not in a cancellable status, which
            includes an order that was already cancelled.
    """
    repo = OrderRepository(session)
    try:
        order = repo.get(order_id, customer_ref=customer_ref)
        if order is None:
            raise NotFoundError('Order not found')

        if not repo.transition(order_id, CANCELLABLE_STATUSES, OrderStatus.CANCELLED,
                               cancellation_reason=reason):
            current = repo.get(order_id)
            raise ValidationError(f'Order cannot be cancelled in status {current.status.value}')

        repo.append_history(order_id, OrderStatus.CANCELLED, notes=reason, actor=actor)
        logger.info(f"[CANCEL] order={order_id} step=status status=ok actor={actor}")

        result = compensate_order(session, order, actor)
        session.commit()
    except Exception:
        session.rollback()
        raise

    if result.slot_released:
        invalidate_slot_listings()
    order_cancellations_total.inc()
    logger.info(
        f"[CANCEL] order={order_id} status=done restored={len(result.restored_items)} "
        f"skipped={len(result.skipped_items)} slot_released={result.slot_released} refunded={result.refunded}"
    )
    return result
