"""
Reconciliation support.

Checkout failures after the order header was committed are persisted as
CheckoutFailure rows and the order is flagged. This module writes those
records, finds orders that died before their items were written, and
repairs flagged orders through the idempotent compensation path.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from sqlalchemy import func, update
from dailyfresh.models import Order, OrderItem, OrderStatus, CheckoutFailure, CheckoutStep
from dailyfresh.repositories import OrderRepository
from dailyfresh.exceptions import NotFoundError, ValidationError
from dailyfresh.services.delivery_service import invalidate_slot_listings
from dailyfresh.metrics import checkout_partial_failures_total

logger = logging.getLogger(__name__)

# Reason stored on the order for each failed step
FLAG_REASONS = {
    CheckoutStep.INSERT_ITEMS: 'items_missing',
    CheckoutStep.RESERVE_STOCK: 'partial_reservation',
    CheckoutStep.RESERVE_SLOT: 'slot_unreserved',
    CheckoutStep.REDEEM_COUPON: 'coupon_unredeemed',
    CheckoutStep.FINALIZE: 'finalize_failed',
    CheckoutStep.HEADLESS: 'items_missing',
}


def record_failure(session, order_id: int, step: str, order_item_id: Optional[int] = None,
                   detail: Optional[dict] = None) -> CheckoutFailure:
    """
    Persist a partial failure and flag its order, in a commit of its own.

    Whatever the failed step had pending is rolled back first; steps that
    committed before it stay as they are for reconciliation to undo.
    """
    session.rollback()
    try:
        failure = CheckoutFailure(order_id=order_id, step=step, order_item_id=order_item_id, detail=detail or {})
        session.add(failure)
        OrderRepository(session).flag(order_id, FLAG_REASONS.get(step, step))
        session.commit()
    except Exception:
        session.rollback()
        logger.exception(f"[RECONCILE] order={order_id} step={step} status=record_failed")
        raise

    checkout_partial_failures_total.labels(step=step).inc()
    logger.error(
        f"[RECONCILE] order={order_id} step={step} item={order_item_id} status=flagged detail={detail or {}}"
    )
    return failure


def flag_headless_orders(session, grace_minutes: int, now: Optional[datetime] = None) -> List[Order]:
    """Flag pending orders that still have no items once the grace period is over."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=grace_minutes)

    item_count = (
        session.query(func.count(OrderItem.id))
        .filter(OrderItem.order_id == Order.id)
        .correlate(Order)
        .scalar_subquery()
    )
    candidates = session.query(Order).filter(
        Order.status == OrderStatus.PENDING,
        Order.needs_reconciliation.is_(False),
        Order.created_at < cutoff,
        item_count == 0,
    ).all()

    for order in candidates:
        record_failure(
            session, order.id, CheckoutStep.HEADLESS,
            detail={'reason': f'no items after {grace_minutes} minutes'}
        )
    for order in candidates:
        session.refresh(order)
    return candidates


def list_open_failures(session) -> List[CheckoutFailure]:
    return session.query(CheckoutFailure).filter(
        CheckoutFailure.resolved_at.is_(None)
    ).order_by(CheckoutFailure.created_at.asc(), CheckoutFailure.id.asc()).all()


def reconcile_order(session, order_id: int, actor: str):
    """
    Repair a flagged order.

    A pending order is cancelled (which compensates it). An order that is
    already cancelled is compensated again, which only touches what was not
    yet restored. Open failures are then resolved and the flag cleared.
    """
    from dailyfresh.services.cancellation_service import cancel_order, compensate_order

    repo = OrderRepository(session)
    order = repo.get(order_id)
    if order is None:
        raise NotFoundError('Order not found')
    if not order.needs_reconciliation:
        raise ValidationError('Order is not flagged for reconciliation')

    if order.status == OrderStatus.CANCELLED:
        result = compensate_order(session, order, actor)
        session.commit()
        if result.slot_released:
            invalidate_slot_listings()
    elif order.status == OrderStatus.PENDING:
        result = cancel_order(session, order_id, f'Reconciliation: {order.reconciliation_reason}', actor)
    else:
        raise ValidationError(f'Order in status {order.status.value} cannot be reconciled automatically')

    try:
        session.execute(
            update(CheckoutFailure)
            .where(CheckoutFailure.order_id == order_id, CheckoutFailure.resolved_at.is_(None))
            .values(resolved_at=datetime.now(timezone.utc), resolved_by=actor)
            .execution_options(synchronize_session=False)
        )
        repo.clear_flag(order_id)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(
        f"[RECONCILE] order={order_id} status=resolved restored={len(result.restored_items)} "
        f"slot_released={result.slot_released} refunded={result.refunded} actor={actor}"
    )
    return result
