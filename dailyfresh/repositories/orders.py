"""Order repository: header reads and the conditional writes on an order."""
from typing import Iterable, Optional
from sqlalchemy import update, func
from sqlalchemy.orm import Session, selectinload
from dailyfresh.models import (
    Order, OrderItem, OrderStatus, OrderStatusHistory, HistoryEntryType
)


class OrderRepository:

    def __init__(self, session: Session):
        self.session = session

    def get(self, order_id: int, customer_ref: Optional[str] = None) -> Optional[Order]:
        query = self.session.query(Order).populate_existing().filter(Order.id == order_id)
        if customer_ref is not None:
            query = query.filter(Order.customer_ref == customer_ref)
        return query.first()

    def get_with_items(self, order_id: int, customer_ref: Optional[str] = None) -> Optional[Order]:
        query = self.session.query(Order).populate_existing().options(selectinload(Order.items)).filter(
            Order.id == order_id
        )
        if customer_ref is not None:
            query = query.filter(Order.customer_ref == customer_ref)
        return query.first()

    def list_for_customer(self, customer_ref: str, limit: int = 50):
        return self.session.query(Order).filter(
            Order.customer_ref == customer_ref
        ).order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()

    def items(self, order_id: int):
        return self.session.query(OrderItem).filter(
            OrderItem.order_id == order_id
        ).order_by(OrderItem.id.asc()).all()

    def transition(self, order_id: int, expected: Iterable[OrderStatus], new_status: OrderStatus,
                   **values) -> bool:
        """Move the order to `new_status` only if it is still in one of `expected`."""
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.status.in_(list(expected)))
            .values(status=new_status, updated_at=func.now(), **values)
            .returning(Order.id)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None

    def hold_pending(self, order_id: int) -> bool:
        """
        Lock the order row for the rest of the transaction if it is still pending.

        Checkout runs this before every reservation so a cancellation either
        commits first (and the reservation is skipped) or waits for the
        reservation to commit (and then compensates it).
        """
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.status == OrderStatus.PENDING)
            .values(updated_at=func.now())
            .returning(Order.id)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None

    def mark_slot_reserved(self, order_id: int) -> bool:
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.slot_reserved.is_(False))
            .values(slot_reserved=True)
            .returning(Order.id)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None

    def mark_slot_released(self, order_id: int) -> bool:
        """Claim the right to release this order's slot. True for exactly one caller."""
        stmt = (
            update(Order)
            .where(
                Order.id == order_id,
                Order.slot_reserved.is_(True),
                Order.slot_released.is_(False),
            )
            .values(slot_released=True)
            .returning(Order.id)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None

    def flag(self, order_id: int, reason: str) -> None:
        """Mark the order for reconciliation. The first reason recorded is kept."""
        stmt = (
            update(Order)
            .where(Order.id == order_id)
            .values(
                needs_reconciliation=True,
                reconciliation_reason=func.coalesce(Order.reconciliation_reason, reason),
            )
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)

    def clear_flag(self, order_id: int) -> None:
        stmt = (
            update(Order)
            .where(Order.id == order_id)
            .values(needs_reconciliation=False)
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)

    def append_history(self, order_id: int, status: OrderStatus, notes: str = None, actor: str = None,
                       entry_type: HistoryEntryType = HistoryEntryType.STATUS_CHANGE) -> OrderStatusHistory:
        entry = OrderStatusHistory(
            order_id=order_id,
            status=status,
            entry_type=entry_type,
            notes=notes,
            actor=actor,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def history(self, order_id: int):
        return self.session.query(OrderStatusHistory).filter(
            OrderStatusHistory.order_id == order_id
        ).order_by(OrderStatusHistory.id.asc()).all()

    def refresh(self, order: Order) -> Order:
        """Reload an order after bulk UPDATEs that bypassed the identity map."""
        self.session.refresh(order)
        return order
