"""Inventory repository: conditional stock mutations plus their audit log."""
import logging
from sqlalchemy import update, select, case, exists
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from dailyfresh.models import Product, InventoryLog, InventoryLogType
from dailyfresh.exceptions import NotFoundError

logger = logging.getLogger(__name__)


def reservation_key(order_item_id):
    return f'reserve:{order_item_id}'


def compensation_key(order_item_id):
    return f'restore:{order_item_id}'


class InventoryRepository:
    """
    Stock reservation and restoration against the product row.

    Every mutation is one UPDATE whose WHERE clause carries the capacity check,
    so two requests can never both pass a stale read. The log entry is written
    in the same transaction; the caller commits.
    """

    def __init__(self, session: Session):
        self.session = session

    def reserve(self, product_id: int, quantity: int, order_id: int = None,
                order_item_id: int = None, actor: str = None) -> bool:
        """Test-and-decrement stock. Returns False (and writes nothing) when short."""
        if quantity <= 0:
            raise ValueError('Reservation quantity must be greater than 0')

        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.stock_quantity >= quantity)
            .values(
                stock_quantity=Product.stock_quantity - quantity,
                sold_count=Product.sold_count + quantity,
            )
            .returning(Product.stock_quantity)
            .execution_options(synchronize_session=False)
        )
        new_quantity = self.session.execute(stmt).scalar_one_or_none()
        if new_quantity is None:
            return False

        self.session.add(InventoryLog(
            product_id=product_id,
            type=InventoryLogType.SALE,
            quantity_change=-quantity,
            old_quantity=new_quantity + quantity,
            new_quantity=new_quantity,
            reason='Order placed',
            order_id=order_id,
            order_item_id=order_item_id,
            actor=actor,
            idempotency_key=reservation_key(order_item_id) if order_item_id else None,
        ))
        self.session.flush()
        return True

    def restore(self, product_id: int, quantity: int, order_id: int, order_item_id: int,
                reason: str, actor: str = None) -> bool:
        """
        Put back a reserved quantity, at most once per order item.

        The compensation log row carries a unique key; a second attempt hits
        the unique index and the savepoint (stock increment included) is
        rolled back. Returns False when the item was already restored.
        """
        if quantity <= 0:
            raise ValueError('Restore quantity must be greater than 0')

        try:
            with self.session.begin_nested():
                stmt = (
                    update(Product)
                    .where(Product.id == product_id)
                    .values(
                        stock_quantity=Product.stock_quantity + quantity,
                        sold_count=case(
                            (Product.sold_count >= quantity, Product.sold_count - quantity),
                            else_=0
                        ),
                    )
                    .returning(Product.stock_quantity)
                    .execution_options(synchronize_session=False)
                )
                new_quantity = self.session.execute(stmt).scalar_one_or_none()
                if new_quantity is None:
                    raise NotFoundError(f'Product {product_id} not found')

                self.session.add(InventoryLog(
                    product_id=product_id,
                    type=InventoryLogType.ADJUSTMENT,
                    quantity_change=quantity,
                    old_quantity=new_quantity - quantity,
                    new_quantity=new_quantity,
                    reason=reason,
                    order_id=order_id,
                    order_item_id=order_item_id,
                    actor=actor,
                    idempotency_key=compensation_key(order_item_id),
                ))
                self.session.flush()
        except IntegrityError:
            logger.info(f"[CANCEL] order={order_id} item={order_item_id} step=restore_stock status=already_restored")
            return False
        return True

    def adjust_stock(self, product_id: int, delta: int, log_type: InventoryLogType,
               reason: str, actor: str = None) -> InventoryLog:
        """Manual stock movement (purchase, count adjustment, expiry). Never drops below zero."""
        if delta == 0:
            raise ValueError('Adjustment delta must not be 0')

        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.stock_quantity + delta >= 0)
            .values(stock_quantity=Product.stock_quantity + delta)
            .returning(Product.stock_quantity)
            .execution_options(synchronize_session=False)
        )
        new_quantity = self.session.execute(stmt).scalar_one_or_none()
        if new_quantity is None:
            return None

        entry = InventoryLog(
            product_id=product_id,
            type=log_type,
            quantity_change=delta,
            old_quantity=new_quantity - delta,
            new_quantity=new_quantity,
            reason=reason,
            actor=actor,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def has_reservation(self, order_item_id: int) -> bool:
        return self.session.execute(
            select(exists().where(InventoryLog.idempotency_key == reservation_key(order_item_id)))
        ).scalar()

    def has_compensation(self, order_item_id: int) -> bool:
        return self.session.execute(
            select(exists().where(InventoryLog.idempotency_key == compensation_key(order_item_id)))
        ).scalar()

    def entries_for_order(self, order_id: int):
        return self.session.query(InventoryLog).filter(
            InventoryLog.order_id == order_id
        ).order_by(InventoryLog.id.asc()).all()
