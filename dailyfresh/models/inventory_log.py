"""Inventory log model (append-only stock audit trail)."""
from sqlalchemy import Column, BigInteger, Integer, String, Text, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from dailyfresh.database import Base
import enum


class InventoryLogType(str, enum.Enum):
    """Inventory movement type enum."""
    SALE = 'sale'
    ADJUSTMENT = 'adjustment'
    PURCHASE = 'purchase'
    EXPIRED = 'expired'


class InventoryLog(Base):
    """
    One stock movement with the quantity before and after it.

    Rows are never updated. Cancellation consults this table, by order item,
    to decide whether a reservation exists and whether it was already restored.
    """

    __tablename__ = 'inventory_log'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False, index=True)
    type = Column(
        Enum(InventoryLogType, name='inventory_log_type', values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    quantity_change = Column(Integer, nullable=False)
    old_quantity = Column(Integer, nullable=False)
    new_quantity = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    order_id = Column(BigInteger, ForeignKey('orders.id'), nullable=True, index=True)
    order_item_id = Column(BigInteger, ForeignKey('order_item.id'), nullable=True, index=True)
    actor = Column(String(120), nullable=True)

    # 'reserve:<item>' / 'restore:<item>': at most one of each per order item
    idempotency_key = Column(String(64), unique=True, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    product = relationship('Product')

    def __repr__(self):
        return (
            f"<InventoryLog(id={self.id}, product_id={self.product_id}, "
            f"type={self.type.value}, change={self.quantity_change})>"
        )
