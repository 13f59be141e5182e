"""Order Status History model (append-only audit of transitions)."""
from sqlalchemy import Column, BigInteger, Integer, String, Text, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from dailyfresh.database import Base
from dailyfresh.models.order import OrderStatus
import enum


class HistoryEntryType(str, enum.Enum):
    """STATUS_CHANGE rows mark transitions; PAYMENT rows are notes on the current status."""
    STATUS_CHANGE = 'status_change'
    PAYMENT = 'payment'


class OrderStatusHistory(Base):
    """One entry per status transition or payment note."""

    __tablename__ = 'order_status_history'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('orders.id'), nullable=False, index=True)
    status = Column(
        Enum(OrderStatus, name='order_status', values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    entry_type = Column(
        Enum(HistoryEntryType, name='history_entry_type', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=HistoryEntryType.STATUS_CHANGE
    )
    notes = Column(Text, nullable=True)
    actor = Column(String(120), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    order = relationship('Order', back_populates='history')

    def __repr__(self):
        return f"<OrderStatusHistory(order_id={self.order_id}, status={self.status.value})>"

    def to_dict(self):
        return {
            'status': self.status.value,
            'entry_type': self.entry_type.value,
            'notes': self.notes,
            'actor': self.actor,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
