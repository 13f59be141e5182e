"""Checkout Failure model - partial failure records for reconciliation."""
from sqlalchemy import Column, BigInteger, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from dailyfresh.database import Base


class CheckoutStep:
    """Names of the checkout steps that can leave a partial state."""
    INSERT_ITEMS = 'insert_items'
    RESERVE_STOCK = 'reserve_stock'
    RESERVE_SLOT = 'reserve_slot'
    REDEEM_COUPON = 'redeem_coupon'
    FINALIZE = 'finalize'
    HEADLESS = 'headless'


class CheckoutFailure(Base):
    """
    A checkout that stopped after the order header was committed.

    `detail` holds what the reconciliation pass needs: ids of items already
    reserved, the failing item, the error text.
    """

    __tablename__ = 'checkout_failure'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('orders.id'), nullable=False, index=True)
    step = Column(String(40), nullable=False)
    order_item_id = Column(BigInteger, nullable=True)
    detail = Column(JSON().with_variant(JSONB, 'postgresql'), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolved_by = Column(String(120), nullable=True)

    # Relationships
    order = relationship('Order')

    def __repr__(self):
        return f"<CheckoutFailure(order_id={self.order_id}, step={self.step}, resolved={self.resolved_at is not None})>"

    def to_dict(self):
        return {
            'id': self.id,
            'order_id': self.order_id,
            'step': self.step,
            'order_item_id': self.order_item_id,
            'detail': self.detail,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'resolved_at': self.resolved_at.isoformat() if self.resolved_at else None,
        }
