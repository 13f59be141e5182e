"""Order model."""
from decimal import Decimal
from sqlalchemy import (
    Column, BigInteger, Integer, String, Boolean, Numeric, DateTime, Text, Enum, ForeignKey, JSON
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from dailyfresh.database import Base
import enum


class OrderStatus(str, enum.Enum):
    """Order lifecycle status enum."""
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    PREPARING = 'preparing'
    OUT_FOR_DELIVERY = 'out_for_delivery'
    DELIVERED = 'delivered'
    CANCELLED = 'cancelled'


class PaymentStatus(str, enum.Enum):
    """Order payment status enum."""
    PENDING = 'pending'
    PAID = 'paid'
    FAILED = 'failed'
    REFUNDED = 'refunded'


class PaymentMethod(str, enum.Enum):
    """Accepted payment methods; anything but COD goes through the gateway."""
    CARD = 'card'
    UPI = 'upi'
    WALLET = 'wallet'
    NETBANKING = 'netbanking'
    COD = 'cod'


CANCELLABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.CONFIRMED)
TERMINAL_STATUSES = (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


def _enum_values(enum_cls):
    return [m.value for m in enum_cls]


class Order(Base):
    """
    Customer order header.

    Immutable after checkout except for the status/payment fields and the
    reconciliation flags. `customer_ref` is 'user:<id>' or 'guest:<token>'.
    """

    __tablename__ = 'orders'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    order_number = Column(String(32), nullable=False, unique=True, index=True)
    customer_ref = Column(String(120), nullable=False, index=True)
    status = Column(
        Enum(OrderStatus, name='order_status', values_callable=_enum_values),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True
    )
    payment_status = Column(
        Enum(PaymentStatus, name='payment_status', values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.PENDING
    )
    payment_method = Column(String(20), nullable=False)
    payment_reference = Column(String(120), nullable=True)

    # Money (fixed-point)
    subtotal = Column(Numeric(10, 2), nullable=False)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=Decimal('0.00'))
    tax_primary_amount = Column(Numeric(10, 2), nullable=False, default=Decimal('0.00'))
    tax_secondary_amount = Column(Numeric(10, 2), nullable=False, default=Decimal('0.00'))
    tax_amount = Column(Numeric(10, 2), nullable=False, default=Decimal('0.00'))
    delivery_charge = Column(Numeric(10, 2), nullable=False, default=Decimal('0.00'))
    total_amount = Column(Numeric(10, 2), nullable=False)
    refund_amount = Column(Numeric(10, 2), nullable=True)

    # Delivery
    delivery_slot_id = Column(BigInteger, ForeignKey('delivery_slot.id'), nullable=True)
    slot_reserved = Column(Boolean, nullable=False, default=False)
    slot_released = Column(Boolean, nullable=False, default=False)
    delivery_address = Column(JSON().with_variant(JSONB, 'postgresql'), nullable=False)

    coupon_code = Column(String(40), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # Reconciliation
    needs_reconciliation = Column(Boolean, nullable=False, default=False, index=True)
    reconciliation_reason = Column(String(40), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    items = relationship('OrderItem', back_populates='order', order_by='OrderItem.id')
    history = relationship('OrderStatusHistory', back_populates='order', order_by='OrderStatusHistory.id')
    delivery_slot = relationship('DeliverySlot')

    def __repr__(self):
        return f"<Order(id={self.id}, number={self.order_number}, status={self.status.value})>"

    @property
    def is_cash_on_delivery(self):
        return self.payment_method == PaymentMethod.COD.value

    def to_dict(self, include_items=False):
        data = {
            'id': self.id,
            'order_number': self.order_number,
            'status': self.status.value,
            'payment_status': self.payment_status.value,
            'payment_method': self.payment_method,
            'subtotal': str(self.subtotal),
            'discount_amount': str(self.discount_amount),
            'tax_primary_amount': str(self.tax_primary_amount),
            'tax_secondary_amount': str(self.tax_secondary_amount),
            'tax_amount': str(self.tax_amount),
            'delivery_charge': str(self.delivery_charge),
            'total_amount': str(self.total_amount),
            'refund_amount': str(self.refund_amount) if self.refund_amount is not None else None,
            'delivery_slot_id': self.delivery_slot_id,
            'delivery_address': self.delivery_address,
            'coupon_code': self.coupon_code,
            'cancellation_reason': self.cancellation_reason,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
        if include_items:
            data['items'] = [item.to_dict() for item in self.items]
        return data
