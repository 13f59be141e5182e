"""Delivery Slot model."""
from sqlalchemy import (
    Column, BigInteger, Integer, Boolean, Numeric, Date, Time, DateTime, Enum, CheckConstraint
)
from sqlalchemy.sql import func
from dailyfresh.database import Base
import enum


class SlotType(str, enum.Enum):
    """Delivery slot type enum."""
    STANDARD = 'standard'
    EXPRESS = 'express'


class DeliverySlot(Base):
    """Bounded-capacity delivery window shared by many orders."""

    __tablename__ = 'delivery_slot'
    __table_args__ = (
        CheckConstraint('capacity > 0', name='ck_slot_capacity_positive'),
        CheckConstraint('booked_count >= 0', name='ck_slot_booked_non_negative'),
        CheckConstraint('booked_count <= capacity', name='ck_slot_booked_within_capacity'),
    )

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_type = Column(
        Enum(SlotType, name='slot_type', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SlotType.STANDARD
    )
    capacity = Column(Integer, nullable=False)
    booked_count = Column(Integer, nullable=False, default=0, server_default='0')
    is_available = Column(Boolean, nullable=False, default=True)
    delivery_charge = Column(Numeric(10, 2), nullable=True)  # None -> config charge for slot type
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<DeliverySlot(id={self.id}, date={self.date}, booked={self.booked_count}/{self.capacity})>"

    @property
    def is_full(self):
        return self.booked_count >= self.capacity

    def to_dict(self):
        return {
            'id': self.id,
            'date': self.date.isoformat(),
            'start_time': self.start_time.strftime('%H:%M'),
            'end_time': self.end_time.strftime('%H:%M'),
            'slot_type': self.slot_type.value,
            'capacity': self.capacity,
            'booked_count': self.booked_count,
            'remaining': self.capacity - self.booked_count,
            'delivery_charge': str(self.delivery_charge) if self.delivery_charge is not None else None,
        }
