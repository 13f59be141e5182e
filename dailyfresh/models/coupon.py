"""Coupon and Coupon Usage models."""
from sqlalchemy import (
    Column, BigInteger, Integer, String, Boolean, Numeric, DateTime, Enum, ForeignKey, CheckConstraint
)
from sqlalchemy.orm import relationship, validates
from sqlalchemy.sql import func
from dailyfresh.database import Base
import enum


class DiscountType(str, enum.Enum):
    """Coupon discount type enum."""
    PERCENTAGE = 'percentage'
    FIXED = 'fixed'
    FREE_DELIVERY = 'free_delivery'


def normalize_coupon_code(code):
    """Codes are matched case-insensitively and stored upper-case."""
    return (code or '').strip().upper()


class Coupon(Base):
    """Discount code with global and per-customer usage limits."""

    __tablename__ = 'coupon'
    __table_args__ = (
        CheckConstraint('used_count >= 0', name='ck_coupon_used_non_negative'),
        CheckConstraint(
            'usage_limit IS NULL OR used_count <= usage_limit',
            name='ck_coupon_used_within_limit'
        ),
    )

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    code = Column(String(40), nullable=False, unique=True, index=True)
    description = Column(String(255), nullable=True)
    discount_type = Column(
        Enum(DiscountType, name='discount_type', values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    value = Column(Numeric(10, 2), nullable=False, default=0)
    max_discount_amount = Column(Numeric(10, 2), nullable=True)
    min_order_amount = Column(Numeric(10, 2), nullable=False, default=0, server_default='0')
    usage_limit = Column(Integer, nullable=True)  # None = unlimited
    used_count = Column(Integer, nullable=False, default=0, server_default='0')
    per_user_limit = Column(Integer, nullable=True, default=1)  # None = unlimited
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    usages = relationship('CouponUsage', back_populates='coupon')

    @validates('code')
    def _normalize_code(self, key, code):
        return normalize_coupon_code(code)

    def __repr__(self):
        return f"<Coupon(code='{self.code}', type={self.discount_type.value}, used={self.used_count})>"


class CouponUsage(Base):
    """One successful redemption of a coupon by a customer (append-only)."""

    __tablename__ = 'coupon_usage'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    coupon_id = Column(BigInteger, ForeignKey('coupon.id'), nullable=False, index=True)
    customer_ref = Column(String(120), nullable=False, index=True)
    order_id = Column(BigInteger, ForeignKey('orders.id'), nullable=False, unique=True)
    discount_amount = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    coupon = relationship('Coupon', back_populates='usages')

    def __repr__(self):
        return f"<CouponUsage(coupon_id={self.coupon_id}, order_id={self.order_id})>"
