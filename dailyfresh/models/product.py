"""Product model."""
from decimal import Decimal
from sqlalchemy import Column, BigInteger, Integer, String, Boolean, Numeric, DateTime, CheckConstraint
from sqlalchemy.sql import func
from dailyfresh.database import Base


class Product(Base):
    """Catalog product with its live stock counters."""

    __tablename__ = 'product'
    __table_args__ = (
        CheckConstraint('stock_quantity >= 0', name='ck_product_stock_non_negative'),
        CheckConstraint('sold_count >= 0', name='ck_product_sold_non_negative'),
        CheckConstraint('min_order_quantity > 0', name='ck_product_min_qty_positive'),
    )

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    mrp = Column(Numeric(10, 2), nullable=True)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=Decimal('18.00'), server_default='18.00')
    stock_quantity = Column(Integer, nullable=False, default=0, server_default='0')
    sold_count = Column(Integer, nullable=False, default=0, server_default='0')
    min_order_quantity = Column(Integer, nullable=False, default=1, server_default='1')
    max_order_quantity = Column(Integer, nullable=False, default=10, server_default='10')
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', stock={self.stock_quantity})>"

    @property
    def savings(self):
        """Display-only 'you save' amount (mrp - price); never used for pricing."""
        if self.mrp is None or self.mrp <= self.price:
            return Decimal('0.00')
        return self.mrp - self.price

    def is_in_stock(self, quantity):
        return self.stock_quantity >= quantity

    def is_valid_quantity(self, quantity):
        return self.min_order_quantity <= quantity <= self.max_order_quantity
