"""Cart Item model (persistent cart, users and guests alike)."""
from sqlalchemy import Column, BigInteger, Integer, String, DateTime, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from dailyfresh.database import Base


class CartItem(Base):
    """Cart line keyed by customer_ref ('user:<id>' or 'guest:<token>')."""

    __tablename__ = 'cart_item'
    __table_args__ = (
        UniqueConstraint('customer_ref', 'product_id', name='uq_cart_item_customer_product'),
        CheckConstraint('quantity > 0', name='ck_cart_item_quantity_positive'),
    )

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    customer_ref = Column(String(120), nullable=False, index=True)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    quantity = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    product = relationship('Product')

    def __repr__(self):
        return f"<CartItem(customer_ref={self.customer_ref}, product_id={self.product_id}, qty={self.quantity})>"
