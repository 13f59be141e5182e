"""Address model (read-only here; the address book lives elsewhere)."""
from sqlalchemy import Column, BigInteger, Integer, String, DateTime
from sqlalchemy.sql import func
from dailyfresh.database import Base


class Address(Base):
    """Delivery address owned by a customer."""

    __tablename__ = 'address'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    customer_ref = Column(String(120), nullable=False, index=True)
    label = Column(String(50), nullable=True)
    street = Column(String(255), nullable=False)
    apartment = Column(String(120), nullable=True)
    city = Column(String(100), nullable=False)
    state = Column(String(100), nullable=False)
    zip_code = Column(String(20), nullable=False)
    country = Column(String(60), nullable=False, default='India')
    phone = Column(String(30), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<Address(id={self.id}, city='{self.city}')>"

    def snapshot(self):
        """Copy stored on the order so later address edits don't rewrite history."""
        return {
            'address_id': self.id,
            'label': self.label,
            'street': self.street,
            'apartment': self.apartment,
            'city': self.city,
            'state': self.state,
            'zip_code': self.zip_code,
            'country': self.country,
            'phone': self.phone,
        }
