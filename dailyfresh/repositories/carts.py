"""Persistent cart storage."""
from sqlalchemy.orm import Session, joinedload
from dailyfresh.models import CartItem


class CartRepository:

    def __init__(self, session: Session):
        self.session = session

    def lines(self, customer_ref: str):
        return self.session.query(CartItem).options(joinedload(CartItem.product)).filter(
            CartItem.customer_ref == customer_ref
        ).order_by(CartItem.id.asc()).all()

    def get(self, customer_ref: str, product_id: int):
        return self.session.query(CartItem).filter(
            CartItem.customer_ref == customer_ref,
            CartItem.product_id == product_id
        ).first()

    def upsert(self, customer_ref: str, product_id: int, quantity: int) -> CartItem:
        item = self.get(customer_ref, product_id)
        if item is None:
            item = CartItem(customer_ref=customer_ref, product_id=product_id, quantity=quantity)
            self.session.add(item)
        else:
            item.quantity = quantity
        self.session.flush()
        return item

    def delete(self, customer_ref: str, product_id: int) -> bool:
        deleted = self.session.query(CartItem).filter(
            CartItem.customer_ref == customer_ref,
            CartItem.product_id == product_id
        ).delete(synchronize_session=False)
        return deleted > 0

    def clear(self, customer_ref: str) -> int:
        return self.session.query(CartItem).filter(
            CartItem.customer_ref == customer_ref
        ).delete(synchronize_session=False)
