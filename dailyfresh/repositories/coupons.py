"""Coupon repository."""
from decimal import Decimal
from sqlalchemy import update, func, or_
from sqlalchemy.orm import Session
from dailyfresh.models import Coupon, CouponUsage, normalize_coupon_code


class CouponRepository:

    def __init__(self, session: Session):
        self.session = session

    def get_by_code(self, code: str):
        normalized = normalize_coupon_code(code)
        if not normalized:
            return None
        return self.session.query(Coupon).populate_existing().filter(Coupon.code == normalized).first()

    def count_customer_usages(self, coupon_id: int, customer_ref: str) -> int:
        return self.session.query(func.count(CouponUsage.id)).filter(
            CouponUsage.coupon_id == coupon_id,
            CouponUsage.customer_ref == customer_ref
        ).scalar() or 0

    def redeem(self, coupon_id: int, customer_ref: str, order_id: int, discount: Decimal) -> bool:
        """
        Count one use of the coupon against its global and per-customer limits.

        The global limit is enforced by the conditional increment. The usage
        row is only written once that increment went through.
        """
        coupon = self.session.get(Coupon, coupon_id)
        if coupon is None:
            return False

        if coupon.per_user_limit is not None:
            if self.count_customer_usages(coupon_id, customer_ref) >= coupon.per_user_limit:
                return False

        stmt = (
            update(Coupon)
            .where(
                Coupon.id == coupon_id,
                Coupon.is_active.is_(True),
                or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
            )
            .values(used_count=Coupon.used_count + 1)
            .returning(Coupon.used_count)
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).scalar_one_or_none() is None:
            return False

        self.session.add(CouponUsage(
            coupon_id=coupon_id,
            customer_ref=customer_ref,
            order_id=order_id,
            discount_amount=discount,
        ))
        self.session.flush()
        return True
