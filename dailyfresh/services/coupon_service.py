"""
Coupon evaluation.

Checks run in a fixed order and the first failure wins. The evaluator only
reads; counting a use happens in CouponRepository.redeem during checkout.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from dailyfresh.models import Coupon, DiscountType
from dailyfresh.repositories import CouponRepository
from dailyfresh.exceptions import CouponError
from dailyfresh.services.pricing_service import to_money, ZERO, HUNDRED

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CouponEvaluation:
    coupon: Coupon
    discount: Decimal
    free_delivery: bool

    def to_dict(self):
        return {
            'code': self.coupon.code,
            'discount': str(self.discount),
            'free_delivery': self.free_delivery,
        }


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands timestamps back naive; they are stored as UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def compute_discount(coupon: Coupon, subtotal: Decimal) -> Decimal:
    """Monetary discount for a subtotal, never more than the subtotal itself."""
    subtotal = to_money(subtotal)
    value = Decimal(coupon.value or 0)

    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = to_money(subtotal * value / HUNDRED)
        if coupon.max_discount_amount is not None:
            discount = min(discount, to_money(coupon.max_discount_amount))
    elif coupon.discount_type == DiscountType.FIXED:
        discount = to_money(value)
    else:
        discount = ZERO

    return max(ZERO, min(discount, subtotal))


def evaluate_coupon(session, code: str, subtotal: Decimal, customer_ref: str,
                    now: Optional[datetime] = None) -> CouponEvaluation:
    """
    Validate a code for this caller and subtotal.

    Raises:
        CouponError: with reason not_found, inactive, not_started, expired,
            usage_limit_reached, user_limit_reached or min_order_not_met.
    """
    now = now or datetime.now(timezone.utc)
    repo = CouponRepository(session)
    coupon = repo.get_by_code(code)

    if coupon is None:
        raise CouponError('not_found', 'Coupon code not found')
    if not coupon.is_active:
        raise CouponError('inactive', 'This coupon is no longer active')

    valid_from = _as_aware(coupon.valid_from)
    valid_until = _as_aware(coupon.valid_until)
    if valid_from is not None and now < valid_from:
        raise CouponError('not_started', 'This coupon is not valid yet')
    if valid_until is not None and now > valid_until:
        raise CouponError('expired', 'This coupon has expired')

    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        raise CouponError('usage_limit_reached', 'This coupon has reached its usage limit')

    if coupon.per_user_limit is not None:
        used = repo.count_customer_usages(coupon.id, customer_ref)
        if used >= coupon.per_user_limit:
            raise CouponError('user_limit_reached', 'You have already used this coupon')

    subtotal = to_money(subtotal)
    min_amount = to_money(coupon.min_order_amount or 0)
    if subtotal < min_amount:
        raise CouponError('min_order_not_met', f'Minimum order amount for this coupon is {min_amount}')

    return CouponEvaluation(
        coupon=coupon,
        discount=compute_discount(coupon, subtotal),
        free_delivery=coupon.discount_type == DiscountType.FREE_DELIVERY,
    )


def apply_coupon(session, code: str, subtotal: Decimal, customer_ref: str) -> dict:
    """
    Preview a coupon without redeeming it.

    Rejections come back as data ({'discount': '0.00', 'reason': ...}) so a
    cart page can show them inline.
    """
    try:
        evaluation = evaluate_coupon(session, code, subtotal, customer_ref)
    except CouponError as e:
        logger.info(f"[COUPON] code={code} customer={customer_ref} status=rejected reason={e.reason}")
        return {'discount': str(ZERO), 'free_delivery': False, 'reason': e.reason}

    return evaluation.to_dict()
