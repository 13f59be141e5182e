"""Coupons blueprint: preview a coupon against a subtotal."""
from decimal import Decimal, InvalidOperation
from flask import Blueprint, request, jsonify, g
from dailyfresh.database import get_session
from dailyfresh.middleware import require_customer
from dailyfresh.exceptions import ValidationError
from dailyfresh.services.coupon_service import evaluate_coupon

coupons_bp = Blueprint('coupons', __name__, url_prefix='/coupons')


@coupons_bp.route('/apply', methods=['POST'])
@require_customer
def apply():
    """
    Body: {code, subtotal}. Returns {discount, free_delivery}; a rejected
    code is a 422 whose body carries the machine-readable reason.
    """
    data = request.get_json(silent=True) or {}
    code = (data.get('code') or '').strip()
    if not code:
        raise ValidationError('code is required')
    try:
        subtotal = Decimal(str(data.get('subtotal')))
    except (InvalidOperation, ValueError):
        raise ValidationError('subtotal must be a number')
    if not subtotal.is_finite():
        raise ValidationError('subtotal must be a number')
    if subtotal < 0:
        raise ValidationError('subtotal must not be negative')

    evaluation = evaluate_coupon(get_session(), code, subtotal, g.customer_ref)
    return jsonify(evaluation.to_dict()), 200
