"""Orders blueprint: checkout, cancellation, order reads and payment (JSON)."""
from flask import Blueprint, request, jsonify, g, current_app
from dailyfresh.database import get_session
from dailyfresh.middleware import require_customer
from dailyfresh.exceptions import ValidationError, NotFoundError
from dailyfresh.repositories import OrderRepository
from dailyfresh.services import checkout_service, cancellation_service, order_status_service, payment_service

orders_bp = Blueprint('orders', __name__, url_prefix='/orders')


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _required_int(data: dict, name: str) -> int:
    if data.get(name) is None:
        raise ValidationError(f'{name} is required')
    try:
        return int(data[name])
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be an integer')


@orders_bp.route('', methods=['POST'])
@require_customer
def create():
    """
    Place an order.

    Body: {address_id, slot_id, payment_method, items: [{product_id, quantity, price}], coupon_code?}
    Returns 201 {order_id, order_number, total}.
    """
    data = _json_body()
    items = data.get('items') or []
    if not isinstance(items, list):
        raise ValidationError('items must be a list')

    order = checkout_service.create_order(
        get_session(),
        customer_ref=g.customer_ref,
        address_id=_required_int(data, 'address_id'),
        slot_id=_required_int(data, 'slot_id'),
        payment_method=data.get('payment_method'),
        items=items,
        coupon_code=data.get('coupon_code') or None,
    )
    return jsonify({
        'order_id': order.id,
        'order_number': order.order_number,
        'total': str(order.total_amount),
    }), 201


@orders_bp.route('', methods=['GET'])
@require_customer
def list_orders():
    orders = OrderRepository(get_session()).list_for_customer(g.customer_ref)
    return jsonify({'orders': [order.to_dict() for order in orders]}), 200


@orders_bp.route('/<int:order_id>', methods=['GET'])
@require_customer
def detail(order_id):
    order = OrderRepository(get_session()).get_with_items(order_id, customer_ref=g.customer_ref)
    if order is None:
        raise NotFoundError('Order not found')
    data = order.to_dict(include_items=True)
    primary, secondary = current_app.config.get('TAX_COMPONENT_NAMES', ('CGST', 'SGST'))
    data['tax_components'] = {primary: data['tax_primary_amount'], secondary: data['tax_secondary_amount']}
    return jsonify(data), 200


@orders_bp.route('/<int:order_id>/history', methods=['GET'])
@require_customer
def history(order_id):
    entries = order_status_service.get_status_history(get_session(), order_id, customer_ref=g.customer_ref)
    return jsonify({'history': [entry.to_dict() for entry in entries]}), 200


@orders_bp.route('/<int:order_id>/cancel', methods=['POST'])
@require_customer
def cancel(order_id):
    data = _json_body()
    reason = (data.get('reason') or '').strip() or 'Cancelled by customer'
    cancellation_service.cancel_order(
        get_session(), order_id, reason, actor=g.customer_ref, customer_ref=g.customer_ref
    )
    return jsonify({}), 200


@orders_bp.route('/<int:order_id>/pay', methods=['POST'])
@require_customer
def pay(order_id):
    """Charge a prepaid order through the gateway, or confirm a cash-on-delivery one."""
    data = _json_body()
    order = payment_service.pay_order(
        get_session(), order_id, g.customer_ref, data.get('payment_token')
    )
    return jsonify({
        'order_id': order.id,
        'status': order.status.value,
        'payment_status': order.payment_status.value,
    }), 200
