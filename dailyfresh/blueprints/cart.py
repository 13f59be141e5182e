"""Cart blueprint: persistent cart and cart validation (JSON)."""
from decimal import Decimal
from flask import Blueprint, request, jsonify, g, current_app
from dailyfresh.database import get_session
from dailyfresh.middleware import require_customer
from dailyfresh.exceptions import ValidationError
from dailyfresh.services import cart_service

cart_bp = Blueprint('cart', __name__, url_prefix='/cart')


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _int_field(data: dict, name: str, default=None) -> int:
    raw = data.get(name, default)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be an integer')


@cart_bp.route('/validate', methods=['POST'])
@require_customer
def validate():
    """Validate the posted items, or the stored cart when no items are posted."""
    db_session = get_session()
    data = _json_body()
    items = data.get('items')
    if items is None:
        items = cart_service.get_cart_lines(db_session, g.customer_ref)
    if not isinstance(items, list):
        raise ValidationError('items must be a list')

    result = cart_service.validate_cart(
        db_session, items, Decimal(current_app.config.get('MIN_ORDER_AMOUNT', '0'))
    )
    return jsonify(result.to_dict()), 200


@cart_bp.route('', methods=['GET'])
@require_customer
def view_cart():
    return jsonify(cart_service.get_cart(get_session(), g.customer_ref)), 200


@cart_bp.route('/items', methods=['POST'])
@require_customer
def add_item():
    data = _json_body()
    product_id = _int_field(data, 'product_id')
    quantity = _int_field(data, 'quantity', 1)
    cart = cart_service.add_to_cart(get_session(), g.customer_ref, product_id, quantity)
    return jsonify(cart), 200


@cart_bp.route('/items/<int:product_id>', methods=['PATCH'])
@require_customer
def update_item(product_id):
    quantity = _int_field(_json_body(), 'quantity')
    cart = cart_service.update_cart_item(get_session(), g.customer_ref, product_id, quantity)
    return jsonify(cart), 200


@cart_bp.route('/items/<int:product_id>', methods=['DELETE'])
@require_customer
def remove_item(product_id):
    cart = cart_service.remove_from_cart(get_session(), g.customer_ref, product_id)
    return jsonify(cart), 200


@cart_bp.route('', methods=['DELETE'])
@require_customer
def clear():
    cart_service.clear_cart(get_session(), g.customer_ref)
    return jsonify({'items': [], 'subtotal': '0.00'}), 200
