"""Admin blueprint: order status changes and reconciliation (JSON)."""
from flask import Blueprint, request, jsonify, g, current_app
from dailyfresh.database import get_session
from dailyfresh.decorators.admin_security import admin_required
from dailyfresh.exceptions import ValidationError
from dailyfresh.services import order_status_service, reconciliation_service

admin_bp = Blueprint('admin', __name__, url_prefix='/admin')


@admin_bp.route('/orders/<int:order_id>/status', methods=['POST'])
@admin_required
def update_status(order_id):
    """Body: {status, notes?}. Cancellation is done through reconciliation or the customer."""
    data = request.get_json(silent=True) or {}
    if not data.get('status'):
        raise ValidationError('status is required')
    new_status = order_status_service.parse_status(data['status'])

    order = order_status_service.transition_order(
        get_session(), order_id, new_status, actor=g.admin_actor, notes=data.get('notes')
    )
    return jsonify(order.to_dict()), 200


@admin_bp.route('/reconciliation', methods=['GET'])
@admin_required
def reconciliation_queue():
    """Flag headless orders past the grace period, then list every open failure."""
    db_session = get_session()
    flagged = reconciliation_service.flag_headless_orders(
        db_session, current_app.config.get('HEADLESS_ORDER_GRACE_MINUTES', 5)
    )
    failures = reconciliation_service.list_open_failures(db_session)
    return jsonify({
        'newly_flagged': [order.id for order in flagged],
        'failures': [failure.to_dict() for failure in failures],
    }), 200


@admin_bp.route('/reconciliation/<int:order_id>', methods=['POST'])
@admin_required
def reconcile(order_id):
    result = reconciliation_service.reconcile_order(get_session(), order_id, actor=g.admin_actor)
    return jsonify(result.to_dict()), 200
