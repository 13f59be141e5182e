"""Delivery blueprint: available slot listing."""
from datetime import date, datetime
from flask import Blueprint, request, jsonify
from dailyfresh.database import get_session
from dailyfresh.exceptions import ValidationError
from dailyfresh.services.delivery_service import list_available_slots, parse_slot_type

delivery_bp = Blueprint('delivery', __name__, url_prefix='/delivery')


@delivery_bp.route('/slots', methods=['GET'])
def slots():
    """GET /delivery/slots?date=YYYY-MM-DD&type=standard"""
    raw_date = request.args.get('date')
    if raw_date:
        try:
            on_date = datetime.strptime(raw_date, '%Y-%m-%d').date()
        except ValueError:
            raise ValidationError('date must be formatted YYYY-MM-DD')
    else:
        on_date = date.today()

    slot_type = parse_slot_type(request.args.get('type'))
    return jsonify({
        'date': on_date.isoformat(),
        'type': slot_type.value,
        'slots': list_available_slots(get_session(), on_date, slot_type),
    }), 200
