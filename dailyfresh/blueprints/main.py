"""Main blueprint: liveness of the database and of the slot listing cache."""
from flask import Blueprint, jsonify, current_app
from sqlalchemy.exc import SQLAlchemyError
from dailyfresh.database import get_session, ping
from dailyfresh.services.cache_service import get_cache

main_bp = Blueprint('main', __name__)


@main_bp.route('/health')
def health():
    """
    Database health.

    Returns:
        200: the database answered.
        500: the query failed or returned something unexpected.
    """
    try:
        healthy = ping(get_session())
    except SQLAlchemyError as e:
        current_app.logger.error(f"Health check failed: {e}")
        return jsonify({
            'status': 'unhealthy',
            'database': 'disconnected',
            'message': 'Failed to connect to database'
        }), 500

    if not healthy:
        return jsonify({'status': 'unhealthy', 'database': 'error'}), 500
    return jsonify({'status': 'healthy', 'database': 'connected'}), 200


@main_bp.route('/health/cache')
def health_cache():
    """
    Slot listing cache health.

    Always 200: without Redis the listings are read from the database, so
    the service is degraded rather than down.
    """
    cache = get_cache()
    if cache is not None and cache.round_trip():
        return jsonify({'status': 'ok', 'cache': 'connected'}), 200

    return jsonify({
        'status': 'degraded',
        'cache': 'unavailable',
        'message': 'Slot listings are served from the database'
    }), 200
