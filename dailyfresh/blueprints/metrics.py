"""
Prometheus metrics blueprint.

/metrics exposes the HTTP collectors and the order pipeline counters from
dailyfresh.metrics. It is not authenticated; keep it on the internal network.
"""
import time
from flask import Blueprint, Response, request, g
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from dailyfresh.metrics import (
    registry, http_requests_total, http_request_duration_seconds, http_requests_in_flight
)

metrics_bp = Blueprint('metrics', __name__)

# Scrapes are not counted as traffic
UNTRACKED_ENDPOINTS = {'metrics.metrics', 'static'}


def setup_metrics_instrumentation(app):
    """Time every request and count it by method, endpoint and status."""

    @app.before_request
    def start_request_timer():
        if request.endpoint in UNTRACKED_ENDPOINTS:
            return
        g.request_started_at = time.perf_counter()
        http_requests_in_flight.inc()

    @app.after_request
    def record_request(response):
        started = g.get('request_started_at')
        if started is not None:
            endpoint = request.endpoint or 'unknown'
            http_request_duration_seconds.labels(method=request.method, endpoint=endpoint).observe(
                time.perf_counter() - started
            )
            http_requests_total.labels(
                method=request.method, endpoint=endpoint, http_status=response.status_code
            ).inc()
        return response

    @app.teardown_request
    def close_request_gauge(exception=None):
        # Also runs when the handler raised
        if g.pop('request_started_at', None) is not None:
            http_requests_in_flight.dec()


@metrics_bp.route('/metrics')
def metrics():
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
