"""
Prometheus collectors shared by the HTTP hooks and the order pipeline.

Collectors are module-level so they are registered once per process.
"""
import os
from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, REGISTRY
from prometheus_client import multiprocess

# Check if running in multi-process mode (Gunicorn)
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
else:
    registry = REGISTRY

_collector_registry = registry if not MULTIPROCESS_MODE else None

# HTTP Request Metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'http_status'],
    registry=_collector_registry
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    registry=_collector_registry,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0)
)

http_requests_in_flight = Gauge(
    'http_requests_in_flight',
    'Number of HTTP requests currently being processed',
    registry=_collector_registry
)

# Order pipeline
checkout_orders_created_total = Counter(
    'checkout_orders_created_total',
    'Orders that completed every checkout step',
    registry=_collector_registry
)

checkout_partial_failures_total = Counter(
    'checkout_partial_failures_total',
    'Checkouts that stopped after the order header was committed',
    ['step'],
    registry=_collector_registry
)

order_cancellations_total = Counter(
    'order_cancellations_total',
    'Orders moved to cancelled',
    registry=_collector_registry
)

stock_reservation_conflicts_total = Counter(
    'stock_reservation_conflicts_total',
    'Conditional stock decrements that matched no row',
    registry=_collector_registry
)

slot_reservation_conflicts_total = Counter(
    'slot_reservation_conflicts_total',
    'Conditional slot bookings that matched no row',
    registry=_collector_registry
)
