"""
Prometheus Metrics Registry

Provides Prometheus-compatible metrics for:
- HTTP request counts and latencies
- Detection intake outcomes (accepted / rejected by reason)
- Alerts, notifications and emergency response actions
- Realtime subscriptions
- System resource usage (CPU, memory, disk)
"""
import re
import time
import logging
from typing import Optional
from prometheus_client import (
    Counter, Histogram, Gauge, Info,
    CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
)
import psutil

logger = logging.getLogger(__name__)

# Custom registry so tests can import the module repeatedly
REGISTRY = CollectorRegistry()

app_info = Info(
    'app',
    'Application information',
    registry=REGISTRY
)

# ============================================================================
# HTTP Request Metrics
# ============================================================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'path', 'status_code'],
    registry=REGISTRY
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'path'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY
)

# ============================================================================
# Detection Pipeline Metrics
# ============================================================================

detections_total = Counter(
    'detections_total',
    'Detections submitted to the pipeline',
    ['category', 'outcome'],  # outcome: accepted or a rejection reason
    registry=REGISTRY
)

pipeline_duration_seconds = Histogram(
    'pipeline_duration_seconds',
    'Duration of each pipeline stage in seconds',
    ['stage'],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=REGISTRY
)

pipeline_in_flight = Gauge(
    'pipeline_in_flight',
    'Detections currently being processed',
    registry=REGISTRY
)

alerts_created_total = Counter(
    'alerts_created_total',
    'Alerts created from detection events',
    ['category', 'severity'],
    registry=REGISTRY
)

notifications_total = Counter(
    'notifications_total',
    'Notification deliveries by channel',
    ['channel', 'status'],  # channel: in_app, push; status: success, failure
    registry=REGISTRY
)

# ============================================================================
# Emergency Response Metrics
# ============================================================================

emergency_incidents_total = Counter(
    'emergency_incidents_total',
    'Emergency incidents opened',
    ['emergency_type'],
    registry=REGISTRY
)

emergency_actions_total = Counter(
    'emergency_actions_total',
    'Emergency response actions executed',
    ['emergency_type', 'action_type', 'status'],
    registry=REGISTRY
)

# ============================================================================
# Realtime Metrics
# ============================================================================

realtime_subscriptions = Gauge(
    'realtime_subscriptions',
    'Active realtime dashboard subscriptions',
    registry=REGISTRY
)

realtime_messages_total = Counter(
    'realtime_messages_total',
    'Realtime messages published',
    ['event_type'],
    registry=REGISTRY
)

# ============================================================================
# System Resource Metrics
# ============================================================================

system_cpu_usage_percent = Gauge(
    'system_cpu_usage_percent',
    'Current CPU usage percentage',
    registry=REGISTRY
)

system_memory_usage_percent = Gauge(
    'system_memory_usage_percent',
    'Current memory usage percentage',
    registry=REGISTRY
)

system_disk_usage_percent = Gauge(
    'system_disk_usage_percent',
    'Disk usage percentage',
    ['path'],
    registry=REGISTRY
)

_start_time: Optional[float] = None

app_uptime_seconds = Gauge(
    'app_uptime_seconds',
    'Application uptime in seconds',
    registry=REGISTRY
)

# ============================================================================
# Helper Functions
# ============================================================================


def init_metrics(version: str = "1.0.0"):
    """
    Initialize metrics with application info.

    Args:
        version: Application version string
    """
    global _start_time
    _start_time = time.time()

    app_info.info({
        'version': version,
        'name': 'Sentryline'
    })

    logger.info("Prometheus metrics initialized", extra={"version": version})


def record_request_metrics(
    method: str,
    path: str,
    status_code: int,
    response_time_seconds: float
):
    """
    Record HTTP request metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status_code: Response status code
        response_time_seconds: Response time in seconds
    """
    normalized_path = _normalize_path(path)

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status_code=str(status_code)
    ).inc()

    http_request_duration_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(response_time_seconds)


def record_detection(category: str, outcome: str):
    """Record a detection intake outcome ("accepted" or a rejection reason)."""
    detections_total.labels(category=category or "unknown", outcome=outcome).inc()


def record_stage_duration(stage: str, duration_seconds: float):
    """Record how long one pipeline stage took."""
    pipeline_duration_seconds.labels(stage=stage).observe(duration_seconds)


def record_alert_created(category: str, severity: str):
    """Record an alert creation."""
    alerts_created_total.labels(category=category, severity=severity).inc()


def record_notification(channel: str, success: bool):
    """Record an in-app or push notification outcome."""
    notifications_total.labels(channel=channel, status="success" if success else "failure").inc()


def record_incident_opened(emergency_type: str):
    """Record an emergency incident creation."""
    emergency_incidents_total.labels(emergency_type=emergency_type).inc()


def record_emergency_action(emergency_type: str, action_type: str, status: str):
    """Record one executed emergency response action."""
    emergency_actions_total.labels(
        emergency_type=emergency_type,
        action_type=action_type,
        status=status
    ).inc()


def record_realtime_message(event_type: str):
    """Record a published realtime message."""
    realtime_messages_total.labels(event_type=event_type).inc()


def update_realtime_subscriptions(count: int):
    """Set the active realtime subscription gauge."""
    realtime_subscriptions.set(count)


def update_system_metrics():
    """
    Update system resource metrics (CPU, memory, disk).

    Runs on every /metrics scrape (get_metrics) and once a minute from the
    scheduler job in main.py. cpu_percent(interval=None) reports usage since
    the previous call.
    """
    try:
        system_cpu_usage_percent.set(psutil.cpu_percent(interval=None))
        system_memory_usage_percent.set(psutil.virtual_memory().percent)
        system_disk_usage_percent.labels(path='/').set(psutil.disk_usage('/').percent)

        if _start_time:
            app_uptime_seconds.set(time.time() - _start_time)

    except Exception as e:
        logger.warning(f"Failed to update system metrics: {e}")


def get_metrics() -> bytes:
    """
    Generate Prometheus metrics output.

    Returns:
        Prometheus text format metrics
    """
    update_system_metrics()
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


def _normalize_path(path: str) -> str:
    """
    Normalize request path to avoid high cardinality.

    Replaces UUIDs and numeric IDs with placeholders.
    """
    path = re.sub(
        r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}',
        '{id}',
        path,
        flags=re.IGNORECASE
    )
    path = re.sub(r'/\d+', '/{id}', path)

    return path
