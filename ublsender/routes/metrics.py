"""
Prometheus metrics endpoint.

Exposes request and delivery pipeline metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Scheduling Metrics
# ============================================

deliveries_scheduled = Counter(
    'deliveries_scheduled_total',
    'Total documents scheduled for delivery',
    ['document_type']
)

deliveries_rejected = Counter(
    'deliveries_rejected_total',
    'Total documents rejected before scheduling',
    ['reason']
)

# ============================================
# Delivery Worker Metrics
# ============================================

deliveries_completed = Counter(
    'deliveries_completed_total',
    'Total documents accepted by SUNAT',
    ['document_type']
)

deliveries_failed = Counter(
    'deliveries_failed_total',
    'Total documents that permanently failed delivery',
    ['document_type']
)

deliveries_retry_total = Counter(
    'deliveries_retry_total',
    'Total delivery retry attempts',
    ['document_type']
)

deliveries_skipped = Counter(
    'deliveries_skipped_total',
    'Trigger messages ignored because the delivery was not scheduled'
)

# ============================================
# Outbox Metrics
# ============================================

outbox_published = Counter(
    'outbox_published_total',
    'Total outbox messages published to the channel'
)

outbox_publish_failed = Counter(
    'outbox_publish_failed_total',
    'Total outbox publish attempts that failed'
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """
    Record HTTP request metrics.

    Called by LoggingMiddleware after each request.
    """
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_delivery_scheduled(document_type: str):
    deliveries_scheduled.labels(document_type=document_type).inc()


def track_delivery_rejected(reason: str):
    """Record a document rejected by classification, naming or storage."""
    deliveries_rejected.labels(reason=reason).inc()


def track_delivery_completed(document_type: str):
    deliveries_completed.labels(document_type=document_type).inc()


def track_delivery_failed(document_type: str):
    deliveries_failed.labels(document_type=document_type).inc()


def track_delivery_retry(document_type: str):
    deliveries_retry_total.labels(document_type=document_type).inc()


def track_delivery_skipped():
    deliveries_skipped.inc()


def track_outbox_published():
    outbox_published.inc()


def track_outbox_publish_failed():
    outbox_publish_failed.inc()


# ============================================
# Prometheus Endpoint
# ============================================

@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns all registered metrics in Prometheus format.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
