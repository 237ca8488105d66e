"""
Prometheus metrics endpoint.

Exposes request and lead-pipeline metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter(tags=["Monitoring"])

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'mvl_http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'mvl_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
)

# ============================================
# Lead Metrics
# ============================================

lead_submissions = Counter(
    'mvl_lead_submissions_total',
    'Total lead submissions accepted',
    ['form_type']
)

spam_blocked = Counter(
    'mvl_spam_blocked_total',
    'Submissions discarded by the spam guard',
    ['form_type', 'reason']
)

rate_limit_exceeded = Counter(
    'mvl_rate_limit_exceeded_total',
    'Total requests blocked by rate limiting',
    ['form_type']
)

# ============================================
# Delivery Metrics
# ============================================

webhook_attempts = Counter(
    'mvl_webhook_attempts_total',
    'Total webhook POST attempts',
    ['webhook']
)

webhook_outcomes = Counter(
    'mvl_webhook_outcomes_total',
    'Final webhook delivery outcomes',
    ['webhook', 'outcome']
)

emails_sent = Counter(
    'mvl_emails_total',
    'Fallback emails by type and result',
    ['email_type', 'result']
)

pending_submissions = Gauge(
    'mvl_pending_submissions',
    'Submissions awaiting webhook delivery at last status check'
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """
    Record HTTP request metrics.

    Called by the logging middleware after each request.
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


def track_lead_submission(form_type: str):
    lead_submissions.labels(form_type=form_type).inc()


def track_spam_blocked(form_type: str, reason: str):
    spam_blocked.labels(form_type=form_type, reason=reason).inc()


def track_rate_limit_exceeded(form_type: str):
    """Record a rate limit block."""
    rate_limit_exceeded.labels(form_type=form_type).inc()


def track_webhook_attempt(webhook: str):
    webhook_attempts.labels(webhook=webhook).inc()


def track_webhook_outcome(webhook: str, outcome: str):
    """Record delivered / failed / circuit_open."""
    webhook_outcomes.labels(webhook=webhook, outcome=outcome).inc()


def track_email(email_type: str, sent: bool):
    emails_sent.labels(email_type=email_type, result="sent" if sent else "failed").inc()


def update_pending_submissions(count: int):
    pending_submissions.set(count)


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
