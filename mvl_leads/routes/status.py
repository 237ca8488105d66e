"""
Operational status of the lead pipeline.

GET returns delivery statistics, retry queue state and alerts.
HEAD is a cheap uptime probe: 503 when today's webhook success rate
has dropped below 80% over more than five attempts.
"""
from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse

from mvl_leads.dependencies.auth import require_admin_key
from mvl_leads.dependencies.services import LeadServices, get_services
from mvl_leads.logging_config import get_logger
from mvl_leads.models.base import as_utc, isoformat_ms, utcnow
from mvl_leads.models.submission import Submission
from mvl_leads.routes.metrics import update_pending_submissions
from mvl_leads.sentry_config import capture_exception
from mvl_leads.services.backup_store import BackupSummary

router = APIRouter(prefix="/api/contact", tags=["Operations"])
log = get_logger(component="status_route")

HEALTHY_THRESHOLD = 95
DEGRADED_THRESHOLD = 80
MIN_SUBMISSIONS_FOR_RATE_ALERTS = 5
PENDING_BUILDUP_THRESHOLD = 5
OLD_PENDING_AGE = timedelta(hours=2)
RECENT_FAILURES_LIMIT = 10


def success_rate(summary: BackupSummary) -> float:
    """Delivered share of finished deliveries, as a percentage (100 with no data)."""
    finished = summary.delivered_webhooks + summary.failed_webhooks
    if finished == 0:
        return 100.0
    return summary.delivered_webhooks / finished * 100


def health_status(rate: float) -> str:
    if rate >= HEALTHY_THRESHOLD:
        return "healthy"
    if rate >= DEGRADED_THRESHOLD:
        return "degraded"
    return "critical"


def generate_alerts(
    summary: BackupSummary,
    pending: list[Submission],
    rate: float,
    webhook_configured: bool,
    email_configured: bool,
) -> list[dict[str, Any]]:
    """Alerts derived from current delivery metrics and configuration."""
    alerts = []
    timestamp = isoformat_ms(utcnow())

    def alert(level: str, message: str, code: str):
        alerts.append({"level": level, "message": message, "timestamp": timestamp, "code": code})

    if rate < DEGRADED_THRESHOLD and summary.total_submissions > MIN_SUBMISSIONS_FOR_RATE_ALERTS:
        alert(
            "critical",
            f"Webhook success rate is {rate:.1f}% - immediate attention required",
            "HIGH_FAILURE_RATE",
        )

    if DEGRADED_THRESHOLD <= rate < HEALTHY_THRESHOLD and summary.total_submissions > MIN_SUBMISSIONS_FOR_RATE_ALERTS:
        alert(
            "warning",
            f"Webhook success rate is {rate:.1f}% - performance degraded",
            "DEGRADED_PERFORMANCE",
        )

    if len(pending) > PENDING_BUILDUP_THRESHOLD:
        alert(
            "warning",
            f"{len(pending)} submissions pending webhook delivery",
            "PENDING_QUEUE_BUILDUP",
        )

    now = utcnow()
    old_pending = [s for s in pending if now - as_utc(s.timestamp) > OLD_PENDING_AGE]
    if old_pending:
        alert(
            "critical",
            f"{len(old_pending)} submissions have been pending for over 2 hours",
            "OLD_PENDING_SUBMISSIONS",
        )

    if not webhook_configured:
        alert(
            "warning",
            "CONTACT_WEBHOOK_URL environment variable not configured",
            "WEBHOOK_NOT_CONFIGURED",
        )

    if not email_configured:
        alert(
            "info",
            "Email fallback not configured - webhook failures will not trigger email notifications",
            "EMAIL_FALLBACK_DISABLED",
        )

    if all(a["level"] == "info" for a in alerts):
        alert("info", "All systems operational", "SYSTEM_HEALTHY")

    return alerts


def failure_details(submission: Submission) -> dict[str, Any]:
    form = submission.form_data or {}
    return {
        "id": submission.id,
        "timestamp": isoformat_ms(submission.timestamp),
        "attempts": submission.attempts,
        "status": submission.webhook_status,
        "lastError": submission.error,
        "contact": {
            "name": form.get("name"),
            "email": form.get("email"),
            "preferredFloor": form.get("preferredFloor"),
        },
    }


@router.head("/status")
async def status_probe(services: LeadServices = Depends(get_services)):
    """Uptime probe based on today's delivery success rate."""
    summary = await services.backup_store.get_backup_summary(days=1)
    finished = summary.delivered_webhooks + summary.failed_webhooks

    if success_rate(summary) < DEGRADED_THRESHOLD and finished > MIN_SUBMISSIONS_FOR_RATE_ALERTS:
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(status_code=status.HTTP_200_OK)


@router.get("/status", dependencies=[Depends(require_admin_key)])
async def get_status(
    days: int = 7,
    details: bool = False,
    services: LeadServices = Depends(get_services),
):
    """
    Delivery statistics and alerts for the last `days` days.

    Args:
        days: Window size in calendar days (default 7)
        details: Include the first pending submissions and configuration flags
    """
    days = max(days, 1)
    try:
        summary = await services.backup_store.get_backup_summary(days)
        pending = await services.backup_store.get_pending_webhooks()
    except Exception as e:
        capture_exception(e)
        log.exception("status_query_failed", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "status": "error",
                "timestamp": isoformat_ms(utcnow()),
                "error": "Failed to retrieve system status",
                "message": str(e),
            },
        )

    settings = services.settings
    rate = success_rate(summary)
    email_configured = services.email_fallback.is_configured()
    webhook_configured = bool(settings.contact_webhook_url)
    now = utcnow()

    update_pending_submissions(len(pending))

    retry_times = [as_utc(s.next_retry_at) for s in pending if s.next_retry_at]
    response = {
        "status": "operational",
        "timestamp": isoformat_ms(now),
        "period": {
            "days": days,
            "from": isoformat_ms(now - timedelta(days=days)),
            "to": isoformat_ms(now),
        },
        "summary": {
            "totalSubmissions": summary.total_submissions,
            "webhookStats": {
                "delivered": summary.delivered_webhooks,
                "failed": summary.failed_webhooks,
                "pending": summary.pending_webhooks,
                "successRate": round(rate, 2),
            },
            "systemHealth": {
                "status": health_status(rate),
                "webhookEndpoint": webhook_configured,
                "emailFallback": email_configured,
                "backupSystem": True,
            },
        },
        "retryQueue": {
            "pendingCount": len(pending),
            "oldestPending": isoformat_ms(pending[0].timestamp) if pending else None,
            "nextRetryDue": isoformat_ms(min(retry_times)) if retry_times else None,
        },
        "alerts": generate_alerts(summary, pending, rate, webhook_configured, email_configured),
    }

    if details:
        response["details"] = {
            "recentFailures": [failure_details(s) for s in pending[:RECENT_FAILURES_LIMIT]],
            "configurationStatus": {
                "webhookUrl": webhook_configured,
                "emailSmtp": email_configured,
                "backupStorage": True,
                "environment": settings.ENVIRONMENT,
            },
        }

    return response
