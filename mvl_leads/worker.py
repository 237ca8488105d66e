"""
ARQ Background Worker for the lead pipeline.

Re-delivers backed-up submissions whose webhook delivery did not go
through, and prunes backups past the retention window.

Run with: arq mvl_leads.worker.WorkerSettings
"""
import asyncio
from datetime import datetime, timedelta
from typing import Optional

from arq import cron
from arq.connections import RedisSettings

from mvl_leads.config import settings
from mvl_leads.dependencies.services import LeadServices, build_services
from mvl_leads.logging_config import configure_logging, get_logger
from mvl_leads.models.base import as_utc, utcnow
from mvl_leads.models.submission import Submission, SubmissionStatus
from mvl_leads.routes.metrics import track_webhook_outcome, update_pending_submissions
from mvl_leads.sentry_config import configure_sentry
from mvl_leads.services.backup_store import MAX_AUTOMATIC_ATTEMPTS
from mvl_leads.services.email_fallback import NotificationData
from mvl_leads.services.webhook_service import backoff_delay, webhook_name_for

log = get_logger(component="worker")


def is_due(submission: Submission, now: datetime) -> bool:
    """A submission is due once its stored retry time has passed (or it has none)."""
    if not submission.webhook_payload:
        return False
    if submission.next_retry_at is None:
        return True
    return as_utc(submission.next_retry_at) <= now


async def redeliver_submission(services: LeadServices, submission: Submission) -> Optional[bool]:
    """
    Make one delivery attempt for a stored submission.

    A failed pending row is rescheduled with backoff until it has used
    its automatic attempts, then marked failed with an alert. A failed
    row stays failed until an attempt succeeds.

    Returns:
        True if delivered, False if the attempt failed, None if skipped
    """
    url = services.settings.webhook_url_for(submission.form_type)
    if not url:
        return None

    store = services.backup_store
    webhook_name = webhook_name_for(submission.form_type)
    attempt = submission.attempts + 1
    bound_log = log.bind(submission_id=submission.id, webhook=webhook_name, attempt=attempt)

    error = await services.webhook_service.attempt(
        url, submission.id, submission.webhook_payload, webhook_name, attempt
    )

    if error is None:
        await store.update_webhook_status(submission.id, SubmissionStatus.DELIVERED.value)
        track_webhook_outcome(webhook_name, "delivered")
        bound_log.info("webhook_redelivered")
        return True

    if submission.webhook_status == SubmissionStatus.PENDING.value and attempt < MAX_AUTOMATIC_ATTEMPTS:
        await store.update_webhook_status(
            submission.id,
            SubmissionStatus.PENDING.value,
            error=error,
            next_retry_at=utcnow() + timedelta(seconds=backoff_delay(attempt)),
        )
        bound_log.warning("webhook_redelivery_rescheduled", error=error)
        return False

    was_pending = submission.webhook_status == SubmissionStatus.PENDING.value
    await store.update_webhook_status(submission.id, SubmissionStatus.FAILED.value, error=error)
    track_webhook_outcome(webhook_name, "failed")
    bound_log.error("webhook_redelivery_failed", error=error)

    if was_pending and services.email_fallback.is_configured():
        await services.email_fallback.send_webhook_failure_notification(
            NotificationData(
                submission_id=submission.id,
                form_data=submission.form_data or {},
                webhook_error=error,
                metadata=submission.submission_metadata,
            )
        )
    return False


async def redeliver_due_submissions(services: LeadServices, now: Optional[datetime] = None) -> dict:
    """
    Sweep the retry queue once.

    Skips the whole sweep while the circuit breaker is open.

    Returns:
        Counts of delivered, failed and skipped submissions
    """
    now = now or utcnow()
    counts = {"delivered": 0, "failed": 0, "skipped": 0, "circuitOpen": False}

    if await services.webhook_service.circuit_open():
        counts["circuitOpen"] = True
        return counts

    pending = await services.backup_store.get_pending_webhooks()
    update_pending_submissions(len(pending))

    for submission in pending:
        if not is_due(submission, now):
            counts["skipped"] += 1
            continue

        outcome = await redeliver_submission(services, submission)
        if outcome is None:
            counts["skipped"] += 1
        elif outcome:
            counts["delivered"] += 1
        else:
            counts["failed"] += 1

    log.info("retry_sweep_completed", **counts)
    return counts


async def redeliver_pending_webhooks(ctx: dict) -> dict:
    """Cron task: retry due submissions."""
    return await redeliver_due_submissions(ctx["services"])


async def cleanup_old_backups(ctx: dict) -> int:
    """Cron task: delete backups older than BACKUP_RETENTION_DAYS."""
    services: LeadServices = ctx["services"]
    return await services.backup_store.cleanup_old_backups(services.settings.BACKUP_RETENTION_DAYS)


async def startup(ctx: dict) -> None:
    configure_logging()
    configure_sentry()
    ctx["services"] = build_services(settings)
    log.info("worker_started", redis=settings.REDIS_URL)


async def shutdown(ctx: dict) -> None:
    services = ctx.get("services")
    if services is not None:
        await services.aclose()


# Register functions for ARQ
ARQ_FUNCTIONS = [
    redeliver_pending_webhooks,
    cleanup_old_backups,
]


async def main():
    """Run a single retry sweep outside the arq scheduler."""
    configure_logging()
    services = build_services(settings)
    try:
        await redeliver_due_submissions(services)
    finally:
        await services.aclose()


class WorkerSettings:
    """Settings for ARQ worker - use with 'arq mvl_leads.worker.WorkerSettings'"""
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    job_timeout = 300
    max_tries = 3
    functions = ARQ_FUNCTIONS
    cron_jobs = [
        cron(redeliver_pending_webhooks, minute=set(range(0, 60, 2))),
        cron(cleanup_old_backups, hour={3}, minute={15}),
    ]
    on_startup = startup
    on_shutdown = shutdown


if __name__ == "__main__":
    asyncio.run(main())
