"""
Retry worker tests: due selection, rescheduling and the failure cap.
"""
from datetime import timedelta

from sqlalchemy import update

from conftest import EMAIL_SETTINGS
from mvl_leads.models.base import utcnow
from mvl_leads.models.submission import Submission
from mvl_leads.worker import cleanup_old_backups, is_due, redeliver_due_submissions

FORM = {"name": "Jordan Avery", "email": "jordan@example.com", "phone": "713-555-0142", "message": "Hi"}
PAYLOAD = {"contact": FORM, "source": "Mount Vernon Lofts Website Contact Form"}


async def stored(services, session_factory, submission_id="sub_retry", payload=PAYLOAD, **values):
    await services.backup_store.store_submission(submission_id, FORM, payload=payload)
    if values:
        async with session_factory() as session:
            await session.execute(update(Submission).where(Submission.id == submission_id).values(**values))
            await session.commit()
    return await services.backup_store.get_submission(submission_id)


def test_is_due():
    now = utcnow()

    assert is_due(Submission(webhook_payload=PAYLOAD, next_retry_at=None), now)
    assert is_due(Submission(webhook_payload=PAYLOAD, next_retry_at=now - timedelta(seconds=1)), now)
    assert not is_due(Submission(webhook_payload=PAYLOAD, next_retry_at=now + timedelta(minutes=1)), now)
    assert not is_due(Submission(webhook_payload=None, next_retry_at=None), now)


async def test_due_submission_is_delivered(make_services, session_factory, webhook):
    services = make_services()
    await stored(services, session_factory)

    counts = await redeliver_due_submissions(services)

    assert counts == {"delivered": 1, "failed": 0, "skipped": 0, "circuitOpen": False}
    request = webhook.requests[0]
    assert request.headers["X-Attempt"] == "1"
    assert request.headers["X-MVL-Webhook"] == "contact-form"
    row = await services.backup_store.get_submission("sub_retry")
    assert row.webhook_status == "delivered"


async def test_rows_without_payload_or_not_yet_due_are_skipped(make_services, session_factory, webhook):
    services = make_services()
    await stored(services, session_factory, "sub_no_payload", payload=None)
    await stored(services, session_factory, "sub_later", next_retry_at=utcnow() + timedelta(minutes=10))

    counts = await redeliver_due_submissions(services)

    assert counts["skipped"] == 2
    assert webhook.requests == []


async def test_failed_attempt_reschedules_pending_row(make_services, session_factory, webhook):
    webhook.fail_with(503)
    services = make_services()
    await stored(services, session_factory)

    counts = await redeliver_due_submissions(services)

    assert counts["failed"] == 1
    row = await services.backup_store.get_submission("sub_retry")
    assert row.webhook_status == "pending"
    assert row.attempts == 1
    assert row.error == "HTTP 503: Service Unavailable"
    assert row.next_retry_at is not None


async def test_final_automatic_attempt_marks_failed_and_alerts(make_services, session_factory, webhook, mailer):
    webhook.fail_with(500)
    services = make_services(**EMAIL_SETTINGS)
    await stored(services, session_factory, attempts=4)

    await redeliver_due_submissions(services)

    row = await services.backup_store.get_submission("sub_retry")
    assert row.webhook_status == "failed"
    assert row.attempts == 5
    assert webhook.requests[0].headers["X-Attempt"] == "5"
    assert mailer.messages[0]["X-MVL-Alert"] == "webhook-failure"


async def test_failed_row_recovers_when_webhook_is_back(make_services, session_factory, webhook, mailer):
    services = make_services(**EMAIL_SETTINGS)
    await stored(services, session_factory, webhook_status="failed", attempts=2)

    counts = await redeliver_due_submissions(services)

    assert counts["delivered"] == 1
    row = await services.backup_store.get_submission("sub_retry")
    assert row.webhook_status == "delivered"
    assert mailer.messages == []


async def test_failed_row_stays_failed_without_new_alert(make_services, session_factory, webhook, mailer):
    webhook.fail_with(502)
    services = make_services(**EMAIL_SETTINGS)
    await stored(services, session_factory, webhook_status="failed", attempts=2)

    await redeliver_due_submissions(services)

    row = await services.backup_store.get_submission("sub_retry")
    assert row.webhook_status == "failed"
    assert row.attempts == 3
    assert mailer.messages == []


async def test_open_circuit_skips_sweep(make_services, session_factory, webhook):
    services = make_services(CIRCUIT_BREAKER_THRESHOLD=1)
    await stored(services, session_factory, "old_1", webhook_status="failed")
    await stored(services, session_factory, "old_2", webhook_status="failed")
    await stored(services, session_factory)

    counts = await redeliver_due_submissions(services)

    assert counts["circuitOpen"] is True
    assert webhook.requests == []


async def test_cleanup_task_uses_retention_setting(make_services, session_factory):
    services = make_services(BACKUP_RETENTION_DAYS=30)
    await stored(services, session_factory, "ancient", created_on=(utcnow() - timedelta(days=45)).date())
    await stored(services, session_factory, "recent")

    deleted = await cleanup_old_backups({"services": services})

    assert deleted == 1
    assert await services.backup_store.get_submission("ancient") is None
    assert await services.backup_store.get_submission("recent") is not None
