"""
Webhook delivery tests: retries, backoff, headers and the circuit breaker.
"""
import httpx
import pytest

from conftest import WEBHOOK_URL, FakeWebhook, RecordingSleep
from mvl_leads.services.webhook_service import (
    WebhookDeliveryError,
    WebhookService,
    backoff_delay,
    webhook_name_for,
)

PAYLOAD = {"contact": {"name": "Jordan Avery", "email": "jordan@example.com"}}


@pytest.fixture
async def service_for(backup_store):
    clients = []

    def factory(webhook: FakeWebhook, sleep: RecordingSleep, threshold: int = 10):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(webhook))
        clients.append(http_client)
        return WebhookService(http_client, backup_store, sleep=sleep, circuit_breaker_threshold=threshold)

    yield factory

    for http_client in clients:
        await http_client.aclose()


def test_backoff_doubles_with_jitter():
    assert backoff_delay(1, jitter=0.0) == 2.0
    assert backoff_delay(3, jitter=0.5) == 8.5
    assert 4.0 <= backoff_delay(2) < 5.0


@pytest.mark.parametrize("form_type,name", [
    ("contact", "contact-form"),
    ("brochure_request", "document-request"),
    ("floor_plans_request", "document-request"),
    ("broker_open_house_signin", "open-house-signin"),
    ("public_open_house_feedback", "open-house-feedback"),
])
def test_webhook_name_for_form_types(form_type, name):
    assert webhook_name_for(form_type) == name


async def test_first_attempt_success_marks_delivered(backup_store, service_for):
    webhook, sleep = FakeWebhook(200), RecordingSleep()
    await backup_store.store_submission("sub_ok", {"name": "Jordan"})

    result = await service_for(webhook, sleep).deliver(WEBHOOK_URL, "sub_ok", PAYLOAD)

    assert result.delivered is True
    assert result.attempts == 1
    assert sleep.delays == []

    request = webhook.requests[0]
    assert request.headers["X-Submission-ID"] == "sub_ok"
    assert request.headers["X-MVL-Webhook"] == "contact-form"
    assert request.headers["X-Attempt"] == "1"
    assert request.headers["X-Has-Backup"] == "true"
    assert request.headers["User-Agent"] == "Mount Vernon Lofts Website v3.0"

    row = await backup_store.get_submission("sub_ok")
    assert row.webhook_status == "delivered"


async def test_network_failure_retries_five_times(backup_store, service_for):
    webhook, sleep = FakeWebhook(connect_error=True), RecordingSleep()
    await backup_store.store_submission("sub_down", {"name": "Jordan"})

    result = await service_for(webhook, sleep).deliver(WEBHOOK_URL, "sub_down", PAYLOAD)

    assert result.delivered is False
    assert result.attempts == 5
    assert result.last_error == "connection refused"
    assert len(webhook.requests) == 5
    assert [r.headers["X-Attempt"] for r in webhook.requests] == ["1", "2", "3", "4", "5"]
    # no sleep after the final attempt
    assert len(sleep.delays) == 4
    assert [int(d) for d in sleep.delays] == [2, 4, 8, 16]

    row = await backup_store.get_submission("sub_down")
    assert row.webhook_status == "pending"
    assert row.attempts == 5
    assert row.next_retry_at is None


async def test_http_error_status_is_recorded(backup_store, service_for):
    webhook, sleep = FakeWebhook(503), RecordingSleep()
    await backup_store.store_submission("sub_503", {"name": "Jordan"})

    result = await service_for(webhook, sleep).deliver(
        WEBHOOK_URL, "sub_503", PAYLOAD, max_attempts=2
    )

    assert result.last_error == "HTTP 503: Service Unavailable"
    row = await backup_store.get_submission("sub_503")
    assert row.error == "HTTP 503: Service Unavailable"


async def test_recovers_on_later_attempt(backup_store, service_for):
    responses = iter([500, 500, 200])

    def handler(request):
        return httpx.Response(next(responses))

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    sleep = RecordingSleep()
    service = WebhookService(http_client, backup_store, sleep=sleep)
    await backup_store.store_submission("sub_flaky", {"name": "Jordan"})

    result = await service.deliver(WEBHOOK_URL, "sub_flaky", PAYLOAD)
    await http_client.aclose()

    assert result.delivered is True
    assert result.attempts == 3
    row = await backup_store.get_submission("sub_flaky")
    assert row.webhook_status == "delivered"
    assert row.attempts == 3


async def test_missing_url_skips_delivery(backup_store, service_for):
    webhook, sleep = FakeWebhook(200), RecordingSleep()

    result = await service_for(webhook, sleep).deliver(None, "sub_nourl", PAYLOAD)

    assert result.delivered is False
    assert result.skipped is True
    assert webhook.requests == []


async def test_circuit_breaker_skips_after_too_many_failures(backup_store, service_for):
    for i in range(3):
        await backup_store.store_submission(f"failed_{i}", {"name": "x"})
        await backup_store.update_webhook_status(f"failed_{i}", "failed")
    await backup_store.store_submission("sub_new", {"name": "Jordan"})
    webhook, sleep = FakeWebhook(200), RecordingSleep()

    result = await service_for(webhook, sleep, threshold=2).deliver(WEBHOOK_URL, "sub_new", PAYLOAD)

    assert result.delivered is False
    assert result.skipped is True
    assert "Circuit breaker open" in result.last_error
    assert webhook.requests == []


async def test_send_once_raises_on_rejection(backup_store, service_for):
    service = service_for(FakeWebhook(400), RecordingSleep())

    with pytest.raises(WebhookDeliveryError) as exc_info:
        await service.send_once(WEBHOOK_URL, PAYLOAD)

    assert str(exc_info.value) == "Webhook failed with status 400"
    assert exc_info.value.status_code == 400
