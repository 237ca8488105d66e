"""
Offline form queue tests against a mock transport and a manual clock.
"""
import asyncio
import json

import httpx
import pytest

from mvl_leads.client.form_queue import (
    FAILED,
    PENDING,
    SUCCEEDED,
    FormQueue,
    QueuedSubmission,
    format_next_retry,
    format_time_ago,
    retry_delay_ms,
)

FORM = {"name": "Casey Morgan", "email": "casey@example.com", "phone": "713-555-0110", "message": "Hi"}
START = 1_760_000_000_000


class ManualClock:
    def __init__(self, value: int = START):
        self.value = value

    def __call__(self) -> int:
        return self.value

    def advance(self, ms: int) -> None:
        self.value += ms


class FakeSite:
    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"success": self.status_code == 200})

    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def site():
    return FakeSite()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
async def queue(tmp_path, site, clock):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(site))
    stagger = []

    async def no_sleep(delay):
        stagger.append(delay)

    form_queue = FormQueue(
        tmp_path / "queue.json",
        "https://mtvernonlofts.com/",
        http_client=http_client,
        clock=clock,
        sleep=no_sleep,
        success_retention=0,
    )
    form_queue.stagger = stagger
    yield form_queue
    await form_queue.stop()
    await http_client.aclose()


def entry(queue: FormQueue, submission_id: str) -> QueuedSubmission:
    return next(s for s in queue.get_all_submissions() if s.id == submission_id)


def test_retry_delay_doubles():
    assert [retry_delay_ms(n) for n in range(1, 6)] == [1000, 2000, 4000, 8000, 16000]


async def test_online_submission_is_posted_and_removed(queue, site):
    submission_id = await queue.add_to_queue(FORM)

    assert submission_id.startswith(f"queue_{START}_")
    body = site.bodies()[0]
    assert str(site.requests[0].url) == "https://mtvernonlofts.com/api/contact"
    assert body["formData"] == {**FORM, "submissionId": submission_id}
    assert body["metadata"] == {
        "modalId": "contact_modal_queue",
        "modalTriggerSource": "queue_retry",
        "siteUrl": "https://mtvernonlofts.com",
        "submissionId": submission_id,
        "queuedAt": START,
        "retryAttempt": 1,
    }
    assert entry(queue, submission_id).status == SUCCEEDED

    await asyncio.sleep(0.01)
    assert queue.get_all_submissions() == []


async def test_failed_post_is_rescheduled_with_backoff(queue, site, clock):
    site.status_code = 503

    submission_id = await queue.add_to_queue(FORM)

    queued = entry(queue, submission_id)
    assert queued.status == PENDING
    assert queued.attempts == 1
    assert queued.error == "HTTP 503: Service Unavailable"
    assert queued.next_retry_at == START + 1000

    # not yet due
    assert await queue.process_retry_queue() == 0
    clock.advance(1000)
    assert await queue.process_retry_queue() == 1
    assert entry(queue, submission_id).next_retry_at == START + 1000 + 2000


async def test_fifth_failure_parks_entry_as_failed(queue, site, clock):
    site.status_code = 500
    submission_id = await queue.add_to_queue(FORM)

    for _ in range(4):
        clock.advance(60_000)
        await queue.process_retry_queue()

    queued = entry(queue, submission_id)
    assert queued.status == FAILED
    assert queued.attempts == 5
    assert len(site.requests) == 5

    clock.advance(60_000)
    assert await queue.process_retry_queue() == 0


async def test_manual_retry_of_failed_entry(queue, site, clock):
    site.status_code = 500
    submission_id = await queue.add_to_queue(FORM)
    for _ in range(4):
        clock.advance(60_000)
        await queue.process_retry_queue()

    site.status_code = 200
    await queue.retry_submission(submission_id)

    assert entry(queue, submission_id).status == SUCCEEDED
    assert site.bodies()[-1]["metadata"]["retryAttempt"] == 6


async def test_offline_entries_drain_when_back_online(queue, site):
    await queue.set_online(False)
    first = await queue.add_to_queue(FORM)
    second = await queue.add_to_queue({**FORM, "modalId": "kiosk"})

    assert site.requests == []
    assert queue.get_stats().pending == 2

    await queue.set_online(True)

    assert [b["metadata"]["submissionId"] for b in site.bodies()] == [first, second]
    assert site.bodies()[1]["metadata"]["modalId"] == "kiosk"
    assert queue.stagger == [0.5]


async def test_transport_error_is_recorded(tmp_path, clock):
    def handler(request):
        raise httpx.ConnectError("network unreachable", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        form_queue = FormQueue(tmp_path / "q.json", "https://mtvernonlofts.com", http_client=http_client, clock=clock)
        submission_id = await form_queue.add_to_queue(FORM)

    assert entry(form_queue, submission_id).error == "network unreachable"


async def test_subscribers_receive_stats(queue, site):
    seen = []
    unsubscribe = queue.subscribe(seen.append)

    assert seen[0].total == 0
    await queue.add_to_queue(FORM)
    assert seen[-1].succeeded == 1

    unsubscribe()
    count = len(seen)
    queue.clear_queue()
    assert len(seen) == count


async def test_cleanup_drops_day_old_successes(queue, site, clock):
    queue.success_retention = 3600
    await queue.add_to_queue(FORM)
    site.status_code = 500
    await queue.add_to_queue(FORM)

    clock.advance(25 * 60 * 60 * 1000)

    assert queue.cleanup_old_submissions() == 1
    assert [s.status for s in queue.get_all_submissions()] == [PENDING]


def test_corrupt_storage_reads_as_empty(tmp_path):
    path = tmp_path / "queue.json"
    path.write_text("{not json", encoding="utf-8")

    assert FormQueue(path, "https://mtvernonlofts.com").get_all_submissions() == []


def test_format_time_ago():
    assert format_time_ago(START, now=START + 30_000) == "Just now"
    assert format_time_ago(START, now=START + 60_000) == "1 minute ago"
    assert format_time_ago(START, now=START + 3 * 3_600_000) == "3 hours ago"
    assert format_time_ago(START, now=START + 2 * 86_400_000) == "2 days ago"


def test_format_next_retry():
    assert format_next_retry(None) == "Soon"
    assert format_next_retry(START, now=START) == "Now"
    assert format_next_retry(START + 4_500, now=START) == "in 5 seconds"
    assert format_next_retry(START + 150_000, now=START) == "in 3 minutes"


async def test_fired_removals_are_forgotten(queue, site):
    await queue.add_to_queue(FORM)
    assert len(queue._removals) == 1

    await asyncio.sleep(0.01)

    assert queue._removals == []


async def test_stop_closes_owned_client_only(tmp_path, site):
    owned = FormQueue(tmp_path / "owned.json", "https://mtvernonlofts.com")
    async with httpx.AsyncClient(transport=httpx.MockTransport(site)) as shared:
        borrowed = FormQueue(tmp_path / "borrowed.json", "https://mtvernonlofts.com", http_client=shared)

        await owned.stop()
        await borrowed.stop()

        assert owned.http_client.is_closed
        assert not shared.is_closed
