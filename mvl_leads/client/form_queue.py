"""
Offline form queue for kiosk and sign-in tablet clients.

Submissions are written to a local JSON file first and posted to the
contact endpoint when the network allows. Failed posts are retried with
exponential backoff (1 s, 2 s, 4 s, ...) until five attempts have been
used, after which the entry is parked as `failed` for a manual retry.
"""
import asyncio
import json
import os
import time
import uuid
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import httpx

from mvl_leads.logging_config import get_logger

log = get_logger(component="form_queue")

MAX_RETRIES = 5
BASE_DELAY_MS = 1000
RETRY_INTERVAL_SECONDS = 30
SUCCESS_RETENTION_SECONDS = 5
STAGGER_SECONDS = 0.5
SUCCEEDED_MAX_AGE_MS = 24 * 60 * 60 * 1000

PENDING = "pending"
RETRYING = "retrying"
FAILED = "failed"
SUCCEEDED = "succeeded"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class QueuedSubmission:
    id: str
    timestamp: int
    form_data: dict[str, Any]
    attempts: int = 0
    status: str = PENDING
    last_attempt_at: Optional[int] = None
    error: Optional[str] = None
    next_retry_at: Optional[int] = None


@dataclass
class QueueStats:
    total: int = 0
    pending: int = 0
    retrying: int = 0
    failed: int = 0
    succeeded: int = 0
    oldest_pending: Optional[int] = None


def retry_delay_ms(attempts: int) -> int:
    """Backoff after the given number of attempts: 1000 ms * 2^(attempts-1)."""
    return BASE_DELAY_MS * 2 ** (attempts - 1)


class FormQueue:
    """
    Local retry queue in front of `POST /api/contact`.

    Args:
        storage_path: JSON file holding the queue
        base_url: Site origin, e.g. https://mountvernonlofts.com
        http_client: Client used for posting; one is created if omitted
        clock: Millisecond clock
        sleep: Delay between staggered submissions
        success_retention: Seconds a succeeded entry stays visible
    """

    def __init__(
        self,
        storage_path: os.PathLike,
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        success_retention: float = SUCCESS_RETENTION_SECONDS,
    ):
        self.storage_path = Path(storage_path)
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=15.0)
        self.clock = clock
        self.sleep = sleep
        self.success_retention = success_retention
        self.is_online = True
        self._listeners: list[Callable[[QueueStats], None]] = []
        self._timer: Optional[asyncio.Task] = None
        self._removals: list[asyncio.TimerHandle] = []

    # Storage

    def _load(self) -> list[QueuedSubmission]:
        if not self.storage_path.exists():
            return []
        try:
            raw = json.loads(self.storage_path.read_text(encoding="utf-8"))
            return [QueuedSubmission(**entry) for entry in raw]
        except (OSError, ValueError, TypeError) as e:
            log.error("queue_load_failed", path=str(self.storage_path), error=str(e))
            return []

    def _save(self, queue: list[QueuedSubmission]) -> None:
        try:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            self.storage_path.write_text(
                json.dumps([asdict(entry) for entry in queue]), encoding="utf-8"
            )
        except OSError as e:
            log.error("queue_save_failed", path=str(self.storage_path), error=str(e))

    def get_all_submissions(self) -> list[QueuedSubmission]:
        return self._load()

    # Queue operations

    async def add_to_queue(self, form_data: dict[str, Any]) -> str:
        """
        Queue a submission and try to send it straight away when online.

        Returns:
            The queue id, also sent as the server-side submission id
        """
        submission_id = f"queue_{self.clock()}_{uuid.uuid4().hex[:9]}"
        queue = self._load()
        queue.append(
            QueuedSubmission(
                id=submission_id,
                timestamp=self.clock(),
                form_data={**form_data, "submissionId": submission_id},
            )
        )
        self._save(queue)
        log.info("submission_queued", submission_id=submission_id)
        self._notify()

        if self.is_online:
            await self.process_submission(submission_id)
        return submission_id

    async def process_submission(self, submission_id: str) -> None:
        """Post one queued entry if it exists, is not done and is due."""
        queue = self._load()
        submission = next((s for s in queue if s.id == submission_id), None)
        if submission is None or submission.status == SUCCEEDED:
            return
        if submission.next_retry_at and self.clock() < submission.next_retry_at:
            return

        submission.status = RETRYING
        submission.attempts += 1
        submission.last_attempt_at = self.clock()
        self._save(queue)
        self._notify()

        payload = {
            "formData": submission.form_data,
            "metadata": {
                "modalId": submission.form_data.get("modalId") or "contact_modal_queue",
                "modalTriggerSource": submission.form_data.get("triggerSource") or "queue_retry",
                "siteUrl": self.base_url,
                "submissionId": submission.id,
                "queuedAt": submission.timestamp,
                "retryAttempt": submission.attempts,
            },
        }

        error = None
        try:
            response = await self.http_client.post(f"{self.base_url}/api/contact", json=payload)
            if not response.is_success:
                error = f"HTTP {response.status_code}: {response.reason_phrase}"
        except httpx.HTTPError as e:
            error = str(e) or e.__class__.__name__

        if error is None:
            submission.status = SUCCEEDED
            submission.error = None
            log.info("queued_submission_succeeded", submission_id=submission_id)
            self._schedule_removal(submission_id)
        else:
            submission.error = error
            if submission.attempts >= MAX_RETRIES:
                submission.status = FAILED
                log.error("queued_submission_failed", submission_id=submission_id, error=error)
            else:
                delay = retry_delay_ms(submission.attempts)
                submission.next_retry_at = self.clock() + delay
                submission.status = PENDING
                log.warning(
                    "queued_submission_retry_scheduled",
                    submission_id=submission_id,
                    attempt=submission.attempts,
                    delay_ms=delay,
                    error=error,
                )

        self._save(queue)
        self._notify()

    async def process_retry_queue(self) -> int:
        """
        Post every due pending entry, half a second apart.

        Returns:
            Number of entries processed
        """
        if not self.is_online:
            return 0

        now = self.clock()
        due = [
            s.id for s in self._load()
            if s.status == PENDING and (not s.next_retry_at or now >= s.next_retry_at)
        ]
        log.info("processing_retry_queue", due=len(due))

        for index, submission_id in enumerate(due):
            if index:
                await self.sleep(STAGGER_SECONDS)
            await self.process_submission(submission_id)
        return len(due)

    def remove_from_queue(self, submission_id: str) -> None:
        queue = self._load()
        self._save([s for s in queue if s.id != submission_id])
        self._notify()
        log.info("submission_removed_from_queue", submission_id=submission_id)

    async def retry_submission(self, submission_id: str) -> None:
        """Put a failed entry back in the queue with a fresh backoff."""
        queue = self._load()
        submission = next((s for s in queue if s.id == submission_id), None)
        if submission is None or submission.status != FAILED:
            return

        submission.status = PENDING
        submission.next_retry_at = None
        submission.error = None
        self._save(queue)
        self._notify()

        if self.is_online:
            await self.process_submission(submission_id)

    def clear_queue(self) -> None:
        if self.storage_path.exists():
            self.storage_path.unlink()
        self._notify()
        log.info("queue_cleared")

    def cleanup_old_submissions(self) -> int:
        """Drop succeeded entries older than 24 hours. Returns how many were dropped."""
        queue = self._load()
        cutoff = self.clock() - SUCCEEDED_MAX_AGE_MS
        kept = [s for s in queue if s.status != SUCCEEDED or s.timestamp > cutoff]
        removed = len(queue) - len(kept)
        if removed:
            self._save(kept)
            log.info("old_queue_entries_cleaned", removed=removed)
        return removed

    def get_stats(self) -> QueueStats:
        stats = QueueStats()
        for submission in self._load():
            stats.total += 1
            if submission.status == PENDING:
                stats.pending += 1
                if stats.oldest_pending is None or submission.timestamp < stats.oldest_pending:
                    stats.oldest_pending = submission.timestamp
            elif submission.status == RETRYING:
                stats.retrying += 1
            elif submission.status == FAILED:
                stats.failed += 1
            elif submission.status == SUCCEEDED:
                stats.succeeded += 1
        return stats

    # Connectivity and timer

    async def set_online(self, online: bool) -> None:
        """Record a connectivity change; coming back online drains the queue."""
        was_online = self.is_online
        self.is_online = online
        log.info("network_status_changed", online=online)
        if online and not was_online:
            await self.process_retry_queue()

    def start(self, interval: float = RETRY_INTERVAL_SECONDS) -> None:
        """Start the periodic retry loop and prune old entries. Needs a running event loop."""
        self.cleanup_old_submissions()
        if self._timer is None:
            self._timer = asyncio.create_task(self._run(interval))

    async def _run(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.process_retry_queue()
            except Exception as e:
                log.exception("retry_loop_error", error=str(e))

    async def stop(self) -> None:
        """Stop the retry loop, cancel pending removals and close an owned HTTP client."""
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
        for handle in self._removals:
            handle.cancel()
        self._removals = []
        self._listeners = []
        if self._owns_client:
            await self.http_client.aclose()

    def _schedule_removal(self, submission_id: str) -> None:
        loop = asyncio.get_running_loop()
        handle = None

        def remove() -> None:
            self._removals.remove(handle)
            self.remove_from_queue(submission_id)

        handle = loop.call_later(self.success_retention, remove)
        self._removals.append(handle)

    # Listeners

    def subscribe(self, callback: Callable[[QueueStats], None]) -> Callable[[], None]:
        """
        Call `callback` with fresh stats on every queue change.

        Returns:
            Function that removes the subscription
        """
        self._listeners.append(callback)
        callback(self.get_stats())

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        stats = self.get_stats()
        for callback in list(self._listeners):
            callback(stats)


def format_time_ago(timestamp: int, now: Optional[int] = None) -> str:
    """Human-readable age of a millisecond timestamp."""
    diff = (now if now is not None else now_ms()) - timestamp
    minutes = diff // 60_000
    hours = diff // 3_600_000
    days = diff // 86_400_000

    if days > 0:
        return f"{days} day{'' if days == 1 else 's'} ago"
    if hours > 0:
        return f"{hours} hour{'' if hours == 1 else 's'} ago"
    if minutes > 0:
        return f"{minutes} minute{'' if minutes == 1 else 's'} ago"
    return "Just now"


def format_next_retry(next_retry_at: Optional[int], now: Optional[int] = None) -> str:
    if not next_retry_at:
        return "Soon"

    diff = next_retry_at - (now if now is not None else now_ms())
    if diff <= 0:
        return "Now"

    seconds = -(-diff // 1000)
    minutes = -(-diff // 60_000)
    if minutes > 1:
        return f"in {minutes} minutes"
    return f"in {seconds} seconds"
