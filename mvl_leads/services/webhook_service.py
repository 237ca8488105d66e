"""
Webhook Service

Handles outbound lead delivery to the CRM webhook with retry logic
and a failure-count circuit breaker.
"""
import asyncio
import random
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

import httpx

from mvl_leads.logging_config import get_logger
from mvl_leads.models.base import utcnow
from mvl_leads.models.submission import SubmissionStatus
from mvl_leads.routes.metrics import track_webhook_attempt, track_webhook_outcome
from mvl_leads.sentry_config import capture_message
from mvl_leads.services.backup_store import BackupStore

log = get_logger(component="webhook_service")

USER_AGENT = "Mount Vernon Lofts Website v3.0"
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_TIMEOUT = 15.0
SINGLE_ATTEMPT_TIMEOUT = 10.0
CIRCUIT_BREAKER_THRESHOLD = 10


class WebhookDeliveryError(Exception):
    """Raised when a single-shot webhook call does not succeed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class DeliveryResult:
    delivered: bool
    attempts: int
    last_error: Optional[str] = None
    skipped: bool = False


def backoff_delay(attempt: int, jitter: Optional[float] = None) -> float:
    """
    Seconds to wait after a failed attempt.

    2^attempt seconds plus up to one second of random jitter.
    """
    if jitter is None:
        jitter = random.random()
    return float(2 ** attempt) + jitter


class WebhookService:
    """
    Delivers lead payloads to an external webhook.

    The HTTP client and the sleep function are injected so the retry
    loop can run against a mock transport without real delays.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        backup_store: BackupStore,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        timeout: float = DEFAULT_TIMEOUT,
        circuit_breaker_threshold: int = CIRCUIT_BREAKER_THRESHOLD,
    ):
        self.http_client = http_client
        self.backup_store = backup_store
        self.sleep = sleep
        self.timeout = timeout
        self.circuit_breaker_threshold = circuit_breaker_threshold

    async def circuit_open(self) -> bool:
        """True when more than the threshold of submissions failed in the last day."""
        summary = await self.backup_store.get_backup_summary(days=1)
        is_open = summary.failed_webhooks > self.circuit_breaker_threshold
        if is_open:
            log.warning(
                "circuit_breaker_open",
                failed_webhooks=summary.failed_webhooks,
                threshold=self.circuit_breaker_threshold,
            )
            capture_message("Webhook circuit breaker open", level="warning")
        return is_open

    def build_headers(
        self, submission_id: str, webhook_name: str, attempt: int, has_backup: bool = True
    ) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-Submission-ID": submission_id,
            "X-MVL-Webhook": webhook_name,
            "X-Attempt": str(attempt),
            "X-Has-Backup": "true" if has_backup else "false",
        }

    async def attempt(
        self,
        url: str,
        submission_id: str,
        payload: dict[str, Any],
        webhook_name: str,
        attempt: int,
        has_backup: bool = True,
    ) -> Optional[str]:
        """
        Make one POST attempt.

        Returns:
            None on a 2xx response, otherwise the error description.
        """
        track_webhook_attempt(webhook_name)
        try:
            response = await self.http_client.post(
                url,
                json=payload,
                headers=self.build_headers(submission_id, webhook_name, attempt, has_backup),
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            error = str(e) or e.__class__.__name__
            log.warning(
                "webhook_attempt_error",
                submission_id=submission_id,
                attempt=attempt,
                error=error,
            )
            return error

        if response.is_success:
            return None

        error = f"HTTP {response.status_code}: {response.reason_phrase}"
        log.warning(
            "webhook_attempt_rejected",
            submission_id=submission_id,
            attempt=attempt,
            status_code=response.status_code,
        )
        return error

    async def deliver(
        self,
        url: Optional[str],
        submission_id: str,
        payload: dict[str, Any],
        webhook_name: str = "contact-form",
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        has_backup: bool = True,
    ) -> DeliveryResult:
        """
        Deliver a payload with retries and exponential backoff.

        Each failed attempt is recorded on the backup record as pending
        with its error and next retry time. A 2xx response marks the
        record delivered. The caller decides when to mark it failed.

        Args:
            url: Webhook URL; None skips delivery
            submission_id: Backup record id
            payload: JSON body
            webhook_name: Value for the X-MVL-Webhook header
            max_attempts: Total attempts before giving up
            has_backup: Whether the backup record was stored (X-Has-Backup)

        Returns:
            DeliveryResult with the outcome and last error
        """
        if not url:
            log.info("webhook_not_configured", submission_id=submission_id, webhook=webhook_name)
            return DeliveryResult(delivered=False, attempts=0, skipped=True)

        if await self.circuit_open():
            track_webhook_outcome(webhook_name, "circuit_open")
            return DeliveryResult(
                delivered=False,
                attempts=0,
                last_error="Circuit breaker open: too many recent webhook failures",
                skipped=True,
            )

        last_error = None
        for attempt in range(1, max_attempts + 1):
            error = await self.attempt(
                url, submission_id, payload, webhook_name, attempt, has_backup=has_backup
            )

            if error is None:
                await self.backup_store.update_webhook_status(
                    submission_id, SubmissionStatus.DELIVERED.value
                )
                track_webhook_outcome(webhook_name, "delivered")
                log.info(
                    "webhook_delivered",
                    submission_id=submission_id,
                    webhook=webhook_name,
                    attempt=attempt,
                )
                return DeliveryResult(delivered=True, attempts=attempt)

            last_error = error
            delay = backoff_delay(attempt)
            has_next = attempt < max_attempts
            await self.backup_store.update_webhook_status(
                submission_id,
                SubmissionStatus.PENDING.value,
                error=error,
                next_retry_at=utcnow() + timedelta(seconds=delay) if has_next else None,
            )
            if has_next:
                await self.sleep(delay)

        track_webhook_outcome(webhook_name, "failed")
        log.error(
            "webhook_delivery_exhausted",
            submission_id=submission_id,
            webhook=webhook_name,
            attempts=max_attempts,
            error=last_error,
        )
        return DeliveryResult(delivered=False, attempts=max_attempts, last_error=last_error)

    async def send_once(
        self,
        url: str,
        payload: dict[str, Any],
        timeout: float = SINGLE_ATTEMPT_TIMEOUT,
        webhook_name: str = "document-request",
    ) -> None:
        """
        Single-attempt POST used by the brochure and floor plan routes.

        Raises:
            WebhookDeliveryError: On a transport error or non-2xx response
        """
        track_webhook_attempt(webhook_name)
        try:
            response = await self.http_client.post(
                url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=timeout,
            )
        except httpx.HTTPError as e:
            track_webhook_outcome(webhook_name, "failed")
            raise WebhookDeliveryError(str(e) or e.__class__.__name__) from e

        if not response.is_success:
            track_webhook_outcome(webhook_name, "failed")
            raise WebhookDeliveryError(
                f"Webhook failed with status {response.status_code}",
                status_code=response.status_code,
            )

        track_webhook_outcome(webhook_name, "delivered")


def webhook_name_for(form_type: str) -> str:
    """X-MVL-Webhook value for a stored submission's form type."""
    if form_type.endswith("open_house_signin"):
        return "open-house-signin"
    if form_type.endswith("open_house_feedback"):
        return "open-house-feedback"
    if form_type in ("brochure_request", "floor_plans_request"):
        return "document-request"
    return "contact-form"
