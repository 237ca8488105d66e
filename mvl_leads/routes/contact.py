"""
Contact form route.

Validates the inquiry, backs it up, delivers it to the CRM webhook
with retries and falls back to email when delivery fails.
"""
import time
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from mvl_leads.dependencies.rate_limit import rate_limited
from mvl_leads.dependencies.services import LeadServices, get_services
from mvl_leads.errors import APIError
from mvl_leads.logging_config import get_logger
from mvl_leads.models.base import isoformat_ms, utcnow
from mvl_leads.models.submission import SubmissionStatus
from mvl_leads.routes.common import (
    detect_spam,
    elapsed_ms,
    is_valid_email,
    new_submission_id,
    read_json_object,
    spam_submission_id,
)
from mvl_leads.routes.metrics import track_lead_submission
from mvl_leads.sentry_config import capture_exception
from mvl_leads.services.email_fallback import NotificationData
from mvl_leads.services.lead_payload import (
    build_contact_payload,
    metadata_timezone,
    pick_contact_fields,
)

router = APIRouter(prefix="/api/contact", tags=["Contact"])
log = get_logger(component="contact_route")

SUCCESS_MESSAGE = "Inquiry submitted successfully"
ALL_RETRIES_FAILED = "All retry attempts failed"


def parse_contact_body(body: dict[str, Any]) -> tuple[dict[str, Any], Optional[dict[str, Any]]]:
    """Accept both the enhanced `{formData, metadata}` body and the legacy flat body."""
    if isinstance(body.get("formData"), dict) and isinstance(body.get("metadata"), dict):
        return pick_contact_fields(body["formData"]), body["metadata"]
    return pick_contact_fields(body), None


def validate_contact(form_data: dict[str, Any]) -> None:
    if not all(form_data.get(field) for field in ("name", "email", "phone", "message")):
        raise APIError(status.HTTP_400_BAD_REQUEST, "All fields are required")
    if not is_valid_email(form_data["email"]):
        raise APIError(status.HTTP_400_BAD_REQUEST, "Invalid email format")


@router.post("", dependencies=[Depends(rate_limited("contact"))])
async def submit_contact(request: Request, services: LeadServices = Depends(get_services)):
    """
    Submit a contact inquiry.

    Returns 200 once validation passes, whether or not the webhook or
    email fallback succeeded; the backup record keeps the lead either way.
    """
    started = time.perf_counter()
    submission_id = None

    try:
        body = await read_json_object(request)

        if detect_spam(body, "contact"):
            return {
                "success": True,
                "submissionId": spam_submission_id(),
                "message": SUCCESS_MESSAGE,
                "webhookDelivered": False,
                "processingTime": elapsed_ms(started),
            }

        form_data, metadata = parse_contact_body(body)
        validate_contact(form_data)

        submission_id = (metadata or {}).get("submissionId") or new_submission_id("submission")
        bound_log = log.bind(submission_id=submission_id)

        settings = services.settings
        webhook_url = settings.contact_webhook_url
        email_configured = services.email_fallback.is_configured()

        if settings.WEBHOOK_TEST_MODE:
            bound_log.info("webhook_test_mode_enabled")
        if not webhook_url and not email_configured:
            bound_log.warning("no_delivery_channel_configured")

        geographic_data = await services.ip_anonymizer.process_ip_for_webhook(
            request.headers, metadata_timezone(metadata)
        )
        payload = build_contact_payload(
            form_data, metadata, submission_id, request.headers, geographic_data
        )

        backup_stored = await services.backup_store.store_submission(
            submission_id,
            form_data,
            metadata=metadata,
            form_type="contact",
            payload=payload,
        )
        if not backup_stored:
            bound_log.warning("backup_not_stored")

        result = await services.webhook_service.deliver(
            webhook_url,
            submission_id,
            payload,
            webhook_name="contact-form",
            max_attempts=settings.WEBHOOK_MAX_ATTEMPTS,
            has_backup=backup_stored,
        )

        if not result.delivered:
            error = result.last_error or ALL_RETRIES_FAILED
            await services.backup_store.update_webhook_status(
                submission_id, SubmissionStatus.FAILED.value, error=error
            )

            if email_configured:
                await services.email_fallback.send_webhook_failure_notification(
                    NotificationData(
                        submission_id=submission_id,
                        form_data=form_data,
                        webhook_error=error,
                        metadata=metadata,
                    )
                )
                await services.email_fallback.send_lead_notification(
                    NotificationData(
                        submission_id=submission_id,
                        form_data=form_data,
                        metadata=metadata,
                    )
                )

        track_lead_submission("contact")
        processing_time = elapsed_ms(started)
        bound_log.info(
            "contact_submission_processed",
            webhook_delivered=result.delivered,
            attempts=result.attempts,
            processing_time=processing_time,
        )

        return {
            "success": True,
            "submissionId": submission_id,
            "message": SUCCESS_MESSAGE,
            "webhookDelivered": result.delivered,
            "processingTime": processing_time,
        }

    except APIError:
        raise
    except Exception as e:
        capture_exception(e)
        log.exception("contact_submission_error", submission_id=submission_id, error=str(e))

        if submission_id:
            await services.backup_store.update_webhook_status(
                submission_id, SubmissionStatus.FAILED.value, error=str(e) or "Unexpected server error"
            )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "code": "INTERNAL_ERROR",
                "retryable": True,
                "details": {
                    "processingTime": elapsed_ms(started),
                    "timestamp": isoformat_ms(utcnow()),
                },
            },
        )
