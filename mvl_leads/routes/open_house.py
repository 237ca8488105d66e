"""
Open house sign-in and feedback routes.

Both forms are tied to an event (`eventMeta`) and delivered to the open
house webhook with three attempts; a lead notification email goes out
when delivery fails.
"""
import time
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from mvl_leads.dependencies.rate_limit import rate_limited
from mvl_leads.dependencies.services import LeadServices, get_services
from mvl_leads.errors import APIError
from mvl_leads.logging_config import get_logger
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
from mvl_leads.services.lead_payload import build_open_house_payload

router = APIRouter(prefix="/api/open-house", tags=["Open House"])
log = get_logger(component="open_house_routes")

EVENT_TYPES = ("broker", "public")
OPEN_HOUSE_MAX_ATTEMPTS = 3
ALL_RETRIES_FAILED = "All retries failed"
PRICING_CHOICES = ("below_market", "about_right", "above_market")


def resolve_form_type(event_meta: dict[str, Any], kind: str) -> str:
    """
    Form type for an open house submission, e.g. `broker_open_house_signin`.

    Raises:
        APIError: 400 if the event type or explicit form type is not recognised
    """
    event_type = event_meta.get("eventType")
    if event_type not in EVENT_TYPES:
        raise APIError(status.HTTP_400_BAD_REQUEST, "eventType must be broker or public")

    form_type = event_meta.get("formType") or f"{event_type}_open_house_{kind}"
    if form_type not in {f"{t}_open_house_{kind}" for t in EVENT_TYPES}:
        raise APIError(status.HTTP_400_BAD_REQUEST, "Invalid formType for this form")
    return form_type


def validate_sign_in(form_data: dict[str, Any], event_meta: dict[str, Any]) -> None:
    if not all(form_data.get(field) for field in ("name", "email", "phone")):
        raise APIError(status.HTTP_400_BAD_REQUEST, "Name, email, and phone are required")
    if not is_valid_email(form_data["email"]):
        raise APIError(status.HTTP_400_BAD_REQUEST, "Invalid email format")
    if event_meta.get("eventType") == "broker" and not form_data.get("brokerage"):
        raise APIError(status.HTTP_400_BAD_REQUEST, "Brokerage is required for broker events")
    if form_data.get("visitedBefore") not in ("yes", "no"):
        raise APIError(status.HTTP_400_BAD_REQUEST, "visitedBefore must be yes or no")
    if form_data.get("hasActiveBuyer") not in ("yes", "no", "maybe"):
        raise APIError(status.HTTP_400_BAD_REQUEST, "hasActiveBuyer must be yes, no, or maybe")


def validate_feedback(form_data: dict[str, Any]) -> None:
    if not form_data.get("email"):
        raise APIError(status.HTTP_400_BAD_REQUEST, "Email is required")
    if not is_valid_email(form_data["email"]):
        raise APIError(status.HTTP_400_BAD_REQUEST, "Invalid email format")
    if form_data.get("pricingComparison") not in PRICING_CHOICES:
        raise APIError(
            status.HTTP_400_BAD_REQUEST,
            "pricingComparison must be below_market, about_right, or above_market",
        )
    likelihood = form_data.get("likelihoodToBring")
    if isinstance(likelihood, bool) or not isinstance(likelihood, (int, float)) or not 1 <= likelihood <= 5:
        raise APIError(status.HTTP_400_BAD_REQUEST, "likelihoodToBring must be between 1 and 5")


def sign_in_contact(form_data: dict[str, Any]) -> dict[str, Any]:
    return {
        "name": form_data["name"],
        "email": form_data["email"],
        "phone": form_data["phone"],
        "message": (
            f"[Open House Sign-In] Brokerage: {form_data.get('brokerage') or 'N/A'}, "
            f"Visited Before: {form_data['visitedBefore']}, "
            f"Active Buyer: {form_data['hasActiveBuyer']}"
        ),
    }


def feedback_contact(form_data: dict[str, Any], event_meta: dict[str, Any]) -> dict[str, Any]:
    label = "Broker" if event_meta.get("eventType") == "broker" else "Public"
    units = form_data.get("standoutUnits")
    units_text = ", ".join(str(u) for u in units) if isinstance(units, list) else "None"
    return {
        "name": form_data["email"],
        "email": form_data["email"],
        "phone": "",
        "message": (
            f"[{label} Open House Feedback] Pricing: {form_data['pricingComparison']}, "
            f"Likelihood: {form_data['likelihoodToBring']}/5, Units: {units_text}"
        ),
    }


async def deliver_open_house_lead(
    services: LeadServices,
    *,
    submission_id: str,
    form_type: str,
    contact: dict[str, Any],
    form_key: str,
    form_data: dict[str, Any],
    event_meta: dict[str, Any],
    source: str,
    webhook_name: str,
    source_label: str,
) -> bool:
    """Back up, deliver and fall back to email. Returns whether the webhook took the lead."""
    bound_log = log.bind(submission_id=submission_id, form_type=form_type)
    payload = build_open_house_payload(form_type, contact, form_key, form_data, event_meta, source)

    backup_stored = await services.backup_store.store_submission(
        submission_id,
        contact,
        metadata={
            "formType": form_type,
            "eventId": event_meta.get("eventId"),
            "eventType": event_meta.get("eventType"),
            form_key: form_data,
        },
        form_type=form_type,
        payload=payload,
    )

    result = await services.webhook_service.deliver(
        services.settings.webhook_url_for(form_type),
        submission_id,
        payload,
        webhook_name=webhook_name,
        max_attempts=OPEN_HOUSE_MAX_ATTEMPTS,
        has_backup=backup_stored,
    )

    if not result.delivered:
        await services.backup_store.update_webhook_status(
            submission_id,
            SubmissionStatus.FAILED.value,
            error=result.last_error or ALL_RETRIES_FAILED,
        )
        if services.email_fallback.is_configured():
            await services.email_fallback.send_lead_notification(
                NotificationData(
                    submission_id=submission_id,
                    form_data=contact,
                    metadata={"formType": form_type, "eventId": event_meta.get("eventId")},
                    source_label=source_label,
                )
            )

    track_lead_submission(form_type)
    bound_log.info("open_house_submission_processed", webhook_delivered=result.delivered)
    return result.delivered


def internal_error(e: Exception, event: str) -> JSONResponse:
    capture_exception(e)
    log.exception(event, error=str(e))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error", "retryable": True},
    )


def read_open_house_body(body: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    form_data = body.get("formData")
    event_meta = body.get("eventMeta")
    if not isinstance(form_data, dict) or not isinstance(event_meta, dict):
        raise APIError(status.HTTP_400_BAD_REQUEST, "formData and eventMeta are required")
    return form_data, event_meta


@router.post("/sign-in", dependencies=[Depends(rate_limited("open_house_signin"))])
async def open_house_sign_in(request: Request, services: LeadServices = Depends(get_services)):
    """Register a visitor at an open house event."""
    started = time.perf_counter()
    try:
        body = await read_json_object(request)

        if detect_spam(body, "open_house_signin"):
            return {
                "success": True,
                "submissionId": spam_submission_id(),
                "webhookDelivered": False,
                "processingTime": elapsed_ms(started),
            }

        form_data, event_meta = read_open_house_body(body)
        form_type = resolve_form_type(event_meta, "signin")
        validate_sign_in(form_data, event_meta)

        submission_id = new_submission_id("signin")
        delivered = await deliver_open_house_lead(
            services,
            submission_id=submission_id,
            form_type=form_type,
            contact=sign_in_contact(form_data),
            form_key="openHouseData",
            form_data=form_data,
            event_meta=event_meta,
            source="Mount Vernon Lofts Open House Sign-In",
            webhook_name="open-house-signin",
            source_label="Open House Sign-In",
        )

        return {
            "success": True,
            "submissionId": submission_id,
            "webhookDelivered": delivered,
            "processingTime": elapsed_ms(started),
        }

    except APIError:
        raise
    except Exception as e:
        return internal_error(e, "open_house_signin_error")


@router.post("/feedback", dependencies=[Depends(rate_limited("open_house_feedback"))])
async def open_house_feedback(request: Request, services: LeadServices = Depends(get_services)):
    """Collect post-visit feedback from an open house attendee."""
    started = time.perf_counter()
    try:
        body = await read_json_object(request)

        if detect_spam(body, "open_house_feedback"):
            return {
                "success": True,
                "submissionId": spam_submission_id(),
                "webhookDelivered": False,
                "processingTime": elapsed_ms(started),
            }

        form_data, event_meta = read_open_house_body(body)
        form_type = resolve_form_type(event_meta, "feedback")
        validate_feedback(form_data)

        submission_id = new_submission_id("feedback")
        delivered = await deliver_open_house_lead(
            services,
            submission_id=submission_id,
            form_type=form_type,
            contact=feedback_contact(form_data, event_meta),
            form_key="openHouseFeedback",
            form_data=form_data,
            event_meta=event_meta,
            source="Mount Vernon Lofts Open House Feedback",
            webhook_name="open-house-feedback",
            source_label="Open House Feedback",
        )

        return {
            "success": True,
            "submissionId": submission_id,
            "webhookDelivered": delivered,
            "processingTime": elapsed_ms(started),
        }

    except APIError:
        raise
    except Exception as e:
        return internal_error(e, "open_house_feedback_error")
