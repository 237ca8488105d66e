"""
Brochure and floor plans request routes.

Both forms share one flow: a single webhook attempt, then the sales
lead email and the visitor's PDF delivery email, then a failure alert
when the webhook did not take the lead.
"""
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from mvl_leads import site_config
from mvl_leads.dependencies.rate_limit import rate_limited
from mvl_leads.dependencies.services import LeadServices, get_services
from mvl_leads.errors import APIError
from mvl_leads.logging_config import get_logger
from mvl_leads.models.submission import SubmissionStatus
from mvl_leads.routes.common import (
    detect_spam,
    is_valid_email,
    new_submission_id,
    read_json_object,
    spam_submission_id,
)
from mvl_leads.routes.metrics import track_lead_submission
from mvl_leads.sentry_config import capture_exception
from mvl_leads.services.email_fallback import NotificationData
from mvl_leads.services.lead_payload import build_document_contact, build_document_payload
from mvl_leads.services.webhook_service import WebhookDeliveryError

router = APIRouter(prefix="/api", tags=["Documents"])
log = get_logger(component="document_routes")


async def process_document_request(
    document: str,
    request: Request,
    services: LeadServices,
) -> Any:
    doc = site_config.DOCUMENTS[document]
    form_type = doc["form_type"]

    try:
        body = await read_json_object(request)

        if detect_spam(body, form_type):
            return {
                "success": True,
                "message": doc["success_message"],
                "submissionId": spam_submission_id(),
            }

        form_data = body["formData"]
        metadata = body.get("metadata") or {}

        required = ("name", "email", "phone", doc["interest_field"])
        if not all(form_data.get(field) for field in required):
            raise APIError(status.HTTP_400_BAD_REQUEST, "Missing required fields")
        if not is_valid_email(form_data["email"]):
            raise APIError(status.HTTP_400_BAD_REQUEST, "Invalid email format")

        submission_id = metadata.get("submissionId") or new_submission_id(document)
        bound_log = log.bind(submission_id=submission_id, form_type=form_type)

        payload = build_document_payload(document, form_data, metadata, submission_id, request.headers)
        await services.backup_store.store_submission(
            submission_id,
            {**form_data, **build_document_contact(document, form_data)},
            metadata=metadata,
            form_type=form_type,
            payload=payload,
        )

        webhook_error = None
        webhook_url = services.settings.webhook_url_for(form_type)
        if webhook_url:
            try:
                await services.webhook_service.send_once(webhook_url, payload)
                await services.backup_store.update_webhook_status(
                    submission_id, SubmissionStatus.DELIVERED.value
                )
                bound_log.info("document_webhook_delivered")
            except WebhookDeliveryError as e:
                webhook_error = str(e)
                bound_log.warning("document_webhook_failed", error=webhook_error)
        else:
            webhook_error = "Webhook URL not configured"

        if webhook_error:
            await services.backup_store.update_webhook_status(
                submission_id, SubmissionStatus.FAILED.value, error=webhook_error
            )

        notification = NotificationData(
            submission_id=submission_id,
            form_data=form_data,
            webhook_error=webhook_error,
            metadata=metadata,
            source_label=doc["request_label"],
        )
        email = services.email_fallback
        await email.send_document_lead_notification(document, notification)
        await email.send_document_delivery(document, notification)

        if webhook_error and email.is_configured():
            await email.send_webhook_failure_notification(notification)

        track_lead_submission(form_type)
        return {
            "success": True,
            "message": doc["success_message"],
            "submissionId": submission_id,
        }

    except APIError:
        raise
    except Exception as e:
        capture_exception(e)
        log.exception("document_request_error", form_type=form_type, error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": doc["error_message"],
                "details": str(e) or e.__class__.__name__,
            },
        )


@router.post("/brochure-download", dependencies=[Depends(rate_limited("brochure_request"))])
async def request_brochure(request: Request, services: LeadServices = Depends(get_services)):
    """Request the property brochure by email."""
    return await process_document_request("brochure", request, services)


@router.post("/floor-plans", dependencies=[Depends(rate_limited("floor_plans_request"))])
async def request_floor_plans(request: Request, services: LeadServices = Depends(get_services)):
    """Request floor plans by email."""
    return await process_document_request("floor_plans", request, services)
