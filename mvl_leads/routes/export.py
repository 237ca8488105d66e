"""
Export and manual recovery endpoints for backed-up submissions.
"""
from collections import Counter
from datetime import timedelta
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, Response

from mvl_leads.dependencies.auth import require_admin_key
from mvl_leads.dependencies.services import LeadServices, get_services
from mvl_leads.errors import APIError
from mvl_leads.logging_config import get_logger
from mvl_leads.models.base import isoformat_ms, utcnow
from mvl_leads.models.submission import Submission, SubmissionStatus
from mvl_leads.routes.common import read_json_object
from mvl_leads.sentry_config import capture_exception
from mvl_leads.services.backup_store import submissions_to_csv

router = APIRouter(
    prefix="/api/contact",
    tags=["Operations"],
    dependencies=[Depends(require_admin_key)],
)
log = get_logger(component="export_route")

EXPORT_FORMATS = ("csv", "json")
MANAGEMENT_ACTIONS = ("retry", "mark_delivered", "get_details")
NO_CACHE = "no-cache, no-store, must-revalidate"


def parse_days(value: Optional[str]) -> int:
    try:
        days = int(value) if value is not None else 30
    except ValueError:
        days = 0
    if days < 1 or days > 365:
        raise APIError(status.HTTP_400_BAD_REQUEST, "Days parameter must be between 1 and 365")
    return days


def export_filename(days: int, status_filter: Optional[str], extension: str) -> str:
    suffix = f"_{status_filter}" if status_filter else ""
    return f"mvl_submissions_{utcnow().date().isoformat()}_{days}days{suffix}.{extension}"


def export_record(submission: Submission, include_metadata: bool) -> dict[str, Any]:
    form = submission.form_data or {}
    record = {
        "submissionId": submission.id,
        "timestamp": isoformat_ms(submission.timestamp),
        "contact": {
            "name": form.get("name"),
            "email": form.get("email"),
            "phone": form.get("phone"),
            "message": form.get("message"),
            "isBroker": form.get("isBroker"),
            "preferredFloor": form.get("preferredFloor"),
        },
        "webhook": {
            "status": submission.webhook_status,
            "attempts": submission.attempts,
            "lastAttemptAt": isoformat_ms(submission.last_attempt_at),
            "error": submission.error,
        },
    }
    if include_metadata and submission.submission_metadata:
        record["metadata"] = submission.submission_metadata
    return record


def export_statistics(records: list[dict[str, Any]]) -> dict[str, Any]:
    statuses = Counter(r["webhook"]["status"] for r in records)
    floors = Counter(r["contact"]["preferredFloor"] or "not_specified" for r in records)
    return {
        "byStatus": {s.value: statuses.get(s.value, 0) for s in SubmissionStatus},
        "byFloorPreference": dict(floors),
        "brokerSubmissions": sum(1 for r in records if r["contact"]["isBroker"] == "yes"),
    }


@router.get("/export")
async def export_submissions(
    days: Optional[str] = None,
    format: str = "csv",
    status_filter: Optional[str] = Query(None, alias="status"),
    metadata: bool = False,
    services: LeadServices = Depends(get_services),
):
    """
    Download backed-up submissions as CSV or JSON.

    Args:
        days: Window size in calendar days, 1-365 (default 30)
        format: "csv" or "json"
        status: Only submissions with this webhook status
        metadata: Include client metadata in JSON records
    """
    days = parse_days(days)
    if format not in EXPORT_FORMATS:
        raise APIError(status.HTTP_400_BAD_REQUEST, 'Format must be either "csv" or "json"')

    if status_filter:
        status_filter = status_filter.lower()

    try:
        submissions = await services.backup_store.get_all_submissions(days, status=status_filter)
    except Exception as e:
        capture_exception(e)
        log.exception("export_failed", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Failed to export data",
                "message": str(e),
                "timestamp": isoformat_ms(utcnow()),
            },
        )

    log.info("submissions_exported", format=format, days=days, status=status_filter, count=len(submissions))

    if format == "csv":
        return Response(
            content=submissions_to_csv(submissions),
            media_type="text/csv",
            headers={
                "Content-Disposition": f'attachment; filename="{export_filename(days, status_filter, "csv")}"',
                "Cache-Control": NO_CACHE,
                "X-Export-Count": str(len(submissions)),
            },
        )

    now = utcnow()
    records = [export_record(s, metadata) for s in submissions]
    content = {
        "summary": {
            "exportInfo": {
                "timestamp": isoformat_ms(now),
                "period": {
                    "days": days,
                    "from": isoformat_ms(now - timedelta(days=days)),
                    "to": isoformat_ms(now),
                },
                "filters": {"status": status_filter or "all", "includeMetadata": metadata},
                "totalRecords": len(records),
            },
            "statistics": export_statistics(records),
        },
        "submissions": records,
    }
    return JSONResponse(
        content=content,
        headers={
            "Content-Disposition": f'attachment; filename="{export_filename(days, status_filter, "json")}"',
            "Cache-Control": NO_CACHE,
            "X-Export-Count": str(len(records)),
        },
    )


async def apply_action(services: LeadServices, submission_id: str, action: str) -> dict[str, Any]:
    store = services.backup_store

    if action == "retry":
        updated = await store.update_webhook_status(
            submission_id,
            SubmissionStatus.PENDING.value,
            error="Manual retry requested",
            next_retry_at=utcnow(),
            manual=True,
        )
        if updated:
            return {"submissionId": submission_id, "success": True, "action": "marked_for_retry"}

    elif action == "mark_delivered":
        updated = await store.update_webhook_status(
            submission_id,
            SubmissionStatus.DELIVERED.value,
            error="Manually marked as delivered",
            manual=True,
        )
        if updated:
            return {"submissionId": submission_id, "success": True, "action": "marked_delivered"}

    else:
        submission = await store.get_submission(submission_id)
        if submission is not None:
            return {
                "submissionId": submission_id,
                "success": True,
                "action": "details_retrieved",
                "data": {
                    "timestamp": isoformat_ms(submission.timestamp),
                    "contact": submission.form_data,
                    "webhook": {
                        "status": submission.webhook_status,
                        "attempts": submission.attempts,
                        "error": submission.error,
                    },
                    "metadata": submission.submission_metadata,
                },
            }

    return {"submissionId": submission_id, "success": False, "error": "Submission not found"}


@router.post("/export")
async def manage_submissions(request: Request, services: LeadServices = Depends(get_services)):
    """
    Apply a recovery action to a list of submissions.

    Body: `{"submissionIds": [...], "action": "retry" | "mark_delivered" | "get_details"}`.
    Each id gets its own result; one missing id does not fail the batch.
    """
    try:
        body = await read_json_object(request)
        submission_ids = body.get("submissionIds")
        action = body.get("action")

        if not isinstance(submission_ids, list) or not submission_ids:
            raise APIError(status.HTTP_400_BAD_REQUEST, "submissionIds array is required")
        if action not in MANAGEMENT_ACTIONS:
            raise APIError(status.HTTP_400_BAD_REQUEST, "Action must be retry, mark_delivered, or get_details")

        results = []
        for submission_id in submission_ids:
            if not isinstance(submission_id, str):
                results.append({"submissionId": submission_id, "success": False, "error": "Invalid submission id"})
                continue
            results.append(await apply_action(services, submission_id, action))

        successful = sum(1 for r in results if r["success"])
        log.info("management_action_applied", action=action, total=len(results), successful=successful)

        return {
            "action": action,
            "results": results,
            "summary": {
                "total": len(submission_ids),
                "successful": successful,
                "failed": len(results) - successful,
            },
            "timestamp": isoformat_ms(utcnow()),
        }

    except APIError:
        raise
    except Exception as e:
        capture_exception(e)
        log.exception("management_action_failed", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Failed to process management action",
                "message": str(e),
                "timestamp": isoformat_ms(utcnow()),
            },
        )
