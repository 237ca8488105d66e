"""
Webhook payload builders for each lead form.

Metadata the browser did not send is filled in from request headers
so the CRM always receives the same shape.
"""
import re
import time
from typing import Any, Mapping, Optional

from mvl_leads import site_config
from mvl_leads.models.base import isoformat_ms, utcnow

CONTACT_SOURCE = "Mount Vernon Lofts Website Contact Form"
DEFAULT_LEAD_SCORE = 50
BASE_CONVERSION_VALUE = 10000

CONTACT_FIELDS = ("name", "email", "phone", "message", "isBroker", "preferredFloor")

MOBILE_PATTERN = re.compile(r"Mobile|Android|iPhone|iPad", re.IGNORECASE)
TABLET_PATTERN = re.compile(r"iPad|Android(?!.*Mobile)", re.IGNORECASE)


def calculate_conversion_value(lead_score: float) -> int:
    """Estimated conversion value for the sales team."""
    return round(BASE_CONVERSION_VALUE * lead_score / 100)


def default_session_data(headers: Mapping[str, str]) -> dict[str, Any]:
    referer = headers.get("referer") or "unknown"
    return {
        "pageUrl": referer,
        "referrer": None,
        "timeOnSite": 0,
        "pagesVisited": 1,
        "utmParams": {},
        "landingPage": referer,
        "sessionId": f"session_{int(time.time() * 1000)}",
    }


def default_device_info(headers: Mapping[str, str], timezone: str = "UTC") -> dict[str, Any]:
    user_agent = headers.get("user-agent") or ""
    accept_language = headers.get("accept-language") or ""
    return {
        "userAgent": user_agent or "unknown",
        "screenWidth": 0,
        "screenHeight": 0,
        "viewportWidth": 0,
        "viewportHeight": 0,
        "language": accept_language.split(",")[0] or "en-US",
        "timezone": timezone,
        "platform": "unknown",
        "isMobile": bool(MOBILE_PATTERN.search(user_agent)),
        "isTablet": bool(TABLET_PATTERN.search(user_agent)),
        "cookiesEnabled": True,
    }


def default_interaction_metrics(focus_order: list[str]) -> dict[str, Any]:
    return {
        "timeToComplete": 0,
        "fieldInteractionCount": 4,
        "fieldFocusOrder": focus_order,
        "hasTypingPauses": False,
        "formAbandonments": 0,
        "retryAttempts": 0,
    }


def metadata_timezone(metadata: Optional[dict[str, Any]]) -> str:
    device_info = (metadata or {}).get("deviceInfo")
    if isinstance(device_info, dict) and device_info.get("timezone"):
        return device_info["timezone"]
    return "UTC"


def pick_contact_fields(data: Mapping[str, Any]) -> dict[str, Any]:
    """The contact form fields, in both legacy and enhanced bodies."""
    return {field: data.get(field) for field in CONTACT_FIELDS}


def _timestamps() -> dict[str, str]:
    now = isoformat_ms(utcnow())
    return {"timestamp": now, "submittedAt": now, "processedAt": now}


def build_lead_metadata(
    metadata: Optional[dict[str, Any]],
    submission_id: str,
    headers: Mapping[str, str],
    geographic_data: dict[str, Any],
    focus_order: list[str],
    conversion_value: Optional[int] = None,
) -> dict[str, Any]:
    metadata = metadata or {}
    timezone = metadata_timezone(metadata)
    lead_score = metadata.get("leadScore")
    if lead_score is None:
        lead_score = DEFAULT_LEAD_SCORE
    return {
        "modalId": metadata.get("modalId") or "contact_modal_default",
        "modalTriggerSource": metadata.get("modalTriggerSource") or "unknown",
        "siteUrl": metadata.get("siteUrl") or headers.get("origin") or "unknown",
        "submissionId": submission_id,
        "sessionData": metadata.get("sessionData") or default_session_data(headers),
        "deviceInfo": metadata.get("deviceInfo") or default_device_info(headers, timezone),
        "geographicData": geographic_data,
        "interactionMetrics": metadata.get("interactionMetrics") or default_interaction_metrics(focus_order),
        "leadScore": lead_score,
        "conversionValue": (
            conversion_value if conversion_value is not None
            else calculate_conversion_value(lead_score)
        ),
    }


def build_contact_payload(
    form_data: dict[str, Any],
    metadata: Optional[dict[str, Any]],
    submission_id: str,
    headers: Mapping[str, str],
    geographic_data: dict[str, Any],
) -> dict[str, Any]:
    """Payload for POST /api/contact."""
    return {
        "contact": form_data,
        "metadata": build_lead_metadata(
            metadata,
            submission_id,
            headers,
            geographic_data,
            focus_order=["name", "email", "phone", "message"],
        ),
        **_timestamps(),
        "source": CONTACT_SOURCE,
        "version": "2.0",
    }


def document_message(document: str, form_data: Mapping[str, Any]) -> str:
    """The visitor's message, or a generated summary of the request."""
    if form_data.get("message"):
        return form_data["message"]
    doc = site_config.DOCUMENTS[document]
    message = f"{doc['request_label']}: {form_data.get(doc['interest_field'])}"
    if form_data.get("timeframe"):
        message += f" (Timeline: {form_data['timeframe']})"
    return message


def build_document_contact(document: str, form_data: Mapping[str, Any]) -> dict[str, Any]:
    doc = site_config.DOCUMENTS[document]
    if document == "floor_plans":
        preferred_floor = form_data.get(doc["interest_field"]) or ""
    else:
        preferred_floor = form_data.get("preferredFloor") or ""
    return {
        "name": form_data.get("name"),
        "email": form_data.get("email"),
        "phone": form_data.get("phone"),
        "message": document_message(document, form_data),
        "isBroker": form_data.get("isBroker") or "",
        "preferredFloor": preferred_floor,
    }


def build_document_payload(
    document: str,
    form_data: dict[str, Any],
    metadata: Optional[dict[str, Any]],
    submission_id: str,
    headers: Mapping[str, str],
) -> dict[str, Any]:
    """Payload for the brochure and floor plans requests."""
    doc = site_config.DOCUMENTS[document]
    interest_field = doc["interest_field"]
    return {
        "contact": build_document_contact(document, form_data),
        "metadata": build_lead_metadata(
            metadata,
            submission_id,
            headers,
            geographic_data={"anonymizedIp": "unknown", "timezone": "UTC"},
            focus_order=["name", "email", "phone", interest_field],
            conversion_value=BASE_CONVERSION_VALUE,
        ),
        interest_field: form_data.get(interest_field),
        "timeframe": form_data.get("timeframe"),
        "formType": doc["form_type"],
        **_timestamps(),
        "source": doc["source"],
        "version": "1.0",
    }


def build_open_house_payload(
    form_type: str,
    contact: dict[str, Any],
    form_key: str,
    form_data: dict[str, Any],
    event_meta: dict[str, Any],
    source: str,
) -> dict[str, Any]:
    """Payload for the open house sign-in and feedback forms."""
    return {
        "formType": form_type,
        "contact": contact,
        form_key: form_data,
        "eventMeta": event_meta,
        "timestamp": isoformat_ms(utcnow()),
        "source": source,
        "version": "2.0",
    }
