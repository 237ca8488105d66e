"""
Helpers shared by the lead form routes.
"""
import re
import time
import uuid
from typing import Any

from fastapi import Request

from mvl_leads.logging_config import get_logger
from mvl_leads.routes.metrics import track_spam_blocked
from mvl_leads.services.spam_guard import spam_reason

log = get_logger(component="lead_routes")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(value: Any) -> bool:
    return isinstance(value, str) and EMAIL_PATTERN.match(value) is not None


def now_ms() -> int:
    return int(time.time() * 1000)


def new_submission_id(prefix: str = "submission") -> str:
    """e.g. submission_1760000000000_3f9c2a1b7"""
    return f"{prefix}_{now_ms()}_{uuid.uuid4().hex[:9]}"


def spam_submission_id() -> str:
    return f"spam_{now_ms()}"


def elapsed_ms(started: float) -> int:
    """Milliseconds since a time.perf_counter() reading."""
    return int((time.perf_counter() - started) * 1000)


async def read_json_object(request: Request) -> dict[str, Any]:
    """
    Parse the request body as a JSON object.

    Raises:
        ValueError: If the body is not valid JSON or not an object
    """
    body = await request.json()
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    return body


def detect_spam(body: dict[str, Any], form_type: str) -> bool:
    """Run the honeypot and timing checks on the posted `_spamCheck` block."""
    reason = spam_reason(body.get("_spamCheck"))
    if reason is None:
        return False
    track_spam_blocked(form_type, reason)
    log.warning("spam_submission_discarded", form_type=form_type, reason=reason)
    return True
