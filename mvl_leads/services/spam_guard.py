"""
Spam Guard

Honeypot and submission-timing checks plus a per-IP fixed-window rate limiter.
"""
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional


SPAM_FIELD_NAME = "website"
MIN_SUBMISSION_TIME_MS = 3000

RATE_LIMIT_MAX_REQUESTS = 5
RATE_LIMIT_WINDOW_SECONDS = 15 * 60

# First match wins
CLIENT_IP_HEADERS = (
    "cf-connecting-ip",
    "x-real-ip",
    "x-forwarded-for",
    "x-client-ip",
)


def validate_honeypot(value: Any) -> bool:
    """Return True (spam) when the hidden honeypot field carries a non-empty string."""
    return isinstance(value, str) and len(value) > 0


def validate_submission_time(rendered_at_ms: Any, now_ms: Optional[float] = None) -> bool:
    """
    Return True (spam) when the form was submitted too quickly.

    Args:
        rendered_at_ms: Epoch milliseconds when the form was rendered
        now_ms: Current epoch milliseconds (defaults to the wall clock)

    Returns:
        True if submitted under 3 seconds after render, or if the render
        time lies in the future. Missing or unparseable values are not spam.
    """
    if rendered_at_ms is None or isinstance(rendered_at_ms, bool):
        return False
    try:
        rendered = float(rendered_at_ms)
    except (TypeError, ValueError):
        return False

    if now_ms is None:
        now_ms = time.time() * 1000

    if rendered > now_ms:
        return True
    return now_ms - rendered < MIN_SUBMISSION_TIME_MS


def get_client_ip(headers: Mapping[str, str]) -> str:
    """Best-effort client IP from proxy headers, falling back to "unknown"."""
    for header in CLIENT_IP_HEADERS:
        value = headers.get(header)
        if value:
            first = value.split(",")[0].strip()
            if first:
                return first
    return "unknown"


def spam_reason(spam_check: Any, now_ms: Optional[float] = None) -> Optional[str]:
    """
    Evaluate the `_spamCheck` block posted by the client forms.

    Returns:
        "honeypot" or "timing" for a spam verdict, None otherwise.
    """
    if not isinstance(spam_check, dict):
        return None
    if validate_honeypot(spam_check.get(SPAM_FIELD_NAME)):
        return "honeypot"
    if validate_submission_time(spam_check.get("_renderTimestamp"), now_ms=now_ms):
        return "timing"
    return None


def is_spam(spam_check: Any, now_ms: Optional[float] = None) -> bool:
    return spam_reason(spam_check, now_ms=now_ms) is not None


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: int = 0


class RateLimiter:
    """
    Per-IP rate limiter with fixed 15-minute windows.

    State is held in process memory and lost on restart; it does not
    coordinate across instances.
    """

    def __init__(
        self,
        limit: int = RATE_LIMIT_MAX_REQUESTS,
        window: int = RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window = window
        self._clock = clock
        self._entries: dict[str, dict[str, float]] = {}

    def check(self, ip: str) -> RateLimitResult:
        """
        Count a request from `ip` against its current window.

        Returns:
            RateLimitResult; `allowed` is False from the (limit + 1)th
            request in a window onwards.
        """
        now = self._clock()
        self._prune(now)

        entry = self._entries.get(ip)
        if entry is None or now - entry["window_start"] > self.window:
            self._entries[ip] = {"count": 1, "window_start": now}
            return RateLimitResult(allowed=True, remaining=self.limit - 1)

        if entry["count"] >= self.limit:
            retry_after = int(self.window - (now - entry["window_start"]))
            return RateLimitResult(allowed=False, remaining=0, retry_after=max(retry_after, 1))

        entry["count"] += 1
        return RateLimitResult(allowed=True, remaining=self.limit - int(entry["count"]))

    def get_current_count(self, ip: str) -> int:
        """Requests counted for `ip` in its live window."""
        entry = self._entries.get(ip)
        if entry is None or self._clock() - entry["window_start"] > self.window:
            return 0
        return int(entry["count"])

    def reset(self) -> None:
        self._entries.clear()

    def _prune(self, now: float) -> None:
        expired = [
            ip for ip, entry in self._entries.items()
            if now - entry["window_start"] > self.window
        ]
        for ip in expired:
            del self._entries[ip]
