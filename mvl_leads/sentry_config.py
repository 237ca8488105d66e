"""
Sentry configuration for error tracking.

Captures unhandled exceptions and failed lead deliveries.
"""
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from mvl_leads.config import Settings, settings as default_settings
from mvl_leads.logging_config import get_logger

log = get_logger(component="sentry")

# Keys never forwarded to Sentry; lead contact details stay in our own store
SCRUBBED_KEYS = ("email", "phone", "name", "message")


def configure_sentry(settings: Settings = default_settings):
    """
    Initialize Sentry with FastAPI and SQLAlchemy integrations.

    Requires SENTRY_DSN to be set.
    """
    dsn = settings.SENTRY_DSN

    if not dsn:
        log.info("sentry_disabled", reason="SENTRY_DSN not set")
        return

    sentry_sdk.init(
        dsn=dsn,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
        ],
        before_send=scrub_lead_data,
        # Sample rate: capture 10% of transactions for performance monitoring
        traces_sample_rate=0.1,
        environment=settings.ENVIRONMENT,
        release=settings.APP_VERSION,
        send_default_pii=False,
    )

    log.info("sentry_initialized", environment=settings.ENVIRONMENT)


def scrub_lead_data(event, hint):
    """Drop contact fields from request bodies before the event leaves the process."""
    request = event.get("request") or {}
    data = request.get("data")
    if isinstance(data, dict):
        for container in (data, data.get("formData") or {}):
            if isinstance(container, dict):
                for key in SCRUBBED_KEYS:
                    if key in container:
                        container[key] = "[scrubbed]"
    return event


def capture_exception(exc_info=None):
    """
    Capture an exception to Sentry.

    Usage:
        try:
            # some code
        except Exception:
            capture_exception()
    """
    if sentry_sdk.get_client().is_active():
        sentry_sdk.capture_exception(exc_info)


def capture_message(message, level="info"):
    """
    Capture a message to Sentry.

    Usage:
        capture_message("Circuit breaker tripped", level="warning")
    """
    if sentry_sdk.get_client().is_active():
        sentry_sdk.capture_message(message, level=level)
