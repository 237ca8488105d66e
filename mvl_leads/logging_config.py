"""
Structured logging configuration using structlog.

Production logs are JSON lines; LOG_JSON=false switches to the console
renderer for local work. Lead email addresses are masked in every event.
"""
import logging
import sys

import structlog

from mvl_leads.config import settings

MASKED_KEYS = ("email", "lead_email", "reply_to")


def mask_email(value: str) -> str:
    """jordan@example.com -> j***@example.com"""
    local, sep, domain = value.partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"


def mask_contact_fields(logger, method_name, event_dict):
    for key in MASKED_KEYS:
        value = event_dict.get(key)
        if isinstance(value, str) and value:
            event_dict[key] = mask_email(value)
    return event_dict


def configure_logging(level: str = None, json_logs: bool = None):
    """Configure structlog and the standard library root logger."""
    level = logging.getLevelName((level or settings.LOG_LEVEL).upper())
    if not isinstance(level, int):
        level = logging.INFO
    json_logs = settings.LOG_JSON if json_logs is None else json_logs

    # uvicorn, sqlalchemy and arq log through the standard library
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            mask_contact_fields,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger(service="mvl-leads")


logger = configure_logging()


def get_logger(**context):
    """
    Get a logger with extra context bound.

    Usage:
        log = get_logger(component="backup_store")
        log.info("submission_backed_up", submission_id=submission_id)
    """
    return logger.bind(**context)
