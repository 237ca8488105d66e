"""
Email Fallback

Sends notification emails when webhook delivery fails, plus the
document lead and delivery emails for the brochure and floor plan
forms. Sending never raises to the caller.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import aiosmtplib
from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from mvl_leads import site_config
from mvl_leads.config import Settings, split_recipients
from mvl_leads.logging_config import get_logger
from mvl_leads.models.base import as_utc, utcnow
from mvl_leads.routes.metrics import track_email

log = get_logger(component="email_fallback")

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"

WEBHOOK_FAILURE_SUBJECT = "🚨 MVL Contact Form - Webhook Failure Alert"


def header_value(value: Any) -> str:
    """Collapse CR/LF runs to a single space; header values are single-line."""
    return " ".join(str(value).splitlines()).strip()


@dataclass
class EmailConfig:
    smtp_host: str
    smtp_port: int
    smtp_secure: bool
    smtp_user: str
    smtp_password: str
    from_email: str
    from_name: str
    recipients: list[str]
    technical_recipients: list[str]
    sales_recipients: list[str]

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["EmailConfig"]:
        """Build the SMTP config, or None when fallback is disabled or credentials are missing."""
        user = settings.GMAIL_USER or settings.SMTP_USER
        password = settings.GMAIL_APP_PASSWORD or settings.SMTP_PASSWORD

        if not settings.EMAIL_FALLBACK_ENABLED or not user or not password:
            return None

        recipients = split_recipients(settings.EMAIL_RECIPIENTS) or [user]
        return cls(
            smtp_host=settings.SMTP_HOST or "smtp.gmail.com",
            smtp_port=settings.SMTP_PORT,
            smtp_secure=settings.SMTP_SECURE,
            smtp_user=user,
            smtp_password=password,
            from_email=settings.FROM_EMAIL or user,
            from_name=settings.FROM_NAME or "Mount Vernon Lofts",
            recipients=recipients,
            technical_recipients=split_recipients(settings.EMAIL_RECIPIENTS_TECHNICAL) or recipients,
            sales_recipients=split_recipients(settings.EMAIL_RECIPIENTS_SALES) or recipients,
        )


@dataclass
class NotificationData:
    submission_id: str
    form_data: dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)
    webhook_error: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    source_label: str = "Contact Form"


EmailSender = Callable[[EmailMessage, EmailConfig], Awaitable[Any]]


async def smtp_send(message: EmailMessage, config: EmailConfig):
    """Deliver one message over SMTP (implicit TLS when SMTP_SECURE, else STARTTLS if offered)."""
    return await aiosmtplib.send(
        message,
        hostname=config.smtp_host,
        port=config.smtp_port,
        username=config.smtp_user,
        password=config.smtp_password,
        use_tls=config.smtp_secure,
        timeout=30,
    )


def format_timestamp(value) -> str:
    value = as_utc(value)
    if value is None:
        return ""
    return value.strftime("%B %d, %Y at %I:%M %p UTC")


def build_template_env() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(["html"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["timestamp"] = format_timestamp
    env.filters["or_unspecified"] = lambda value: value if value else "Not specified"
    return env


class EmailFallback:
    """
    Templated notification emails over SMTP.

    Configuration is read lazily from settings on first use. Every
    public send returns False instead of raising when email is
    unconfigured or the SMTP exchange fails.
    """

    def __init__(
        self,
        settings: Settings,
        sender: Optional[EmailSender] = None,
        template_env: Optional[Environment] = None,
    ):
        self.settings = settings
        self.sender = sender or smtp_send
        self.template_env = template_env or build_template_env()
        self._config: Optional[EmailConfig] = None
        self._config_loaded = False

    @property
    def config(self) -> Optional[EmailConfig]:
        if not self._config_loaded:
            self._config = EmailConfig.from_settings(self.settings)
            self._config_loaded = True
            if self._config is None:
                log.info("email_fallback_disabled")
        return self._config

    def is_configured(self) -> bool:
        return self.config is not None

    def render(self, template: str, **context) -> tuple[str, str]:
        """Render the .txt and .html variants of a template."""
        context.setdefault("contact", site_config.CONTACT)
        text = self.template_env.get_template(f"{template}.txt").render(**context).strip()
        html = self.template_env.get_template(f"{template}.html").render(**context)
        return text, html

    def build_message(
        self,
        to: list[str],
        subject: str,
        text: str,
        html: str,
        headers: dict[str, str],
        reply_to: Optional[str] = None,
    ) -> EmailMessage:
        config = self.config
        message = EmailMessage()
        message["From"] = formataddr((header_value(config.from_name), header_value(config.from_email)))
        message["To"] = ", ".join(header_value(address) for address in to)
        message["Subject"] = header_value(subject)
        message["Message-ID"] = make_msgid(domain="mtvernonlofts.com")
        if reply_to:
            message["Reply-To"] = header_value(reply_to)
        for name, value in headers.items():
            message[name] = header_value(value)
        message.set_content(text)
        message.add_alternative(html, subtype="html")
        return message

    async def _send(
        self,
        email_type: str,
        to: list[str],
        subject: str,
        template: str,
        context: dict[str, Any],
        headers: dict[str, str],
        reply_to: Optional[str] = None,
        submission_id: Optional[str] = None,
    ) -> bool:
        if not self.is_configured():
            log.info("email_skipped", email_type=email_type, submission_id=submission_id)
            return False

        try:
            text, html = self.render(template, **context)
            message = self.build_message(to, subject, text, html, headers, reply_to=reply_to)
            await self.sender(message, self.config)
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError, TemplateError, ValueError) as e:
            track_email(email_type, sent=False)
            log.error(
                "email_send_failed",
                email_type=email_type,
                submission_id=submission_id,
                error=str(e),
            )
            return False

        track_email(email_type, sent=True)
        log.info(
            "email_sent",
            email_type=email_type,
            submission_id=submission_id,
            recipients=len(to),
            reply_to=reply_to,
        )
        return True

    async def send_webhook_failure_notification(self, data: NotificationData) -> bool:
        """Alert the technical list that a submission could not be delivered."""
        config = self.config
        return await self._send(
            "webhook_failure",
            to=config.technical_recipients if config else [],
            subject=WEBHOOK_FAILURE_SUBJECT,
            template="webhook_failure",
            context={"data": data, "form": data.form_data},
            headers={
                "X-Priority": "1",
                "X-MSMail-Priority": "High",
                "X-MVL-Alert": "webhook-failure",
                "X-Submission-ID": data.submission_id,
            },
            submission_id=data.submission_id,
        )

    async def send_lead_notification(self, data: NotificationData) -> bool:
        """Send the lead straight to the sales list, replying to the lead."""
        config = self.config
        name = data.form_data.get("name", "")
        return await self._send(
            "lead_notification",
            to=config.sales_recipients if config else [],
            subject=f"✨ New MVL Inquiry - {name}",
            template="lead_notification",
            context={"data": data, "form": data.form_data},
            headers={
                "X-Priority": "2",
                "X-MSMail-Priority": "Normal",
                "X-MVL-Lead": "contact-form",
                "X-Submission-ID": data.submission_id,
            },
            reply_to=data.form_data.get("email"),
            submission_id=data.submission_id,
        )

    async def send_document_lead_notification(self, document: str, data: NotificationData) -> bool:
        """Notify sales of a brochure or floor plans request."""
        doc = site_config.DOCUMENTS[document]
        config = self.config
        form = data.form_data
        interest = form.get(doc["interest_field"], "")
        return await self._send(
            f"{document}_lead",
            to=config.sales_recipients if config else [],
            subject=doc["lead_subject"](form.get("name", "")),
            template="document_lead",
            context={
                "data": data,
                "form": form,
                "doc": doc,
                "interest_label": site_config.interest_label(document, interest),
                "interest_description": site_config.interest_description(document, interest),
                "timeline": site_config.timeline_description(form.get("timeframe")),
            },
            headers={
                "X-Priority": "2",
                "X-MSMail-Priority": "Normal",
                "X-MVL-Lead": doc["lead_header_value"],
                "X-Submission-ID": data.submission_id,
            },
            reply_to=form.get("email"),
            submission_id=data.submission_id,
        )

    async def send_document_delivery(self, document: str, data: NotificationData) -> bool:
        """Email the visitor a link to the requested PDF."""
        doc = site_config.DOCUMENTS[document]
        form = data.form_data
        interest = form.get(doc["interest_field"], "")
        return await self._send(
            f"{document}_delivery",
            to=[form.get("email", "")],
            subject=doc["delivery_subject"](interest),
            template="document_delivery",
            context={
                "data": data,
                "form": form,
                "doc": doc,
                "pdf_url": site_config.CONTACT["documents_pdf_url"],
            },
            headers={
                "X-Priority": "3",
                "X-MSMail-Priority": "Normal",
                "X-MVL-Delivery": doc["delivery_header_value"],
                "X-Submission-ID": data.submission_id,
            },
            submission_id=data.submission_id,
        )
