"""
Submission model - backup record of every lead form submission.
"""
from datetime import date, datetime
from typing import Any, Optional
import enum

from sqlalchemy import JSON, Date, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mvl_leads.models.base import Base, isoformat_ms, utcnow


class SubmissionStatus(str, enum.Enum):
    """Webhook delivery status of a submission."""
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class Submission(Base):
    """
    Backup record of a lead submission.

    Rows are created with status pending and mutated by atomic
    UPDATE statements as webhook delivery is attempted. `created_on`
    is the UTC calendar day the submission arrived and is used for
    the "last N days" windows and retention cleanup.
    """
    __tablename__ = "submissions"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    created_on: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    form_type: Mapped[str] = mapped_column(String(50), default="contact", nullable=False)
    form_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    webhook_status: Mapped[str] = mapped_column(
        String(20), default=SubmissionStatus.PENDING.value, nullable=False, index=True
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    submission_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)
    next_retry_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    webhook_payload: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    def to_dict(self, include_payload: bool = False) -> dict[str, Any]:
        """Serialize to the camelCase record shape used by the export API."""
        data = {
            "id": self.id,
            "timestamp": isoformat_ms(self.timestamp),
            "formType": self.form_type,
            "formData": self.form_data,
            "webhookStatus": self.webhook_status,
            "attempts": self.attempts,
            "lastAttemptAt": isoformat_ms(self.last_attempt_at),
            "error": self.error,
            "metadata": self.submission_metadata,
            "nextRetryAt": isoformat_ms(self.next_retry_at),
        }
        if include_payload:
            data["webhookPayload"] = self.webhook_payload
        return data

    def __repr__(self):
        return f"<Submission(id={self.id}, status={self.webhook_status}, attempts={self.attempts})>"
