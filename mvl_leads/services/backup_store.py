"""
Backup Store

Best-effort persistence of every lead submission, independent of
webhook outcome, used for status reporting and manual recovery.
"""
import csv
import io
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Optional

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mvl_leads.logging_config import get_logger
from mvl_leads.models.base import as_utc, isoformat_ms, utcnow
from mvl_leads.models.submission import Submission, SubmissionStatus

log = get_logger(component="backup_store")

MAX_AUTOMATIC_ATTEMPTS = 5

CSV_HEADERS = [
    "Submission ID",
    "Timestamp",
    "Name",
    "Email",
    "Phone",
    "Message",
    "Is Broker",
    "Preferred Floor",
    "Webhook Status",
    "Attempts",
    "Last Attempt",
    "Error",
]


@dataclass
class BackupSummary:
    total_submissions: int = 0
    pending_webhooks: int = 0
    failed_webhooks: int = 0
    delivered_webhooks: int = 0
    oldest_pending: Optional[datetime] = None
    newest_submission: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalSubmissions": self.total_submissions,
            "pendingWebhooks": self.pending_webhooks,
            "failedWebhooks": self.failed_webhooks,
            "deliveredWebhooks": self.delivered_webhooks,
            "oldestPending": isoformat_ms(self.oldest_pending),
            "newestSubmission": isoformat_ms(self.newest_submission),
        }


def window_start(days: int, today: Optional[date] = None) -> date:
    """First calendar day of a "last N days" window (today counts as day one)."""
    today = today or utcnow().date()
    return today - timedelta(days=max(days, 1) - 1)


class BackupStore:
    """Submission backup store on top of the `submissions` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def store_submission(
        self,
        submission_id: str,
        form_data: dict[str, Any],
        status: str = SubmissionStatus.PENDING.value,
        metadata: Optional[dict[str, Any]] = None,
        form_type: str = "contact",
        payload: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        Persist a new submission record.

        Returns:
            True if stored; failures (duplicate ids included) are logged
            and reported as False rather than raised.
        """
        now = utcnow()
        record = Submission(
            id=submission_id,
            timestamp=now,
            created_on=now.date(),
            form_type=form_type,
            form_data=form_data,
            webhook_status=status,
            attempts=0,
            submission_metadata=metadata,
            webhook_payload=payload,
        )

        try:
            async with self.session_factory() as session:
                session.add(record)
                await session.commit()
        except SQLAlchemyError as e:
            log.error("backup_store_failed", submission_id=submission_id, error=str(e))
            return False

        log.info("submission_backed_up", submission_id=submission_id, form_type=form_type)
        return True

    async def update_webhook_status(
        self,
        submission_id: str,
        status: str,
        error: Optional[str] = None,
        next_retry_at: Optional[datetime] = None,
        manual: bool = False,
    ) -> bool:
        """
        Record a delivery attempt against a submission.

        Runs as a single UPDATE that increments `attempts`, so concurrent
        attempts never lose each other's counts. Automatic updates never
        touch delivered rows and never move a failed row back to pending;
        `manual=True` is the administrative path that may do either.

        Returns:
            True if a row was updated, False otherwise.
        """
        values = {
            "webhook_status": status,
            "attempts": Submission.attempts + 1,
            "last_attempt_at": utcnow(),
            "next_retry_at": next_retry_at,
        }
        if error is not None:
            values["error"] = error

        stmt = update(Submission).where(Submission.id == submission_id)
        if not manual:
            if status == SubmissionStatus.PENDING.value:
                allowed_from = [SubmissionStatus.PENDING.value]
            else:
                allowed_from = [SubmissionStatus.PENDING.value, SubmissionStatus.FAILED.value]
            stmt = stmt.where(Submission.webhook_status.in_(allowed_from))
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            log.error("backup_update_failed", submission_id=submission_id, error=str(e))
            return False

        if result.rowcount == 0:
            log.warning(
                "backup_record_not_updated",
                submission_id=submission_id,
                status=status,
                reason="not found" if manual else "not found or status transition not allowed",
            )
            return False

        return True

    async def get_submission(self, submission_id: str) -> Optional[Submission]:
        async with self.session_factory() as session:
            return await session.get(Submission, submission_id)

    async def get_pending_webhooks(self, max_age: timedelta = timedelta(hours=24)) -> list[Submission]:
        """
        Submissions awaiting delivery.

        Returns:
            Rows still pending, plus failed rows with fewer than five
            attempts that arrived within `max_age`.
        """
        cutoff = utcnow() - max_age
        stmt = (
            select(Submission)
            .where(
                or_(
                    Submission.webhook_status == SubmissionStatus.PENDING.value,
                    (Submission.webhook_status == SubmissionStatus.FAILED.value)
                    & (Submission.timestamp > cutoff)
                    & (Submission.attempts < MAX_AUTOMATIC_ATTEMPTS),
                )
            )
            .order_by(Submission.timestamp)
        )

        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            log.error("pending_webhooks_query_failed", error=str(e))
            return []

    async def get_backup_summary(self, days: int = 7) -> BackupSummary:
        """Counts by status over the last `days` calendar days."""
        stmt = select(
            func.count(Submission.id),
            func.sum(case((Submission.webhook_status == SubmissionStatus.PENDING.value, 1), else_=0)),
            func.sum(case((Submission.webhook_status == SubmissionStatus.FAILED.value, 1), else_=0)),
            func.sum(case((Submission.webhook_status == SubmissionStatus.DELIVERED.value, 1), else_=0)),
            func.min(case((Submission.webhook_status == SubmissionStatus.PENDING.value, Submission.timestamp))),
            func.max(Submission.timestamp),
        ).where(Submission.created_on >= window_start(days))

        try:
            async with self.session_factory() as session:
                row = (await session.execute(stmt)).one()
        except SQLAlchemyError as e:
            log.error("backup_summary_failed", error=str(e))
            return BackupSummary()

        total, pending, failed, delivered, oldest_pending, newest = row
        return BackupSummary(
            total_submissions=total or 0,
            pending_webhooks=pending or 0,
            failed_webhooks=failed or 0,
            delivered_webhooks=delivered or 0,
            oldest_pending=as_utc(oldest_pending),
            newest_submission=as_utc(newest),
        )

    async def get_all_submissions(self, days: int = 30, status: Optional[str] = None) -> list[Submission]:
        """Submissions from the last `days` calendar days, newest first."""
        stmt = select(Submission).where(Submission.created_on >= window_start(days))
        if status:
            stmt = stmt.where(Submission.webhook_status == status)
        stmt = stmt.order_by(Submission.timestamp.desc())

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def export_as_csv(self, days: int = 30, status: Optional[str] = None) -> str:
        """Render the last `days` of submissions as CSV with every cell quoted."""
        submissions = await self.get_all_submissions(days, status=status)
        return submissions_to_csv(submissions)

    async def cleanup_old_backups(self, retention_days: int = 30) -> int:
        """
        Delete submissions whose day falls outside the retention window.

        Returns:
            Number of rows deleted.
        """
        cutoff = utcnow().date() - timedelta(days=retention_days)
        stmt = (
            delete(Submission)
            .where(Submission.created_on < cutoff)
            .execution_options(synchronize_session=False)
        )

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()

        deleted = result.rowcount or 0
        log.info("old_backups_cleaned", deleted=deleted, retention_days=retention_days)
        return deleted


def submissions_to_csv(submissions: list[Submission]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for entry in submissions:
        form = entry.form_data or {}
        writer.writerow([
            entry.id,
            isoformat_ms(entry.timestamp),
            form.get("name", ""),
            form.get("email", ""),
            form.get("phone", ""),
            form.get("message", ""),
            _csv_value(form.get("isBroker")),
            form.get("preferredFloor") or "",
            entry.webhook_status,
            entry.attempts,
            isoformat_ms(entry.last_attempt_at) or "",
            entry.error or "",
        ])
    return buffer.getvalue().rstrip("\n")


def _csv_value(value: Any) -> str:
    # false and empty both export as a blank cell
    if not value:
        return ""
    if value is True:
        return "true"
    return str(value)
