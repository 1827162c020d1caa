import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, AsyncIterator, ClassVar

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import attributes

from credisphere.models import Report, ChatMessage

logger = logging.getLogger(__name__)


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


class ReportNotFoundError(LookupError):
    """Raised when a report does not exist for the requesting owner."""
    pass


class ReportRepository:
    """Reports and chat transcripts, always scoped by owner."""

    # Per-report locks serialising read-modify-write of other_json_data.
    _locks: ClassVar[dict[str, asyncio.Lock]] = {}
    _lock_holders: ClassVar[dict[str, int]] = {}

    def __init__(self, db: AsyncSession):
        self.db = db

    @classmethod
    @asynccontextmanager
    async def report_lock(cls, report_id: str) -> AsyncIterator[None]:
        lock = cls._locks.setdefault(report_id, asyncio.Lock())
        cls._lock_holders[report_id] = cls._lock_holders.get(report_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            cls._lock_holders[report_id] -= 1
            if cls._lock_holders[report_id] <= 0:
                cls._lock_holders.pop(report_id, None)
                cls._locks.pop(report_id, None)

    async def rollback(self) -> None:
        await self.db.rollback()

    async def create_report(self, report_id: str, user_id: uuid.UUID, initial_context: str) -> Report:
        report = Report(report_id=report_id, user_id=user_id, initial_context=initial_context)
        self.db.add(report)
        await self.db.commit()
        await self.db.refresh(report)
        logger.info("Created report %s for user %s", report_id, user_id)
        return report

    async def get_report(self, report_id: str, user_id: uuid.UUID) -> Report | None:
        result = await self.db.execute(
            select(Report)
            .where(Report.report_id == report_id, Report.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _require_report(self, report_id: str, user_id: uuid.UUID) -> Report:
        report = await self.get_report(report_id, user_id)
        if not report:
            raise ReportNotFoundError(f"Report not found: {report_id}")
        return report

    async def update_initial_context(self, report_id: str, user_id: uuid.UUID, context: str) -> Report:
        report = await self._require_report(report_id, user_id)
        report.initial_context = context
        await self.db.commit()
        return report

    async def update_report_data(
        self,
        report_id: str,
        user_id: uuid.UUID,
        data: dict[str, Any],
        *,
        markdown: str | None = None,
    ) -> Report:
        """Merge ``data`` into the stored blob.

        Top-level keys already stored are kept unless ``data`` supplies the
        same key. The read and the write happen under the report's lock, so two
        updates to one report never lose each other's keys.
        """
        async with self.report_lock(report_id):
            report = await self._require_report(report_id, user_id)
            merged = dict(report.other_json_data or {})
            merged.update(data)
            report.other_json_data = merged
            attributes.flag_modified(report, "other_json_data")
            if markdown is not None:
                report.text_paragraph_markdown = markdown
            await self.db.commit()
            await self.db.refresh(report)
        return report

    async def list_reports_by_user(
        self,
        user_id: uuid.UUID,
        limit: int = 50,
        offset: int = 0,
        *,
        search: str | None = None,
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> list[Report]:
        """Newest first. ``search`` matches part of the report id, ignoring case;
        the date range includes the whole of ``to_date``."""
        query = select(Report).where(Report.user_id == user_id)
        if search:
            query = query.where(Report.report_id.icontains(search, autoescape=True))
        if from_date:
            query = query.where(Report.created_at >= _day_start(from_date))
        if to_date:
            query = query.where(Report.created_at < _day_start(to_date + timedelta(days=1)))
        result = await self.db.execute(
            query
            .order_by(Report.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def delete_report(self, report_id: str, user_id: uuid.UUID) -> bool:
        # Never delete by report id alone.
        result = await self.db.execute(
            delete(Report).where(Report.report_id == report_id, Report.user_id == user_id)
        )
        await self.db.commit()
        deleted = (result.rowcount or 0) > 0
        if deleted:
            logger.info("Deleted report %s for user %s", report_id, user_id)
        return deleted

    async def append_chat_message(
        self,
        report_id: str,
        user_id: uuid.UUID,
        content: str,
        is_user: bool,
        timestamp: datetime | None = None,
    ) -> ChatMessage:
        message = ChatMessage(
            report_id=report_id,
            user_id=user_id,
            content=content,
            is_user=is_user,
            timestamp=timestamp or datetime.now(timezone.utc),
        )
        self.db.add(message)
        await self.db.commit()
        await self.db.refresh(message)
        return message

    async def list_chat_messages(self, report_id: str, user_id: uuid.UUID) -> list[ChatMessage]:
        result = await self.db.execute(
            select(ChatMessage)
            .where(ChatMessage.report_id == report_id, ChatMessage.user_id == user_id)
            .order_by(ChatMessage.timestamp.asc())
        )
        return list(result.scalars().all())

    async def summarize_reports(self, user_id: uuid.UUID, recent: int = 5) -> dict[str, Any]:
        total = await self.db.scalar(
            select(func.count()).select_from(Report).where(Report.user_id == user_id)
        )
        # A report is complete once its analysis section is stored
        completed = await self.db.scalar(
            select(func.count())
            .select_from(Report)
            .where(
                Report.user_id == user_id,
                Report.other_json_data["analysis"].as_string().is_not(None),
            )
        )
        return {
            "total_reports": total or 0,
            "completed_reports": completed or 0,
            "pending_reports": (total or 0) - (completed or 0),
            "recent_reports": await self.list_reports_by_user(user_id, limit=recent),
        }
