from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func

from dhis2_gateway.models.job_log import JobLog, STATUS_QUEUED, STATUS_FAILED
from .base_repository import BaseRepository

DEFAULT_PAGE_SIZE = 20


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


@dataclass
class JobLogFilter:
    status: Optional[str] = None
    task_id: Optional[str] = None
    job_id: Optional[int] = None
    submitted_at: Optional[date] = None
    submitted_from: Optional[date] = None
    submitted_to: Optional[date] = None


class JobLogRepository(BaseRepository[JobLog]):
    """
    Durable store for submission logs.

    Every mutation is a single UPDATE keyed by id, so concurrent attempts
    on the same row are last-writer-wins.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(JobLog, session)

    async def create_job_log(self, payload: Dict[str, Any]) -> JobLog:
        """Insert a new submission in the queued state."""
        return await self.create({
            "payload": payload,
            "status": STATUS_QUEUED,
            "retry_count": 0,
        })

    async def get_by_task_id(self, task_id: str) -> Optional[JobLog]:
        return await self.get_by_field("task_id", task_id)

    async def update_task_id(self, log_id: int, task_id: str) -> int:
        return await self.update(log_id, {"task_id": task_id})

    async def update_dhis2_payload(self, log_id: int, dhis2_payload: Dict[str, Any]) -> int:
        return await self.update(log_id, {"dhis2_payload": dhis2_payload})

    async def update_status_and_errors(self, log_id: int, status: str, errors: Optional[str]) -> int:
        return await self.update(log_id, {
            "status": status,
            "errors": errors,
            "last_attempt_at": func.now(),
        })

    async def update_status_and_response(self, log_id: int, status: str, response: Optional[str]) -> int:
        return await self.update(log_id, {
            "status": status,
            "response": response,
            "last_attempt_at": func.now(),
        })

    async def update_errors(self, log_id: int, errors: str) -> int:
        return await self.update(log_id, {"errors": errors, "last_attempt_at": func.now()})

    async def update_response(self, log_id: int, response: str) -> int:
        return await self.update(log_id, {"response": response, "last_attempt_at": func.now()})

    async def increment_retry(self, log_id: int) -> int:
        """Bump retry_count in SQL and put the row back to queued."""
        try:
            query = (
                update(JobLog)
                .where(JobLog.id == log_id)
                .values(
                    retry_count=JobLog.retry_count + 1,
                    status=STATUS_QUEUED,
                    last_attempt_at=func.now(),
                )
            )
            result = await self.session.execute(query)
            return result.rowcount
        except Exception as e:
            self.logger.error(f"Error incrementing retry for job log {log_id}: {e}")
            await self.session.rollback()
            raise

    async def list_failed(self) -> List[JobLog]:
        try:
            query = (
                select(JobLog)
                .where(JobLog.status == STATUS_FAILED)
                .order_by(JobLog.submitted_at.desc())
            )
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except Exception as e:
            self.logger.error(f"Error listing failed job logs: {e}")
            raise

    async def list_orphaned(self, older_than: datetime, limit: int = 100) -> List[JobLog]:
        """Queued rows that never got a task id, e.g. after an enqueue failure."""
        try:
            query = (
                select(JobLog)
                .where(
                    JobLog.status == STATUS_QUEUED,
                    JobLog.task_id.is_(None),
                    JobLog.submitted_at < older_than,
                )
                .order_by(JobLog.submitted_at)
                .limit(limit)
            )
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except Exception as e:
            self.logger.error(f"Error listing orphaned job logs: {e}")
            raise

    def _filter_conditions(self, filters: JobLogFilter) -> list:
        conditions = []
        if filters.status:
            conditions.append(JobLog.status == filters.status)
        if filters.task_id:
            conditions.append(JobLog.task_id == filters.task_id)
        if filters.job_id is not None:
            conditions.append(JobLog.id == filters.job_id)
        # Dates are whole days: submitted_at matches that day, the range is inclusive
        if filters.submitted_at:
            conditions.append(JobLog.submitted_at >= _day_start(filters.submitted_at))
            conditions.append(JobLog.submitted_at < _day_start(filters.submitted_at + timedelta(days=1)))
        if filters.submitted_from:
            conditions.append(JobLog.submitted_at >= _day_start(filters.submitted_from))
        if filters.submitted_to:
            conditions.append(JobLog.submitted_at < _day_start(filters.submitted_to + timedelta(days=1)))
        return conditions

    async def get_logs(
        self,
        filters: JobLogFilter = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Tuple[List[JobLog], int]:
        """Filtered page of logs, newest first, plus the total match count."""
        filters = filters or JobLogFilter()
        page = max(page, 1)
        if page_size <= 0:
            page_size = DEFAULT_PAGE_SIZE

        try:
            conditions = self._filter_conditions(filters)
            count_query = select(func.count(JobLog.id)).where(*conditions)
            total = (await self.session.execute(count_query)).scalar() or 0

            query = (
                select(JobLog)
                .where(*conditions)
                .order_by(JobLog.submitted_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            result = await self.session.execute(query)
            return list(result.scalars().all()), total
        except Exception as e:
            self.logger.error(f"Error querying job logs: {e}")
            raise

    async def purge_before(self, cutoff: datetime) -> int:
        """Delete logs submitted before the cutoff."""
        try:
            result = await self.session.execute(delete(JobLog).where(JobLog.submitted_at < cutoff))
            return result.rowcount
        except Exception as e:
            self.logger.error(f"Error purging job logs before {cutoff}: {e}")
            await self.session.rollback()
            raise
