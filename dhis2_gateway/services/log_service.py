from datetime import datetime
from typing import List, Optional, Tuple

from dhis2_gateway.models.job_log import JobLog
from dhis2_gateway.repositories.job_log_repository import JobLogFilter
from dhis2_gateway.schemas.job_log import JobLogQueryParams
from .base_service import BaseService


class LogService(BaseService):
    """Read and housekeeping operations over submission logs."""

    async def list_logs(self, params: JobLogQueryParams) -> Tuple[List[JobLog], int]:
        filters = JobLogFilter(
            status=params.status,
            task_id=params.task_id,
            job_id=params.job_id,
            submitted_at=params.submitted_at,
            submitted_from=params.submitted_from,
            submitted_to=params.submitted_to,
        )
        return await self.job_log_repo.get_logs(filters, page=params.page, page_size=params.page_size)

    async def get_log(self, log_id: int) -> Optional[JobLog]:
        return await self.job_log_repo.get_by_id(log_id)

    async def delete_log(self, log_id: int) -> bool:
        deleted = await self.job_log_repo.delete(log_id)
        if deleted:
            await self.commit()
            self.logger.info("Job log deleted", log_id=log_id)
        return deleted

    async def purge_logs(self, cutoff: datetime) -> int:
        purged = await self.job_log_repo.purge_before(cutoff)
        await self.commit()
        self.logger.info("Job logs purged", cutoff=cutoff.isoformat(), count=purged)
        return purged
