import json
from datetime import datetime
from typing import Callable, Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from dhis2_gateway.core.config import settings
from dhis2_gateway.core.database import AsyncSessionLocal
from dhis2_gateway.core.dhis2_client import AggregateDelivery
from dhis2_gateway.core.exceptions import MalformedTaskError, PersistenceError
from dhis2_gateway.core.logging import get_logger
from dhis2_gateway.core.task_queue import TaskInfo
from dhis2_gateway.models.job_log import STATUS_FAILED
from dhis2_gateway.repositories import JobLogRepository, MappingRepository
from dhis2_gateway.schemas.aggregate import AggregateRequest
from dhis2_gateway.services.payload_transformer import Clock, to_dhis2_payload
from .aggregate_task import parse_aggregate_task

logger = get_logger(__name__)


class AggregateTaskProcessor:
    """
    Handles one ``aggregate:send`` attempt.

    The job log row is reloaded and the DHIS2 payload rebuilt from the
    original request with the current mapping table. A delivery failure is
    recorded on the row and does not raise. Only undecodable tasks and
    database failures propagate, which sends the task through broker retry.
    """

    def __init__(
        self,
        delivery: AggregateDelivery,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        save_response: Optional[bool] = None,
        mapping_scheme: Optional[str] = None,
        clock: Optional[Clock] = None,
    ):
        self.delivery = delivery
        self.session_factory = session_factory
        self.save_response = settings.SAVE_RESPONSE if save_response is None else save_response
        self.mapping_scheme = mapping_scheme or settings.AGGREGATE_MAPPING_SCHEME
        self.clock = clock or datetime.utcnow

    async def process(self, info: TaskInfo) -> str:
        """Run one attempt and return the status written to the job log."""
        task = parse_aggregate_task(info)
        try:
            request = AggregateRequest(**task.payload)
        except ValidationError as e:
            raise MalformedTaskError(f"task {info.id} carries an invalid request: {e}") from e

        async with self.session_factory() as session:
            job_logs = JobLogRepository(session)
            job_log = await job_logs.get_by_id(task.log_id)
            if job_log is None:
                raise PersistenceError(f"job log {task.log_id} not found")

            mappings = await MappingRepository(session).get_mappings_by_scheme(self.mapping_scheme)
            payload = to_dhis2_payload(request, mappings, self.clock)

            try:
                if job_log.retry_count > 0:
                    await job_logs.increment_retry(job_log.id)
                else:
                    await job_logs.update_dhis2_payload(job_log.id, payload.model_dump())
                await session.commit()
            except Exception as e:
                logger.error(f"Failed to record attempt: {e}", log_id=job_log.id)
                await session.rollback()

            try:
                result = await self.delivery.send_aggregate_data_values(payload.model_dump(exclude_none=True))
            except Exception as e:
                logger.error("Error sending aggregate data values to DHIS2", log_id=job_log.id, error=str(e))
                await self._record(session, job_logs, job_log.id, STATUS_FAILED, errors=str(e))
                return STATUS_FAILED

            status = str((result or {}).get("status") or "success")
            response = json.dumps(result, default=str) if result else None
            await self._record(session, job_logs, job_log.id, status, response=response)
            logger.info("Aggregate data values delivered", log_id=job_log.id, task_id=info.id, status=status)
            return status

    async def _record(
        self,
        session: AsyncSession,
        job_logs: JobLogRepository,
        log_id: int,
        status: str,
        errors: Optional[str] = None,
        response: Optional[str] = None,
    ):
        try:
            await job_logs.update_status_and_errors(log_id, status, errors)
            if self.save_response and response:
                await job_logs.update_response(log_id, response)
            await session.commit()
        except Exception as e:
            raise PersistenceError(f"failed to record outcome for job log {log_id}: {e}") from e
