from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from dhis2_gateway.core.config import settings
from dhis2_gateway.core.exceptions import ClientInputError, EnqueueError, PersistenceError
from dhis2_gateway.core.request_schema import validate_aggregate_request
from dhis2_gateway.core.task_queue import TaskQueueClient
from dhis2_gateway.schemas.aggregate import AggregateRequest, DataValueSetPayload
from dhis2_gateway.services.payload_transformer import Clock, to_dhis2_payload
from dhis2_gateway.workers.aggregate_task import new_aggregate_task
from .base_service import BaseService


@dataclass
class SubmissionResult:
    job_log_id: int
    task_id: str
    payload: DataValueSetPayload


class SubmissionService(BaseService):
    """Accepts aggregate submissions: validate, log, enqueue, link."""

    def __init__(
        self,
        session: AsyncSession,
        task_queue: Optional[TaskQueueClient] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(session, task_queue)
        self.clock = clock or datetime.utcnow

    async def submit(self, document: Any) -> SubmissionResult:
        """
        Queue one aggregate submission for delivery.

        The JobLog row is committed before the task is enqueued. If the
        enqueue fails, the row stays ``queued`` without a task id and
        ``EnqueueError`` is raised.

        Raises:
            ClientInputError: the document violates the request schema
            PersistenceError: the JobLog could not be written
            EnqueueError: the broker did not accept the task
        """
        violations = validate_aggregate_request(document)
        if violations:
            raise ClientInputError("Request does not match required schema", violations)

        try:
            request = AggregateRequest(**document)
        except ValidationError as e:
            raise ClientInputError("Could not parse validated data", [str(e)]) from e

        canonical = request.model_dump(exclude_none=True)

        try:
            mappings = await self.mapping_repo.get_mappings_by_scheme(settings.AGGREGATE_MAPPING_SCHEME)
        except Exception as e:
            raise PersistenceError(f"Failed to load mappings: {e}") from e
        payload = to_dhis2_payload(request, mappings, self.clock)

        try:
            job_log = await self.job_log_repo.create_job_log(canonical)
            await self.commit()
        except Exception as e:
            self.logger.error(f"Could not create job log: {e}")
            raise PersistenceError("Failed to log submission") from e

        try:
            task_info = await self.task_queue.enqueue(new_aggregate_task(job_log.id, canonical))
        except EnqueueError:
            self.logger.error("Submission left without task", log_id=job_log.id)
            raise

        try:
            await self.job_log_repo.update_task_id(job_log.id, task_info.id)
            await self.commit()
        except Exception as e:
            self.logger.error(f"Could not link task to job log: {e}", log_id=job_log.id, task_id=task_info.id)
            raise PersistenceError("Failed to link task to submission") from e

        self.logger.info(
            "Aggregate submission queued",
            log_id=job_log.id,
            task_id=task_info.id,
            data_values=len(payload.dataValues),
        )
        return SubmissionResult(job_log_id=job_log.id, task_id=task_info.id, payload=payload)

    async def reconcile_orphans(self, older_than_seconds: int, limit: int = 100) -> int:
        """Enqueue tasks for queued rows that never got a task id."""
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
        orphans = await self.job_log_repo.list_orphaned(cutoff, limit=limit)

        recovered = 0
        for job_log in orphans:
            try:
                task_info = await self.task_queue.enqueue(new_aggregate_task(job_log.id, job_log.payload))
            except EnqueueError as e:
                self.logger.warning(f"Orphan reconciliation stopped: {e}", log_id=job_log.id)
                break
            await self.job_log_repo.update_task_id(job_log.id, task_info.id)
            await self.commit()
            recovered += 1
            self.logger.info("Orphaned submission re-enqueued", log_id=job_log.id, task_id=task_info.id)
        return recovered
