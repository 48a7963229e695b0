from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from dhis2_gateway.core.exceptions import EnqueueError, TaskNotFoundError
from dhis2_gateway.core.queue_policies import DEAD, MAX_RETRY
from dhis2_gateway.core.task_queue import Task, TaskQueueClient
from dhis2_gateway.schemas.aggregate import BatchReEnqueueResponse
from .base_service import BaseService


@dataclass
class RequeueResult:
    task_id: str
    new_task_id: str
    type: str
    queue: str


class RequeueService(BaseService):
    """Re-submits retry/dead tasks under a new task id and relinks their job logs."""

    def __init__(self, session: AsyncSession, task_queue: Optional[TaskQueueClient] = None):
        super().__init__(session, task_queue)

    async def requeue_one(self, task_id: str, queue_name: str = DEAD) -> RequeueResult:
        """
        Raises:
            TaskNotFoundError: the task is not in ``queue_name``
            EnqueueError: the replacement task could not be enqueued
        """
        info = await self.task_queue.get_task_info(queue_name, task_id)

        # The log association is best effort
        job_log = None
        try:
            job_log = await self.job_log_repo.get_by_task_id(task_id)
        except Exception as e:
            self.logger.warning(f"Job log lookup failed: {e}", task_id=task_id)
        if job_log is None:
            self.logger.warning("No job log linked to task", task_id=task_id)

        new_info = await self.task_queue.enqueue(Task(type=info.type, payload=info.payload, max_retry=MAX_RETRY))

        if job_log is not None:
            try:
                await self.job_log_repo.update_task_id(job_log.id, new_info.id)
                await self.commit()
            except Exception as e:
                self.logger.error(f"Could not relink job log: {e}", log_id=job_log.id, task_id=new_info.id)

        try:
            await self.task_queue.delete_task(queue_name, task_id)
        except Exception as e:
            self.logger.error(f"Could not remove original task: {e}", task_id=task_id, queue=queue_name)

        self.logger.info(
            "Task re-enqueued",
            task_id=task_id,
            new_task_id=new_info.id,
            queue=queue_name,
            log_id=job_log.id if job_log is not None else None,
        )
        return RequeueResult(task_id=task_id, new_task_id=new_info.id, type=info.type, queue=queue_name)

    async def requeue_batch(self, queue_name: str, task_ids: List[str]) -> BatchReEnqueueResponse:
        """Requeue each id independently; failures are reported, never raised."""
        result = BatchReEnqueueResponse(queue=queue_name)
        for task_id in task_ids:
            try:
                await self.requeue_one(task_id, queue_name)
                result.reEnqueued += 1
            except TaskNotFoundError as e:
                result.failed += 1
                result.errors.append(f"Task {task_id}: {e}")
            except EnqueueError as e:
                result.failed += 1
                result.errors.append(f"Task {task_id}: failed to enqueue: {e}")
            except Exception as e:
                self.logger.error(f"Unexpected requeue failure: {e}", task_id=task_id)
                result.failed += 1
                result.errors.append(f"Task {task_id}: {e}")
        return result
