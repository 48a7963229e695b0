from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from dhis2_gateway.core.database import get_async_session
from dhis2_gateway.core.exceptions import (
    ClientInputError,
    EnqueueError,
    PersistenceError,
    TaskNotFoundError,
)
from dhis2_gateway.core.logging import get_logger
from dhis2_gateway.core.queue_policies import DEAD
from dhis2_gateway.core.task_queue import TaskQueueClient, get_task_queue
from dhis2_gateway.schemas.aggregate import (
    AggregateResponse,
    BatchReEnqueueRequest,
    BatchReEnqueueResponse,
    ReEnqueueResponse,
)
from dhis2_gateway.schemas.common import ErrorResponse
from dhis2_gateway.services.requeue_service import RequeueService
from dhis2_gateway.services.submission_service import SubmissionService

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "",
    response_model=AggregateResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def create_aggregate_request(
    request: Request,
    session: AsyncSession = Depends(get_async_session),
    task_queue: TaskQueueClient = Depends(get_task_queue),
):
    """
    Submit aggregate data for DHIS2.

    The body is validated against the aggregate request schema, logged and
    queued. Delivery happens in the background; poll `/v1/logs` with the
    returned `submission_id` or `task_id` for the outcome.

    **Body:**
    - **orgUnit**: organisation unit uid
    - **period**: DHIS2 period, e.g. 202401
    - **dataSet**: data set uid
    - **dataValues**: map of field code to value
    """
    try:
        document = await request.json()
    except ValueError as e:
        raise ClientInputError(f"Invalid JSON: {e}") from e

    service = SubmissionService(session, task_queue)
    try:
        result = await service.submit(document)
    except (PersistenceError, EnqueueError) as e:
        logger.error(f"Aggregate submission failed: {e}")
        detail = "Failed to enqueue job" if isinstance(e, EnqueueError) else str(e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)

    return AggregateResponse(
        payload=result.payload,
        submission_id=result.job_log_id,
        task_id=result.task_id,
    )


@router.post(
    "/reenqueue/batch",
    response_model=BatchReEnqueueResponse,
    responses={400: {"model": ErrorResponse}},
)
async def batch_reenqueue_aggregate_tasks(
    body: BatchReEnqueueRequest,
    session: AsyncSession = Depends(get_async_session),
    task_queue: TaskQueueClient = Depends(get_task_queue),
):
    """
    Re-enqueue several tasks from the dead (default) or retry queue.

    Each id is handled on its own; ids that cannot be requeued are counted
    in `failed`, described in `errors` and left where they were.
    """
    service = RequeueService(session, task_queue)
    return await service.requeue_batch(body.queue or DEAD, body.task_ids)


@router.post(
    "/reenqueue/{task_id}",
    response_model=ReEnqueueResponse,
    responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def reenqueue_aggregate_task(
    task_id: str,
    queue: str = Query(DEAD, description="Queue holding the task (dead, retry, critical, default, low)"),
    session: AsyncSession = Depends(get_async_session),
    task_queue: TaskQueueClient = Depends(get_task_queue),
):
    """Re-enqueue one task under a new id and relink its submission log."""
    service = RequeueService(session, task_queue)
    try:
        result = await service.requeue_one(task_id, queue)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except EnqueueError as e:
        logger.error(f"Re-enqueue failed: {e}", task_id=task_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to re-enqueue task: {e}"
        )

    return ReEnqueueResponse(
        message=f"Re-enqueued task {task_id} (type: {result.type}) from {result.queue} queue",
        task_id=task_id,
        new_task_id=result.new_task_id,
    )
