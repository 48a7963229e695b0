from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from dhis2_gateway.core.database import get_async_session
from dhis2_gateway.core.logging import get_logger
from dhis2_gateway.schemas.common import BaseResponse, ErrorResponse, PaginatedResponse
from dhis2_gateway.schemas.job_log import JobLogQueryParams, JobLogResponse
from dhis2_gateway.services.log_service import LogService

router = APIRouter()
logger = get_logger(__name__)


@router.get("", response_model=PaginatedResponse[JobLogResponse])
async def get_logs(
    params: JobLogQueryParams = Depends(),
    session: AsyncSession = Depends(get_async_session),
):
    """
    Paginated submission logs, newest first.

    Filters: `status`, `task_id`, `job_id` and the submission day
    (`submitted_at`, or the inclusive range `submitted_from`/`submitted_to`,
    all YYYY-MM-DD).
    """
    try:
        service = LogService(session)
        logs, total = await service.list_logs(params)
    except Exception as e:
        logger.error(f"Error querying job logs: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to query logs"
        )

    return PaginatedResponse[JobLogResponse].create(
        items=[JobLogResponse.model_validate(log) for log in logs],
        total=total,
        page=params.page,
        page_size=params.page_size,
    )


@router.delete(
    "/purge",
    response_model=BaseResponse,
    responses={400: {"model": ErrorResponse}},
)
async def purge_logs(
    date: str = Query(..., description="Cutoff in RFC3339, e.g. 2024-06-01T00:00:00Z"),
    session: AsyncSession = Depends(get_async_session),
):
    """Delete every submission log submitted before the cutoff."""
    try:
        cutoff = datetime.fromisoformat(date.replace("Z", "+00:00"))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="invalid 'date' format, use RFC3339"
        )
    if cutoff.tzinfo is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="invalid 'date' format, use RFC3339"
        )

    try:
        service = LogService(session)
        purged = await service.purge_logs(cutoff)
    except Exception as e:
        logger.error(f"Error purging job logs: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="failed to delete logs"
        )

    return BaseResponse(message=f"Deleted {purged} logs older than {cutoff.isoformat()}")


@router.get(
    "/{log_id}",
    response_model=JobLogResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_log(
    log_id: int,
    session: AsyncSession = Depends(get_async_session),
):
    """Single submission log by id."""
    service = LogService(session)
    log = await service.get_log(log_id)
    if not log:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Log not found")
    return log


@router.delete(
    "/{log_id}",
    response_model=BaseResponse,
    responses={404: {"model": ErrorResponse}},
)
async def delete_log(
    log_id: int,
    session: AsyncSession = Depends(get_async_session),
):
    service = LogService(session)
    if not await service.delete_log(log_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Log not found")
    return BaseResponse(message="Deleted 1 log(s)")
