from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text

from dhis2_gateway.core.config import settings
from dhis2_gateway.core.database import get_async_session
from dhis2_gateway.core.redis_client import redis_client
from dhis2_gateway.core.task_queue import TaskQueueClient, get_task_queue

router = APIRouter()


@router.get("")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "service": "dhis2-gateway",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT
    }


@router.get("/detailed")
async def detailed_health_check(
    session: AsyncSession = Depends(get_async_session),
    task_queue: TaskQueueClient = Depends(get_task_queue),
):
    """Health check including database, Redis and queue depths."""
    health_status = {
        "status": "healthy",
        "service": "dhis2-gateway",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
        "checks": {}
    }

    # Database check
    try:
        await session.execute(text("SELECT 1"))
        health_status["checks"]["database"] = {"status": "healthy", "message": "Database connection OK"}
    except Exception as e:
        health_status["checks"]["database"] = {"status": "unhealthy", "error": str(e)}
        health_status["status"] = "unhealthy"

    # Redis check
    try:
        if not redis_client.client:
            await redis_client.connect()
        await redis_client.client.ping()
        health_status["checks"]["redis"] = {"status": "healthy", "message": "Redis connection OK"}
    except Exception as e:
        health_status["checks"]["redis"] = {"status": "unhealthy", "error": str(e)}
        health_status["status"] = "unhealthy"

    # Queue check
    try:
        health_status["checks"]["queues"] = {
            "status": "healthy",
            "stats": await task_queue.queue_stats()
        }
    except Exception as e:
        health_status["checks"]["queues"] = {"status": "unhealthy", "error": str(e)}
        health_status["status"] = "unhealthy"

    if health_status["status"] == "unhealthy":
        raise HTTPException(status_code=503, detail=health_status)

    return health_status


@router.get("/queues")
async def get_queue_status(task_queue: TaskQueueClient = Depends(get_task_queue)):
    """Pending, active, retry and dead task counts."""
    try:
        stats = await task_queue.queue_stats()
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Queue status check failed: {str(e)}")

    return {"status": "healthy", "queues": stats}
