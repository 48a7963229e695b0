import asyncio

from dhis2_gateway.core.config import settings
from dhis2_gateway.core.database import AsyncSessionLocal, db_manager
from dhis2_gateway.core.logging import get_logger
from dhis2_gateway.core.queue_policies import DEAD
from dhis2_gateway.core.redis_client import redis_client
from dhis2_gateway.core.task_queue import TaskQueueClient
from dhis2_gateway.services.submission_service import SubmissionService
from .celery_app import celery_app

logger = get_logger(__name__)

RECONCILE_LOCK_KEY = "lock:dhis2:reconcile_orphans"
DEAD_QUEUE_ALERT_THRESHOLD = 100


def _run(job):
    """Run an async job on a fresh event loop; pooled connections die with the loop."""
    async def _wrapper():
        await redis_client.connect()
        try:
            return await job()
        finally:
            await redis_client.disconnect()
            await db_manager.close_connections()

    return asyncio.run(_wrapper())


async def _sweep() -> dict:
    return await TaskQueueClient(redis_client).sweep_expired_leases()


async def _reconcile() -> int:
    if not await redis_client.set_lock(RECONCILE_LOCK_KEY, ttl_seconds=300):
        logger.info("Orphan reconciliation already running")
        return 0
    try:
        async with AsyncSessionLocal() as session:
            service = SubmissionService(session, TaskQueueClient(redis_client))
            return await service.reconcile_orphans(settings.RECONCILE_ORPHANS_AFTER_SECONDS)
    finally:
        await redis_client.release_lock(RECONCILE_LOCK_KEY)


async def _monitor() -> dict:
    stats = await TaskQueueClient(redis_client).queue_stats()
    dead = stats[DEAD]["size"]
    if dead > DEAD_QUEUE_ALERT_THRESHOLD:
        logger.warning("Dead queue is growing", size=dead)
    return stats


@celery_app.task
def sweep_processing_queues():
    """Return tasks whose lease expired to retry or dead."""
    try:
        results = _run(_sweep)
        logger.info("Processing sweeper results", results=results)
        return results
    except Exception as e:
        logger.error(f"Visibility sweep failed: {e}")
        raise


@celery_app.task
def reconcile_orphaned_submissions():
    """Re-enqueue queued job logs that never received a task id."""
    if not settings.RECONCILE_ORPHANS_ENABLED:
        return 0
    try:
        recovered = _run(_reconcile)
        if recovered:
            logger.info("Orphaned submissions recovered", count=recovered)
        return recovered
    except Exception as e:
        logger.error(f"Orphan reconciliation failed: {e}")
        raise


@celery_app.task
def monitor_queue_health():
    try:
        return _run(_monitor)
    except Exception as e:
        logger.error(f"Queue health monitoring failed: {e}")
        raise
