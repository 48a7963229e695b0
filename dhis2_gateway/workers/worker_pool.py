import asyncio
from typing import Awaitable, Callable, Dict, Optional, Set

from dhis2_gateway.core.config import settings
from dhis2_gateway.core.dhis2_client import AggregateDelivery
from dhis2_gateway.core.exceptions import MalformedTaskError
from dhis2_gateway.core.logging import get_logger
from dhis2_gateway.core.queue_policies import DEFAULT_POLICY, QUEUE_POLICIES, weighted_lane_order
from dhis2_gateway.core.task_queue import TaskInfo, TaskQueueClient
from .aggregate_processor import AggregateTaskProcessor
from .aggregate_task import TYPE_AGGREGATE

logger = get_logger(__name__)

Handler = Callable[[TaskInfo], Awaitable[str]]


class WorkerPool:
    """
    Pulls tasks from the weighted priority lanes and runs them concurrently.

    At most ``concurrency`` tasks are in flight. Each fetch round orders the
    lanes by a weighted draw, so critical:default:low at 6:3:1 share the
    pool proportionally instead of by strict priority. ``shutdown()`` stops
    fetching; ``run()`` returns once in-flight tasks have finished or
    ``shutdown_timeout`` has passed.
    """

    def __init__(
        self,
        delivery: AggregateDelivery,
        task_queue: Optional[TaskQueueClient] = None,
        concurrency: Optional[int] = None,
        weights: Optional[Dict[str, int]] = None,
        poll_interval: Optional[float] = None,
        processor: Optional[AggregateTaskProcessor] = None,
        shutdown_timeout: Optional[float] = None,
    ):
        self.task_queue = task_queue or TaskQueueClient()
        self.concurrency = concurrency or settings.WORKER_MAX_CONCURRENT
        self.weights = weights
        self.poll_interval = settings.WORKER_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self.shutdown_timeout = settings.SHUTDOWN_TIMEOUT_SECONDS if shutdown_timeout is None else shutdown_timeout
        self.processor = processor or AggregateTaskProcessor(delivery)
        self.handlers: Dict[str, Handler] = {TYPE_AGGREGATE: self.processor.process}

        self._shutdown = asyncio.Event()
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def shutdown(self):
        if not self._shutdown.is_set():
            logger.info("Worker pool shutting down", in_flight=self.in_flight)
            self._shutdown.set()

    async def _idle(self):
        """Sleep for one poll interval or until shutdown."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def _fetch(self) -> Optional[TaskInfo]:
        for lane in weighted_lane_order(self.weights):
            info = await self.task_queue.dequeue(lane)
            if info is not None:
                return info
        return None

    async def _keep_alive(self, info: TaskInfo):
        """Renew the lease every third of its TTL while the handler runs."""
        interval = QUEUE_POLICIES.get(info.queue, DEFAULT_POLICY).lease_ttl_seconds / 3
        while True:
            await asyncio.sleep(interval)
            try:
                if not await self.task_queue.renew_lease(info):
                    logger.warning("Lease lost while task was running", task_id=info.id, queue=info.queue)
                    return
            except Exception as e:
                logger.error(f"Lease renewal failed: {e}", task_id=info.id)

    async def _execute(self, info: TaskInfo):
        heartbeat = asyncio.create_task(self._keep_alive(info))
        try:
            handler = self.handlers.get(info.type)
            if handler is None:
                raise MalformedTaskError(f"no handler for task type {info.type}")
            await handler(info)
            await self.task_queue.ack(info)
        except Exception as e:
            logger.error(f"Task failed: {e}", task_id=info.id, type=info.type, queue=info.queue)
            try:
                await self.task_queue.nack(info, str(e))
            except Exception as nack_error:
                # Lease expiry hands the task to the sweeper
                logger.error(f"Failed to release task: {nack_error}", task_id=info.id)
        finally:
            heartbeat.cancel()
            self._semaphore.release()

    async def _forward_retries(self):
        while not self._shutdown.is_set():
            try:
                await self.task_queue.forward_due_retries()
            except Exception as e:
                logger.error(f"Retry forwarding failed: {e}")
            await self._idle()

    async def run(self):
        logger.info("Worker pool started", concurrency=self.concurrency)
        forwarder = asyncio.create_task(self._forward_retries())
        try:
            while not self._shutdown.is_set():
                await self._semaphore.acquire()
                if self._shutdown.is_set():
                    self._semaphore.release()
                    break

                try:
                    info = await self._fetch()
                except Exception as e:
                    logger.error(f"Error fetching task: {e}")
                    info = None

                if info is None:
                    self._semaphore.release()
                    await self._idle()
                    continue

                task = asyncio.create_task(self._execute(info))
                self._in_flight.add(task)
                task.add_done_callback(self._in_flight.discard)
        finally:
            forwarder.cancel()
            await asyncio.gather(forwarder, return_exceptions=True)
            if self._in_flight:
                logger.info("Waiting for in-flight tasks", count=self.in_flight)
                _, pending = await asyncio.wait(set(self._in_flight), timeout=self.shutdown_timeout)
                if pending:
                    # Leases of abandoned tasks expire and the sweeper requeues them
                    logger.warning("Abandoning in-flight tasks after shutdown timeout", count=len(pending))
                    for task in pending:
                        task.cancel()
                    await asyncio.gather(*pending, return_exceptions=True)
            logger.info("Worker pool stopped")
