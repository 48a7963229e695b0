import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from redis.exceptions import WatchError

from dhis2_gateway.core.exceptions import EnqueueError, MalformedTaskError, TaskNotFoundError
from dhis2_gateway.core.logging import get_logger
from dhis2_gateway.core.queue_policies import (
    DEAD,
    DEFAULT,
    INSPECTABLE_QUEUES,
    MAX_RETRY,
    PRIORITY_QUEUES,
    QUEUE_POLICIES,
    RETRY,
    DEFAULT_POLICY,
    compute_backoff,
    lease_key,
    processing_key,
    queue_key,
    task_key,
)
from dhis2_gateway.core.redis_client import RedisClient, redis_client

logger = get_logger(__name__)

STATE_PENDING = "pending"
STATE_ACTIVE = "active"
STATE_RETRY = "retry"
STATE_DEAD = "dead"
# nack outcome when the caller no longer holds the claim
STATE_LOST = "lost"

REQUIRED_FIELDS = ("id", "type", "payload")


def _as_int(value: Any, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedTaskError(f"invalid {field}: {value!r}")


@dataclass
class Task:
    """Unit of work handed to the broker: a type tag, a JSON payload and a retry budget."""
    type: str
    payload: str
    max_retry: int = MAX_RETRY


@dataclass
class TaskInfo:
    id: str
    type: str
    payload: str
    queue: str
    max_retry: int = MAX_RETRY
    retried: int = 0
    state: str = STATE_PENDING
    error_msg: Optional[str] = None
    enqueued_at: Optional[float] = None
    claim: Optional[str] = None

    @classmethod
    def from_hash(cls, data: Dict[str, str]) -> "TaskInfo":
        """
        Raises:
            MalformedTaskError: the hash is missing or lacks a required field
        """
        missing = [f for f in REQUIRED_FIELDS if not data or f not in data]
        if missing:
            raise MalformedTaskError(f"task hash missing {', '.join(missing)}")

        enqueued_at = data.get("enqueued_at")
        try:
            enqueued_at = float(enqueued_at) if enqueued_at else None
        except ValueError:
            enqueued_at = None

        return cls(
            id=data["id"],
            type=data["type"],
            payload=data["payload"],
            queue=data.get("queue") or DEFAULT,
            max_retry=_as_int(data.get("max_retry", MAX_RETRY), "max_retry"),
            retried=_as_int(data.get("retried", 0), "retried"),
            state=data.get("state", STATE_PENDING),
            error_msg=data.get("error_msg") or None,
            enqueued_at=enqueued_at,
            claim=data.get("claim") or None,
        )


class TaskQueueClient:
    """
    Client side of the Redis priority queue.

    Layout:
        q:dhis2:t:<id>              task hash (type, payload, queue, retry counters, state, claim)
        q:dhis2:<lane>              pending task ids, one list per priority lane
        q:dhis2:<lane>:processing   ids claimed by a worker
        q:dhis2:lease:<id>          claim token with TTL, renewed while the handler runs
        q:dhis2:retry               zset of ids scored by next attempt time
        q:dhis2:dead                ids whose retry budget is exhausted

    Every claim carries a token stored in the task hash and the lease. ``ack``
    and ``nack`` only apply while the token still matches, so a worker whose
    lease was swept cannot disturb the task's later life.
    """

    def __init__(self, redis: RedisClient = None):
        self.redis = redis or redis_client

    async def _conn(self):
        if not self.redis.client:
            await self.redis.connect()
        return self.redis.client

    async def enqueue(self, task: Task, queue: str = DEFAULT) -> TaskInfo:
        """Store the task hash and push its id onto a priority lane."""
        if queue not in PRIORITY_QUEUES:
            raise EnqueueError(f"unknown queue: {queue}")

        task_id = str(uuid.uuid4())
        info = TaskInfo(
            id=task_id,
            type=task.type,
            payload=task.payload,
            queue=queue,
            max_retry=task.max_retry,
            enqueued_at=time.time(),
        )
        try:
            client = await self._conn()
            pipe = client.pipeline(transaction=True)
            pipe.hset(task_key(task_id), mapping={
                "id": task_id,
                "type": task.type,
                "payload": task.payload,
                "queue": queue,
                "max_retry": task.max_retry,
                "retried": 0,
                "state": STATE_PENDING,
                "enqueued_at": info.enqueued_at,
            })
            pipe.lpush(queue_key(queue), task_id)
            await pipe.execute()
        except Exception as e:
            logger.error(f"Failed to enqueue task: {e}", queue=queue, type=task.type)
            raise EnqueueError(str(e)) from e

        logger.info("Task enqueued", task_id=task_id, queue=queue, type=task.type)
        return info

    async def get_task_info(self, queue: str, task_id: str) -> TaskInfo:
        """Return the task if it currently sits in the named queue."""
        if queue not in INSPECTABLE_QUEUES:
            raise TaskNotFoundError(queue, task_id)

        client = await self._conn()
        try:
            info = TaskInfo.from_hash(await client.hgetall(task_key(task_id)))
        except MalformedTaskError:
            raise TaskNotFoundError(queue, task_id)

        if queue == RETRY:
            found = info.state == STATE_RETRY
        elif queue == DEAD:
            found = info.state == STATE_DEAD
        else:
            found = info.state == STATE_PENDING and info.queue == queue
        if not found:
            raise TaskNotFoundError(queue, task_id)
        return info

    async def delete_task(self, queue: str, task_id: str) -> bool:
        """Remove a task from the named queue and drop its hash."""
        client = await self._conn()
        if queue == RETRY:
            removed = await client.zrem(queue_key(RETRY), task_id)
        else:
            removed = await client.lrem(queue_key(queue), 0, task_id)
        if removed:
            await client.delete(task_key(task_id))
            logger.info("Task deleted", task_id=task_id, queue=queue)
        return bool(removed)

    async def _drop(self, lane: str, task_id: str, reason: str):
        """Forget an id whose hash is missing or unreadable."""
        client = await self._conn()
        await client.lrem(processing_key(lane), 1, task_id)
        await client.delete(task_key(task_id), lease_key(task_id))
        logger.warning("Dropped unreadable task", task_id=task_id, lane=lane, reason=reason)

    async def dequeue(self, lane: str) -> Optional[TaskInfo]:
        """Claim the oldest pending task of a lane without blocking."""
        client = await self._conn()
        task_id = await client.rpoplpush(queue_key(lane), processing_key(lane))
        if not task_id:
            return None

        try:
            info = TaskInfo.from_hash(await client.hgetall(task_key(task_id)))
        except MalformedTaskError as e:
            await self._drop(lane, task_id, str(e))
            return None

        claim = uuid.uuid4().hex
        policy = QUEUE_POLICIES.get(lane, DEFAULT_POLICY)
        pipe = client.pipeline(transaction=True)
        pipe.set(lease_key(task_id), claim, ex=policy.lease_ttl_seconds)
        pipe.hset(task_key(task_id), mapping={"state": STATE_ACTIVE, "claim": claim})
        pipe.hdel(task_key(task_id), "stalled_at")
        await pipe.execute()

        info.queue = lane
        info.state = STATE_ACTIVE
        info.claim = claim
        return info

    async def renew_lease(self, info: TaskInfo) -> bool:
        """Extend the lease of a claimed task; False once the claim is gone."""
        client = await self._conn()
        if not info.claim or await client.get(lease_key(info.id)) != info.claim:
            return False
        policy = QUEUE_POLICIES.get(info.queue, DEFAULT_POLICY)
        renewed = await client.set(lease_key(info.id), info.claim, ex=policy.lease_ttl_seconds, xx=True)
        return bool(renewed)

    async def _settle(self, info: TaskInfo, apply: Callable[[Any, Dict[str, str]], None]) -> bool:
        """Run ``apply`` in a transaction guarded by the caller's claim token."""
        client = await self._conn()
        key = task_key(info.id)
        async with client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    current = await pipe.hgetall(key)
                    if not info.claim or current.get("claim") != info.claim:
                        return False
                    pipe.multi()
                    apply(pipe, current)
                    await pipe.execute()
                    return True
                except WatchError:
                    continue

    async def ack(self, info: TaskInfo) -> bool:
        """Mark a claimed task as done and forget it."""
        def finish(pipe, current):
            pipe.lrem(processing_key(info.queue), 1, info.id)
            pipe.delete(lease_key(info.id), task_key(info.id))

        if not await self._settle(info, finish):
            logger.warning("Ack ignored, task no longer claimed", task_id=info.id, queue=info.queue)
            return False
        return True

    async def nack(self, info: TaskInfo, error: str) -> str:
        """
        Release a claimed task after a handler failure.

        Returns "retry" when the task was scheduled for another attempt,
        "dead" once its retry budget is spent and "lost" when the claim had
        already been taken away.
        """
        outcome = {}

        def release(pipe, current):
            try:
                retried = _as_int(current.get("retried", 0), "retried") + 1
            except MalformedTaskError:
                retried = info.retried + 1
            key = task_key(info.id)
            pipe.lrem(processing_key(info.queue), 1, info.id)
            pipe.delete(lease_key(info.id))
            pipe.hdel(key, "claim")
            if retried <= info.max_retry:
                delay = compute_backoff(info.queue, retried)
                pipe.hset(key, mapping={"state": STATE_RETRY, "error_msg": error, "retried": retried})
                pipe.zadd(queue_key(RETRY), {info.id: time.time() + delay})
                outcome.update(state=STATE_RETRY, retried=retried, delay=delay)
            else:
                pipe.hset(key, mapping={"state": STATE_DEAD, "error_msg": error, "retried": retried})
                pipe.lpush(queue_key(DEAD), info.id)
                outcome.update(state=STATE_DEAD, retried=retried)

        if not await self._settle(info, release):
            logger.warning("Nack ignored, task no longer claimed", task_id=info.id, error=error)
            return STATE_LOST

        if outcome["state"] == STATE_RETRY:
            logger.warning("Task scheduled for retry", task_id=info.id, retried=outcome["retried"],
                           max_retry=info.max_retry, delay=outcome["delay"], error=error)
        else:
            logger.error("Task moved to dead queue", task_id=info.id, retried=outcome["retried"], error=error)
        return outcome["state"]

    async def forward_due_retries(self, now: float = None) -> int:
        """Move retry entries whose time has come back onto their lanes."""
        client = await self._conn()
        now = now or time.time()
        due = await client.zrangebyscore(queue_key(RETRY), 0, now)
        moved = 0
        for task_id in due:
            # Only the forwarder that wins the ZREM re-publishes the id
            if not await client.zrem(queue_key(RETRY), task_id):
                continue
            try:
                info = TaskInfo.from_hash(await client.hgetall(task_key(task_id)))
            except MalformedTaskError as e:
                await client.delete(task_key(task_id))
                logger.warning("Dropped retry entry without task", task_id=task_id, reason=str(e))
                continue
            lane = info.queue if info.queue in PRIORITY_QUEUES else DEFAULT
            pipe = client.pipeline(transaction=True)
            pipe.hset(task_key(task_id), "state", STATE_PENDING)
            pipe.lpush(queue_key(lane), task_id)
            await pipe.execute()
            moved += 1
        if moved:
            logger.debug("Forwarded retry tasks", count=moved)
        return moved

    async def _sweep_one(self, lane: str, task_id: str, now: float) -> bool:
        client = await self._conn()
        if await client.exists(lease_key(task_id)):
            return False

        data = await client.hgetall(task_key(task_id))
        try:
            info = TaskInfo.from_hash(data)
        except MalformedTaskError as e:
            await self._drop(lane, task_id, str(e))
            return False

        if info.state == STATE_ACTIVE:
            await self.nack(info, "lease expired")
            return True

        if info.state != STATE_PENDING:
            await client.lrem(processing_key(lane), 1, task_id)
            logger.warning("Removed stray processing entry", task_id=task_id, lane=lane, state=info.state)
            return False

        # Moved to processing but the claim was never completed; give the
        # claiming worker one lease period before handing the id back.
        policy = QUEUE_POLICIES.get(lane, DEFAULT_POLICY)
        try:
            stalled_at = float(data.get("stalled_at") or 0)
        except ValueError:
            stalled_at = 0
        if not stalled_at:
            await client.hsetnx(task_key(task_id), "stalled_at", now)
            return False
        if now - stalled_at < policy.lease_ttl_seconds:
            return False

        pipe = client.pipeline(transaction=True)
        pipe.lrem(processing_key(lane), 1, task_id)
        pipe.hdel(task_key(task_id), "stalled_at")
        pipe.lpush(queue_key(lane), task_id)
        await pipe.execute()
        logger.warning("Stalled claim returned to lane", task_id=task_id, lane=lane)
        return True

    async def sweep_expired_leases(self, now: float = None) -> Dict[str, int]:
        """Release claimed tasks whose lease expired, e.g. after a worker crash."""
        client = await self._conn()
        now = now or time.time()
        results = {}
        for lane in PRIORITY_QUEUES:
            swept = 0
            for task_id in await client.lrange(processing_key(lane), 0, -1):
                try:
                    if await self._sweep_one(lane, task_id, now):
                        swept += 1
                except Exception as e:
                    logger.error(f"Failed to sweep task: {e}", task_id=task_id, lane=lane)
            results[lane] = swept
        return results

    async def queue_stats(self) -> Dict[str, Dict[str, int]]:
        client = await self._conn()
        stats = {}
        for lane in PRIORITY_QUEUES:
            stats[lane] = {
                "pending": await client.llen(queue_key(lane)),
                "active": await client.llen(processing_key(lane)),
            }
        stats[RETRY] = {"size": await client.zcard(queue_key(RETRY))}
        stats[DEAD] = {"size": await client.llen(queue_key(DEAD))}
        return stats


def get_task_queue() -> TaskQueueClient:
    """Dependency for the shared task queue client."""
    return TaskQueueClient(redis_client)
