"""
Tests for the Redis task queue client and queue policies.

Queue behaviour runs against fakeredis so that transactions, TTLs and key
state behave like a real server.
"""
import time
import pytest
from collections import Counter
from unittest.mock import patch

from dhis2_gateway.core.exceptions import EnqueueError, MalformedTaskError, TaskNotFoundError
from dhis2_gateway.core.queue_policies import compute_backoff, weighted_lane_order
from dhis2_gateway.core.task_queue import Task, TaskInfo, TaskQueueClient


@pytest.fixture
def queue(redis_double):
    return TaskQueueClient(redis_double)


def _task(payload='{"log_id": 1, "payload": {}}') -> Task:
    return Task(type="aggregate:send", payload=payload)


class TestTaskQueueClient:
    """Test cases for TaskQueueClient."""

    @pytest.mark.asyncio
    async def test_enqueue_stores_hash_and_pushes_id(self, queue, fake_redis):
        info = await queue.enqueue(_task())

        assert info.queue == "default"
        assert info.max_retry == 3
        stored = await fake_redis.hgetall(f"q:dhis2:t:{info.id}")
        assert stored["state"] == "pending"
        assert stored["type"] == "aggregate:send"
        assert stored["max_retry"] == "3"
        assert await fake_redis.lrange("q:dhis2:default", 0, -1) == [info.id]

    @pytest.mark.asyncio
    async def test_enqueue_failure_raises_enqueue_error(self, queue, fake_redis):
        with patch.object(fake_redis, "pipeline", side_effect=ConnectionError("refused")):
            with pytest.raises(EnqueueError):
                await queue.enqueue(_task())

    @pytest.mark.asyncio
    async def test_enqueue_unknown_lane(self, queue):
        with pytest.raises(EnqueueError):
            await queue.enqueue(_task(), queue="dead")

    @pytest.mark.asyncio
    async def test_dequeue_claims_task_with_lease(self, queue, fake_redis):
        queued = await queue.enqueue(_task(), queue="critical")

        info = await queue.dequeue("critical")

        assert info.id == queued.id
        assert info.state == "active"
        assert info.claim
        assert await fake_redis.get(f"q:dhis2:lease:{info.id}") == info.claim
        assert await fake_redis.ttl(f"q:dhis2:lease:{info.id}") > 0
        assert await fake_redis.lrange("q:dhis2:critical:processing", 0, -1) == [info.id]

    @pytest.mark.asyncio
    async def test_dequeue_empty_lane(self, queue):
        assert await queue.dequeue("low") is None

    @pytest.mark.asyncio
    async def test_dequeue_drops_id_without_hash(self, queue, fake_redis):
        await fake_redis.lpush("q:dhis2:default", "ghost")

        assert await queue.dequeue("default") is None
        assert await fake_redis.llen("q:dhis2:default:processing") == 0

    @pytest.mark.asyncio
    async def test_ack_forgets_task(self, queue, fake_redis):
        await queue.enqueue(_task())
        info = await queue.dequeue("default")

        assert await queue.ack(info) is True

        assert not await fake_redis.exists(f"q:dhis2:t:{info.id}", f"q:dhis2:lease:{info.id}")
        assert await fake_redis.llen("q:dhis2:default:processing") == 0

    @pytest.mark.asyncio
    async def test_nack_schedules_retry_within_budget(self, queue, fake_redis):
        await queue.enqueue(_task())
        info = await queue.dequeue("default")

        assert await queue.nack(info, "job log 1 not found") == "retry"

        assert await fake_redis.zscore("q:dhis2:retry", info.id) is not None
        stored = await fake_redis.hgetall(f"q:dhis2:t:{info.id}")
        assert stored["state"] == "retry"
        assert stored["retried"] == "1"
        assert "claim" not in stored
        assert (await queue.get_task_info("retry", info.id)).error_msg == "job log 1 not found"

    @pytest.mark.asyncio
    async def test_task_dead_letters_after_max_retry(self, queue, fake_redis):
        await queue.enqueue(_task())

        outcomes = []
        for _ in range(4):
            info = await queue.dequeue("default")
            outcomes.append(await queue.nack(info, "still failing"))
            await queue.forward_due_retries(now=time.time() + 100000)

        assert outcomes == ["retry", "retry", "retry", "dead"]
        dead = await queue.get_task_info("dead", info.id)
        assert dead.retried == 4
        assert await fake_redis.lrange("q:dhis2:dead", 0, -1) == [info.id]

    @pytest.mark.asyncio
    async def test_get_task_info_wrong_queue(self, queue):
        queued = await queue.enqueue(_task())

        with pytest.raises(TaskNotFoundError):
            await queue.get_task_info("dead", queued.id)
        assert (await queue.get_task_info("default", queued.id)).id == queued.id

    @pytest.mark.asyncio
    async def test_get_task_info_missing(self, queue):
        with pytest.raises(TaskNotFoundError):
            await queue.get_task_info("dead", "nope")

    @pytest.mark.asyncio
    async def test_delete_task(self, queue, fake_redis):
        await queue.enqueue(_task())
        info = await queue.dequeue("default")
        await queue.nack(info, "boom")

        assert await queue.delete_task("retry", info.id) is True
        assert await queue.delete_task("retry", info.id) is False
        assert not await fake_redis.exists(f"q:dhis2:t:{info.id}")

    @pytest.mark.asyncio
    async def test_forward_due_retries_respects_schedule(self, queue, fake_redis):
        await queue.enqueue(_task(), queue="critical")
        info = await queue.dequeue("critical")
        await queue.nack(info, "boom")

        assert await queue.forward_due_retries(now=time.time() - 1) == 0
        assert await queue.forward_due_retries(now=time.time() + 100000) == 1
        assert await fake_redis.lrange("q:dhis2:critical", 0, -1) == [info.id]
        assert (await queue.get_task_info("critical", info.id)).retried == 1

    @pytest.mark.asyncio
    async def test_forward_drops_entry_without_hash(self, queue, fake_redis):
        await fake_redis.zadd("q:dhis2:retry", {"ghost": 1})

        assert await queue.forward_due_retries(now=10) == 0
        assert not await fake_redis.exists("q:dhis2:t:ghost")
        assert await fake_redis.zcard("q:dhis2:retry") == 0

    @pytest.mark.asyncio
    async def test_renew_lease(self, queue, fake_redis):
        await queue.enqueue(_task())
        info = await queue.dequeue("default")
        await fake_redis.expire(f"q:dhis2:lease:{info.id}", 5)

        assert await queue.renew_lease(info) is True
        assert await fake_redis.ttl(f"q:dhis2:lease:{info.id}") > 5

        await fake_redis.delete(f"q:dhis2:lease:{info.id}")
        assert await queue.renew_lease(info) is False


class TestLeaseExpiry:
    """Sweeping expired leases and late acknowledgements."""

    @pytest.mark.asyncio
    async def test_sweep_releases_expired_lease(self, queue, fake_redis):
        await queue.enqueue(_task(), queue="low")
        info = await queue.dequeue("low")
        await fake_redis.delete(f"q:dhis2:lease:{info.id}")

        results = await queue.sweep_expired_leases()

        assert results == {"critical": 0, "default": 0, "low": 1}
        assert (await queue.get_task_info("retry", info.id)).error_msg == "lease expired"

    @pytest.mark.asyncio
    async def test_sweep_leaves_live_leases_alone(self, queue):
        await queue.enqueue(_task())
        await queue.dequeue("default")

        assert await queue.sweep_expired_leases() == {"critical": 0, "default": 0, "low": 0}

    @pytest.mark.asyncio
    async def test_late_ack_after_sweep_keeps_task_intact(self, queue, fake_redis):
        """A worker finishing after its lease was swept must not corrupt the retry entry."""
        await queue.enqueue(_task())
        info = await queue.dequeue("default")
        await fake_redis.delete(f"q:dhis2:lease:{info.id}")
        await queue.sweep_expired_leases()

        assert await queue.ack(info) is False
        assert await queue.nack(info, "late failure") == "lost"

        assert await queue.forward_due_retries(now=time.time() + 10000) == 1
        again = await queue.dequeue("default")
        assert again.id == info.id
        assert again.type == "aggregate:send"
        assert again.payload == info.payload
        assert again.claim != info.claim
        assert await queue.ack(again) is True

    @pytest.mark.asyncio
    async def test_unreadable_entry_does_not_block_recovery(self, queue, fake_redis):
        await fake_redis.lpush("q:dhis2:critical:processing", "broken")
        await fake_redis.hset("q:dhis2:t:broken", mapping={"state": "pending"})
        await queue.enqueue(_task(), queue="low")
        crashed = await queue.dequeue("low")
        await fake_redis.delete(f"q:dhis2:lease:{crashed.id}")

        results = await queue.sweep_expired_leases()

        assert results["low"] == 1
        assert await fake_redis.llen("q:dhis2:critical:processing") == 0
        assert not await fake_redis.exists("q:dhis2:t:broken")
        assert (await queue.get_task_info("retry", crashed.id)).id == crashed.id

    @pytest.mark.asyncio
    async def test_stalled_claim_returns_to_lane(self, queue, fake_redis):
        """An id moved to processing whose claim never completed goes back after one lease period."""
        queued = await queue.enqueue(_task())
        await fake_redis.rpoplpush("q:dhis2:default", "q:dhis2:default:processing")
        now = time.time()

        assert (await queue.sweep_expired_leases(now=now))["default"] == 0
        assert await fake_redis.llen("q:dhis2:default:processing") == 1

        assert (await queue.sweep_expired_leases(now=now + 1000))["default"] == 1
        assert await fake_redis.lrange("q:dhis2:default", 0, -1) == [queued.id]
        assert await fake_redis.llen("q:dhis2:default:processing") == 0


class TestTaskInfo:

    def test_from_hash_requires_identity(self):
        with pytest.raises(MalformedTaskError):
            TaskInfo.from_hash({"state": "pending"})

    def test_from_hash_rejects_bad_counters(self):
        with pytest.raises(MalformedTaskError):
            TaskInfo.from_hash({"id": "t1", "type": "aggregate:send", "payload": "{}", "retried": "x"})


class TestQueuePolicies:
    """Lane weighting and backoff."""

    def test_lane_order_contains_every_lane_once(self):
        order = weighted_lane_order({"critical": 6, "default": 3, "low": 1})

        assert sorted(order) == ["critical", "default", "low"]

    def test_lane_order_is_weighted_not_strict(self):
        firsts = Counter(
            weighted_lane_order({"critical": 6, "default": 3, "low": 1})[0]
            for _ in range(3000)
        )

        assert firsts["critical"] > firsts["default"] > firsts["low"] > 0

    def test_zero_weight_lane_is_skipped(self):
        assert weighted_lane_order({"critical": 0, "default": 1}) == ["default"]

    def test_backoff_grows_and_is_capped(self):
        with patch("dhis2_gateway.core.queue_policies.random.randint", return_value=0):
            first = compute_backoff("default", 1)
            second = compute_backoff("default", 2)
            huge = compute_backoff("default", 50)

        assert first == 30
        assert second == 60
        assert huge == 900
