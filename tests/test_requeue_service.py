"""
Unit tests for RequeueService.
"""
import pytest
import pytest_asyncio
from unittest.mock import MagicMock

from dhis2_gateway.core.exceptions import EnqueueError, TaskNotFoundError
from dhis2_gateway.core.task_queue import TaskInfo
from dhis2_gateway.services.requeue_service import RequeueService
from dhis2_gateway.workers.aggregate_task import TYPE_AGGREGATE


def _dead_task(task_id: str) -> TaskInfo:
    return TaskInfo(
        id=task_id,
        type=TYPE_AGGREGATE,
        payload='{"log_id": 5, "payload": {}}',
        queue="default",
        max_retry=3,
        retried=3,
        state="dead",
    )


class TestRequeueService:
    """Test cases for RequeueService."""

    @pytest_asyncio.fixture
    async def service(self, mock_session, mock_task_queue, mock_job_log_repo):
        service = RequeueService(mock_session, mock_task_queue)
        service.job_log_repo = mock_job_log_repo
        return service

    @pytest.fixture
    def linked_log(self):
        job_log = MagicMock()
        job_log.id = 5
        return job_log

    @pytest.mark.asyncio
    async def test_requeue_one(self, service, linked_log):
        """New task keeps type and payload, gets a fresh budget and replaces the old one."""
        service.task_queue.get_task_info.return_value = _dead_task("old-1")
        service.task_queue.enqueue.return_value = TaskInfo(
            id="new-1", type=TYPE_AGGREGATE, payload="", queue="default"
        )
        service.job_log_repo.get_by_task_id.return_value = linked_log

        result = await service.requeue_one("old-1")

        assert result.new_task_id == "new-1"
        assert result.queue == "dead"
        service.task_queue.get_task_info.assert_called_once_with("dead", "old-1")

        task = service.task_queue.enqueue.call_args.args[0]
        assert task.type == TYPE_AGGREGATE
        assert task.payload == '{"log_id": 5, "payload": {}}'
        assert task.max_retry == 3

        service.job_log_repo.update_task_id.assert_called_once_with(5, "new-1")
        service.task_queue.delete_task.assert_called_once_with("dead", "old-1")

    @pytest.mark.asyncio
    async def test_requeue_one_without_job_log(self, service):
        """A missing log association does not block the requeue."""
        service.task_queue.get_task_info.return_value = _dead_task("old-2")
        service.task_queue.enqueue.return_value = TaskInfo(
            id="new-2", type=TYPE_AGGREGATE, payload="", queue="default"
        )
        service.job_log_repo.get_by_task_id.return_value = None

        result = await service.requeue_one("old-2", "retry")

        assert result.new_task_id == "new-2"
        service.job_log_repo.update_task_id.assert_not_called()
        service.task_queue.delete_task.assert_called_once_with("retry", "old-2")

    @pytest.mark.asyncio
    async def test_requeue_one_log_lookup_error_is_tolerated(self, service):
        service.task_queue.get_task_info.return_value = _dead_task("old-3")
        service.task_queue.enqueue.return_value = TaskInfo(
            id="new-3", type=TYPE_AGGREGATE, payload="", queue="default"
        )
        service.job_log_repo.get_by_task_id.side_effect = Exception("db down")

        result = await service.requeue_one("old-3")

        assert result.new_task_id == "new-3"

    @pytest.mark.asyncio
    async def test_requeue_one_missing_task(self, service):
        service.task_queue.get_task_info.side_effect = TaskNotFoundError("dead", "ghost")

        with pytest.raises(TaskNotFoundError):
            await service.requeue_one("ghost")

        service.task_queue.enqueue.assert_not_called()

    @pytest.mark.asyncio
    async def test_requeue_one_enqueue_failure_keeps_original(self, service):
        service.task_queue.get_task_info.return_value = _dead_task("old-4")
        service.task_queue.enqueue.side_effect = EnqueueError("redis unavailable")

        with pytest.raises(EnqueueError):
            await service.requeue_one("old-4")

        service.task_queue.delete_task.assert_not_called()

    @pytest.mark.asyncio
    async def test_requeue_batch_partial_failure(self, service, linked_log):
        """Three ids, one missing from the queue: two requeued, one reported."""
        known = {"t1": _dead_task("t1"), "t3": _dead_task("t3")}

        async def get_task_info(queue, task_id):
            if task_id not in known:
                raise TaskNotFoundError(queue, task_id)
            return known[task_id]

        new_ids = iter(["n1", "n3"])

        async def enqueue(task, queue="default"):
            return TaskInfo(id=next(new_ids), type=task.type, payload=task.payload, queue=queue)

        service.task_queue.get_task_info.side_effect = get_task_info
        service.task_queue.enqueue.side_effect = enqueue
        service.job_log_repo.get_by_task_id.return_value = linked_log

        result = await service.requeue_batch("dead", ["t1", "t2", "t3"])

        assert result.queue == "dead"
        assert result.reEnqueued == 2
        assert result.failed == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Task t2: ")
        assert "not found" in result.errors[0]

        deleted = [c.args for c in service.task_queue.delete_task.call_args_list]
        assert deleted == [("dead", "t1"), ("dead", "t3")]

    @pytest.mark.asyncio
    async def test_requeue_batch_enqueue_error_is_reported(self, service):
        service.task_queue.get_task_info.return_value = _dead_task("t9")
        service.task_queue.enqueue.side_effect = EnqueueError("broker down")

        result = await service.requeue_batch("dead", ["t9"])

        assert result.reEnqueued == 0
        assert result.failed == 1
        assert result.errors == ["Task t9: failed to enqueue: broker down"]
