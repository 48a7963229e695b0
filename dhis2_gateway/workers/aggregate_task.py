import json
from typing import Any, Dict

from pydantic import ValidationError

from dhis2_gateway.core.exceptions import MalformedTaskError
from dhis2_gateway.core.queue_policies import MAX_RETRY
from dhis2_gateway.core.task_queue import Task, TaskInfo
from dhis2_gateway.schemas.queue import AggregateTaskPayload

TYPE_AGGREGATE = "aggregate:send"


def new_aggregate_task(log_id: int, request: Dict[str, Any]) -> Task:
    """Task carrying the job log id and the original request."""
    payload = AggregateTaskPayload(log_id=log_id, payload=request)
    return Task(
        type=TYPE_AGGREGATE,
        payload=json.dumps(payload.model_dump(), default=str),
        max_retry=MAX_RETRY,
    )


def parse_aggregate_task(info: TaskInfo) -> AggregateTaskPayload:
    try:
        return AggregateTaskPayload(**json.loads(info.payload))
    except (ValueError, TypeError, ValidationError) as e:
        raise MalformedTaskError(f"cannot decode task {info.id}: {e}") from e
