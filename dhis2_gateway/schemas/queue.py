from typing import Any, Dict
from pydantic import BaseModel


class AggregateTaskPayload(BaseModel):
    """Payload of an ``aggregate:send`` task: the log row id and the original request."""

    log_id: int
    payload: Dict[str, Any]
