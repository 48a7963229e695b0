from typing import List, Optional


class GatewayError(Exception):
    """Base class for gateway errors."""


class ClientInputError(GatewayError):
    """Malformed JSON or a request that does not match the aggregate schema."""

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


class PersistenceError(GatewayError):
    """A JobLog insert or update failed."""


class EnqueueError(GatewayError):
    """The broker refused or could not be reached while enqueueing a task."""


class TaskNotFoundError(GatewayError):

    def __init__(self, queue: str, task_id: str):
        super().__init__(f"task {task_id} not found in queue {queue}")
        self.queue = queue
        self.task_id = task_id


class DeliveryError(GatewayError):
    """DHIS2 rejected the payload or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class MalformedTaskError(GatewayError):
    """A task payload could not be decoded into a log id and request."""
