from .submission_service import SubmissionService, SubmissionResult
from .requeue_service import RequeueService, RequeueResult
from .log_service import LogService
from .mapping_service import MappingService

__all__ = [
    "SubmissionService",
    "SubmissionResult",
    "RequeueService",
    "RequeueResult",
    "LogService",
    "MappingService",
]
