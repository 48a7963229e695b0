from .job_log_repository import JobLogRepository
from .mapping_repository import MappingRepository

__all__ = [
    "JobLogRepository",
    "MappingRepository",
]
