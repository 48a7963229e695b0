from .job_log import JobLog
from .dhis2_mapping import Dhis2Mapping

__all__ = [
    "JobLog",
    "Dhis2Mapping",
]
