from .common import BaseResponse, ErrorResponse, PaginatedResponse
from .aggregate import (
    AggregateRequest,
    DataValue,
    DataValueSetPayload,
    AggregateResponse,
    ReEnqueueResponse,
    BatchReEnqueueRequest,
    BatchReEnqueueResponse,
)
from .job_log import JobLogResponse, JobLogQueryParams
from .mapping import MappingCreateRequest, MappingResponse
from .queue import AggregateTaskPayload

__all__ = [
    "BaseResponse",
    "ErrorResponse",
    "PaginatedResponse",
    "AggregateRequest",
    "DataValue",
    "DataValueSetPayload",
    "AggregateResponse",
    "ReEnqueueResponse",
    "BatchReEnqueueRequest",
    "BatchReEnqueueResponse",
    "JobLogResponse",
    "JobLogQueryParams",
    "MappingCreateRequest",
    "MappingResponse",
    "AggregateTaskPayload",
]
