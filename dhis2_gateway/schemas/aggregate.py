from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from dhis2_gateway.core.queue_policies import DEAD


class AggregateRequest(BaseModel):
    """Caller-facing aggregate submission; dataValues maps field codes to values."""

    orgUnit: str = Field(..., examples=["g8xY5g6WgXl"])
    orgUnitName: Optional[str] = Field(None, examples=["Health Center 1"])
    period: str = Field(..., examples=["202401"])
    dataSet: str = Field(..., examples=["pKxY5g6WgDm"])
    dataValues: Dict[str, Any] = Field(default_factory=dict)


class DataValue(BaseModel):
    dataElement: str
    value: str
    categoryOptionCombo: Optional[str] = None


class DataValueSetPayload(BaseModel):
    """Body of POST /api/dataValueSets."""

    dataSet: str
    period: str
    orgUnit: str
    completeDate: str
    dataValues: List[DataValue] = Field(default_factory=list)


class AggregateResponse(BaseModel):
    message: str = "Aggregate request queued for processing"
    payload: DataValueSetPayload
    submission_id: int
    task_id: str


class ReEnqueueResponse(BaseModel):
    message: str
    task_id: str
    new_task_id: str


class BatchReEnqueueRequest(BaseModel):
    queue: str = DEAD
    task_ids: List[str] = Field(default_factory=list)


class BatchReEnqueueResponse(BaseModel):
    queue: str
    reEnqueued: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)
