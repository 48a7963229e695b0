from datetime import date, datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class JobLogResponse(BaseModel):
    id: int
    submitted_at: datetime
    payload: Dict[str, Any]
    dhis2_payload: Optional[Dict[str, Any]] = None
    status: str
    retry_count: int = 0
    last_attempt_at: Optional[datetime] = None
    task_id: Optional[str] = None
    response: Optional[str] = None
    errors: Optional[str] = None

    class Config:
        from_attributes = True


class JobLogQueryParams(BaseModel):
    """Query parameters accepted by GET /logs."""

    status: Optional[str] = None
    task_id: Optional[str] = None
    job_id: Optional[int] = Field(None, ge=1)
    submitted_at: Optional[date] = Field(None, description="Submission day (YYYY-MM-DD)")
    submitted_from: Optional[date] = Field(None, description="First submission day (YYYY-MM-DD)")
    submitted_to: Optional[date] = Field(None, description="Last submission day (YYYY-MM-DD)")
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, le=500)
