from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy import Column, Integer, String, DateTime, Text, func
from sqlalchemy.orm import Mapped

from .base import BaseModel, JSONType

STATUS_QUEUED = "queued"
STATUS_FAILED = "failed"


class JobLog(BaseModel):
    """One row per aggregate submission and its delivery lifecycle."""

    __tablename__ = "submission_log"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    submitted_at: Mapped[datetime] = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    payload: Mapped[Dict[str, Any]] = Column(JSONType, nullable=False)
    dhis2_payload: Mapped[Optional[Dict[str, Any]]] = Column(JSONType, nullable=True)
    # queued|failed|<DHIS2 import status>
    status: Mapped[str] = Column(String(50), nullable=False, default=STATUS_QUEUED, index=True)
    retry_count: Mapped[int] = Column(Integer, nullable=False, default=0, server_default="0")
    last_attempt_at: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), nullable=True)
    task_id: Mapped[Optional[str]] = Column(String(100), nullable=True, index=True)
    response: Mapped[Optional[str]] = Column(Text, nullable=True)
    errors: Mapped[Optional[str]] = Column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<JobLog(id={self.id}, status='{self.status}', task_id={self.task_id})>"

    @property
    def is_orphaned(self) -> bool:
        """Committed but never linked to a broker task."""
        return self.status == STATUS_QUEUED and not self.task_id
