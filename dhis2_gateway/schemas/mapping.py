from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class MappingCreateRequest(BaseModel):
    uid: Optional[str] = Field(None, max_length=11)
    code: Optional[str] = Field(None, max_length=100)
    name: Optional[str] = None
    description: Optional[str] = None
    dataset: Optional[str] = Field(None, max_length=11)
    dataelement: str = Field(..., min_length=1, max_length=11)
    dhis2_name: Optional[str] = None
    category_option_combo: Optional[str] = Field(None, max_length=11)


class MappingResponse(MappingCreateRequest):
    id: int
    created: Optional[datetime] = None
    updated: Optional[datetime] = None

    class Config:
        from_attributes = True
