from typing import Optional
from sqlalchemy import Column, Integer, String, Text
from sqlalchemy.orm import Mapped

from .base import BaseModel, TimestampMixin


class Dhis2Mapping(BaseModel, TimestampMixin):
    """Translates a caller field code into a DHIS2 data element / category option combo."""

    __tablename__ = "dhis2_mappings"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    uid: Mapped[Optional[str]] = Column(String(11), nullable=True, index=True)
    code: Mapped[Optional[str]] = Column(String(100), nullable=True, index=True)
    name: Mapped[Optional[str]] = Column(String(255), nullable=True)
    description: Mapped[Optional[str]] = Column(Text, nullable=True)
    dataset: Mapped[Optional[str]] = Column(String(11), nullable=True, index=True)
    dataelement: Mapped[str] = Column(String(11), nullable=False, index=True)
    dhis2_name: Mapped[Optional[str]] = Column(String(255), nullable=True)
    category_option_combo: Mapped[Optional[str]] = Column(String(11), nullable=True)

    def __repr__(self) -> str:
        return f"<Dhis2Mapping(code='{self.code}', dataelement='{self.dataelement}')>"
