from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from dhis2_gateway.core.database import get_async_session
from dhis2_gateway.core.logging import get_logger
from dhis2_gateway.schemas.mapping import MappingCreateRequest, MappingResponse
from dhis2_gateway.services.mapping_service import MappingService

router = APIRouter()
logger = get_logger(__name__)


@router.get("", response_model=List[MappingResponse])
async def list_mappings(
    code: Optional[str] = None,
    dataset: Optional[str] = None,
    dataelement: Optional[str] = None,
    category_option_combo: Optional[str] = None,
    uid: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    session: AsyncSession = Depends(get_async_session),
):
    """List mapping rows, optionally filtered by exact field values."""
    filters = {
        "code": code,
        "dataset": dataset,
        "dataelement": dataelement,
        "category_option_combo": category_option_combo,
        "uid": uid,
    }
    service = MappingService(session)
    return await service.list_mappings(filters, page=page, page_size=page_size)


@router.post("", response_model=MappingResponse, status_code=status.HTTP_201_CREATED)
async def create_mapping(
    data: MappingCreateRequest,
    session: AsyncSession = Depends(get_async_session),
):
    """Add a field code to DHIS2 data element mapping."""
    try:
        service = MappingService(session)
        return await service.create_mapping(data)
    except Exception as e:
        logger.error(f"Error creating mapping: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create mapping"
        )
