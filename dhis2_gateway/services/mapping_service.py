from typing import List

from dhis2_gateway.models.dhis2_mapping import Dhis2Mapping
from dhis2_gateway.schemas.mapping import MappingCreateRequest
from .base_service import BaseService


class MappingService(BaseService):

    async def list_mappings(self, filters: dict, page: int = 1, page_size: int = 50) -> List[Dhis2Mapping]:
        return await self.mapping_repo.search(filters, offset=(page - 1) * page_size, limit=page_size)

    async def create_mapping(self, data: MappingCreateRequest) -> Dhis2Mapping:
        mapping = await self.mapping_repo.create(data.model_dump())
        await self.commit()
        self.logger.info("Mapping created", code=mapping.code, dataelement=mapping.dataelement)
        return mapping
