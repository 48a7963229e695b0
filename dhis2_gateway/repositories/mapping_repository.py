from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from dhis2_gateway.models.dhis2_mapping import Dhis2Mapping
from .base_repository import BaseRepository

SCHEME_UID = "UID"


class MappingRepository(BaseRepository[Dhis2Mapping]):
    """Repository for the field code to DHIS2 data element mapping table."""

    def __init__(self, session: AsyncSession):
        super().__init__(Dhis2Mapping, session)

    async def get_mappings_by_scheme(self, scheme: str) -> Dict[str, Dhis2Mapping]:
        """
        Load the whole table keyed for lookup.

        With the ``UID`` scheme callers send data element ids, so rows are keyed
        by ``dataelement``; any other scheme keys them by ``code``.
        """
        try:
            result = await self.session.execute(select(Dhis2Mapping))
            rows = result.scalars().all()
        except Exception as e:
            self.logger.error(f"Error loading DHIS2 mappings: {e}")
            raise

        keyed = {}
        for row in rows:
            key = row.dataelement if scheme == SCHEME_UID else row.code
            if key:
                keyed[key] = row
        return keyed

    async def search(
        self,
        filters: Dict[str, Optional[str]],
        offset: int = 0,
        limit: int = 50,
    ) -> List[Dhis2Mapping]:
        return await self.get_all(offset=offset, limit=limit, filters=filters)
