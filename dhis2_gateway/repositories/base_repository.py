from typing import Generic, TypeVar, Type, List, Optional, Any, Dict
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func

from dhis2_gateway.core.database import Base
from dhis2_gateway.core.logging import get_logger

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Base repository class with common CRUD operations."""

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self.model = model
        self.session = session
        self.logger = get_logger(self.__class__.__name__)

    def _apply_filters(self, query, filters: Optional[Dict[str, Any]]):
        if filters:
            for field, value in filters.items():
                if value is not None and hasattr(self.model, field):
                    query = query.where(getattr(self.model, field) == value)
        return query

    async def get_by_id(self, id: Any) -> Optional[ModelType]:
        """Get a record by ID."""
        try:
            query = select(self.model).where(self.model.id == id)
            result = await self.session.execute(query)
            return result.scalars().first()
        except Exception as e:
            self.logger.error(f"Error getting {self.model.__name__} by ID {id}: {e}")
            raise

    async def get_all(
        self,
        offset: int = 0,
        limit: int = 100,
        filters: Dict[str, Any] = None
    ) -> List[ModelType]:
        """Get all records with pagination and optional equality filters."""
        try:
            query = self._apply_filters(select(self.model), filters)
            query = query.order_by(self.model.id).offset(offset).limit(limit)
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except Exception as e:
            self.logger.error(f"Error getting all {self.model.__name__}: {e}")
            raise

    async def count(self, filters: Dict[str, Any] = None) -> int:
        """Count records with optional filtering."""
        try:
            query = self._apply_filters(select(func.count(self.model.id)), filters)
            result = await self.session.execute(query)
            return result.scalar() or 0
        except Exception as e:
            self.logger.error(f"Error counting {self.model.__name__}: {e}")
            raise

    async def create(self, obj_data: Dict[str, Any]) -> ModelType:
        """Create a new record."""
        try:
            db_obj = self.model(**obj_data)
            self.session.add(db_obj)
            await self.session.flush()
            await self.session.refresh(db_obj)
            return db_obj
        except Exception as e:
            self.logger.error(f"Error creating {self.model.__name__}: {e}")
            await self.session.rollback()
            raise

    async def update(self, id: Any, obj_data: Dict[str, Any]) -> int:
        """Row-scoped UPDATE by ID; returns the number of rows touched."""
        try:
            if not obj_data:
                return 0
            query = update(self.model).where(self.model.id == id).values(**obj_data)
            result = await self.session.execute(query)
            return result.rowcount
        except Exception as e:
            self.logger.error(f"Error updating {self.model.__name__} with ID {id}: {e}")
            await self.session.rollback()
            raise

    async def delete(self, id: Any) -> bool:
        """Delete a record by ID."""
        try:
            query = delete(self.model).where(self.model.id == id)
            result = await self.session.execute(query)
            return result.rowcount > 0
        except Exception as e:
            self.logger.error(f"Error deleting {self.model.__name__} with ID {id}: {e}")
            await self.session.rollback()
            raise

    async def get_by_field(self, field: str, value: Any) -> Optional[ModelType]:
        """Get a record by a specific field."""
        try:
            if not hasattr(self.model, field):
                raise ValueError(f"Field {field} not found in {self.model.__name__}")

            query = select(self.model).where(getattr(self.model, field) == value)
            result = await self.session.execute(query)
            return result.scalars().first()
        except Exception as e:
            self.logger.error(f"Error getting {self.model.__name__} by {field}={value}: {e}")
            raise
