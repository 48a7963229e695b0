from abc import ABC
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from dhis2_gateway.core.logging import get_logger
from dhis2_gateway.core.task_queue import TaskQueueClient
from dhis2_gateway.repositories import JobLogRepository, MappingRepository


class BaseService(ABC):
    """Base service class with common functionality."""

    def __init__(self, session: AsyncSession, task_queue: Optional[TaskQueueClient] = None):
        self.session = session
        self.logger = get_logger(self.__class__.__name__)

        # Initialize repositories
        self.job_log_repo = JobLogRepository(session)
        self.mapping_repo = MappingRepository(session)

        # Broker client for enqueue / inspect operations
        self.task_queue = task_queue or TaskQueueClient()

    async def commit(self):
        """Commit the current transaction."""
        try:
            await self.session.commit()
        except Exception as e:
            self.logger.error(f"Error committing transaction: {e}")
            await self.session.rollback()
            raise

    async def rollback(self):
        """Rollback the current transaction."""
        try:
            await self.session.rollback()
        except Exception as e:
            self.logger.error(f"Error rolling back transaction: {e}")
            raise
