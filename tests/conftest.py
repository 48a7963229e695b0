"""
Pytest configuration and fixtures for gateway tests.
"""
from contextlib import asynccontextmanager
from datetime import datetime
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock
import fakeredis.aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from dhis2_gateway.core.redis_client import RedisClient
from dhis2_gateway.core.task_queue import TaskInfo, TaskQueueClient
from dhis2_gateway.models.dhis2_mapping import Dhis2Mapping
from dhis2_gateway.models.job_log import JobLog
from dhis2_gateway.workers.aggregate_task import new_aggregate_task


@pytest_asyncio.fixture
async def mock_session():
    """Mock database session."""
    session = AsyncMock(spec=AsyncSession)
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    return session


@pytest.fixture
def session_factory(mock_session):
    """Stand-in for AsyncSessionLocal yielding the mock session."""
    @asynccontextmanager
    async def factory():
        yield mock_session
    return factory


@pytest_asyncio.fixture
async def fake_redis():
    """In-memory Redis speaking the real protocol semantics."""
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def redis_double(fake_redis):
    """RedisClient stand-in backed by fakeredis."""
    redis_mock = MagicMock(spec=RedisClient)
    redis_mock.client = fake_redis
    redis_mock.connect = AsyncMock()
    return redis_mock


@pytest.fixture
def mock_task_queue():
    """Mock task queue client."""
    queue = AsyncMock(spec=TaskQueueClient)
    queue.enqueue = AsyncMock()
    queue.get_task_info = AsyncMock()
    queue.delete_task = AsyncMock(return_value=True)
    return queue


@pytest.fixture
def mock_job_log_repo():
    """Mock job log repository."""
    repo = AsyncMock()
    repo.create_job_log = AsyncMock()
    repo.get_by_id = AsyncMock()
    repo.get_by_task_id = AsyncMock()
    repo.update_task_id = AsyncMock(return_value=1)
    repo.update_dhis2_payload = AsyncMock(return_value=1)
    repo.update_status_and_errors = AsyncMock(return_value=1)
    repo.update_response = AsyncMock(return_value=1)
    repo.increment_retry = AsyncMock(return_value=1)
    repo.list_orphaned = AsyncMock(return_value=[])
    return repo


@pytest.fixture
def sample_mappings():
    """Code-keyed mapping table."""
    return {
        "BCG": Dhis2Mapping(id=1, code="BCG", dataelement="de1", category_option_combo="coc1"),
        "OPV0": Dhis2Mapping(id=2, code="OPV0", dataelement="de2", category_option_combo="coc2"),
    }


@pytest.fixture
def mock_mapping_repo(sample_mappings):
    """Mock mapping repository."""
    repo = AsyncMock()
    repo.get_mappings_by_scheme = AsyncMock(return_value=sample_mappings)
    return repo


@pytest.fixture
def fixed_clock():
    return lambda: datetime(2024, 2, 15, 10, 30)


@pytest.fixture
def sample_request():
    return {
        "orgUnit": "ou1",
        "period": "202401",
        "dataSet": "ds1",
        "dataValues": {"BCG": "10"},
    }


@pytest.fixture
def sample_job_log(sample_request):
    return JobLog(
        id=42,
        submitted_at=datetime(2024, 2, 15, 10, 0),
        payload=sample_request,
        status="queued",
        retry_count=0,
        task_id="task-1",
    )


@pytest.fixture
def sample_task_info(sample_request):
    task = new_aggregate_task(42, sample_request)
    return TaskInfo(
        id="task-1",
        type=task.type,
        payload=task.payload,
        queue="default",
        max_retry=task.max_retry,
        state="active",
    )
