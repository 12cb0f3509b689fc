"""
Pytest configuration and fixtures for jobscope tests.

Provides:
- Async test database with SQLite
- Test client for API testing
- A recorder wired to the test database with deterministic telemetry
- Factory fixtures for creating test data
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from jobscope.config import AppConfig, Settings, get_config, get_settings
from jobscope.core.database import get_db
from jobscope.core.datetime_utils import utc_now
from jobscope.core.telemetry import CpuSample, MemorySample
from jobscope.main import app
from jobscope.models import Base, JobRun, JobStatus
from jobscope.services.baseline_store import BaselineStore
from jobscope.services.lifecycle_recorder import LifecycleRecorder

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# Override settings for testing
class TestSettings(Settings):
    database_url: str = TEST_DATABASE_URL
    debug: bool = True
    redis_url: str = ""
    failure_webhook_url: str = ""
    config_path: str = "does-not-exist.yml"
    scheduler_enabled: bool = False


def make_config(**sections: Any) -> AppConfig:
    """AppConfig with test defaults; keyword arguments replace whole sections."""
    data: dict[str, Any] = {
        "enabled": True,
        "telemetry": {"enabled": True, "sample_rate": 1.0, "capture_cpu": True},
        "payload": {"enabled": True, "strategy": "on_failure"},
        "notify": {"enabled": False},
    }
    data.update(sections)
    return AppConfig(data=data, settings=TestSettings())


class FakeSampler:
    """Telemetry sampler returning scripted readings."""

    def __init__(
        self,
        memory: list[MemorySample] | None = None,
        cpu: list[CpuSample | None] | None = None,
    ) -> None:
        self._memory = list(memory or [])
        self._cpu = list(cpu or [])
        self.memory_calls = 0
        self.cpu_calls = 0

    def memory(self) -> MemorySample:
        self.memory_calls += 1
        if len(self._memory) > 1:
            return self._memory.pop(0)
        return self._memory[0] if self._memory else MemorySample(None, None)

    def cpu(self) -> CpuSample | None:
        self.cpu_calls += 1
        if len(self._cpu) > 1:
            return self._cpu.pop(0)
        return self._cpu[0] if self._cpu else None


@pytest_asyncio.fixture
async def db_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def db_session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine (what the recorder uses)."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(db_session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async with db_session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def app_config() -> AppConfig:
    return make_config()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, app_config: AppConfig) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with database override."""

    async def override_get_db():
        yield db_session

    def override_get_settings():
        return TestSettings()

    def override_get_config():
        return app_config

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = override_get_settings
    app.dependency_overrides[get_config] = override_get_config

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================================
# Recorder Fixtures
# ============================================================================


@pytest.fixture
def sampler() -> FakeSampler:
    """Memory grows 10MB -> 12MB (peak 20MB -> 25MB), CPU advances 50ms user / 5ms sys."""
    return FakeSampler(
        memory=[
            MemorySample(current_bytes=10_000_000, peak_bytes=20_000_000),
            MemorySample(current_bytes=12_000_000, peak_bytes=25_000_000),
        ],
        cpu=[
            CpuSample(user_us=1_000_000, sys_us=200_000),
            CpuSample(user_us=1_050_000, sys_us=205_000),
        ],
    )


@pytest.fixture
def baselines() -> BaselineStore:
    return BaselineStore()


@pytest.fixture
def notifier() -> AsyncMock:
    mock = AsyncMock()
    mock.notify_failure.return_value = True
    return mock


@pytest.fixture
def recorder_factory(db_session_factory, baselines, sampler, notifier):
    """Factory for recorders sharing the test database.

    `sections` replaces whole config.yml sections; keyword arguments override
    recorder collaborators.
    """

    def _create(sections: dict[str, Any] | None = None, **kwargs: Any) -> LifecycleRecorder:
        options: dict[str, Any] = {
            "session_factory": db_session_factory,
            "baselines": baselines,
            "sampler": sampler,
            "notifier": notifier,
        }
        options.update(kwargs)
        return LifecycleRecorder(
            config=make_config(**(sections or {})),
            **options,
        )

    return _create


@pytest.fixture
def recorder(recorder_factory) -> LifecycleRecorder:
    return recorder_factory()


@pytest.fixture
def fetch_runs(db_session_factory):
    """Read job runs through a fresh session, oldest first."""
    from sqlalchemy import select

    async def _fetch(**criteria: Any) -> list[JobRun]:
        async with db_session_factory() as session:
            query = select(JobRun).filter_by(**criteria).order_by(JobRun.id)
            result = await session.execute(query)
            return list(result.scalars().all())

    return _fetch


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def job_run_factory(db_session: AsyncSession):
    """Factory for creating job runs directly in the database."""

    async def _create_job_run(
        job_class: str = "App.Jobs.SendEmail",
        status: JobStatus = JobStatus.PROCESSED,
        queue: str | None = "default",
        run_id: str | None = None,
        tags: list[str] | None = None,
        duration_ms: int | None = 100,
        exception_class: str | None = None,
        retried_from_id: int | None = None,
        payload: dict | None = None,
        created_at: datetime | None = None,
    ) -> JobRun:
        created = created_at or utc_now()
        run = JobRun(
            run_id=run_id or uuid.uuid4().hex,
            job_class=job_class,
            queue=queue,
            connection="database",
            status=status,
            started_at=created,
            finished_at=created + timedelta(milliseconds=duration_ms or 0)
            if status.is_terminal
            else None,
            duration_ms=duration_ms if status.is_terminal else None,
            exception_class=exception_class,
            tags=tags,
            retried_from_id=retried_from_id,
            payload=payload,
            created_at=created,
            updated_at=created,
        )
        db_session.add(run)
        await db_session.flush()
        return run

    return _create_job_run
