"""
Pytest configuration and shared fixtures.
"""

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any
from uuid import UUID

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from quantjobs.billing import plan_allotments
from quantjobs.config import Settings
from quantjobs.constants import JobStatus, ModelFormat, QuantizationMethod, QueueTier
from quantjobs.db.connection import create_engine, create_schema, create_session_factory
from quantjobs.db.models import Job
from quantjobs.db.repository import JobRepository
from quantjobs.lifecycle import JobLifecycle
from quantjobs.observability.metrics import MetricsCollector
from quantjobs.queue import PriorityJobQueue
from quantjobs.service import JobService
from quantjobs.worker.pool import InFlightSet, WorkerPool

from tests.fakes import FakeEngine, FakeStorage, RecordingNotifier


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """Get the test database URL (a fresh SQLite file per test)."""
    return f"sqlite+aiosqlite:///{tmp_path / 'quantjobs_test.db'}"


@pytest_asyncio.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an async database engine with the schema in place."""
    engine = create_engine(database_url)
    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(async_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests."""
    async with session_factory() as session:
        yield session

        # Rollback any uncommitted changes
        await session.rollback()


# ============================================================================
# Settings and components
# ============================================================================


@pytest.fixture
def test_settings(tmp_path: Path, database_url: str) -> Settings:
    """Create test settings."""
    return Settings(
        database_url=database_url,
        log_level="DEBUG",
        log_format="console",
        worker_max_concurrent=2,
        worker_poll_interval_seconds=0.01,
        worker_job_timeout_seconds=5.0,
        worker_temp_dir=str(tmp_path / "work"),
        monitor_sweep_interval_seconds=0.05,
        monitor_processing_timeout_seconds=10.0,
        monitor_safety_margin_seconds=1.0,
        storage_root=str(tmp_path / "storage"),
    )


@pytest.fixture
def metrics_registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def metrics(metrics_registry: CollectorRegistry) -> MetricsCollector:
    """Metrics collector on a private registry."""
    return MetricsCollector(registry=metrics_registry)


@pytest.fixture
def lifecycle(session_factory: async_sessionmaker[AsyncSession]) -> JobLifecycle:
    return JobLifecycle(session_factory)


@pytest.fixture
def queue() -> PriorityJobQueue:
    return PriorityJobQueue()


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def storage(tmp_path: Path) -> FakeStorage:
    return FakeStorage(tmp_path / "inputs")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def in_flight() -> InFlightSet:
    return InFlightSet()


@pytest.fixture
def service(
    session_factory: async_sessionmaker[AsyncSession],
    queue: PriorityJobQueue,
    storage: FakeStorage,
    notifier: RecordingNotifier,
    lifecycle: JobLifecycle,
    test_settings: Settings,
    metrics: MetricsCollector,
) -> JobService:
    return JobService(
        session_factory=session_factory,
        queue=queue,
        storage=storage,
        notifier=notifier,
        allotments=plan_allotments(test_settings),
        lifecycle=lifecycle,
        metrics=metrics,
    )


@pytest.fixture
def make_pool(
    queue: PriorityJobQueue,
    lifecycle: JobLifecycle,
    engine: FakeEngine,
    storage: FakeStorage,
    notifier: RecordingNotifier,
    in_flight: InFlightSet,
    test_settings: Settings,
    metrics: MetricsCollector,
) -> Callable[..., WorkerPool]:
    """Build a worker pool from the shared doubles; keyword overrides win."""

    def factory(**overrides: Any) -> WorkerPool:
        kwargs: dict[str, Any] = {
            "queue": queue,
            "lifecycle": lifecycle,
            "engine": engine,
            "storage": storage,
            "notifier": notifier,
            "in_flight": in_flight,
            "max_concurrent": test_settings.worker_max_concurrent,
            "poll_interval": test_settings.worker_poll_interval_seconds,
            "job_timeout": test_settings.worker_job_timeout_seconds,
            "temp_dir": test_settings.worker_temp_dir,
            "metrics": metrics,
        }
        kwargs.update(overrides)
        return WorkerPool(**kwargs)

    return factory


# ============================================================================
# Helpers
# ============================================================================


@pytest.fixture
def create_job(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[Job]]:
    """Insert a QUEUED job directly, bypassing admission."""

    async def factory(
        owner_id: str = "owner-1",
        original_size: int = 1_000_000_000,
        priority: int = QueueTier.FREE,
        method: QuantizationMethod = QuantizationMethod.INT8,
        input_format: ModelFormat = ModelFormat.ONNX,
        output_format: ModelFormat = ModelFormat.ONNX,
        credits_charged: int = 1,
    ) -> Job:
        async with session_factory() as session:
            job = await JobRepository(session).create_job(
                owner_id=owner_id,
                name="test-model",
                quantization_method=method,
                input_format=input_format,
                output_format=output_format,
                input_file_ref=f"{owner_id}/model.onnx",
                original_size=original_size,
                priority=int(priority),
                credits_charged=credits_charged,
            )
            await session.commit()
        return job

    return factory


@pytest.fixture
def wait_for_status(
    lifecycle: JobLifecycle,
) -> Callable[..., Awaitable[Job]]:
    """Poll a job until it reaches one of the given statuses."""

    async def waiter(
        job_id: UUID,
        *statuses: JobStatus,
        timeout: float = 5.0,
    ) -> Job:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            job = await lifecycle.get(job_id)
            if job.status in statuses:
                return job
            if loop.time() > deadline:
                raise AssertionError(
                    f"Job {job_id} stuck in {job.status}, expected {statuses}"
                )
            await asyncio.sleep(0.01)

    return waiter
