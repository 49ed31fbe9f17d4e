"""
Unit tests for the job repository.
"""

from datetime import timedelta
from uuid import uuid4

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from quantjobs.constants import JobStatus, ModelFormat, QuantizationMethod
from quantjobs.db.models import utc_now
from quantjobs.db.repository import JobRepository


class TestJobRepository:
    """Tests for JobRepository."""

    @pytest_asyncio.fixture
    async def repo(self, db_session: AsyncSession) -> JobRepository:
        """Create a repository instance."""
        return JobRepository(db_session)

    async def _create(self, repo: JobRepository, owner_id: str = "owner-1", **kwargs):
        values = {
            "owner_id": owner_id,
            "name": "llama",
            "quantization_method": QuantizationMethod.GPTQ,
            "input_format": ModelFormat.PYTORCH,
            "output_format": ModelFormat.SAFETENSORS,
            "input_file_ref": f"{owner_id}/llama.pt",
            "original_size": 2_000,
            "priority": 2,
            "credits_charged": 2,
        }
        values.update(kwargs)
        return await repo.create_job(**values)

    async def test_create_job_success(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """Test successful job creation."""
        job_id = uuid4()
        job = await self._create(repo, job_id=job_id)
        await db_session.commit()

        assert job.id == job_id
        assert job.status == JobStatus.QUEUED
        assert job.progress == 0
        assert job.credits_charged == 2
        assert job.download_token
        assert job.output_file_ref is None

    async def test_download_tokens_are_unique(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        first = await self._create(repo)
        second = await self._create(repo)
        await db_session.commit()

        assert first.download_token != second.download_token

    async def test_start_job_only_once(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        job = await self._create(repo)
        await db_session.commit()

        started = await repo.start_job(job.id)
        again = await repo.start_job(job.id)
        await db_session.commit()

        assert started is not None
        assert started.status == JobStatus.PROCESSING
        assert again is None

    async def test_cancel_only_queued(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        queued = await self._create(repo)
        running = await self._create(repo)
        await db_session.commit()
        await repo.start_job(running.id)

        assert (await repo.cancel_job(queued.id)).status == JobStatus.CANCELLED
        assert await repo.cancel_job(running.id) is None
        assert await repo.get_status(running.id) == JobStatus.PROCESSING

    async def test_list_jobs_filters_and_paginates(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        for _ in range(3):
            await self._create(repo, owner_id="owner-a")
        other = await self._create(repo, owner_id="owner-b")
        await db_session.commit()
        await repo.fail_job(other.id, "boom")

        jobs, total = await repo.list_jobs("owner-a", limit=2, offset=0)
        rest, _ = await repo.list_jobs("owner-a", limit=2, offset=2)
        failed, failed_total = await repo.list_jobs("owner-b", status=JobStatus.FAILED)

        assert total == 3
        assert len(jobs) == 2
        assert len(rest) == 1
        assert jobs[0].created_at >= jobs[1].created_at
        assert failed_total == 1
        assert failed[0].error_message == "boom"

    async def test_list_queued_jobs_oldest_first(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        first = await self._create(repo)
        second = await self._create(repo)
        cancelled = await self._create(repo)
        await db_session.commit()
        await repo.cancel_job(cancelled.id)

        queued = await repo.list_queued_jobs()

        assert [job.id for job in queued] == [first.id, second.id]

    async def test_find_stuck_jobs(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        stuck = await self._create(repo)
        fresh = await self._create(repo)
        await db_session.commit()
        await repo.start_job(stuck.id)
        await repo.start_job(fresh.id)
        await repo._transition(
            stuck.id,
            [JobStatus.PROCESSING],
            updated_at=utc_now() - timedelta(hours=3),
        )
        await db_session.commit()

        found = await repo.find_stuck_jobs(utc_now() - timedelta(hours=1))

        assert [job.id for job in found] == [stuck.id]

    async def test_get_job_stats(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        a = await self._create(repo, owner_id="owner-a")
        await self._create(repo, owner_id="owner-a")
        await self._create(repo, owner_id="owner-b")
        await db_session.commit()
        await repo.cancel_job(a.id)
        await db_session.commit()

        assert await repo.get_job_stats("owner-a") == {"queued": 1, "cancelled": 1}
        assert (await repo.get_job_stats())["queued"] == 2
