"""
Job repository for database operations.
Implements the core data access patterns for job management.
"""

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID, uuid4

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from quantjobs.constants import (
    PROGRESS_DONE,
    PROGRESS_STARTED,
    JobStatus,
    ModelFormat,
    QuantizationMethod,
)
from quantjobs.db.models import Job, utc_now

logger = logging.getLogger(__name__)


class JobRepository:
    """
    Repository for job database operations.

    Every status change is a single compare-and-set statement:
    UPDATE ... WHERE id = :id AND status IN (:allowed) RETURNING *.
    A None result means the job is missing or was not in an allowed status;
    callers decide which error that is.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    async def create_job(
        self,
        owner_id: str,
        name: str,
        quantization_method: QuantizationMethod,
        input_format: ModelFormat,
        output_format: ModelFormat,
        input_file_ref: str,
        original_size: int,
        priority: int,
        credits_charged: int,
        job_id: UUID | None = None,
    ) -> Job:
        """
        Create a new job in QUEUED status.

        The row is flushed but not committed; the caller owns the transaction
        so that credit consumption and job creation commit together.

        Returns:
            The new Job.
        """
        now = utc_now()
        job = Job(
            id=job_id or uuid4(),
            owner_id=owner_id,
            name=name,
            status=JobStatus.QUEUED,
            priority=priority,
            progress=0,
            quantization_method=quantization_method,
            input_format=input_format,
            output_format=output_format,
            input_file_ref=input_file_ref,
            original_size=original_size,
            credits_charged=credits_charged,
            created_at=now,
            updated_at=now,
        )
        self._session.add(job)
        await self._session.flush()

        logger.info(
            "Created new job",
            extra={"job_id": str(job.id), "owner_id": owner_id}
        )
        return job

    async def get_job(self, job_id: UUID) -> Job | None:
        """
        Get a job by ID.

        Args:
            job_id: The job UUID.

        Returns:
            The Job or None if not found.
        """
        stmt = select(Job).where(Job.id == job_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_status(self, job_id: UUID) -> JobStatus | None:
        """Read only the status column, without loading the entity."""
        stmt = select(Job.status).where(Job.id == job_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_original_size(self, job_id: UUID) -> int | None:
        """Read the immutable original size of a job."""
        stmt = select(Job.original_size).where(Job.id == job_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        owner_id: str,
        status: JobStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[Job], int]:
        """
        List jobs for an owner with optional filtering.

        Args:
            owner_id: The owner identifier.
            status: Optional status filter.
            limit: Maximum number of jobs to return.
            offset: Offset for pagination.

        Returns:
            Tuple of (jobs, total_count).
        """
        base_filter = Job.owner_id == owner_id
        if status is not None:
            base_filter = and_(base_filter, Job.status == status)

        count_stmt = select(func.count()).select_from(Job).where(base_filter)
        count_result = await self._session.execute(count_stmt)
        total = count_result.scalar() or 0

        stmt = (
            select(Job)
            .where(base_filter)
            .order_by(Job.created_at.desc(), Job.id)
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        jobs = result.scalars().all()

        return jobs, total

    async def list_queued_jobs(self) -> Sequence[Job]:
        """Queued jobs in submission order, for rebuilding the queue."""
        stmt = (
            select(Job)
            .where(Job.status == JobStatus.QUEUED)
            .order_by(Job.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def _transition(
        self,
        job_id: UUID,
        allowed_from: Iterable[JobStatus],
        **values: Any,
    ) -> Job | None:
        """Compare-and-set update of one job row."""
        values.setdefault("updated_at", utc_now())
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.status.in_(list(allowed_from)),
                )
            )
            .values(**values)
            .returning(Job)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def start_job(self, job_id: UUID) -> Job | None:
        """
        Transition job from QUEUED to PROCESSING.

        Returns:
            Updated Job or None if transition failed.
        """
        now = utc_now()
        job = await self._transition(
            job_id,
            [JobStatus.QUEUED],
            status=JobStatus.PROCESSING,
            started_at=now,
            updated_at=now,
            progress=PROGRESS_STARTED,
        )
        if job:
            logger.info("Started job processing", extra={"job_id": str(job_id)})
        return job

    async def complete_job(
        self,
        job_id: UUID,
        output_file_ref: str,
        quantized_size: int,
        reduction_percent: float,
        processing_seconds: float | None = None,
    ) -> Job | None:
        """
        Mark a PROCESSING job as COMPLETED.

        Returns:
            Updated Job or None if transition failed.
        """
        now = utc_now()
        job = await self._transition(
            job_id,
            [JobStatus.PROCESSING],
            status=JobStatus.COMPLETED,
            output_file_ref=output_file_ref,
            quantized_size=quantized_size,
            reduction_percent=reduction_percent,
            processing_seconds=processing_seconds,
            progress=PROGRESS_DONE,
            completed_at=now,
            updated_at=now,
        )
        if job:
            logger.info("Job completed successfully", extra={"job_id": str(job_id)})
        return job

    async def fail_job(
        self,
        job_id: UUID,
        error: str,
        processing_seconds: float | None = None,
    ) -> Job | None:
        """
        Mark a QUEUED or PROCESSING job as FAILED.

        Returns:
            Updated Job or None if transition failed.
        """
        now = utc_now()
        job = await self._transition(
            job_id,
            [JobStatus.QUEUED, JobStatus.PROCESSING],
            status=JobStatus.FAILED,
            error_message=error,
            processing_seconds=processing_seconds,
            completed_at=now,
            updated_at=now,
        )
        if job:
            logger.warning(
                "Job failed",
                extra={"job_id": str(job_id), "error": error}
            )
        return job

    async def cancel_job(self, job_id: UUID) -> Job | None:
        """
        Mark a QUEUED job as CANCELLED.

        Returns:
            Updated Job or None if transition failed.
        """
        now = utc_now()
        job = await self._transition(
            job_id,
            [JobStatus.QUEUED],
            status=JobStatus.CANCELLED,
            completed_at=now,
            updated_at=now,
        )
        if job:
            logger.info("Job cancelled", extra={"job_id": str(job_id)})
        return job

    async def update_progress(self, job_id: UUID, progress: int) -> Job | None:
        """
        Record progress on a PROCESSING job.

        Also bumps updated_at, which is what the stuck-job monitor watches.
        """
        return await self._transition(
            job_id,
            [JobStatus.PROCESSING],
            progress=max(0, min(PROGRESS_DONE, progress)),
        )

    async def touch_job(self, job_id: UUID) -> Job | None:
        """Bump updated_at of a PROCESSING job without changing anything else."""
        return await self._transition(job_id, [JobStatus.PROCESSING])

    async def find_stuck_jobs(self, updated_before: datetime) -> Sequence[Job]:
        """
        Find PROCESSING jobs not updated since the cutoff.

        Args:
            updated_before: Jobs whose updated_at is older than this are stuck.

        Returns:
            The stuck jobs.
        """
        stmt = select(Job).where(
            and_(
                Job.status == JobStatus.PROCESSING,
                Job.updated_at < updated_before,
            )
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def get_job_stats(
        self,
        owner_id: str | None = None,
    ) -> dict[str, int]:
        """
        Get job statistics by status.

        Args:
            owner_id: Optional owner filter.

        Returns:
            Dictionary of status -> count.
        """
        stmt = (
            select(Job.status, func.count())
            .group_by(Job.status)
        )
        if owner_id is not None:
            stmt = stmt.where(Job.owner_id == owner_id)

        result = await self._session.execute(stmt)
        return {status.value: count for status, count in result.all()}
