"""
Job lifecycle state machine.

    QUEUED ──► PROCESSING ──► COMPLETED
      │            │
      │            └────────► FAILED
      ├──────────────────────► FAILED
      └──────────────────────► CANCELLED

Each transition runs in its own short transaction as one compare-and-set
UPDATE on the job row, so concurrent callers on the same id are serialized
by the database without a process-wide lock. When the update matches no row
the current status is read back to raise the precise rejection.
"""

from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quantjobs.constants import TERMINAL_STATUSES, JobStatus
from quantjobs.db.models import Job, utc_now
from quantjobs.db.repository import JobRepository
from quantjobs.errors import (
    AlreadyTerminal,
    InvalidTransition,
    JobNotFound,
    NotCancellable,
)

# Called inside the cancel transaction with the cancelled job
CancelHook = Callable[[AsyncSession, Job], Awaitable[None]]

# target status -> statuses it may be entered from
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PROCESSING: frozenset({JobStatus.QUEUED}),
    JobStatus.COMPLETED: frozenset({JobStatus.PROCESSING}),
    JobStatus.FAILED: frozenset({JobStatus.QUEUED, JobStatus.PROCESSING}),
    JobStatus.CANCELLED: frozenset({JobStatus.QUEUED}),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Check whether the state graph has an edge current -> target."""
    return current in ALLOWED_TRANSITIONS.get(target, frozenset())


def calculate_reduction(original_size: int, quantized_size: int) -> float:
    """
    Size reduction in percent, clamped to [0, 100] and rounded to 1 decimal.

    An empty original reports 0.0.
    """
    if original_size <= 0:
        return 0.0
    reduction = (original_size - quantized_size) / original_size * 100.0
    return round(max(0.0, min(100.0, reduction)), 1)


class JobLifecycle:
    """
    Authority on job status.

    The Worker Pool and the Stuck-Job Monitor mutate jobs only through this
    class; submission creates rows through JobRepository inside the admission
    transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, job_id: UUID) -> Job:
        """
        Load a job.

        Raises:
            JobNotFound: If the id is unknown.
        """
        async with self._session_factory() as session:
            job = await JobRepository(session).get_job(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    async def transition_to_processing(self, job_id: UUID) -> Job:
        """
        QUEUED -> PROCESSING. Sets started_at.

        Raises:
            JobNotFound, InvalidTransition
        """
        async with self._session_factory() as session:
            repo = JobRepository(session)
            job = await repo.start_job(job_id)
            if job is None:
                current = await self._current_status(repo, job_id)
                raise InvalidTransition(job_id, current, JobStatus.PROCESSING)
            await session.commit()
        return job

    async def complete(
        self,
        job_id: UUID,
        output_ref: str,
        quantized_size: int,
        processing_seconds: float | None = None,
    ) -> Job:
        """
        PROCESSING -> COMPLETED. Records output, size and reduction percent.

        Raises:
            JobNotFound: If the id is unknown.
            AlreadyTerminal: If the job already finished.
            InvalidTransition: If the job never started.
        """
        async with self._session_factory() as session:
            repo = JobRepository(session)
            original_size = await repo.get_original_size(job_id)
            if original_size is None:
                raise JobNotFound(job_id)

            job = await repo.complete_job(
                job_id,
                output_file_ref=output_ref,
                quantized_size=quantized_size,
                reduction_percent=calculate_reduction(original_size, quantized_size),
                processing_seconds=processing_seconds,
            )
            if job is None:
                current = await self._current_status(repo, job_id)
                self._reject(job_id, current, JobStatus.COMPLETED)
            await session.commit()
        return job

    async def fail(
        self,
        job_id: UUID,
        reason: str,
        processing_seconds: float | None = None,
    ) -> Job:
        """
        QUEUED | PROCESSING -> FAILED. Records the reason as error_message.

        Raises:
            JobNotFound, AlreadyTerminal
        """
        async with self._session_factory() as session:
            repo = JobRepository(session)
            job = await repo.fail_job(job_id, reason, processing_seconds)
            if job is None:
                current = await self._current_status(repo, job_id)
                raise AlreadyTerminal(job_id, current, JobStatus.FAILED)
            await session.commit()
        return job

    async def cancel(
        self,
        job_id: UUID,
        on_cancel: CancelHook | None = None,
    ) -> Job:
        """
        QUEUED -> CANCELLED.

        Args:
            job_id: The job to cancel.
            on_cancel: Runs in the same transaction after the status change,
                e.g. to refund credits. An exception rolls the cancel back.

        Raises:
            JobNotFound, NotCancellable
        """
        async with self._session_factory() as session:
            repo = JobRepository(session)
            job = await repo.cancel_job(job_id)
            if job is None:
                current = await self._current_status(repo, job_id)
                raise NotCancellable(job_id, current, JobStatus.CANCELLED)
            if on_cancel is not None:
                await on_cancel(session, job)
            await session.commit()
        return job

    async def update_progress(self, job_id: UUID, progress: int) -> Job:
        """
        Record progress on a PROCESSING job.

        Raises:
            JobNotFound, InvalidTransition
        """
        async with self._session_factory() as session:
            repo = JobRepository(session)
            job = await repo.update_progress(job_id, progress)
            if job is None:
                current = await self._current_status(repo, job_id)
                raise InvalidTransition(job_id, current, JobStatus.PROCESSING)
            await session.commit()
        return job

    async def heartbeat(self, job_id: UUID) -> Job:
        """
        Mark a PROCESSING job as alive for the stuck-job monitor.

        Raises:
            JobNotFound, InvalidTransition
        """
        async with self._session_factory() as session:
            repo = JobRepository(session)
            job = await repo.touch_job(job_id)
            if job is None:
                current = await self._current_status(repo, job_id)
                self._reject(job_id, current, JobStatus.PROCESSING)
            await session.commit()
        return job

    async def find_stuck(self, older_than_seconds: float) -> Sequence[Job]:
        """PROCESSING jobs whose updated_at is older than the given age."""
        cutoff = utc_now() - timedelta(seconds=older_than_seconds)
        async with self._session_factory() as session:
            return await JobRepository(session).find_stuck_jobs(cutoff)

    @staticmethod
    async def _current_status(repo: JobRepository, job_id: UUID) -> JobStatus:
        status = await repo.get_status(job_id)
        if status is None:
            raise JobNotFound(job_id)
        return status

    @staticmethod
    def _reject(job_id: UUID, current: JobStatus, target: JobStatus) -> None:
        if current in TERMINAL_STATUSES:
            raise AlreadyTerminal(job_id, current, target)
        raise InvalidTransition(job_id, current, target)

