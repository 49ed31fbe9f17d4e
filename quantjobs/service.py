"""
Job service facade.

Entry point for whatever front end sits on top of the job core: submission
with admission control, lookups, listing and cancellation, plus the
startup hook that rebuilds the in-memory queue from the database.
"""

import logging
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quantjobs.billing import (
    AdmissionController,
    calculate_job_cost,
    check_compatibility,
)
from quantjobs.collaborators.interfaces import FileStorage, Notifier
from quantjobs.collaborators.notifier import EventSender
from quantjobs.constants import (
    PLAN_QUEUE_TIERS,
    SPAN_SUBMIT_JOB,
    JobStatus,
    ModelFormat,
    QuantizationMethod,
    SubscriptionPlan,
)
from quantjobs.db.ledger import CreditLedgerRepository
from quantjobs.db.models import Job, Subscription
from quantjobs.db.repository import JobRepository
from quantjobs.errors import AdmissionError, FileAccessDenied
from quantjobs.lifecycle import JobLifecycle
from quantjobs.observability.metrics import MetricsCollector, get_metrics
from quantjobs.observability.tracing import get_tracer
from quantjobs.queue import PriorityJobQueue
from quantjobs.types.api import JobPage, JobResponse, PaginationParams, SubmitJobRequest
from quantjobs.types.events import JobEvent

logger = logging.getLogger(__name__)


class JobService:
    """
    Facade over admission, the job store and the priority queue.

    Submission is write-then-enqueue: credits are consumed and the QUEUED
    row is inserted in one transaction, and only after it commits does the
    id enter the queue. Owner notifications are sent in the background and
    never delay the caller.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        queue: PriorityJobQueue,
        storage: FileStorage,
        notifier: Notifier,
        allotments: dict[SubscriptionPlan, int | None],
        lifecycle: JobLifecycle | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self._session_factory = session_factory
        self._queue = queue
        self._storage = storage
        self._events = EventSender(notifier)
        self._allotments = allotments
        self._lifecycle = lifecycle or JobLifecycle(session_factory)
        self._metrics = metrics or get_metrics()

    def _ledger(self, session: AsyncSession) -> CreditLedgerRepository:
        return CreditLedgerRepository(session, self._allotments)

    async def submit_job(
        self,
        owner_id: str,
        file_ref: str,
        name: str,
        method: QuantizationMethod,
        output_format: ModelFormat,
    ) -> Job:
        """
        Admit a job, persist it as QUEUED and enqueue it.

        Raises:
            pydantic.ValidationError: If an argument is malformed (e.g. empty name).
            FileNotFound: If the input file does not exist.
            FileAccessDenied: If the input file belongs to another owner.
            InvalidCombination: If the method cannot convert between the formats.
            InsufficientCredits: If the owner cannot afford the job.
        """
        request = SubmitJobRequest(
            owner_id=owner_id,
            file_ref=file_ref,
            name=name,
            method=method,
            output_format=output_format,
        )

        with get_tracer().start_as_current_span(SPAN_SUBMIT_JOB) as span:
            span.set_attribute("owner_id", request.owner_id)
            span.set_attribute("method", request.method.value)
            try:
                job = await self._admit(request)
            except AdmissionError as e:
                self._metrics.record_admission_rejected(type(e).__name__)
                logger.info(
                    "Submission rejected",
                    extra={"owner_id": request.owner_id, "reason": str(e)}
                )
                raise
            span.set_attribute("job_id", str(job.id))

        self._queue.enqueue(job.id, job.priority)
        self._metrics.record_job_submitted(job.priority, job.quantization_method.value)
        self._metrics.update_queue_depth(job.priority, self._queue.size(job.priority))

        logger.info(
            "Job submitted",
            extra={
                "job_id": str(job.id),
                "owner_id": job.owner_id,
                "priority": job.priority,
                "credits_charged": job.credits_charged,
            }
        )
        self._events.send(JobEvent.job_created(job))
        return job

    async def _admit(self, request: SubmitJobRequest) -> Job:
        metadata = await self._storage.metadata(request.file_ref)
        if metadata.owner_id != request.owner_id:
            raise FileAccessDenied(
                f"File {request.file_ref} does not belong to {request.owner_id}"
            )
        check_compatibility(request.method, metadata.format, request.output_format)
        cost = calculate_job_cost(request.method, metadata.size_bytes)

        job_id = uuid4()
        async with self._session_factory() as session:
            ledger = self._ledger(session)
            plan = await ledger.get_plan(request.owner_id)

            # Raises InsufficientCredits; the session then rolls back unused
            await AdmissionController(ledger).check_and_reserve(
                request.owner_id, cost, job_id=job_id
            )
            job = await JobRepository(session).create_job(
                owner_id=request.owner_id,
                name=request.name,
                quantization_method=request.method,
                input_format=metadata.format,
                output_format=request.output_format,
                input_file_ref=request.file_ref,
                original_size=metadata.size_bytes,
                priority=int(PLAN_QUEUE_TIERS[plan]),
                credits_charged=cost,
                job_id=job_id,
            )
            await session.commit()
        return job

    async def get_job(self, job_id: UUID) -> Job:
        """
        Raises:
            JobNotFound: If the id is unknown.
        """
        return await self._lifecycle.get(job_id)

    async def list_jobs(
        self,
        owner_id: str,
        status: JobStatus | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> JobPage:
        """List an owner's jobs, newest first."""
        params = PaginationParams(page=page, per_page=per_page, status=status)
        async with self._session_factory() as session:
            jobs, total = await JobRepository(session).list_jobs(
                owner_id=owner_id,
                status=params.status,
                limit=params.per_page,
                offset=params.offset,
            )

        return JobPage(
            jobs=[JobResponse.model_validate(job) for job in jobs],
            total=total,
            page=params.page,
            per_page=params.per_page,
            has_next=params.offset + len(jobs) < total,
        )

    async def cancel_job(self, job_id: UUID) -> Job:
        """
        Cancel a QUEUED job and refund its credits.

        Raises:
            JobNotFound: If the id is unknown.
            NotCancellable: If the job is no longer queued.
        """

        async def refund(session: AsyncSession, job: Job) -> None:
            if job.credits_charged > 0:
                await self._ledger(session).refund(
                    job.owner_id, job.credits_charged, job.id
                )

        job = await self._lifecycle.cancel(job_id, on_cancel=refund)
        self._queue.discard(job_id)
        self._metrics.record_job_finished(JobStatus.CANCELLED.value)

        logger.info(
            "Job cancelled",
            extra={"job_id": str(job_id), "refunded": job.credits_charged}
        )
        self._events.send(JobEvent.job_cancelled(job))
        return job

    async def restore_queue(self) -> int:
        """
        Re-enqueue persisted QUEUED jobs, oldest first.

        The queue lives in memory only; call this once at startup before
        workers begin dequeuing.

        Returns:
            Number of ids added to the queue.
        """
        async with self._session_factory() as session:
            queued = await JobRepository(session).list_queued_jobs()

        restored = sum(1 for job in queued if self._queue.enqueue(job.id, job.priority))
        logger.info("Queue restored", extra={"restored": restored})
        return restored

    async def drain_notifications(self) -> None:
        """Wait for pending job.created / job.cancelled deliveries. Call on shutdown."""
        await self._events.drain()

    async def job_stats(self, owner_id: str | None = None) -> dict[str, int]:
        """Job counts by status, optionally for one owner."""
        async with self._session_factory() as session:
            counts = await JobRepository(session).get_job_stats(owner_id)
        return {status.value: counts.get(status.value, 0) for status in JobStatus}

    async def available_credits(self, owner_id: str) -> int:
        """Credits the owner can still spend this period."""
        async with self._session_factory() as session:
            return await AdmissionController(self._ledger(session)).available(owner_id)

    async def set_plan(self, owner_id: str, plan: SubscriptionPlan) -> Subscription:
        """Move an owner to a plan; starts a new billing period."""
        async with self._session_factory() as session:
            subscription = await self._ledger(session).set_plan(owner_id, plan)
            await session.commit()
        return subscription
