"""
Bounded worker pool driving queued jobs to a terminal status.

At most max_concurrent jobs are PROCESSING per pool. A slot is acquired
before a job is dequeued, so the pool never holds work it cannot run; when
the queue is empty the slot is released and the loop sleeps.

Every job ends COMPLETED or FAILED. Engine and storage errors, deadlines and
engine crashes are all converted to FAILED at this boundary; nothing escapes
a job task. There is no automatic retry.
"""

import asyncio
import logging
import shutil
import threading
import time
from functools import partial
from pathlib import Path
from uuid import UUID

from quantjobs.collaborators.engine import build_engine_config
from quantjobs.collaborators.interfaces import FileStorage, Notifier, QuantizationEngine
from quantjobs.collaborators.notifier import EventSender
from quantjobs.constants import SPAN_EXECUTE_JOB, JobStatus
from quantjobs.db.models import Job
from quantjobs.errors import (
    EngineError,
    EngineTimeout,
    JobNotFound,
    TransitionError,
)
from quantjobs.lifecycle import JobLifecycle
from quantjobs.observability.logging import job_context
from quantjobs.observability.metrics import MetricsCollector, get_metrics
from quantjobs.observability.tracing import get_tracer
from quantjobs.queue import PriorityJobQueue
from quantjobs.types.events import JobEvent

logger = logging.getLogger(__name__)


class InFlightSet:
    """
    Job ids currently claimed by a worker.

    Owned by whoever builds the pool and passed in by reference, so several
    pools can share one set and tests can inspect it.
    """

    def __init__(self) -> None:
        self._ids: set[UUID] = set()
        self._lock = threading.Lock()

    def add(self, job_id: UUID) -> bool:
        """Claim an id. Returns False if it was already claimed."""
        with self._lock:
            if job_id in self._ids:
                return False
            self._ids.add(job_id)
            return True

    def discard(self, job_id: UUID) -> None:
        with self._lock:
            self._ids.discard(job_id)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)


async def remove_work_dir(work_dir: Path) -> None:
    """Delete a job's temp directory; missing directories are fine."""
    await asyncio.to_thread(shutil.rmtree, work_dir, True)


class WorkerPool:
    """
    Pulls job ids from the priority queue and runs them under a semaphore.

    Features:
    - Concurrency bound by an asyncio.Semaphore of max_concurrent slots
    - Duplicate ids rejected through the injected InFlightSet
    - Hard per-job deadline around the engine call
    - Per-job temp dir under temp_dir/<job id>, removed on every exit
    - Notifications sent in the background after the slot is freed
    - Graceful stop: running jobs and pending notifications are awaited,
      queued jobs stay queued
    """

    def __init__(
        self,
        queue: PriorityJobQueue,
        lifecycle: JobLifecycle,
        engine: QuantizationEngine,
        storage: FileStorage,
        notifier: Notifier,
        in_flight: InFlightSet,
        max_concurrent: int,
        poll_interval: float,
        job_timeout: float,
        temp_dir: str | Path,
        metrics: MetricsCollector | None = None,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")

        self._queue = queue
        self._lifecycle = lifecycle
        self._engine = engine
        self._storage = storage
        self._events = EventSender(notifier)
        self._in_flight = in_flight
        self.max_concurrent = max_concurrent
        self.poll_interval = poll_interval
        self.job_timeout = job_timeout
        self.temp_dir = Path(temp_dir)

        self._slots = asyncio.Semaphore(max_concurrent)
        self._tasks: set[asyncio.Task] = set()
        self._running = False
        self._stop_event = asyncio.Event()
        self._metrics = metrics or get_metrics()

    @property
    def active_count(self) -> int:
        """Jobs this pool is currently running."""
        return len(self._tasks)

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Run the dispatch loop until stop() is called."""
        logger.info(
            "Worker pool starting",
            extra={
                "max_concurrent": self.max_concurrent,
                "job_timeout": self.job_timeout,
            }
        )
        self._running = True
        self._stop_event.clear()
        self.temp_dir.mkdir(parents=True, exist_ok=True)

        while self._running:
            await self._slots.acquire()
            if not self._running:
                self._slots.release()
                break

            if not self._dispatch_one():
                await self._idle()

        # Wait for current jobs to complete
        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} jobs to complete")
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._events.pending:
            logger.info(f"Waiting for {self._events.pending} notifications")
            await self._events.drain()

        logger.info("Worker pool stopped")

    async def stop(self) -> None:
        """Stop taking new jobs. start() returns once running jobs finish."""
        logger.info("Worker pool stopping")
        self._running = False
        self._stop_event.set()

    def _dispatch_one(self) -> bool:
        """
        Hand one queued job to a task. Expects a slot to be held.

        Returns:
            False if the queue was empty; the slot has been released.
        """
        job_id = self._queue.dequeue()
        self._publish_queue_depth()
        if job_id is None:
            self._slots.release()
            return False

        if not self._in_flight.add(job_id):
            logger.warning(
                "Job already in flight, skipping",
                extra={"job_id": str(job_id)}
            )
            self._slots.release()
            return True

        task = asyncio.create_task(self._run_job(job_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def _run_job(self, job_id: UUID) -> None:
        """Drive one claimed job. Releases the slot and claim on every exit."""
        work_dir = self.temp_dir / str(job_id)
        self._metrics.set_workers_busy(self.active_count)
        with job_context(str(job_id)):
            try:
                with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                    span.set_attribute("job_id", str(job_id))
                    job = await self._start(job_id)
                    if job is None:
                        return
                    span.set_attribute("method", job.quantization_method.value)
                    span.set_attribute("priority", job.priority)

                    finished = await self._execute(job, work_dir)
                    if finished is not None:
                        span.set_attribute("status", finished.status.value)
                        self._notify(finished)
            except Exception:
                logger.exception("Unhandled error running job")
            finally:
                await remove_work_dir(work_dir)
                self._in_flight.discard(job_id)
                self._slots.release()
                self._metrics.set_workers_busy(self.active_count - 1)

    async def _start(self, job_id: UUID) -> Job | None:
        try:
            return await self._lifecycle.transition_to_processing(job_id)
        except (TransitionError, JobNotFound) as e:
            # Cancelled or failed while queued
            logger.info("Skipping job that is no longer queued", extra={"error": str(e)})
            return None

    async def _execute(self, job: Job, work_dir: Path) -> Job | None:
        """
        Fetch, quantize, store and complete one PROCESSING job.

        Returns:
            The job in its terminal status, or None if another party
            finished it first.
        """
        started = time.monotonic()
        method = job.quantization_method

        try:
            input_path = await self._storage.fetch(job.input_file_ref)
        except Exception as e:
            return await self._fail(job, f"storage error: {e}", started)

        work_dir.mkdir(parents=True, exist_ok=True)
        config = build_engine_config(method, job.output_format, work_dir)

        logger.info(
            "Executing job",
            extra={"method": method.value, "backend": config.profile.backend}
        )
        try:
            result = await asyncio.wait_for(
                self._engine.run(
                    input_path,
                    method,
                    config,
                    self.job_timeout,
                    progress=partial(self._report_progress, job.id),
                ),
                timeout=self.job_timeout,
            )
        except (asyncio.TimeoutError, EngineTimeout):
            return await self._fail(
                job, f"timeout: exceeded {self.job_timeout:g}s", started
            )
        except EngineError as e:
            return await self._fail(job, f"engine error: {e}", started)
        except Exception as e:
            logger.exception("Engine crashed")
            return await self._fail(job, f"engine crash: {type(e).__name__}: {e}", started)

        # Restart the monitor's clock; the upload gets its own deadline
        if not await self._heartbeat(job.id):
            return None
        try:
            output_ref = await asyncio.wait_for(
                self._storage.store(result.output_path),
                timeout=self.job_timeout,
            )
        except asyncio.TimeoutError:
            return await self._fail(
                job, f"storage error: upload exceeded {self.job_timeout:g}s", started
            )
        except Exception as e:
            return await self._fail(job, f"storage error: {e}", started)

        elapsed = time.monotonic() - started
        try:
            completed = await self._lifecycle.complete(
                job.id,
                output_ref,
                result.output_size_bytes,
                processing_seconds=elapsed,
            )
        except TransitionError as e:
            logger.warning("Job finished elsewhere before completion", extra={"error": str(e)})
            return None

        logger.info(
            "Job completed successfully",
            extra={
                "duration": f"{elapsed:.2f}s",
                "reduction_percent": completed.reduction_percent,
            }
        )
        self._metrics.record_job_finished(JobStatus.COMPLETED.value, method.value, elapsed)
        return completed

    async def _fail(self, job: Job, reason: str, started: float) -> Job | None:
        elapsed = time.monotonic() - started
        try:
            failed = await self._lifecycle.fail(job.id, reason, processing_seconds=elapsed)
        except TransitionError as e:
            logger.warning("Job finished elsewhere before failure", extra={"error": str(e)})
            return None

        logger.warning("Job failed", extra={"error": reason})
        self._metrics.record_job_finished(
            JobStatus.FAILED.value, job.quantization_method.value, elapsed
        )
        return failed

    async def _report_progress(self, job_id: UUID, progress: int) -> None:
        try:
            await self._lifecycle.update_progress(job_id, progress)
        except TransitionError:
            logger.debug("Progress ignored, job no longer processing")

    async def _heartbeat(self, job_id: UUID) -> bool:
        try:
            await self._lifecycle.heartbeat(job_id)
        except (TransitionError, JobNotFound) as e:
            logger.warning("Job finished elsewhere before upload", extra={"error": str(e)})
            return False
        return True

    def _notify(self, job: Job) -> None:
        if job.status == JobStatus.COMPLETED:
            event = JobEvent.job_completed(job)
        else:
            event = JobEvent.job_failed(job)
        self._events.send(event)

    def _publish_queue_depth(self) -> None:
        for tier, depth in self._queue.sizes_by_tier().items():
            self._metrics.update_queue_depth(tier, depth)
