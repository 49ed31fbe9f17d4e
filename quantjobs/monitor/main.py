"""
Stuck-job monitor for reconciling orphaned PROCESSING jobs.

The monitor runs periodically, independent of any worker pool, to find jobs
whose updated_at stopped moving for longer than processing_timeout (the
worker crashed or was killed) and force-fail them. processing_timeout is
validated to exceed the worker's job deadline plus a margin, so a healthy
worker is never raced.
"""

import asyncio
import logging
import time
from pathlib import Path
from uuid import UUID

from quantjobs.collaborators.interfaces import Notifier
from quantjobs.collaborators.notifier import send_event
from quantjobs.constants import SPAN_SWEEP, STUCK_JOB_REASON, JobStatus
from quantjobs.errors import JobNotFound, TransitionError
from quantjobs.lifecycle import JobLifecycle
from quantjobs.observability.metrics import MetricsCollector, get_metrics
from quantjobs.observability.tracing import get_tracer
from quantjobs.types.events import JobEvent
from quantjobs.worker.pool import remove_work_dir

logger = logging.getLogger(__name__)


class StuckJobMonitor:
    """
    Periodic sweep that force-fails stuck jobs.

    Runs periodically to:
    1. Find PROCESSING jobs with updated_at older than processing_timeout
    2. Move them to FAILED, ignoring jobs a worker finished in the meantime
    3. Remove their temp dirs under temp_dir/<job id>
    4. Remove old temp dirs of jobs that are terminal or unknown
    """

    def __init__(
        self,
        lifecycle: JobLifecycle,
        processing_timeout: float,
        sweep_interval: float,
        temp_dir: str | Path,
        notifier: Notifier | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the monitor.

        Args:
            lifecycle: State machine used for the forced failure.
            processing_timeout: Seconds without an update before a job is stuck.
            sweep_interval: Seconds between sweeps.
            temp_dir: Root of the workers' per-job temp dirs.
            notifier: Optional notifier told about forced failures.
            metrics: Metrics collector. Defaults to the global one.
        """
        self._lifecycle = lifecycle
        self.processing_timeout = processing_timeout
        self.interval = sweep_interval
        self.temp_dir = Path(temp_dir)
        self._notifier = notifier
        self._running = False
        self._stop_event = asyncio.Event()
        self._metrics = metrics or get_metrics()

    async def start(self) -> None:
        """Start the sweep loop."""
        logger.info(f"Stuck-job monitor starting with interval {self.interval}s")
        self._running = True
        self._stop_event.clear()

        while self._running:
            try:
                failed = await self.run_once()
                if failed > 0:
                    logger.warning(f"Force-failed {failed} stuck jobs")
            except Exception as e:
                logger.exception(f"Error in monitor loop: {e}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Stuck-job monitor stopped")

    async def stop(self) -> None:
        """Stop the monitor."""
        logger.info("Stuck-job monitor stopping")
        self._running = False
        self._stop_event.set()

    async def run_once(self) -> int:
        """
        Run one sweep (also usable from tests or cron-style execution).

        Returns:
            Number of jobs force-failed.
        """
        with get_tracer().start_as_current_span(SPAN_SWEEP) as span:
            stuck = await self._lifecycle.find_stuck(self.processing_timeout)
            span.set_attribute("stuck_found", len(stuck))

            failed = 0
            for job in stuck:
                if await self._force_fail(job.id):
                    failed += 1

            span.set_attribute("stuck_failed", failed)
            self._metrics.record_stuck_jobs(failed)

            removed = await self._sweep_work_dirs()
            span.set_attribute("work_dirs_removed", removed)
            return failed

    async def _force_fail(self, job_id: UUID) -> bool:
        """
        Fail one stuck job.

        Returns:
            False if the job reached a terminal status before the write.
        """
        try:
            job = await self._lifecycle.fail(job_id, STUCK_JOB_REASON)
        except (TransitionError, JobNotFound):
            logger.debug(
                "Stuck job already finished",
                extra={"job_id": str(job_id)}
            )
            return False

        logger.warning("Force-failed stuck job", extra={"job_id": str(job_id)})
        self._metrics.record_job_finished(JobStatus.FAILED.value)
        await remove_work_dir(self.temp_dir / str(job_id))
        if self._notifier is not None:
            await send_event(self._notifier, JobEvent.job_failed(job))
        return True

    async def _sweep_work_dirs(self) -> int:
        """
        Remove temp dirs left behind by dead workers or earlier processes.

        A dir is removed once it is older than processing_timeout and its
        job is terminal or unknown. Dirs of running jobs are left alone.

        Returns:
            Number of dirs removed.
        """
        cutoff = time.time() - self.processing_timeout
        candidates = await asyncio.to_thread(self._old_work_dirs, cutoff)

        removed = 0
        for job_id, work_dir in candidates:
            try:
                job = await self._lifecycle.get(job_id)
            except JobNotFound:
                job = None
            if job is not None and not job.is_terminal:
                continue
            await remove_work_dir(work_dir)
            removed += 1

        if removed:
            logger.info(f"Removed {removed} orphaned temp dirs")
        return removed

    def _old_work_dirs(self, cutoff: float) -> list[tuple[UUID, Path]]:
        """Job dirs under temp_dir last modified before cutoff (epoch seconds)."""
        if not self.temp_dir.is_dir():
            return []

        found = []
        for entry in self.temp_dir.iterdir():
            try:
                job_id = UUID(entry.name)
                if not entry.is_dir() or entry.stat().st_mtime >= cutoff:
                    continue
            except (ValueError, FileNotFoundError):
                # Not a job dir, or removed by its worker meanwhile
                continue
            found.append((job_id, entry))
        return found
