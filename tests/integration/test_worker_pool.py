"""
Integration tests for the worker pool.
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

import pytest

from quantjobs.constants import JobStatus, QueueTier
from quantjobs.errors import EngineError
from quantjobs.lifecycle import JobLifecycle
from quantjobs.queue import PriorityJobQueue
from quantjobs.worker.pool import InFlightSet, WorkerPool

from tests.fakes import FakeEngine, FakeStorage, RecordingNotifier


@asynccontextmanager
async def running(pool: WorkerPool) -> AsyncGenerator[asyncio.Task]:
    task = asyncio.create_task(pool.start())
    try:
        yield task
    finally:
        await pool.stop()
        await asyncio.wait_for(task, timeout=5)


class TestWorkerPool:
    """Integration tests for job execution through the pool."""

    async def test_successful_job(
        self,
        make_pool,
        create_job,
        queue: PriorityJobQueue,
        engine: FakeEngine,
        storage: FakeStorage,
        notifier: RecordingNotifier,
        in_flight: InFlightSet,
        wait_for_status,
    ):
        """1 GB int8 model quantized to 250 MB completes with 75% reduction."""
        job = await create_job(original_size=1_000_000_000)
        queue.enqueue(job.id, job.priority)
        pool = make_pool()

        async with running(pool):
            done = await wait_for_status(job.id, JobStatus.COMPLETED, JobStatus.FAILED)

        assert done.status == JobStatus.COMPLETED
        assert done.reduction_percent == 75.0
        assert done.quantized_size == 250_000_000
        assert done.output_file_ref == storage.stored[0]
        assert done.processing_seconds is not None
        assert done.progress == 100
        assert done.error_message is None
        assert notifier.event_types() == ["job.completed"]
        assert len(in_flight) == 0
        assert not (pool.temp_dir / str(job.id)).exists()

    async def test_never_exceeds_max_concurrent(
        self,
        make_pool,
        create_job,
        queue: PriorityJobQueue,
        wait_for_status,
    ):
        engine = FakeEngine(delay=0.05)
        jobs = [await create_job() for _ in range(7)]
        for job in jobs:
            queue.enqueue(job.id, job.priority)
        pool = make_pool(engine=engine, max_concurrent=3)

        async with running(pool):
            for job in jobs:
                await wait_for_status(job.id, JobStatus.COMPLETED)

        assert len(engine.calls) == 7
        assert 1 < engine.max_active <= 3

    async def test_engine_deadline_fails_job(
        self,
        make_pool,
        create_job,
        queue: PriorityJobQueue,
        in_flight: InFlightSet,
        wait_for_status,
    ):
        """An engine call that never returns is failed with a timeout reason."""
        job = await create_job()
        queue.enqueue(job.id, job.priority)
        pool = make_pool(engine=FakeEngine(delay=3600), job_timeout=0.1)

        async with running(pool):
            failed = await wait_for_status(job.id, JobStatus.FAILED, JobStatus.COMPLETED)

        assert failed.status == JobStatus.FAILED
        assert "timeout" in failed.error_message
        assert failed.output_file_ref is None
        assert len(in_flight) == 0

    @pytest.mark.parametrize(
        "error,prefix",
        [
            (EngineError("unsupported layer"), "engine error: unsupported layer"),
            (RuntimeError("segfault"), "engine crash: RuntimeError: segfault"),
        ],
    )
    async def test_engine_failures_become_failed_jobs(
        self,
        make_pool,
        create_job,
        queue: PriorityJobQueue,
        notifier: RecordingNotifier,
        wait_for_status,
        error: Exception,
        prefix: str,
    ):
        first = await create_job()
        second = await create_job()
        queue.enqueue(first.id, first.priority)
        queue.enqueue(second.id, second.priority)
        pool = make_pool(engine=FakeEngine(error=error), max_concurrent=1)

        async with running(pool):
            failed = await wait_for_status(first.id, JobStatus.FAILED, JobStatus.COMPLETED)
            # The pool keeps going after a crash
            await wait_for_status(second.id, JobStatus.FAILED, JobStatus.COMPLETED)

        assert failed.error_message == prefix
        assert notifier.event_types() == ["job.failed", "job.failed"]

    async def test_fetch_failure(
        self,
        make_pool,
        create_job,
        queue: PriorityJobQueue,
        engine: FakeEngine,
        storage: FakeStorage,
        wait_for_status,
    ):
        storage.fail_fetch = True
        job = await create_job()
        queue.enqueue(job.id, job.priority)

        async with running(make_pool()):
            failed = await wait_for_status(job.id, JobStatus.FAILED, JobStatus.COMPLETED)

        assert failed.error_message.startswith("storage error:")
        assert engine.calls == []

    async def test_store_failure(
        self,
        make_pool,
        create_job,
        queue: PriorityJobQueue,
        storage: FakeStorage,
        wait_for_status,
    ):
        storage.fail_store = True
        job = await create_job()
        queue.enqueue(job.id, job.priority)

        async with running(make_pool()):
            failed = await wait_for_status(job.id, JobStatus.FAILED, JobStatus.COMPLETED)

        assert failed.error_message.startswith("storage error:")
        assert failed.quantized_size is None

    async def test_notification_failure_does_not_affect_job(
        self,
        make_pool,
        create_job,
        queue: PriorityJobQueue,
        wait_for_status,
    ):
        job = await create_job()
        queue.enqueue(job.id, job.priority)

        async with running(make_pool(notifier=RecordingNotifier(fail=True))):
            done = await wait_for_status(job.id, JobStatus.COMPLETED, JobStatus.FAILED)

        assert done.status == JobStatus.COMPLETED

    async def test_slow_notifier_does_not_hold_a_slot(
        self,
        make_pool,
        create_job,
        queue: PriorityJobQueue,
        wait_for_status,
    ):
        """With one slot, the second job runs while the first is still being announced."""
        notifier = RecordingNotifier(delay=2.0)
        first = await create_job()
        second = await create_job()
        queue.enqueue(first.id, first.priority)
        queue.enqueue(second.id, second.priority)
        pool = make_pool(notifier=notifier, max_concurrent=1)

        async with running(pool):
            await wait_for_status(second.id, JobStatus.COMPLETED, timeout=1.0)
            assert notifier.events == []

        # stop() waits for pending deliveries
        assert notifier.event_types() == ["job.completed", "job.completed"]

    async def test_heartbeat_before_upload(
        self,
        make_pool,
        create_job,
        lifecycle: JobLifecycle,
        queue: PriorityJobQueue,
        wait_for_status,
        tmp_path: Path,
    ):
        """updated_at is refreshed after the engine returns, before the result is stored."""
        seen: list = []

        class WatchingStorage(FakeStorage):
            async def store(self, local_path: Path) -> str:
                seen.append(await lifecycle.get(job.id))
                return await super().store(local_path)

        job = await create_job()
        queue.enqueue(job.id, job.priority)
        pool = make_pool(
            engine=FakeEngine(delay=0.2),
            storage=WatchingStorage(tmp_path / "watched"),
        )

        async with running(pool):
            await wait_for_status(job.id, JobStatus.COMPLETED)

        uploading = seen[0]
        assert uploading.status == JobStatus.PROCESSING
        assert (uploading.updated_at - uploading.started_at).total_seconds() >= 0.15

    async def test_upload_deadline_fails_job(
        self,
        make_pool,
        create_job,
        queue: PriorityJobQueue,
        storage: FakeStorage,
        in_flight: InFlightSet,
        wait_for_status,
    ):
        storage.store_delay = 3600
        job = await create_job()
        queue.enqueue(job.id, job.priority)

        async with running(make_pool(job_timeout=0.5)):
            failed = await wait_for_status(job.id, JobStatus.FAILED, JobStatus.COMPLETED)

        assert failed.error_message == "storage error: upload exceeded 0.5s"
        assert failed.output_file_ref is None
        assert storage.stored == []
        assert len(in_flight) == 0

    async def test_skips_cancelled_job(
        self,
        make_pool,
        create_job,
        lifecycle: JobLifecycle,
        queue: PriorityJobQueue,
        engine: FakeEngine,
    ):
        job = await create_job()
        queue.enqueue(job.id, job.priority)
        await lifecycle.cancel(job.id)

        async with running(make_pool()):
            while len(queue):
                await asyncio.sleep(0.01)
            await asyncio.sleep(0.05)

        assert engine.calls == []
        assert (await lifecycle.get(job.id)).status == JobStatus.CANCELLED

    async def test_skips_job_already_in_flight(
        self,
        make_pool,
        create_job,
        lifecycle: JobLifecycle,
        queue: PriorityJobQueue,
        engine: FakeEngine,
        in_flight: InFlightSet,
    ):
        job = await create_job()
        in_flight.add(job.id)
        queue.enqueue(job.id, job.priority)

        async with running(make_pool()):
            while len(queue):
                await asyncio.sleep(0.01)
            await asyncio.sleep(0.05)

        assert engine.calls == []
        assert (await lifecycle.get(job.id)).status == JobStatus.QUEUED
        assert job.id in in_flight

    async def test_higher_tier_runs_first(
        self,
        make_pool,
        create_job,
        queue: PriorityJobQueue,
        engine: FakeEngine,
        wait_for_status,
    ):
        starter = await create_job(priority=QueueTier.STARTER)
        pro = await create_job(priority=QueueTier.PRO)
        queue.enqueue(starter.id, starter.priority)
        queue.enqueue(pro.id, pro.priority)

        async with running(make_pool(max_concurrent=1)):
            await wait_for_status(starter.id, JobStatus.COMPLETED)

        assert engine.calls == [str(pro.id), str(starter.id)]

    async def test_stop_waits_for_running_jobs(
        self,
        make_pool,
        create_job,
        lifecycle: JobLifecycle,
        queue: PriorityJobQueue,
    ):
        engine = FakeEngine(delay=0.2)
        job = await create_job()
        queue.enqueue(job.id, job.priority)
        pool = make_pool(engine=engine)

        task = asyncio.create_task(pool.start())
        while not engine.calls:
            await asyncio.sleep(0.01)
        await pool.stop()
        await asyncio.wait_for(task, timeout=5)

        assert pool.active_count == 0
        assert not pool.is_running
        assert (await lifecycle.get(job.id)).status == JobStatus.COMPLETED

    async def test_temp_dirs_removed(
        self,
        make_pool,
        create_job,
        queue: PriorityJobQueue,
        wait_for_status,
    ):
        job = await create_job()
        queue.enqueue(job.id, job.priority)
        pool = make_pool(engine=FakeEngine(error=EngineError("boom")))

        async with running(pool):
            await wait_for_status(job.id, JobStatus.FAILED)
            await asyncio.sleep(0.05)

        assert list(Path(pool.temp_dir).iterdir()) == []

    def test_rejects_zero_concurrency(self, make_pool):
        with pytest.raises(ValueError):
            make_pool(max_concurrent=0)
