"""
Process entrypoint running one worker pool and one stuck-job monitor.

Wires settings, logging, metrics, tracing, the database and the default
collaborators together, rebuilds the queue from persisted QUEUED jobs and
runs until SIGTERM/SIGINT.
"""

import asyncio
import logging
import signal
from dataclasses import dataclass

from quantjobs.billing import plan_allotments
from quantjobs.collaborators import (
    CommandEngine,
    LocalFileStorage,
    LoggingNotifier,
    Notifier,
    WebhookNotifier,
)
from quantjobs.config import Settings, get_settings
from quantjobs.db import close_db, get_engine, init_db
from quantjobs.lifecycle import JobLifecycle
from quantjobs.monitor import StuckJobMonitor
from quantjobs.observability.logging import setup_logging
from quantjobs.observability.metrics import setup_metrics
from quantjobs.observability.tracing import instrument_sqlalchemy, setup_tracing
from quantjobs.queue import PriorityJobQueue
from quantjobs.service import JobService
from quantjobs.worker import InFlightSet, WorkerPool

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Everything one process needs, built once at startup."""

    service: JobService
    pool: WorkerPool
    monitor: StuckJobMonitor
    notifier: Notifier


def build_notifier(settings: Settings) -> Notifier:
    if settings.notification_webhook_url:
        return WebhookNotifier(
            settings.notification_webhook_url,
            timeout=settings.notification_timeout_seconds,
        )
    return LoggingNotifier()


async def build_runtime(settings: Settings) -> Runtime:
    """Create the database session factory and every component on top of it."""
    session_factory = await init_db()
    metrics = setup_metrics()

    queue = PriorityJobQueue()
    lifecycle = JobLifecycle(session_factory)
    storage = LocalFileStorage(settings.storage_root)
    notifier = build_notifier(settings)

    service = JobService(
        session_factory=session_factory,
        queue=queue,
        storage=storage,
        notifier=notifier,
        allotments=plan_allotments(settings),
        lifecycle=lifecycle,
        metrics=metrics,
    )
    pool = WorkerPool(
        queue=queue,
        lifecycle=lifecycle,
        engine=CommandEngine(settings.engine_command),
        storage=storage,
        notifier=notifier,
        in_flight=InFlightSet(),
        max_concurrent=settings.worker_max_concurrent,
        poll_interval=settings.worker_poll_interval_seconds,
        job_timeout=settings.worker_job_timeout_seconds,
        temp_dir=settings.worker_temp_dir,
        metrics=metrics,
    )
    monitor = StuckJobMonitor(
        lifecycle=lifecycle,
        processing_timeout=settings.monitor_processing_timeout_seconds,
        sweep_interval=settings.monitor_sweep_interval_seconds,
        temp_dir=settings.worker_temp_dir,
        notifier=notifier,
        metrics=metrics,
    )
    return Runtime(service=service, pool=pool, monitor=monitor, notifier=notifier)


async def run_async() -> None:
    """Run the worker pool and monitor asynchronously."""
    settings = get_settings()
    setup_logging(settings)
    setup_metrics(port=settings.prometheus_port)
    setup_tracing(settings)
    instrument_sqlalchemy(get_engine().sync_engine)

    runtime = await build_runtime(settings)
    restored = await runtime.service.restore_queue()
    logger.info(f"Restored {restored} queued jobs")

    async def shutdown() -> None:
        await runtime.pool.stop()
        await runtime.monitor.stop()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(shutdown()))

    try:
        await asyncio.gather(runtime.pool.start(), runtime.monitor.start())
    finally:
        await runtime.service.drain_notifications()
        if isinstance(runtime.notifier, WebhookNotifier):
            await runtime.notifier.aclose()
        await close_db()


def run() -> None:
    """Run the job core."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
