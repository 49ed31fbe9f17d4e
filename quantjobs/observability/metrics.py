"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from quantjobs.constants import (
    METRIC_ADMISSION_REJECTED,
    METRIC_JOB_DURATION,
    METRIC_JOBS_FINISHED,
    METRIC_JOBS_SUBMITTED,
    METRIC_QUEUE_DEPTH,
    METRIC_STUCK_JOBS,
    METRIC_WORKERS_BUSY,
    QueueTier,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the quantization job core.

    Collects metrics for:
    - Queue depth per tier
    - Job submissions and terminal outcomes
    - Job execution duration
    - Busy worker slots
    - Admission rejections and stuck-job sweeps
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of job ids waiting in the priority queue",
            ["tier"],
            registry=self._registry,
        )

        self.jobs_submitted = Counter(
            METRIC_JOBS_SUBMITTED,
            "Total number of jobs admitted",
            ["tier", "method"],
            registry=self._registry,
        )

        self.jobs_finished = Counter(
            METRIC_JOBS_FINISHED,
            "Total number of jobs that reached a terminal status",
            ["status"],
            registry=self._registry,
        )

        # Quantization runs take minutes to hours
        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job processing duration in seconds",
            ["method", "status"],
            buckets=(1.0, 10.0, 30.0, 60.0, 300.0, 900.0, 1800.0, 3600.0, 7200.0),
            registry=self._registry,
        )

        self.workers_busy = Gauge(
            METRIC_WORKERS_BUSY,
            "Number of worker slots currently running a job",
            registry=self._registry,
        )

        self.admission_rejected = Counter(
            METRIC_ADMISSION_REJECTED,
            "Total number of refused submissions",
            ["reason"],
            registry=self._registry,
        )

        self.stuck_jobs = Counter(
            METRIC_STUCK_JOBS,
            "Total number of processing jobs force-failed by the monitor",
            registry=self._registry,
        )

    def record_job_submitted(self, tier: int, method: str) -> None:
        """Record an admitted job."""
        self.jobs_submitted.labels(tier=_tier_label(tier), method=method).inc()

    def record_job_finished(
        self,
        status: str,
        method: str | None = None,
        duration_seconds: float | None = None,
    ) -> None:
        """Record a terminal transition, with its duration when it ran."""
        self.jobs_finished.labels(status=status).inc()
        if method is not None and duration_seconds is not None:
            self.job_duration.labels(method=method, status=status).observe(
                duration_seconds
            )

    def record_admission_rejected(self, reason: str) -> None:
        """Record a refused submission."""
        self.admission_rejected.labels(reason=reason).inc()

    def record_stuck_jobs(self, count: int) -> None:
        """Record jobs force-failed by a sweep."""
        if count:
            self.stuck_jobs.inc(count)

    def update_queue_depth(self, tier: int, depth: int) -> None:
        """Update queue depth for a tier."""
        self.queue_depth.labels(tier=_tier_label(tier)).set(depth)

    def set_workers_busy(self, count: int) -> None:
        """Update the number of busy worker slots."""
        self.workers_busy.set(count)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)


def _tier_label(tier: int) -> str:
    try:
        return QueueTier(tier).name.lower()
    except ValueError:
        return str(tier)


def setup_metrics(port: int | None = None) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Args:
        port: If given, also expose the registry over HTTP on this port.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    if port is not None:
        start_http_server(port)
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
