"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import IntEnum, StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - QUEUED -> PROCESSING (worker picked the job)
    - QUEUED -> CANCELLED (user cancellation)
    - QUEUED -> FAILED (forced failure)
    - PROCESSING -> COMPLETED (engine succeeded)
    - PROCESSING -> FAILED (engine error, timeout, stuck job)
    """

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


class QuantizationMethod(StrEnum):
    """Quantization technique requested for a job."""

    INT8 = "int8"
    INT4 = "int4"
    GPTQ = "gptq"
    AWQ = "awq"
    GGUF_Q4_0 = "gguf_q4_0"
    GGUF_Q5_0 = "gguf_q5_0"


class ModelFormat(StrEnum):
    """Serialization format of a model file."""

    PYTORCH = "pytorch"
    ONNX = "onnx"
    SAFETENSORS = "safetensors"
    GGUF = "gguf"


class SubscriptionPlan(StrEnum):
    """Subscription plans an owner can be on."""

    FREE = "free"
    STARTER = "starter"
    PRO = "pro"


class QueueTier(IntEnum):
    """Queue precedence. Higher value is dequeued first."""

    FREE = 1
    STARTER = 2
    PRO = 3


class CreditTransactionType(StrEnum):
    """Kinds of rows in the credit ledger."""

    CONSUMPTION = "consumption"
    REFUND = "refund"
    GRANT = "grant"


PLAN_QUEUE_TIERS: dict[SubscriptionPlan, QueueTier] = {
    SubscriptionPlan.FREE: QueueTier.FREE,
    SubscriptionPlan.STARTER: QueueTier.STARTER,
    SubscriptionPlan.PRO: QueueTier.PRO,
}

# Base credit cost per method, before the size multiplier
METHOD_BASE_COST: dict[QuantizationMethod, int] = {
    QuantizationMethod.INT8: 1,
    QuantizationMethod.INT4: 1,
    QuantizationMethod.GPTQ: 2,
    QuantizationMethod.AWQ: 2,
    QuantizationMethod.GGUF_Q4_0: 1,
    QuantizationMethod.GGUF_Q5_0: 1,
}

# (threshold in bytes, multiplier), checked largest first
SIZE_MULTIPLIERS: tuple[tuple[int, int], ...] = (
    (140_000_000_000, 3),
    (26_000_000_000, 2),
)

# File extensions per format; the first one is used for new files
FORMAT_EXTENSIONS: dict[ModelFormat, tuple[str, ...]] = {
    ModelFormat.PYTORCH: (".pt", ".pth", ".bin"),
    ModelFormat.ONNX: (".onnx",),
    ModelFormat.SAFETENSORS: (".safetensors",),
    ModelFormat.GGUF: (".gguf",),
}

_TORCH_FORMATS = frozenset({ModelFormat.PYTORCH, ModelFormat.SAFETENSORS})

# method -> (accepted input formats, accepted output formats)
METHOD_COMPATIBILITY: dict[
    QuantizationMethod, tuple[frozenset[ModelFormat], frozenset[ModelFormat]]
] = {
    QuantizationMethod.INT8: (
        frozenset({ModelFormat.ONNX}),
        frozenset({ModelFormat.ONNX}),
    ),
    QuantizationMethod.INT4: (_TORCH_FORMATS, _TORCH_FORMATS),
    QuantizationMethod.GPTQ: (_TORCH_FORMATS, _TORCH_FORMATS),
    QuantizationMethod.AWQ: (_TORCH_FORMATS, _TORCH_FORMATS),
    QuantizationMethod.GGUF_Q4_0: (_TORCH_FORMATS, frozenset({ModelFormat.GGUF})),
    QuantizationMethod.GGUF_Q5_0: (_TORCH_FORMATS, frozenset({ModelFormat.GGUF})),
}

# Default values
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
PROGRESS_STARTED = 10
PROGRESS_DONE = 100
STUCK_JOB_REASON = "stuck: exceeded processing timeout"

# Metrics names
METRIC_QUEUE_DEPTH = "quant_queue_depth"
METRIC_JOBS_SUBMITTED = "quant_jobs_submitted_total"
METRIC_JOBS_FINISHED = "quant_jobs_finished_total"
METRIC_JOB_DURATION = "quant_job_duration_seconds"
METRIC_WORKERS_BUSY = "quant_workers_busy"
METRIC_ADMISSION_REJECTED = "quant_admission_rejected_total"
METRIC_STUCK_JOBS = "quant_stuck_jobs_failed_total"

# Trace span names
SPAN_SUBMIT_JOB = "submit_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_SWEEP = "stuck_job_sweep"

# Notification event types
EVENT_JOB_CREATED = "job.created"
EVENT_JOB_COMPLETED = "job.completed"
EVENT_JOB_FAILED = "job.failed"
EVENT_JOB_CANCELLED = "job.cancelled"
