"""
Domain exceptions.

Admission errors are raised synchronously to the caller and leave no job
behind. Transition errors are race-guard rejections from the state machine.
Execution errors never escape a worker; they end up in a job's error_message.
"""

from uuid import UUID


class QuantJobsError(Exception):
    """Base class for all domain errors."""


# ============================================================================
# Admission
# ============================================================================


class AdmissionError(QuantJobsError):
    """Submission was refused; no job was created."""


class InsufficientCredits(AdmissionError):
    """Owner does not have enough credits left this period."""

    def __init__(self, owner_id: str, required: int, available: int):
        self.owner_id = owner_id
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient credits for {owner_id}: "
            f"required {required}, available {available}"
        )


class InvalidCombination(AdmissionError):
    """Method cannot turn the input format into the requested output format."""


class FileNotFound(AdmissionError):
    """Referenced input file does not exist."""


class FileAccessDenied(AdmissionError):
    """Referenced input file belongs to another owner."""


# ============================================================================
# Lifecycle
# ============================================================================


class JobNotFound(QuantJobsError):
    """No job with the given id."""

    def __init__(self, job_id: UUID):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class TransitionError(QuantJobsError):
    """Base class for rejected state transitions."""


class InvalidTransition(TransitionError):
    """Transition is not allowed from the job's current status."""

    def __init__(self, job_id: UUID, current: str, target: str):
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(f"Job {job_id}: cannot move from {current} to {target}")


class AlreadyTerminal(InvalidTransition):
    """Job already reached a terminal status."""


class NotCancellable(InvalidTransition):
    """Only queued jobs can be cancelled."""


# ============================================================================
# Execution
# ============================================================================


class ExecutionError(QuantJobsError):
    """Raised inside a worker iteration; recorded on the job as a failure."""


class EngineError(ExecutionError):
    """Quantization engine reported a failure."""


class EngineTimeout(ExecutionError):
    """Quantization engine exceeded its deadline."""


class StorageError(QuantJobsError):
    """File storage could not fetch or store a file."""


__all__ = [
    "QuantJobsError",
    "AdmissionError",
    "InsufficientCredits",
    "InvalidCombination",
    "FileNotFound",
    "FileAccessDenied",
    "JobNotFound",
    "TransitionError",
    "InvalidTransition",
    "AlreadyTerminal",
    "NotCancellable",
    "ExecutionError",
    "EngineError",
    "EngineTimeout",
    "StorageError",
]
