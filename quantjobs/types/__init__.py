"""
Type definitions for the quantization job core.
Contains input/output type definitions grouped by module.
"""

from quantjobs.types.api import (
    JobPage,
    JobResponse,
    PaginationParams,
    SubmitJobRequest,
)
from quantjobs.types.events import JobEvent
from quantjobs.types.job import (
    EngineConfig,
    EngineProfile,
    EngineResult,
    FileMetadata,
    QueueEntry,
)

__all__ = [
    # API types
    "SubmitJobRequest",
    "JobResponse",
    "JobPage",
    "PaginationParams",
    # Job types
    "QueueEntry",
    "EngineProfile",
    "EngineConfig",
    "EngineResult",
    "FileMetadata",
    # Event types
    "JobEvent",
]
