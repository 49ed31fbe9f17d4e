"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from uuid import UUID

from pydantic import BaseModel, Field

from quantjobs.constants import ModelFormat


@dataclass(order=True, frozen=True)
class QueueEntry:
    """
    One job waiting in the priority queue.

    Ordering is by sort_key only: higher tier first, then enqueue order.
    """

    sort_key: tuple[int, int]
    job_id: UUID = field(compare=False)
    priority: int = field(compare=False)
    enqueued_at: datetime = field(compare=False)


@dataclass(frozen=True)
class EngineProfile:
    """
    Engine invocation parameters for one quantization method.

    The worker pool passes this through untouched; only the engine reads it.
    """

    backend: str
    bits: int
    group_size: int = 128
    use_calibration: bool = True


@dataclass(frozen=True)
class EngineConfig:
    """Everything an engine needs besides the input path and method."""

    profile: EngineProfile
    output_format: ModelFormat
    work_dir: Path


class EngineResult(BaseModel):
    """
    Result of a successful engine run.
    Returned by quantization engines after processing.
    """

    output_path: Path
    output_size_bytes: int = Field(..., ge=0)


class FileMetadata(BaseModel):
    """Facts about an uploaded model file that admission needs."""

    file_ref: str
    owner_id: str
    format: ModelFormat
    size_bytes: int = Field(..., ge=0)
