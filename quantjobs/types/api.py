"""
Request and response type definitions for the service facade.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from quantjobs.constants import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    JobStatus,
    ModelFormat,
    QuantizationMethod,
)


class SubmitJobRequest(BaseModel):
    """Validated input of a job submission."""

    owner_id: str = Field(..., min_length=1, max_length=255)
    file_ref: str = Field(..., min_length=1, max_length=1024)
    name: str = Field(..., min_length=1, max_length=100)
    method: QuantizationMethod
    output_format: ModelFormat


class PaginationParams(BaseModel):
    """Pagination parameters."""

    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)
    status: JobStatus | None = None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


class JobResponse(BaseModel):
    """Full job details as exposed to callers."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: str
    name: str
    status: JobStatus
    priority: int
    progress: int
    quantization_method: QuantizationMethod
    input_format: ModelFormat
    output_format: ModelFormat
    input_file_ref: str
    output_file_ref: str | None
    original_size: int
    quantized_size: int | None
    reduction_percent: float | None
    processing_seconds: float | None
    error_message: str | None
    credits_charged: int
    download_token: str
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None


class JobPage(BaseModel):
    """Paginated list of jobs."""

    jobs: list[JobResponse]
    total: int
    page: int
    per_page: int
    has_next: bool
