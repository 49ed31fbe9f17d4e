"""
Event type definitions for owner notifications.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from quantjobs.constants import (
    EVENT_JOB_CANCELLED,
    EVENT_JOB_COMPLETED,
    EVENT_JOB_CREATED,
    EVENT_JOB_FAILED,
    JobStatus,
)


class JobEvent(BaseModel):
    """
    Event emitted when job state changes.
    Used as the payload of owner notifications.
    """

    event_type: str
    job_id: UUID
    owner_id: str
    status: JobStatus
    timestamp: datetime
    data: dict[str, Any] | None = None

    @classmethod
    def job_created(cls, job: Any) -> "JobEvent":
        """Create a job created event."""
        return cls._from_job(
            EVENT_JOB_CREATED,
            job,
            {"credits_charged": job.credits_charged, "priority": job.priority},
        )

    @classmethod
    def job_completed(cls, job: Any) -> "JobEvent":
        """Create a job completed event."""
        return cls._from_job(
            EVENT_JOB_COMPLETED,
            job,
            {
                "output_file_ref": job.output_file_ref,
                "quantized_size": job.quantized_size,
                "reduction_percent": job.reduction_percent,
                "download_token": job.download_token,
            },
        )

    @classmethod
    def job_failed(cls, job: Any) -> "JobEvent":
        """Create a job failed event."""
        return cls._from_job(EVENT_JOB_FAILED, job, {"error": job.error_message})

    @classmethod
    def job_cancelled(cls, job: Any) -> "JobEvent":
        """Create a job cancelled event."""
        return cls._from_job(EVENT_JOB_CANCELLED, job)

    @classmethod
    def _from_job(
        cls,
        event_type: str,
        job: Any,
        data: dict[str, Any] | None = None,
    ) -> "JobEvent":
        return cls(
            event_type=event_type,
            job_id=job.id,
            owner_id=job.owner_id,
            status=job.status,
            timestamp=datetime.now(timezone.utc),
            data=data,
        )
