"""
SQLAlchemy database models.
Defines the jobs table and the billing tables behind the credit ledger.
"""

import secrets
from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from quantjobs.constants import (
    CreditTransactionType,
    JobStatus,
    ModelFormat,
    QuantizationMethod,
    SubscriptionPlan,
    TERMINAL_STATUSES,
)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def generate_download_token() -> str:
    """Generate an unguessable download token."""
    return secrets.token_urlsafe(32)


def _enum(enum_cls: type, name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        create_constraint=True,
        values_callable=lambda x: [e.value for e in x],
    )


_model_format = _enum(ModelFormat, "model_format")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing one quantization request.

    This is the authoritative source of truth for job state.
    All lifecycle transitions are compare-and-set updates on this table.

    Key constraints:
    - download_token is unique and never updated
    - credits_charged is fixed at creation
    - output_file_ref / quantized_size / reduction_percent are set iff COMPLETED
    - error_message is set iff FAILED
    """

    __tablename__ = "jobs"

    # Primary key
    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
        nullable=False,
    )

    # Ownership
    owner_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    # Status and priority
    status: Mapped[JobStatus] = mapped_column(
        _enum(JobStatus, "job_status"),
        nullable=False,
        default=JobStatus.QUEUED,
        index=True,
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    progress: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # What to do
    quantization_method: Mapped[QuantizationMethod] = mapped_column(
        _enum(QuantizationMethod, "quantization_method"),
        nullable=False,
    )
    input_format: Mapped[ModelFormat] = mapped_column(
        _model_format,
        nullable=False,
    )
    output_format: Mapped[ModelFormat] = mapped_column(
        _model_format,
        nullable=False,
    )

    # Files
    input_file_ref: Mapped[str] = mapped_column(
        String(1024),
        nullable=False,
    )
    output_file_ref: Mapped[str | None] = mapped_column(
        String(1024),
        nullable=True,
    )
    download_token: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        unique=True,
        default=generate_download_token,
    )

    # Sizes and outcome
    original_size: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )
    quantized_size: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
    )
    reduction_percent: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )
    processing_seconds: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )
    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # Billing
    credits_charged: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Table constraints and indexes
    __table_args__ = (
        # Index for the stuck-job sweep
        Index("ix_jobs_status_updated", "status", "updated_at"),
        # Index for rebuilding the queue after a restart
        Index(
            "ix_jobs_queued_order",
            "priority",
            "created_at",
            postgresql_where=text("status = 'queued'"),
        ),
    )

    @property
    def is_terminal(self) -> bool:
        """Check if the job reached a final status."""
        return self.status in TERMINAL_STATUSES

    @property
    def is_cancellable(self) -> bool:
        """Only queued jobs can be cancelled."""
        return self.status == JobStatus.QUEUED

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, owner={self.owner_id}, "
            f"status={self.status}, method={self.quantization_method})"
        )


class Subscription(Base):
    """Owner's current plan and billing period."""

    __tablename__ = "subscriptions"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    owner_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )
    plan: Mapped[SubscriptionPlan] = mapped_column(
        _enum(SubscriptionPlan, "subscription_plan"),
        nullable=False,
        default=SubscriptionPlan.FREE,
    )
    current_period_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )
    current_period_end: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )


class CreditTransaction(Base):
    """
    One movement in an owner's credit balance.

    Consumption rows carry a negative amount; refunds and grants are positive.
    """

    __tablename__ = "credit_transactions"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    owner_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    transaction_type: Mapped[CreditTransactionType] = mapped_column(
        _enum(CreditTransactionType, "credit_transaction_type"),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    job_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
    )
    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )

    __table_args__ = (
        Index("ix_credit_transactions_owner_created", "owner_id", "created_at"),
    )
