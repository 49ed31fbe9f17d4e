"""Initial schema with jobs and credit ledger tables

Revision ID: 001
Revises:
Create Date: 2024-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUMS = {
    "job_status": ("queued", "processing", "completed", "failed", "cancelled"),
    "quantization_method": ("int8", "int4", "gptq", "awq", "gguf_q4_0", "gguf_q5_0"),
    "model_format": ("pytorch", "onnx", "safetensors", "gguf"),
    "subscription_plan": ("free", "starter", "pro"),
    "credit_transaction_type": ("consumption", "refund", "grant"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    # Create enums using raw SQL with IF NOT EXISTS
    for name, values in ENUMS.items():
        labels = ", ".join(f"'{value}'" for value in values)
        op.execute(f"""
            DO $$ BEGIN
                CREATE TYPE {name} AS ENUM ({labels});
            EXCEPTION
                WHEN duplicate_object THEN null;
            END $$;
        """)

    # Create jobs table
    op.create_table(
        "jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "status",
            _enum("job_status"),
            nullable=False,
            server_default="queued",
        ),
        sa.Column("priority", sa.Integer, nullable=False),
        sa.Column("progress", sa.Integer, nullable=False, server_default="0"),
        sa.Column("quantization_method", _enum("quantization_method"), nullable=False),
        sa.Column("input_format", _enum("model_format"), nullable=False),
        sa.Column("output_format", _enum("model_format"), nullable=False),
        sa.Column("input_file_ref", sa.String(1024), nullable=False),
        sa.Column("output_file_ref", sa.String(1024), nullable=True),
        sa.Column("download_token", sa.String(128), nullable=False),
        sa.Column("original_size", sa.BigInteger, nullable=False),
        sa.Column("quantized_size", sa.BigInteger, nullable=True),
        sa.Column("reduction_percent", sa.Float, nullable=True),
        sa.Column("processing_seconds", sa.Float, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("credits_charged", sa.Integer, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("download_token", name="uq_jobs_download_token"),
    )

    # Create indexes
    op.create_index("ix_jobs_owner_id", "jobs", ["owner_id"])
    op.create_index("ix_jobs_status", "jobs", ["status"])
    op.create_index("ix_jobs_status_updated", "jobs", ["status", "updated_at"])

    # Create partial index for rebuilding the queue
    op.execute("""
        CREATE INDEX ix_jobs_queued_order
        ON jobs (priority, created_at)
        WHERE status = 'queued'
    """)

    # Create subscriptions table
    op.create_table(
        "subscriptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column(
            "plan",
            _enum("subscription_plan"),
            nullable=False,
            server_default="free",
        ),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("owner_id", name="uq_subscriptions_owner_id"),
    )

    # Create credit ledger table
    op.create_table(
        "credit_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("transaction_type", _enum("credit_transaction_type"), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("job_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_credit_transactions_owner_created",
        "credit_transactions",
        ["owner_id", "created_at"],
    )


def downgrade() -> None:
    # Drop indexes
    op.drop_index("ix_credit_transactions_owner_created")
    op.execute("DROP INDEX IF EXISTS ix_jobs_queued_order")
    op.drop_index("ix_jobs_status_updated")
    op.drop_index("ix_jobs_status")
    op.drop_index("ix_jobs_owner_id")

    # Drop tables
    op.drop_table("credit_transactions")
    op.drop_table("subscriptions")
    op.drop_table("jobs")

    # Drop enums
    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
