"""Create provider schedules and appointments tables.

Revision ID: 001
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        "provider_schedules",
        sa.Column("provider_id", postgresql.UUID(), nullable=False),
        sa.Column("working_days", postgresql.JSONB(), nullable=False),
        sa.Column("work_start", sa.Time(), nullable=False),
        sa.Column("work_end", sa.Time(), nullable=False),
        sa.Column(
            "breaks", postgresql.JSONB(), server_default=sa.text("'[]'::jsonb"), nullable=False
        ),
        sa.Column("slot_duration_minutes", sa.Integer(), server_default="30", nullable=False),
        sa.Column("max_appointments_per_slot", sa.Integer(), server_default="1", nullable=False),
        sa.Column("is_verified", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "max_appointments_per_slot >= 1", name="provider_schedules_capacity_check"
        ),
        sa.CheckConstraint("slot_duration_minutes > 0", name="provider_schedules_duration_check"),
        sa.PrimaryKeyConstraint("provider_id"),
    )

    op.create_table(
        "appointments",
        sa.Column("id", postgresql.UUID(), nullable=False),
        sa.Column("reference_code", sa.VARCHAR(length=32), nullable=False),
        sa.Column("patient_id", postgresql.UUID(), nullable=False),
        sa.Column("provider_id", postgresql.UUID(), nullable=False),
        sa.Column("appointment_date", sa.Date(), nullable=False),
        sa.Column("slot_start", sa.Time(), nullable=False),
        sa.Column("slot_end", sa.Time(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.VARCHAR(length=20), server_default="requested", nullable=False),
        sa.Column("queue_token", sa.Integer(), nullable=True),
        sa.Column("queue_position", sa.Integer(), nullable=True),
        sa.Column("called_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("cancelled_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_by", sa.VARCHAR(length=20), nullable=True),
        sa.Column("reminder_sent_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("clinical_record", postgresql.JSONB(), nullable=True),
        sa.Column(
            "has_clinical_record", sa.Boolean(), server_default=sa.text("false"), nullable=False
        ),
        sa.Column("created_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('requested', 'approved', 'in_queue', 'processing', "
            "'finished', 'completed', 'cancelled', 'rejected')",
            name="appointments_status_check",
        ),
        sa.CheckConstraint(
            "cancelled_by IS NULL OR cancelled_by IN ('patient', 'provider', 'admin', 'system')",
            name="appointments_cancelled_by_check",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("reference_code", name="uq_appointments_reference_code"),
        sa.UniqueConstraint(
            "provider_id",
            "appointment_date",
            "queue_token",
            name="uq_appointments_provider_day_token",
        ),
    )

    # Create indexes
    op.create_index("ix_appointments_patient_id", "appointments", ["patient_id"])
    op.create_index("ix_appointments_provider_id", "appointments", ["provider_id"])
    op.create_index(
        "ix_appointments_provider_day_slot_status",
        "appointments",
        ["provider_id", "appointment_date", "slot_start", "status"],
    )
    op.create_index("ix_appointments_status_date", "appointments", ["status", "appointment_date"])


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("ix_appointments_status_date", table_name="appointments")
    op.drop_index("ix_appointments_provider_day_slot_status", table_name="appointments")
    op.drop_index("ix_appointments_provider_id", table_name="appointments")
    op.drop_index("ix_appointments_patient_id", table_name="appointments")
    op.drop_table("appointments")
    op.drop_table("provider_schedules")
