"""Appointments table model using SQLAlchemy Core."""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
    text,
)

# Metadata for all tables
metadata = MetaData()

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid.uuid4),
    Column("reference_code", String(32), nullable=False, unique=True),
    # Ownership / references (opaque, no demographic data)
    Column("patient_id", Uuid, nullable=False, index=True),
    Column("provider_id", Uuid, nullable=False, index=True),
    # Scheduling
    Column("appointment_date", Date, nullable=False),
    Column("slot_start", Time, nullable=False),
    Column("slot_end", Time, nullable=False),
    Column("reason", Text, nullable=True),
    # Lifecycle
    Column("status", String(20), nullable=False, server_default="requested"),
    Column("queue_token", Integer, nullable=True),
    Column("queue_position", Integer, nullable=True),
    Column("called_at", DateTime(timezone=True), nullable=True),
    Column("completed_at", DateTime(timezone=True), nullable=True),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    # Cancellation metadata
    Column("cancellation_reason", Text, nullable=True),
    Column("cancelled_by", String(20), nullable=True),
    # Reminder idempotency flag
    Column("reminder_sent_at", DateTime(timezone=True), nullable=True),
    # Clinical payload is opaque to scheduling
    Column("clinical_record", JSON, nullable=True),
    Column("has_clinical_record", Boolean, nullable=False, server_default=text("false")),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    # Constraints
    CheckConstraint(
        "status IN ('requested', 'approved', 'in_queue', 'processing', "
        "'finished', 'completed', 'cancelled', 'rejected')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "cancelled_by IS NULL OR cancelled_by IN ('patient', 'provider', 'admin', 'system')",
        name="appointments_cancelled_by_check",
    ),
    UniqueConstraint(
        "provider_id",
        "appointment_date",
        "queue_token",
        name="uq_appointments_provider_day_token",
    ),
    Index(
        "ix_appointments_provider_day_slot_status",
        "provider_id",
        "appointment_date",
        "slot_start",
        "status",
    ),
    Index("ix_appointments_status_date", "status", "appointment_date"),
)
