"""Provider schedule model definition using SQLAlchemy Core."""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    MetaData,
    Table,
    Time,
    Uuid,
    func,
    text,
)

metadata = MetaData()

provider_schedules = Table(
    "provider_schedules",
    metadata,
    Column("provider_id", Uuid, primary_key=True),
    # Working schedule
    Column("working_days", JSON, nullable=False),
    Column("work_start", Time, nullable=False),
    Column("work_end", Time, nullable=False),
    Column("breaks", JSON, nullable=False),
    Column("slot_duration_minutes", Integer, nullable=False, server_default=text("30")),
    Column("max_appointments_per_slot", Integer, nullable=False, server_default=text("1")),
    # Directory flags
    Column("is_verified", Boolean, nullable=False, server_default=text("false")),
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
    # Metadata
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint("max_appointments_per_slot >= 1", name="provider_schedules_capacity_check"),
    CheckConstraint("slot_duration_minutes > 0", name="provider_schedules_duration_check"),
)
