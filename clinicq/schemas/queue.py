"""Queue view schemas."""

from datetime import date, datetime, time
from uuid import UUID

from pydantic import BaseModel

from clinicq.schemas.appointments import AppointmentStatus


class QueueEntry(BaseModel):
    """One active appointment in a provider-day queue."""

    appointment_id: UUID
    reference_code: str
    patient_id: UUID
    status: AppointmentStatus
    queue_token: int | None
    queue_position: int | None
    slot_start: time
    slot_end: time
    called_at: datetime | None
    estimated_wait_minutes: int | None


class QueueStats(BaseModel):
    """Counts over a provider-day queue."""

    total: int
    requested: int
    waiting: int
    processing: int
    current_token: int | None
    avg_service_minutes: int


class QueueResponse(BaseModel):
    """Schema for the provider-facing queue view."""

    provider_id: UUID
    date: date
    entries: list[QueueEntry]
    stats: QueueStats


class QueuePositionResponse(BaseModel):
    """Schema for a patient's view of their place in the queue."""

    appointment_id: UUID
    reference_code: str
    status: AppointmentStatus
    queue_token: int | None
    queue_position: int | None
    patients_ahead: int
    estimated_wait_minutes: int | None
