"""Appointment schemas for request/response validation."""

from datetime import date, datetime, time
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class AppointmentStatus(str, Enum):
    """Appointment status enumeration. Single source of truth for the lifecycle."""

    REQUESTED = "requested"
    APPROVED = "approved"
    IN_QUEUE = "in_queue"
    PROCESSING = "processing"
    FINISHED = "finished"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


# Statuses that take part in the provider-day queue
ACTIVE_STATUSES = frozenset(
    {
        AppointmentStatus.REQUESTED,
        AppointmentStatus.APPROVED,
        AppointmentStatus.IN_QUEUE,
        AppointmentStatus.PROCESSING,
    }
)

# Statuses from which no transition is permitted
TERMINAL_STATUSES = frozenset(
    {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.REJECTED,
    }
)

# Statuses that hold one unit of slot capacity
RESERVING_STATUSES = frozenset(
    {
        AppointmentStatus.APPROVED,
        AppointmentStatus.IN_QUEUE,
        AppointmentStatus.PROCESSING,
        AppointmentStatus.FINISHED,
        AppointmentStatus.COMPLETED,
    }
)


class Actor(str, Enum):
    """Who triggers a transition."""

    PATIENT = "patient"
    PROVIDER = "provider"
    ADMIN = "admin"
    SYSTEM = "system"


class AppointmentEvent(str, Enum):
    """Lifecycle events accepted by the state machine."""

    APPROVE = "approve"
    REJECT = "reject"
    MOVE_TO_QUEUE = "move_to_queue"
    START_PROCESSING = "start_processing"
    FINISH = "finish"
    COMPLETE = "complete"
    CANCEL = "cancel"


class ActorContext(BaseModel):
    """Identity of the caller as asserted by the upstream gateway."""

    role: Actor
    user_id: UUID | None = None


class AppointmentCreate(BaseModel):
    """Schema for requesting a new appointment."""

    provider_id: UUID
    appointment_date: date
    slot_start: time
    reason: str | None = Field(None, max_length=500)


class TransitionRequest(BaseModel):
    """Optional payload of a status-changing request."""

    reason: str | None = Field(None, max_length=500)


class ClinicalRecordUpdate(BaseModel):
    """Opaque clinical payload attached once the visit is over."""

    record: dict[str, Any]


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    reference_code: str
    patient_id: UUID
    provider_id: UUID
    appointment_date: date
    slot_start: time
    slot_end: time
    reason: str | None = None
    status: AppointmentStatus
    queue_token: int | None = None
    queue_position: int | None = None
    called_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    cancelled_by: Actor | None = None
    reminder_sent_at: datetime | None = None
    has_clinical_record: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    provider_id: UUID | None = None
    patient_id: UUID | None = None
    from_date: date | None = None
    to_date: date | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)
