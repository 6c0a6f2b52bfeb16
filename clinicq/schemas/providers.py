"""Provider schedule, slot and availability schemas."""

from datetime import date, datetime, time
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Weekday(str, Enum):
    """Working day names, indexed like ``date.weekday()``."""

    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"

    @classmethod
    def of(cls, day: date) -> "Weekday":
        """Weekday of a calendar date."""
        return list(cls)[day.weekday()]


class TimeRange(BaseModel):
    """A time-of-day interval, start inclusive and end exclusive."""

    model_config = ConfigDict(frozen=True)

    start: time
    end: time

    @model_validator(mode="after")
    def validate_order(self) -> "TimeRange":
        """Validate the interval is non-empty and within one day."""
        if self.end <= self.start:
            raise ValueError("End time must be after start time")
        return self

    def overlaps(self, other: "TimeRange") -> bool:
        """Whether two intervals share any instant."""
        return self.start < other.end and other.start < self.end

    def contains(self, other: "TimeRange") -> bool:
        """Whether ``other`` lies entirely inside this interval."""
        return self.start <= other.start and other.end <= self.end


class Slot(TimeRange):
    """A bookable window derived from a provider schedule."""


class ProviderScheduleBase(BaseModel):
    """Working schedule of a provider."""

    working_days: list[Weekday] = Field(..., min_length=1)
    working_hours: TimeRange
    breaks: list[TimeRange] = Field(default_factory=list)
    slot_duration_minutes: int = Field(default=30, ge=5, le=240)
    max_appointments_per_slot: int = Field(default=1, ge=1, le=10)

    @model_validator(mode="after")
    def validate_breaks(self) -> "ProviderScheduleBase":
        """Validate breaks are disjoint and fall within working hours."""
        ordered = sorted(self.breaks, key=lambda b: b.start)
        for interval in ordered:
            if not self.working_hours.contains(interval):
                raise ValueError(
                    f"Break {interval.start:%H:%M}-{interval.end:%H:%M} is outside working hours"
                )
        for previous, current in zip(ordered, ordered[1:]):
            if previous.overlaps(current):
                raise ValueError(
                    f"Breaks {previous.start:%H:%M}-{previous.end:%H:%M} and "
                    f"{current.start:%H:%M}-{current.end:%H:%M} overlap"
                )
        return self


class ProviderScheduleUpdate(ProviderScheduleBase):
    """Schema for creating or replacing a provider schedule."""

    is_verified: bool = False
    is_active: bool = True


class ProviderSchedule(ProviderScheduleBase):
    """Provider schedule as served by the provider directory."""

    provider_id: UUID
    is_verified: bool
    is_active: bool
    updated_at: datetime | None = None

    @property
    def bookable(self) -> bool:
        """Whether the provider accepts bookings."""
        return self.is_verified and self.is_active


class SlotAvailability(BaseModel):
    """Occupancy of one slot on a date."""

    start: time
    end: time
    capacity: int
    reserved: int
    remaining: int
    available: bool


class AvailabilityResponse(BaseModel):
    """Schema for a provider's availability on a date."""

    provider_id: UUID
    date: date
    working_day: bool
    slot_duration_minutes: int
    slots: list[SlotAvailability]
