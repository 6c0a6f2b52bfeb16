"""Per-slot capacity checks. Callers hold the provider-day lock."""

from datetime import date, time
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinicq.core.exceptions import SlotConflictException
from clinicq.models.appointments import appointments
from clinicq.schemas.appointments import RESERVING_STATUSES

_RESERVING = [status.value for status in RESERVING_STATUSES]


async def count_reserved(
    db: AsyncSession,
    provider_id: UUID,
    day: date,
    slot_start: time,
    *,
    exclude_id: UUID | None = None,
) -> int:
    """Count appointments holding capacity in one slot."""
    conditions = [
        appointments.c.provider_id == provider_id,
        appointments.c.appointment_date == day,
        appointments.c.slot_start == slot_start,
        appointments.c.status.in_(_RESERVING),
    ]
    if exclude_id is not None:
        conditions.append(appointments.c.id != exclude_id)

    stmt = select(func.count()).select_from(appointments).where(and_(*conditions))
    result = await db.execute(stmt)
    return result.scalar() or 0


async def reserved_counts(db: AsyncSession, provider_id: UUID, day: date) -> dict[time, int]:
    """Capacity held per slot start for a provider-day."""
    stmt = (
        select(appointments.c.slot_start, func.count())
        .where(
            and_(
                appointments.c.provider_id == provider_id,
                appointments.c.appointment_date == day,
                appointments.c.status.in_(_RESERVING),
            )
        )
        .group_by(appointments.c.slot_start)
    )
    result = await db.execute(stmt)
    return {row[0]: row[1] for row in result.fetchall()}


async def reserve(
    db: AsyncSession,
    provider_id: UUID,
    day: date,
    slot_start: time,
    capacity: int,
    *,
    exclude_id: UUID | None = None,
) -> int:
    """
    Check that one more appointment fits into a slot.

    Must run inside the provider-day lock, in the same transaction that commits
    the reserving state change.

    Args:
        db: Database session
        provider_id: Provider ID
        day: Appointment date
        slot_start: Slot start time
        capacity: Maximum reservations per slot
        exclude_id: Appointment to leave out of the count

    Returns:
        Number of reservations already held

    Raises:
        SlotConflictException: If the slot is at capacity
    """
    held = await count_reserved(db, provider_id, day, slot_start, exclude_id=exclude_id)
    if held >= capacity:
        raise SlotConflictException(
            "Time slot is not available. Please choose a different time.",
            context={
                "provider_id": str(provider_id),
                "date": day.isoformat(),
                "slot_start": slot_start.strftime("%H:%M"),
                "reserved": held,
                "capacity": capacity,
                "appointment_id": str(exclude_id) if exclude_id else None,
            },
        )
    return held
