"""Token assignment, queue ordering and wait estimates for a provider-day."""

from collections.abc import Iterable
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from clinicq.models.appointments import appointments
from clinicq.schemas.appointments import ACTIVE_STATUSES, AppointmentResponse, AppointmentStatus

# Display groups: pending requests, approved bookings, then the live queue
_GROUP = {
    AppointmentStatus.REQUESTED: 0,
    AppointmentStatus.APPROVED: 1,
    AppointmentStatus.IN_QUEUE: 2,
    AppointmentStatus.PROCESSING: 2,
}


async def assign_token(db: AsyncSession, provider_id: UUID, day: date) -> int:
    """
    Next queue token of a provider-day: highest assigned token plus one.

    Must run inside the provider-day lock so concurrent approvals never share a token.
    """
    stmt = select(func.max(appointments.c.queue_token)).where(
        and_(
            appointments.c.provider_id == provider_id,
            appointments.c.appointment_date == day,
        )
    )
    result = await db.execute(stmt)
    return (result.scalar() or 0) + 1


def queue_sort_key(appointment: AppointmentResponse) -> tuple:
    """Display priority of an active appointment."""
    group = _GROUP[appointment.status]
    token = appointment.queue_token
    tie = (appointment.created_at, appointment.id)

    if group == 0:
        return (group, token is None, token or 0, *tie)
    if group == 1:
        return (group, appointment.slot_start, token is None, token or 0, *tie)

    called = appointment.called_at
    return (
        group,
        called is None,
        called or datetime.min,
        token is None,
        token or 0,
        appointment.slot_start,
        *tie,
    )


def order_queue(items: Iterable[AppointmentResponse]) -> list[AppointmentResponse]:
    """Active appointments in display order. Inactive ones are dropped."""
    return sorted((a for a in items if a.status in ACTIVE_STATUSES), key=queue_sort_key)


def estimate_wait(position: int | None, avg_service_minutes: int) -> int | None:
    """Display-only wait estimate in minutes."""
    if position is None:
        return None
    return position * avg_service_minutes


async def load_provider_day(
    db: AsyncSession,
    provider_id: UUID,
    day: date,
) -> list[AppointmentResponse]:
    """All appointments of a provider-day, any status."""
    stmt = select(appointments).where(
        and_(
            appointments.c.provider_id == provider_id,
            appointments.c.appointment_date == day,
        )
    )
    result = await db.execute(stmt)
    return [AppointmentResponse.model_validate(dict(row._mapping)) for row in result.fetchall()]


async def recompute_positions(db: AsyncSession, provider_id: UUID, day: date) -> int:
    """
    Re-derive queue positions of a provider-day from its active set.

    Active appointments get positions 1..N in display order; inactive ones lose
    their position. Only rows whose position changes are written. Runs inside
    the provider-day lock; the caller commits.

    Returns:
        Number of rows updated
    """
    snapshot = await load_provider_day(db, provider_id, day)
    desired: dict[UUID, int | None] = {a.id: None for a in snapshot}
    for position, appointment in enumerate(order_queue(snapshot), start=1):
        desired[appointment.id] = position

    changed = 0
    for appointment in snapshot:
        position = desired[appointment.id]
        if appointment.queue_position == position:
            continue
        await db.execute(
            update(appointments)
            .where(appointments.c.id == appointment.id)
            .values(queue_position=position)
        )
        changed += 1
    return changed
