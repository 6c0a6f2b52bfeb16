"""Provider schedule, availability and queue endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from clinicq.core.exceptions import ForbiddenException
from clinicq.dependencies import Appointments, CurrentActor, Providers
from clinicq.schemas.appointments import Actor, ActorContext, AppointmentResponse
from clinicq.schemas.providers import (
    AvailabilityResponse,
    ProviderSchedule,
    ProviderScheduleUpdate,
)
from clinicq.schemas.queue import QueueResponse

router = APIRouter(prefix="/providers", tags=["Providers"])


def _require_provider_or_admin(actor: ActorContext, provider_id: UUID) -> None:
    if actor.role is Actor.ADMIN:
        return
    if actor.role is Actor.PROVIDER and actor.user_id == provider_id:
        return
    raise ForbiddenException("Only the provider or an admin can access this resource")


@router.get(
    "/{provider_id}/schedule",
    response_model=ProviderSchedule,
    status_code=status.HTTP_200_OK,
    summary="Get provider schedule",
)
async def get_schedule(
    provider_id: UUID,
    actor: CurrentActor,
    providers: Providers,
) -> ProviderSchedule:
    """
    Get a provider's working days, hours, breaks and slot settings.

    Args:
        provider_id: Provider ID
        actor: Calling actor
        providers: Provider service

    Returns:
        Provider schedule
    """
    return await providers.get_schedule(provider_id)


@router.put(
    "/{provider_id}/schedule",
    response_model=ProviderSchedule,
    status_code=status.HTTP_200_OK,
    summary="Create or replace provider schedule",
)
async def upsert_schedule(
    provider_id: UUID,
    data: ProviderScheduleUpdate,
    actor: CurrentActor,
    providers: Providers,
) -> ProviderSchedule:
    """
    Create or replace a provider's schedule.

    Verification and activation flags can only be changed by admins; a provider
    editing their own schedule keeps the stored flags.
    """
    _require_provider_or_admin(actor, provider_id)

    if actor.role is not Actor.ADMIN:
        current = await providers.find_schedule(provider_id)
        data = data.model_copy(
            update={
                "is_verified": current.is_verified if current else False,
                "is_active": current.is_active if current else True,
            }
        )

    return await providers.upsert_schedule(provider_id, data)


@router.get(
    "/{provider_id}/availability",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
    summary="Slot availability for a date",
)
async def get_availability(
    provider_id: UUID,
    actor: CurrentActor,
    service: Appointments,
    day: date = Query(..., alias="date"),
) -> AvailabilityResponse:
    """
    List a provider's slots on a date with their remaining capacity.

    Args:
        provider_id: Provider ID
        actor: Calling actor
        service: Appointment service
        day: Date to inspect

    Returns:
        Slots with capacity, reservations and bookability
    """
    return await service.get_availability(provider_id, day)


@router.get(
    "/{provider_id}/queue",
    response_model=QueueResponse,
    status_code=status.HTTP_200_OK,
    summary="Provider queue for a date",
)
async def get_queue(
    provider_id: UUID,
    actor: CurrentActor,
    service: Appointments,
    day: date = Query(..., alias="date"),
) -> QueueResponse:
    """Active appointments of the provider-day in queue order, with stats."""
    _require_provider_or_admin(actor, provider_id)
    return await service.get_queue(provider_id, day)


@router.post(
    "/{provider_id}/queue/next",
    response_model=AppointmentResponse | None,
    status_code=status.HTTP_200_OK,
    summary="Call the next patient",
)
async def call_next_patient(
    provider_id: UUID,
    actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse | None:
    """
    Finish the current visit and call the next waiting patient of today.

    Returns the appointment now being processed, or null when the queue is empty.
    """
    _require_provider_or_admin(actor, provider_id)
    return await service.call_next(provider_id, actor)
