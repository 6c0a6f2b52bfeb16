"""Appointment endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from clinicq.dependencies import Appointments, CurrentActor
from clinicq.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatus,
    ClinicalRecordUpdate,
    TransitionRequest,
)
from clinicq.schemas.queue import QueuePositionResponse

router = APIRouter()


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Request an appointment slot",
)
async def book_appointment(
    data: AppointmentCreate,
    actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    """
    Request a slot with a provider on behalf of the calling patient.

    Args:
        data: Provider, date and slot start
        actor: Calling patient
        service: Appointment service

    Returns:
        Created appointment in requested state
    """
    return await service.book(actor, data)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    actor: CurrentActor,
    service: Appointments,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    provider_id: UUID | None = Query(None),
    patient_id: UUID | None = Query(None),
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments visible to the caller with filtering.

    Args:
        actor: Calling actor
        service: Appointment service
        status_filter: Filter by status
        provider_id: Filter by provider ID
        patient_id: Filter by patient ID
        from_date: Earliest appointment date
        to_date: Latest appointment date
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        status=status_filter,
        provider_id=provider_id,
        patient_id=patient_id,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )
    return await service.list_appointments(actor, filters)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    """
    Get a specific appointment by ID.

    Args:
        appointment_id: Appointment ID
        actor: Calling actor
        service: Appointment service

    Returns:
        Appointment details
    """
    return await service.get_appointment(appointment_id, actor)


@router.get(
    "/{appointment_id}/queue-position",
    response_model=QueuePositionResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get queue position of an appointment",
)
async def get_queue_position(
    appointment_id: UUID,
    actor: CurrentActor,
    service: Appointments,
) -> QueuePositionResponse:
    """Where the appointment stands in its provider's queue for the day."""
    return await service.get_queue_position(appointment_id, actor)


@router.post(
    "/{appointment_id}/approve",
    response_model=AppointmentResponse,
    tags=["Appointments"],
    summary="Approve a requested appointment",
)
async def approve_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    """
    Approve a request, reserving its slot.

    A same-day approval also assigns the next queue token.
    """
    return await service.approve(appointment_id, actor)


@router.post(
    "/{appointment_id}/reject",
    response_model=AppointmentResponse,
    tags=["Appointments"],
    summary="Reject a requested appointment",
)
async def reject_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: Appointments,
    data: TransitionRequest | None = None,
) -> AppointmentResponse:
    return await service.reject(appointment_id, actor, reason=data.reason if data else None)


@router.post(
    "/{appointment_id}/queue",
    response_model=AppointmentResponse,
    tags=["Appointments"],
    summary="Move an approved appointment into the live queue",
)
async def move_to_queue(
    appointment_id: UUID,
    actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    return await service.move_to_queue(appointment_id, actor)


@router.post(
    "/{appointment_id}/start",
    response_model=AppointmentResponse,
    tags=["Appointments"],
    summary="Call the patient in",
)
async def start_processing(
    appointment_id: UUID,
    actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    return await service.start_processing(appointment_id, actor)


@router.post(
    "/{appointment_id}/finish",
    response_model=AppointmentResponse,
    tags=["Appointments"],
    summary="Finish the visit",
)
async def finish_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    return await service.finish(appointment_id, actor)


@router.post(
    "/{appointment_id}/complete",
    response_model=AppointmentResponse,
    tags=["Appointments"],
    summary="Complete the appointment",
)
async def complete_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    return await service.complete(appointment_id, actor)


@router.post(
    "/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    tags=["Appointments"],
    summary="Cancel an appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: Appointments,
    data: TransitionRequest | None = None,
) -> AppointmentResponse:
    """
    Cancel an appointment.

    Patients must cancel ahead of the configured lead time.

    Args:
        appointment_id: Appointment ID
        actor: Calling actor
        service: Appointment service
        data: Optional cancellation reason

    Returns:
        Cancelled appointment
    """
    return await service.cancel(appointment_id, actor, reason=data.reason if data else None)


@router.put(
    "/{appointment_id}/clinical-record",
    response_model=AppointmentResponse,
    tags=["Appointments"],
    summary="Attach the clinical record of a finished visit",
)
async def attach_clinical_record(
    appointment_id: UUID,
    data: ClinicalRecordUpdate,
    actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    return await service.attach_clinical_record(appointment_id, actor, data.record)
