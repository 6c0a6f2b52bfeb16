"""
Appointment lifecycle rules.

Transitions are planned as a pure function of an appointment snapshot, the event,
the actor and the current time. The service layer commits a plan with a
compare-and-set on the source status, so interactive requests and the sweeper
share the same legality checks.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from typing import Any

from clinicq.core.exceptions import InvalidTransitionException, SlotExpiredException
from clinicq.schemas.appointments import (
    TERMINAL_STATUSES,
    Actor,
    AppointmentEvent,
    AppointmentResponse,
    AppointmentStatus,
)

S = AppointmentStatus


@dataclass(frozen=True)
class Transition:
    """One edge family of the lifecycle graph."""

    sources: frozenset[AppointmentStatus]
    target: AppointmentStatus
    actors: frozenset[Actor]


TRANSITIONS: dict[AppointmentEvent, Transition] = {
    AppointmentEvent.APPROVE: Transition(
        sources=frozenset({S.REQUESTED}),
        target=S.APPROVED,
        actors=frozenset({Actor.PROVIDER, Actor.ADMIN, Actor.SYSTEM}),
    ),
    AppointmentEvent.REJECT: Transition(
        sources=frozenset({S.REQUESTED}),
        target=S.REJECTED,
        actors=frozenset({Actor.PROVIDER, Actor.ADMIN}),
    ),
    AppointmentEvent.MOVE_TO_QUEUE: Transition(
        sources=frozenset({S.APPROVED}),
        target=S.IN_QUEUE,
        actors=frozenset({Actor.PROVIDER, Actor.ADMIN, Actor.SYSTEM}),
    ),
    AppointmentEvent.START_PROCESSING: Transition(
        sources=frozenset({S.APPROVED, S.IN_QUEUE}),
        target=S.PROCESSING,
        actors=frozenset({Actor.PROVIDER, Actor.ADMIN}),
    ),
    AppointmentEvent.FINISH: Transition(
        sources=frozenset({S.PROCESSING}),
        target=S.FINISHED,
        actors=frozenset({Actor.PROVIDER, Actor.ADMIN, Actor.SYSTEM}),
    ),
    AppointmentEvent.COMPLETE: Transition(
        sources=frozenset({S.FINISHED, S.APPROVED}),
        target=S.COMPLETED,
        actors=frozenset({Actor.PROVIDER, Actor.PATIENT, Actor.ADMIN}),
    ),
    AppointmentEvent.CANCEL: Transition(
        sources=frozenset({S.REQUESTED, S.APPROVED, S.IN_QUEUE, S.PROCESSING}),
        target=S.CANCELLED,
        actors=frozenset({Actor.PATIENT, Actor.PROVIDER, Actor.ADMIN, Actor.SYSTEM}),
    ),
}

# Events after which the appointment should hold a token if it is dated today
TOKEN_EVENTS = frozenset(
    {
        AppointmentEvent.APPROVE,
        AppointmentEvent.MOVE_TO_QUEUE,
        AppointmentEvent.START_PROCESSING,
    }
)

DEFAULT_REASONS = {
    AppointmentEvent.REJECT: "Rejected by provider",
    AppointmentEvent.CANCEL: "Cancelled",
}


@dataclass
class TransitionPlan:
    """Validated state change, ready to be committed."""

    appointment_id: Any
    event: AppointmentEvent
    source: AppointmentStatus
    target: AppointmentStatus
    values: dict[str, Any] = field(default_factory=dict)
    needs_token: bool = False
    reserves_capacity: bool = False


def slot_bounds(appointment: AppointmentResponse, tz: tzinfo) -> tuple[datetime, datetime]:
    """Start and end of the appointment's slot as aware datetimes in ``tz``."""
    start = datetime.combine(appointment.appointment_date, appointment.slot_start, tzinfo=tz)
    end = datetime.combine(appointment.appointment_date, appointment.slot_end, tzinfo=tz)
    return start, end


def error_context(
    appointment: AppointmentResponse,
    event: AppointmentEvent,
    actor: Actor,
    guard: str,
) -> dict[str, Any]:
    return {
        "appointment_id": str(appointment.id),
        "reference_code": appointment.reference_code,
        "event": event.value,
        "status": appointment.status.value,
        "actor": actor.value,
        "guard": guard,
    }


def allowed_events(status: AppointmentStatus, actor: Actor) -> list[AppointmentEvent]:
    """Events whose source state and actor rules admit ``status`` and ``actor``."""
    return [
        event
        for event, rule in TRANSITIONS.items()
        if status in rule.sources and actor in rule.actors
    ]


def is_terminal(status: AppointmentStatus) -> bool:
    return status in TERMINAL_STATUSES


def plan_transition(
    appointment: AppointmentResponse,
    event: AppointmentEvent,
    actor: Actor,
    now: datetime,
    *,
    reason: str | None = None,
    cancellation_lead: timedelta = timedelta(hours=24),
) -> TransitionPlan:
    """
    Validate a lifecycle event against the current snapshot.

    Args:
        appointment: Current state of the appointment
        event: Requested lifecycle event
        actor: Who requests it
        now: Aware current time from the clinic clock
        reason: Free-text reason for rejections and cancellations
        cancellation_lead: Minimum notice for patient-initiated cancellation

    Returns:
        Plan with the column values to write

    Raises:
        InvalidTransitionException: Edge not in the graph or actor not allowed
        SlotExpiredException: Temporal guard failed
    """
    rule = TRANSITIONS[event]

    if appointment.status not in rule.sources:
        raise InvalidTransitionException(
            f"Cannot {event.value} an appointment that is {appointment.status.value}",
            context=error_context(appointment, event, actor, "source_state"),
        )

    if actor not in rule.actors:
        raise InvalidTransitionException(
            f"{actor.value} may not {event.value} an appointment",
            context=error_context(appointment, event, actor, "actor"),
        )

    slot_start, slot_end = slot_bounds(appointment, now.tzinfo)
    values: dict[str, Any] = {"status": rule.target.value, "updated_at": now}

    if event is AppointmentEvent.APPROVE:
        if now >= slot_start:
            raise SlotExpiredException(
                "Cannot approve an appointment whose slot has already started",
                context=error_context(appointment, event, actor, "slot_start_passed"),
            )

    elif event is AppointmentEvent.START_PROCESSING:
        if now >= slot_end:
            raise SlotExpiredException(
                "Cannot start an appointment whose slot has already ended",
                context=error_context(appointment, event, actor, "slot_end_passed"),
            )
        values["called_at"] = now

    elif event is AppointmentEvent.FINISH:
        if actor is Actor.SYSTEM and now <= slot_end:
            raise InvalidTransitionException(
                "Slot has not ended yet",
                context=error_context(appointment, event, actor, "slot_end_not_reached"),
            )
        values["completed_at"] = now

    elif event is AppointmentEvent.COMPLETE:
        values["completed_at"] = appointment.completed_at or now

    elif event in (AppointmentEvent.REJECT, AppointmentEvent.CANCEL):
        if (
            event is AppointmentEvent.CANCEL
            and actor is Actor.PATIENT
            and slot_start - now <= cancellation_lead
        ):
            raise SlotExpiredException(
                "Cancellation is only allowed more than "
                f"{cancellation_lead.total_seconds() / 3600:g} hours before the appointment",
                context=error_context(appointment, event, actor, "cancellation_lead_time"),
            )
        values["cancelled_at"] = now
        values["cancellation_reason"] = reason or DEFAULT_REASONS[event]
        values["cancelled_by"] = actor.value

    needs_token = (
        event in TOKEN_EVENTS
        and appointment.queue_token is None
        and appointment.appointment_date == now.date()
    )

    return TransitionPlan(
        appointment_id=appointment.id,
        event=event,
        source=appointment.status,
        target=rule.target,
        values=values,
        needs_token=needs_token,
        reserves_capacity=event is AppointmentEvent.APPROVE,
    )
