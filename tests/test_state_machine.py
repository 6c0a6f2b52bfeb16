"""Tests for the appointment lifecycle rules."""

from datetime import UTC, date, datetime, time, timedelta
from uuid import uuid4

import pytest

from clinicq.core.exceptions import InvalidTransitionException, SlotExpiredException
from clinicq.scheduling.state_machine import (
    TRANSITIONS,
    allowed_events,
    is_terminal,
    plan_transition,
)
from clinicq.schemas.appointments import (
    Actor,
    AppointmentEvent,
    AppointmentResponse,
    AppointmentStatus,
)

DAY = date(2026, 3, 2)
NOW = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)


def make_appointment(status: AppointmentStatus, **overrides) -> AppointmentResponse:
    values = {
        "id": uuid4(),
        "reference_code": "APT20260302ABCDEF",
        "patient_id": uuid4(),
        "provider_id": uuid4(),
        "appointment_date": DAY,
        "slot_start": time(14, 0),
        "slot_end": time(14, 30),
        "status": status,
        "created_at": NOW - timedelta(days=2),
        "updated_at": NOW - timedelta(days=2),
    }
    values.update(overrides)
    return AppointmentResponse(**values)


def test_approve_plans_token_for_same_day():
    plan = plan_transition(
        make_appointment(AppointmentStatus.REQUESTED),
        AppointmentEvent.APPROVE,
        Actor.PROVIDER,
        NOW,
    )

    assert plan.target is AppointmentStatus.APPROVED
    assert plan.values["status"] == "approved"
    assert plan.values["updated_at"] == NOW
    assert plan.reserves_capacity
    assert plan.needs_token


def test_approve_future_day_needs_no_token():
    plan = plan_transition(
        make_appointment(AppointmentStatus.REQUESTED, appointment_date=DAY + timedelta(days=1)),
        AppointmentEvent.APPROVE,
        Actor.PROVIDER,
        NOW,
    )

    assert not plan.needs_token


def test_existing_token_is_kept():
    plan = plan_transition(
        make_appointment(AppointmentStatus.APPROVED, queue_token=3),
        AppointmentEvent.MOVE_TO_QUEUE,
        Actor.PROVIDER,
        NOW,
    )

    assert not plan.needs_token
    assert "queue_token" not in plan.values


def test_approve_after_slot_start_is_expired():
    with pytest.raises(SlotExpiredException) as exc_info:
        plan_transition(
            make_appointment(AppointmentStatus.REQUESTED),
            AppointmentEvent.APPROVE,
            Actor.PROVIDER,
            NOW.replace(hour=14, minute=0),
        )

    assert exc_info.value.context["guard"] == "slot_start_passed"


@pytest.mark.parametrize(
    "status",
    [
        AppointmentStatus.APPROVED,
        AppointmentStatus.FINISHED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.REJECTED,
    ],
)
def test_approve_from_other_states_is_invalid(status):
    appointment = make_appointment(status)

    with pytest.raises(InvalidTransitionException) as exc_info:
        plan_transition(appointment, AppointmentEvent.APPROVE, Actor.PROVIDER, NOW)

    context = exc_info.value.context
    assert context["appointment_id"] == str(appointment.id)
    assert context["event"] == "approve"
    assert context["status"] == status.value
    assert context["guard"] == "source_state"


def test_terminal_states_admit_no_event():
    for status in (
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.REJECTED,
    ):
        assert is_terminal(status)
        for actor in Actor:
            assert allowed_events(status, actor) == []


def test_finished_only_admits_complete():
    assert not is_terminal(AppointmentStatus.FINISHED)
    assert allowed_events(AppointmentStatus.FINISHED, Actor.PROVIDER) == [
        AppointmentEvent.COMPLETE
    ]
    with pytest.raises(InvalidTransitionException):
        plan_transition(
            make_appointment(AppointmentStatus.FINISHED),
            AppointmentEvent.CANCEL,
            Actor.ADMIN,
            NOW,
        )


def test_patient_cannot_approve():
    with pytest.raises(InvalidTransitionException) as exc_info:
        plan_transition(
            make_appointment(AppointmentStatus.REQUESTED),
            AppointmentEvent.APPROVE,
            Actor.PATIENT,
            NOW,
        )

    assert exc_info.value.context["guard"] == "actor"


def test_system_cannot_start_processing():
    assert Actor.SYSTEM not in TRANSITIONS[AppointmentEvent.START_PROCESSING].actors
    with pytest.raises(InvalidTransitionException):
        plan_transition(
            make_appointment(AppointmentStatus.APPROVED),
            AppointmentEvent.START_PROCESSING,
            Actor.SYSTEM,
            NOW,
        )


def test_start_processing_sets_called_at():
    now = NOW.replace(hour=14, minute=10)
    plan = plan_transition(
        make_appointment(AppointmentStatus.IN_QUEUE, queue_token=1),
        AppointmentEvent.START_PROCESSING,
        Actor.PROVIDER,
        now,
    )

    assert plan.values["called_at"] == now
    assert plan.target is AppointmentStatus.PROCESSING


def test_start_processing_after_slot_end_is_expired():
    with pytest.raises(SlotExpiredException):
        plan_transition(
            make_appointment(AppointmentStatus.IN_QUEUE),
            AppointmentEvent.START_PROCESSING,
            Actor.PROVIDER,
            NOW.replace(hour=14, minute=30),
        )


def test_system_finish_waits_for_slot_end():
    appointment = make_appointment(AppointmentStatus.PROCESSING)

    with pytest.raises(InvalidTransitionException) as exc_info:
        plan_transition(
            appointment,
            AppointmentEvent.FINISH,
            Actor.SYSTEM,
            NOW.replace(hour=14, minute=30),
        )
    assert exc_info.value.context["guard"] == "slot_end_not_reached"

    later = NOW.replace(hour=14, minute=31)
    plan = plan_transition(appointment, AppointmentEvent.FINISH, Actor.SYSTEM, later)
    assert plan.values["completed_at"] == later


def test_provider_may_finish_early():
    plan = plan_transition(
        make_appointment(AppointmentStatus.PROCESSING),
        AppointmentEvent.FINISH,
        Actor.PROVIDER,
        NOW.replace(hour=14, minute=5),
    )

    assert plan.target is AppointmentStatus.FINISHED


def test_complete_keeps_existing_completion_time():
    finished_at = NOW.replace(hour=14, minute=25)
    plan = plan_transition(
        make_appointment(AppointmentStatus.FINISHED, completed_at=finished_at),
        AppointmentEvent.COMPLETE,
        Actor.PATIENT,
        NOW.replace(hour=18),
    )

    assert plan.values["completed_at"] == finished_at


def test_patient_cancel_requires_lead_time():
    appointment = make_appointment(
        AppointmentStatus.APPROVED,
        appointment_date=DAY + timedelta(days=1),
    )

    # 30 hours ahead
    plan = plan_transition(appointment, AppointmentEvent.CANCEL, Actor.PATIENT, NOW)
    assert plan.values["cancelled_by"] == "patient"
    assert plan.values["cancellation_reason"] == "Cancelled"

    # exactly 24 hours ahead
    with pytest.raises(SlotExpiredException) as exc_info:
        plan_transition(
            appointment,
            AppointmentEvent.CANCEL,
            Actor.PATIENT,
            NOW.replace(hour=14),
        )
    assert exc_info.value.context["guard"] == "cancellation_lead_time"


def test_provider_cancel_ignores_lead_time():
    plan = plan_transition(
        make_appointment(AppointmentStatus.APPROVED),
        AppointmentEvent.CANCEL,
        Actor.PROVIDER,
        NOW.replace(hour=13, minute=55),
        reason="Provider unavailable",
    )

    assert plan.values["cancellation_reason"] == "Provider unavailable"
    assert plan.values["cancelled_by"] == "provider"
    assert plan.values["cancelled_at"] == NOW.replace(hour=13, minute=55)


def test_reject_records_actor_and_default_reason():
    plan = plan_transition(
        make_appointment(AppointmentStatus.REQUESTED),
        AppointmentEvent.REJECT,
        Actor.ADMIN,
        NOW,
    )

    assert plan.target is AppointmentStatus.REJECTED
    assert plan.values["cancelled_by"] == "admin"
    assert plan.values["cancellation_reason"] == "Rejected by provider"
