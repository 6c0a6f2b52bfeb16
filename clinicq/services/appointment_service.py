"""Appointment service for business logic."""

import secrets
from datetime import date, timedelta
from typing import Any
from uuid import UUID, uuid4

import structlog
from sqlalchemy import and_, func, insert, select, true, update
from sqlalchemy.ext.asyncio import AsyncSession

from clinicq.config import settings
from clinicq.core.clock import Clock, get_clock
from clinicq.core.exceptions import (
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    SlotExpiredException,
    ValidationException,
)
from clinicq.core.locks import LockManager, get_lock_manager, provider_day_key
from clinicq.models.appointments import appointments
from clinicq.scheduling.calendar import enumerate_slots, find_slot
from clinicq.scheduling.conflicts import reserve, reserved_counts
from clinicq.scheduling.queue import (
    assign_token,
    estimate_wait,
    load_provider_day,
    order_queue,
    recompute_positions,
)
from clinicq.scheduling.state_machine import TransitionPlan, error_context, plan_transition
from clinicq.schemas.appointments import (
    Actor,
    ActorContext,
    AppointmentCreate,
    AppointmentEvent,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatus,
)
from clinicq.schemas.providers import AvailabilityResponse, SlotAvailability, Weekday
from clinicq.schemas.queue import QueueEntry, QueuePositionResponse, QueueResponse, QueueStats
from clinicq.services.notification_service import (
    NotificationDispatcher,
    NotificationKind,
    appointment_payload,
    dispatch_safely,
    get_notification_dispatcher,
)
from clinicq.services.provider_service import ProviderDirectory, ProviderService

logger = structlog.get_logger(__name__)

# Who hears about each transition, and how
_TRANSITION_NOTICES: dict[AppointmentEvent, tuple[str, NotificationKind]] = {
    AppointmentEvent.APPROVE: ("patient", NotificationKind.APPOINTMENT_APPROVED),
    AppointmentEvent.REJECT: ("patient", NotificationKind.APPOINTMENT_REJECTED),
    AppointmentEvent.MOVE_TO_QUEUE: ("patient", NotificationKind.QUEUE_UPDATE),
    AppointmentEvent.START_PROCESSING: ("patient", NotificationKind.PATIENT_CALLED),
    AppointmentEvent.FINISH: ("provider", NotificationKind.APPOINTMENT_FINISHED),
    AppointmentEvent.COMPLETE: ("patient", NotificationKind.APPOINTMENT_COMPLETED),
    AppointmentEvent.CANCEL: ("patient", NotificationKind.APPOINTMENT_CANCELLED),
}

SYSTEM_ACTOR = ActorContext(role=Actor.SYSTEM)


def generate_reference_code(day: date) -> str:
    """Human-readable appointment reference, e.g. ``APT20261017A1B2C3``."""
    return f"APT{day:%Y%m%d}{secrets.token_hex(3).upper()}"


class AppointmentService:
    """Service for managing the appointment lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        clock: Clock | None = None,
        locks: LockManager | None = None,
        dispatcher: NotificationDispatcher | None = None,
        directory: ProviderDirectory | None = None,
    ):
        """Initialize service with database session and collaborators."""
        self.db = db
        self.clock = clock or get_clock()
        self.locks = locks or get_lock_manager()
        self.dispatcher = dispatcher or get_notification_dispatcher()
        self.directory = directory or ProviderService(db)
        self.cancellation_lead = timedelta(hours=settings.cancellation_lead_hours)
        self.avg_service_minutes = settings.avg_service_minutes

    async def _fetch(
        self,
        appointment_id: UUID,
        *,
        for_update: bool = False,
    ) -> AppointmentResponse:
        stmt = select(appointments).where(appointments.c.id == appointment_id)
        if for_update:
            stmt = stmt.with_for_update()

        result = await self.db.execute(stmt)
        row = result.fetchone()

        if not row:
            raise NotFoundException(
                "Appointment not found",
                context={"appointment_id": str(appointment_id)},
            )

        return AppointmentResponse.model_validate(dict(row._mapping))

    @staticmethod
    def _authorize(appointment: AppointmentResponse, actor: ActorContext) -> None:
        """Patients and providers may only touch appointments they take part in."""
        if actor.role is Actor.PATIENT and actor.user_id != appointment.patient_id:
            raise ForbiddenException("Access denied to this appointment")
        if actor.role is Actor.PROVIDER and actor.user_id != appointment.provider_id:
            raise ForbiddenException("Access denied to this appointment")

    async def get_appointment(
        self,
        appointment_id: UUID,
        actor: ActorContext,
    ) -> AppointmentResponse:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If actor doesn't take part in it
        """
        appointment = await self._fetch(appointment_id)
        self._authorize(appointment, actor)
        return appointment

    async def list_appointments(
        self,
        actor: ActorContext,
        filters: AppointmentFilters,
    ) -> AppointmentListResponse:
        """
        List appointments with filtering and pagination.

        Patients only see their own appointments and providers only those booked with them.
        """
        conditions = []

        if actor.role is Actor.PATIENT:
            conditions.append(appointments.c.patient_id == actor.user_id)
        elif filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)

        if actor.role is Actor.PROVIDER:
            conditions.append(appointments.c.provider_id == actor.user_id)
        elif filters.provider_id:
            conditions.append(appointments.c.provider_id == filters.provider_id)

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.from_date:
            conditions.append(appointments.c.appointment_date >= filters.from_date)

        if filters.to_date:
            conditions.append(appointments.c.appointment_date <= filters.to_date)

        where = and_(true(), *conditions)

        count_stmt = select(func.count()).select_from(appointments).where(where)
        total_result = await self.db.execute(count_stmt)
        total = total_result.scalar() or 0

        offset = (filters.page - 1) * filters.page_size

        stmt = (
            select(appointments)
            .where(where)
            .order_by(
                appointments.c.appointment_date.desc(),
                appointments.c.slot_start.desc(),
                appointments.c.created_at.desc(),
            )
            .limit(filters.page_size)
            .offset(offset)
        )

        result = await self.db.execute(stmt)
        items = [
            AppointmentResponse.model_validate(dict(row._mapping)) for row in result.fetchall()
        ]

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=items,
        )

    async def book(self, actor: ActorContext, data: AppointmentCreate) -> AppointmentResponse:
        """
        Request an appointment slot.

        Args:
            actor: Requesting patient
            data: Provider, date and slot start

        Returns:
            Created appointment in ``requested`` state

        Raises:
            NotFoundException: If the provider is unknown, unverified or inactive
            ValidationException: If the date or slot is not in the provider's schedule
            SlotExpiredException: If the slot has already started
            SlotConflictException: If the slot is already fully reserved
        """
        if actor.role is not Actor.PATIENT or actor.user_id is None:
            raise ForbiddenException("Only patients can request appointments")

        context = {
            "provider_id": str(data.provider_id),
            "date": data.appointment_date.isoformat(),
            "slot_start": data.slot_start.strftime("%H:%M"),
        }

        if not await self.directory.is_verified_and_active(data.provider_id):
            raise NotFoundException("Provider not found or not available", context=context)

        schedule = await self.directory.get_schedule(data.provider_id)
        weekday = Weekday.of(data.appointment_date)
        if weekday not in schedule.working_days:
            raise ValidationException(
                f"Provider is not available on {weekday.value}",
                context={**context, "working_days": [d.value for d in schedule.working_days]},
            )

        slot = find_slot(schedule, data.appointment_date, data.slot_start)
        if slot is None:
            raise ValidationException("Requested time is not a bookable slot", context=context)

        now = self.clock.now()
        if self.clock.at(data.appointment_date, slot.start) <= now:
            raise SlotExpiredException("Appointment slot must be in the future", context=context)

        appointment_id = uuid4()
        key = provider_day_key(data.provider_id, data.appointment_date)
        async with self.locks.hold(key):
            try:
                await reserve(
                    self.db,
                    data.provider_id,
                    data.appointment_date,
                    slot.start,
                    schedule.max_appointments_per_slot,
                )
                await self.db.execute(
                    insert(appointments).values(
                        id=appointment_id,
                        reference_code=generate_reference_code(now.date()),
                        patient_id=actor.user_id,
                        provider_id=data.provider_id,
                        appointment_date=data.appointment_date,
                        slot_start=slot.start,
                        slot_end=slot.end,
                        reason=data.reason,
                        status=AppointmentStatus.REQUESTED.value,
                        has_clinical_record=False,
                        created_at=now,
                        updated_at=now,
                    )
                )
                await recompute_positions(self.db, data.provider_id, data.appointment_date)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        appointment = await self._fetch(appointment_id)
        logger.info(
            "appointment_booked",
            appointment_id=str(appointment.id),
            reference_code=appointment.reference_code,
            **context,
        )
        await dispatch_safely(
            self.dispatcher,
            appointment.provider_id,
            NotificationKind.APPOINTMENT_BOOKED,
            appointment_payload(appointment),
        )
        return appointment

    async def _apply(
        self,
        current: AppointmentResponse,
        event: AppointmentEvent,
        actor: ActorContext,
        *,
        reason: str | None = None,
    ) -> TransitionPlan:
        """Plan and write one transition. Caller holds the lock and commits."""
        plan = plan_transition(
            current,
            event,
            actor.role,
            self.clock.now(),
            reason=reason,
            cancellation_lead=self.cancellation_lead,
        )

        if plan.reserves_capacity:
            schedule = await self.directory.get_schedule(current.provider_id)
            await reserve(
                self.db,
                current.provider_id,
                current.appointment_date,
                current.slot_start,
                schedule.max_appointments_per_slot,
                exclude_id=current.id,
            )

        if plan.needs_token:
            plan.values["queue_token"] = await assign_token(
                self.db, current.provider_id, current.appointment_date
            )

        result = await self.db.execute(
            update(appointments)
            .where(
                and_(
                    appointments.c.id == current.id,
                    appointments.c.status == plan.source.value,
                )
            )
            .values(**plan.values)
        )
        if result.rowcount != 1:
            raise InvalidTransitionException(
                "Appointment was changed by another request",
                context=error_context(current, event, actor.role, "concurrent_update"),
            )
        return plan

    async def _announce(self, plan: TransitionPlan, actor: ActorContext) -> AppointmentResponse:
        appointment = await self._fetch(plan.appointment_id)
        logger.info(
            "appointment_transitioned",
            appointment_id=str(appointment.id),
            transition_event=plan.event.value,
            actor=actor.role.value,
            from_status=plan.source.value,
            to_status=plan.target.value,
            queue_token=appointment.queue_token,
        )
        await self._notify_transition(appointment, plan.event, actor)
        return appointment

    async def transition(
        self,
        appointment_id: UUID,
        event: AppointmentEvent,
        actor: ActorContext,
        *,
        reason: str | None = None,
        expected_status: AppointmentStatus | None = None,
    ) -> AppointmentResponse:
        """
        Apply a lifecycle event to an appointment.

        The legality check, capacity reservation, token assignment, status write and
        position refresh all happen under the provider-day lock and commit together.
        Notifications go out after the lock is released.

        When ``expected_status`` is given, the event only applies if the appointment
        is still in that status once the lock is held.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If actor doesn't take part in it
            InvalidTransitionException: If the event is not allowed now
            SlotExpiredException: If a temporal guard fails
            SlotConflictException: If approval would exceed slot capacity
            BusyException: If the provider-day lock is not acquired in time
        """
        snapshot = await self._fetch(appointment_id)
        self._authorize(snapshot, actor)

        key = provider_day_key(snapshot.provider_id, snapshot.appointment_date)
        async with self.locks.hold(key):
            try:
                current = await self._fetch(appointment_id, for_update=True)
                if expected_status is not None and current.status is not expected_status:
                    raise InvalidTransitionException(
                        f"Appointment is {current.status.value}, "
                        f"expected {expected_status.value}",
                        context=error_context(current, event, actor.role, "stale_snapshot"),
                    )

                plan = await self._apply(current, event, actor, reason=reason)
                await recompute_positions(self.db, current.provider_id, current.appointment_date)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        return await self._announce(plan, actor)

    async def _notify_transition(
        self,
        appointment: AppointmentResponse,
        event: AppointmentEvent,
        actor: ActorContext,
    ) -> None:
        recipient, kind = _TRANSITION_NOTICES[event]
        if event is AppointmentEvent.CANCEL and actor.role is Actor.PATIENT:
            recipient = "provider"

        user_id = appointment.patient_id if recipient == "patient" else appointment.provider_id
        payload = appointment_payload(appointment)
        if appointment.cancellation_reason and event in (
            AppointmentEvent.CANCEL,
            AppointmentEvent.REJECT,
        ):
            payload["reason"] = appointment.cancellation_reason

        await dispatch_safely(self.dispatcher, user_id, kind, payload)

    async def approve(self, appointment_id: UUID, actor: ActorContext) -> AppointmentResponse:
        return await self.transition(appointment_id, AppointmentEvent.APPROVE, actor)

    async def reject(
        self,
        appointment_id: UUID,
        actor: ActorContext,
        reason: str | None = None,
    ) -> AppointmentResponse:
        return await self.transition(appointment_id, AppointmentEvent.REJECT, actor, reason=reason)

    async def move_to_queue(self, appointment_id: UUID, actor: ActorContext) -> AppointmentResponse:
        return await self.transition(appointment_id, AppointmentEvent.MOVE_TO_QUEUE, actor)

    async def start_processing(
        self,
        appointment_id: UUID,
        actor: ActorContext,
    ) -> AppointmentResponse:
        return await self.transition(appointment_id, AppointmentEvent.START_PROCESSING, actor)

    async def finish(self, appointment_id: UUID, actor: ActorContext) -> AppointmentResponse:
        return await self.transition(appointment_id, AppointmentEvent.FINISH, actor)

    async def complete(self, appointment_id: UUID, actor: ActorContext) -> AppointmentResponse:
        return await self.transition(appointment_id, AppointmentEvent.COMPLETE, actor)

    async def cancel(
        self,
        appointment_id: UUID,
        actor: ActorContext,
        reason: str | None = None,
    ) -> AppointmentResponse:
        return await self.transition(appointment_id, AppointmentEvent.CANCEL, actor, reason=reason)

    async def call_next(
        self,
        provider_id: UUID,
        actor: ActorContext,
    ) -> AppointmentResponse | None:
        """
        Finish the visit in progress and call the next waiting patient of today.

        Both steps run under one hold of the provider-day lock and commit together.
        Waiting appointments whose slot has already ended are passed over.

        Args:
            provider_id: Provider whose queue advances
            actor: The provider or an admin

        Returns:
            The appointment now processing, or None if nobody is waiting

        Raises:
            ForbiddenException: If the actor is not the provider or an admin
            NotFoundException: If the provider is unknown
            BusyException: If the provider-day lock is not acquired in time
        """
        if actor.role is Actor.PROVIDER and actor.user_id != provider_id:
            raise ForbiddenException("Access denied to this queue")
        if actor.role not in (Actor.PROVIDER, Actor.ADMIN):
            raise ForbiddenException("Only the provider or an admin can advance the queue")

        await self.directory.get_schedule(provider_id)

        today = self.clock.today()
        plans: list[TransitionPlan] = []
        called: TransitionPlan | None = None

        async with self.locks.hold(provider_day_key(provider_id, today)):
            try:
                day = await load_provider_day(self.db, provider_id, today)
                for current in day:
                    if current.status is AppointmentStatus.PROCESSING:
                        plans.append(await self._apply(current, AppointmentEvent.FINISH, actor))

                now = self.clock.now()
                waiting = [
                    a
                    for a in order_queue(day)
                    if a.status in (AppointmentStatus.APPROVED, AppointmentStatus.IN_QUEUE)
                    and self.clock.at(a.appointment_date, a.slot_end) > now
                ]
                if waiting:
                    called = await self._apply(waiting[0], AppointmentEvent.START_PROCESSING, actor)
                    plans.append(called)

                await recompute_positions(self.db, provider_id, today)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        results = {plan.appointment_id: await self._announce(plan, actor) for plan in plans}
        if called is None:
            logger.info("queue_empty", provider_id=str(provider_id), date=today.isoformat())
            return None
        return results[called.appointment_id]

    async def attach_clinical_record(
        self,
        appointment_id: UUID,
        actor: ActorContext,
        record: dict[str, Any],
    ) -> AppointmentResponse:
        """
        Store the opaque clinical payload of a visit that is over.

        Raises:
            ForbiddenException: If the actor is not the provider or an admin
            InvalidTransitionException: If the appointment is not finished or completed
        """
        if actor.role not in (Actor.PROVIDER, Actor.ADMIN):
            raise ForbiddenException("Only providers can write clinical records")

        appointment = await self._fetch(appointment_id)
        self._authorize(appointment, actor)

        gate = (AppointmentStatus.FINISHED.value, AppointmentStatus.COMPLETED.value)
        result = await self.db.execute(
            update(appointments)
            .where(and_(appointments.c.id == appointment_id, appointments.c.status.in_(gate)))
            .values(
                clinical_record=record,
                has_clinical_record=True,
                updated_at=self.clock.now(),
            )
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise InvalidTransitionException(
                "Clinical records can only be attached once the visit is finished",
                context={
                    "appointment_id": str(appointment_id),
                    "status": appointment.status.value,
                    "guard": "clinical_record_gate",
                },
            )
        await self.db.commit()

        appointment = await self._fetch(appointment_id)
        await dispatch_safely(
            self.dispatcher,
            appointment.patient_id,
            NotificationKind.CLINICAL_RECORD_READY,
            appointment_payload(appointment),
        )
        return appointment

    async def mark_reminder_sent(self, appointment_id: UUID) -> bool:
        """
        Flag an appointment's reminder as sent, at most once.

        Returns:
            True if this call set the flag
        """
        reminder_statuses = (AppointmentStatus.APPROVED.value, AppointmentStatus.IN_QUEUE.value)
        result = await self.db.execute(
            update(appointments)
            .where(
                and_(
                    appointments.c.id == appointment_id,
                    appointments.c.reminder_sent_at.is_(None),
                    appointments.c.status.in_(reminder_statuses),
                )
            )
            .values(reminder_sent_at=self.clock.now())
        )
        await self.db.commit()
        return result.rowcount == 1

    async def send_reminder(self, appointment_id: UUID) -> bool:
        """Remind the patient of an upcoming visit unless already reminded."""
        if not await self.mark_reminder_sent(appointment_id):
            return False

        appointment = await self._fetch(appointment_id)
        await dispatch_safely(
            self.dispatcher,
            appointment.patient_id,
            NotificationKind.APPOINTMENT_REMINDER,
            appointment_payload(appointment),
        )
        return True

    async def refresh_positions(self, provider_id: UUID, day: date) -> int:
        """Recompute a provider-day's queue positions under its lock."""
        async with self.locks.hold(provider_day_key(provider_id, day)):
            try:
                changed = await recompute_positions(self.db, provider_id, day)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
        return changed

    async def get_availability(self, provider_id: UUID, day: date) -> AvailabilityResponse:
        """
        Slot occupancy of a provider on a date. Served from a snapshot, no lock.

        Raises:
            NotFoundException: If the provider is unknown
        """
        schedule = await self.directory.get_schedule(provider_id)
        slots = enumerate_slots(schedule, day)
        held = await reserved_counts(self.db, provider_id, day) if slots else {}
        now = self.clock.now()
        capacity = schedule.max_appointments_per_slot

        items = []
        for slot in slots:
            reserved = held.get(slot.start, 0)
            remaining = max(capacity - reserved, 0)
            items.append(
                SlotAvailability(
                    start=slot.start,
                    end=slot.end,
                    capacity=capacity,
                    reserved=reserved,
                    remaining=remaining,
                    available=(
                        schedule.bookable
                        and remaining > 0
                        and self.clock.at(day, slot.start) > now
                    ),
                )
            )

        return AvailabilityResponse(
            provider_id=provider_id,
            date=day,
            working_day=Weekday.of(day) in schedule.working_days,
            slot_duration_minutes=schedule.slot_duration_minutes,
            slots=items,
        )

    def _wait_for(self, appointment: AppointmentResponse) -> int | None:
        if appointment.status is AppointmentStatus.PROCESSING:
            return 0
        return estimate_wait(appointment.queue_position, self.avg_service_minutes)

    async def get_queue(self, provider_id: UUID, day: date) -> QueueResponse:
        """
        Provider-day queue in display order. Served from a snapshot, no lock.

        Raises:
            NotFoundException: If the provider is unknown
        """
        await self.directory.get_schedule(provider_id)
        ordered = order_queue(await load_provider_day(self.db, provider_id, day))

        entries = [
            QueueEntry(
                appointment_id=a.id,
                reference_code=a.reference_code,
                patient_id=a.patient_id,
                status=a.status,
                queue_token=a.queue_token,
                queue_position=a.queue_position,
                slot_start=a.slot_start,
                slot_end=a.slot_end,
                called_at=a.called_at,
                estimated_wait_minutes=self._wait_for(a),
            )
            for a in ordered
        ]

        processing = [a for a in ordered if a.status is AppointmentStatus.PROCESSING]
        stats = QueueStats(
            total=len(ordered),
            requested=sum(1 for a in ordered if a.status is AppointmentStatus.REQUESTED),
            waiting=sum(
                1
                for a in ordered
                if a.status in (AppointmentStatus.APPROVED, AppointmentStatus.IN_QUEUE)
            ),
            processing=len(processing),
            current_token=processing[0].queue_token if processing else None,
            avg_service_minutes=self.avg_service_minutes,
        )

        return QueueResponse(provider_id=provider_id, date=day, entries=entries, stats=stats)

    async def get_queue_position(
        self,
        appointment_id: UUID,
        actor: ActorContext,
    ) -> QueuePositionResponse:
        """Where one appointment stands in its provider-day queue."""
        appointment = await self.get_appointment(appointment_id, actor)
        position = appointment.queue_position if appointment.is_active else None

        return QueuePositionResponse(
            appointment_id=appointment.id,
            reference_code=appointment.reference_code,
            status=appointment.status,
            queue_token=appointment.queue_token,
            queue_position=position,
            patients_ahead=(position - 1) if position else 0,
            estimated_wait_minutes=self._wait_for(appointment) if position else None,
        )
