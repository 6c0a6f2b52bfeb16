"""
Periodic appointment maintenance.

Each job first decides which appointments qualify from a read-only snapshot,
then commits them one by one through the same service entry points as
interactive requests, each in its own session and transaction. A failing
item is logged and counted; the rest of the batch still runs.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import asdict, dataclass
from datetime import time, timedelta
from enum import Enum

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinicq.core.clock import Clock
from clinicq.core.exceptions import InvalidTransitionException, SlotExpiredException
from clinicq.core.locks import LockManager
from clinicq.models.appointments import appointments
from clinicq.schemas.appointments import (
    ACTIVE_STATUSES,
    AppointmentEvent,
    AppointmentResponse,
    AppointmentStatus,
)
from clinicq.services.appointment_service import SYSTEM_ACTOR, AppointmentService
from clinicq.services.notification_service import NotificationDispatcher

logger = structlog.get_logger(__name__)

AUTO_CANCEL_REASON = "Automatically cancelled - not approved by end of day"


class SweepJob(str, Enum):
    """Maintenance jobs run by the sweeper."""

    AUTO_FINISH = "auto_finish"
    AUTO_CANCEL_PENDING = "auto_cancel_pending"
    SEND_REMINDERS = "send_reminders"
    REFRESH_POSITIONS = "refresh_positions"


@dataclass
class SweepReport:
    """Outcome of one sweeper run."""

    job: str
    examined: int = 0
    changed: int = 0
    failed: int = 0


ItemAction = Callable[[AppointmentService, AppointmentResponse], Awaitable[object]]


class AppointmentSweeper:
    """Finishes overdue visits, drops unapproved requests and sends reminders."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Clock,
        locks: LockManager,
        dispatcher: NotificationDispatcher,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.locks = locks
        self.dispatcher = dispatcher

    def _service(self, session: AsyncSession) -> AppointmentService:
        return AppointmentService(
            session,
            clock=self.clock,
            locks=self.locks,
            dispatcher=self.dispatcher,
        )

    async def _snapshot(self, *conditions) -> list[AppointmentResponse]:
        async with self.session_factory() as session:
            stmt = (
                select(appointments)
                .where(and_(*conditions))
                .order_by(appointments.c.appointment_date, appointments.c.slot_start)
            )
            result = await session.execute(stmt)
            return [
                AppointmentResponse.model_validate(dict(row._mapping))
                for row in result.fetchall()
            ]

    async def _commit_each(
        self,
        report: SweepReport,
        items: Sequence[AppointmentResponse],
        action: ItemAction,
    ) -> SweepReport:
        for appointment in items:
            async with self.session_factory() as session:
                try:
                    if await action(self._service(session), appointment):
                        report.changed += 1
                except (InvalidTransitionException, SlotExpiredException) as e:
                    # Moved on since the snapshot was taken
                    logger.info(
                        "sweep_item_skipped",
                        job=report.job,
                        appointment_id=str(appointment.id),
                        reason=e.message,
                    )
                except Exception as e:
                    report.failed += 1
                    logger.error(
                        "sweep_item_failed",
                        job=report.job,
                        appointment_id=str(appointment.id),
                        error=str(e),
                        error_type=type(e).__name__,
                    )
        return report

    async def auto_finish(self) -> SweepReport:
        """Finish processing appointments whose slot has ended."""
        now = self.clock.now()
        candidates = await self._snapshot(
            appointments.c.status == AppointmentStatus.PROCESSING.value,
            appointments.c.appointment_date <= now.date(),
        )
        due = [a for a in candidates if self.clock.at(a.appointment_date, a.slot_end) < now]

        report = SweepReport(job=SweepJob.AUTO_FINISH.value, examined=len(candidates))
        return await self._commit_each(
            report,
            due,
            lambda service, a: service.transition(
                a.id,
                AppointmentEvent.FINISH,
                SYSTEM_ACTOR,
                expected_status=AppointmentStatus.PROCESSING,
            ),
        )

    async def auto_cancel_pending(self) -> SweepReport:
        """Cancel requests still unapproved at the end of their day."""
        candidates = await self._snapshot(
            appointments.c.status == AppointmentStatus.REQUESTED.value,
            appointments.c.appointment_date <= self.clock.today(),
        )

        report = SweepReport(job=SweepJob.AUTO_CANCEL_PENDING.value, examined=len(candidates))
        return await self._commit_each(
            report,
            candidates,
            lambda service, a: service.transition(
                a.id,
                AppointmentEvent.CANCEL,
                SYSTEM_ACTOR,
                reason=AUTO_CANCEL_REASON,
                expected_status=AppointmentStatus.REQUESTED,
            ),
        )

    async def send_reminders(self) -> SweepReport:
        """Remind patients of tomorrow's approved appointments, once each."""
        tomorrow = self.clock.today() + timedelta(days=1)
        candidates = await self._snapshot(
            appointments.c.status.in_(
                [AppointmentStatus.APPROVED.value, AppointmentStatus.IN_QUEUE.value]
            ),
            appointments.c.appointment_date == tomorrow,
            appointments.c.reminder_sent_at.is_(None),
        )

        report = SweepReport(job=SweepJob.SEND_REMINDERS.value, examined=len(candidates))
        return await self._commit_each(
            report,
            candidates,
            lambda service, a: service.send_reminder(a.id),
        )

    async def refresh_positions(self) -> SweepReport:
        """Re-derive queue positions of every provider with active appointments today."""
        today = self.clock.today()
        async with self.session_factory() as session:
            result = await session.execute(
                select(appointments.c.provider_id)
                .where(
                    and_(
                        appointments.c.appointment_date == today,
                        appointments.c.status.in_([s.value for s in ACTIVE_STATUSES]),
                    )
                )
                .distinct()
            )
            provider_ids = [row[0] for row in result.fetchall()]

        report = SweepReport(job=SweepJob.REFRESH_POSITIONS.value, examined=len(provider_ids))
        for provider_id in provider_ids:
            async with self.session_factory() as session:
                try:
                    report.changed += await self._service(session).refresh_positions(
                        provider_id, today
                    )
                except Exception as e:
                    report.failed += 1
                    logger.error(
                        "sweep_item_failed",
                        job=report.job,
                        provider_id=str(provider_id),
                        error=str(e),
                        error_type=type(e).__name__,
                    )
        return report

    async def run_job(self, job: SweepJob) -> SweepReport:
        """Run one job by name and log its report."""
        runners = {
            SweepJob.AUTO_FINISH: self.auto_finish,
            SweepJob.AUTO_CANCEL_PENDING: self.auto_cancel_pending,
            SweepJob.SEND_REMINDERS: self.send_reminders,
            SweepJob.REFRESH_POSITIONS: self.refresh_positions,
        }
        report = await runners[job]()
        logger.info("sweep_completed", **asdict(report))
        return report


class SweeperRunner:
    """Schedules sweeper jobs as background asyncio tasks."""

    def __init__(
        self,
        sweeper: AppointmentSweeper,
        *,
        sweep_interval: timedelta,
        reminder_interval: timedelta,
        cutoff: time,
    ):
        self.sweeper = sweeper
        self.sweep_interval = sweep_interval
        self.reminder_interval = reminder_interval
        self.cutoff = cutoff
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return

        self._tasks = [
            asyncio.create_task(
                self._every(
                    self.sweep_interval,
                    (SweepJob.AUTO_FINISH, SweepJob.REFRESH_POSITIONS),
                ),
                name="sweeper-interval",
            ),
            asyncio.create_task(
                self._every(self.reminder_interval, (SweepJob.SEND_REMINDERS,)),
                name="sweeper-reminders",
            ),
            asyncio.create_task(
                self._daily(self.cutoff, (SweepJob.AUTO_CANCEL_PENDING,)),
                name="sweeper-cutoff",
            ),
        ]
        logger.info(
            "sweeper_started",
            sweep_interval_minutes=self.sweep_interval.total_seconds() / 60,
            reminder_interval_minutes=self.reminder_interval.total_seconds() / 60,
            cutoff=self.cutoff.isoformat(),
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("sweeper_stopped")

    async def _run(self, jobs: Sequence[SweepJob]) -> None:
        for job in jobs:
            try:
                await self.sweeper.run_job(job)
            except Exception:
                logger.exception("sweep_job_failed", job=job.value)

    async def _every(self, interval: timedelta, jobs: Sequence[SweepJob]) -> None:
        while True:
            await self._run(jobs)
            await asyncio.sleep(interval.total_seconds())

    async def _daily(self, at: time, jobs: Sequence[SweepJob]) -> None:
        clock = self.sweeper.clock
        while True:
            now = clock.now()
            target = clock.at(now.date(), at)
            if target <= now:
                target = clock.at(now.date() + timedelta(days=1), at)
            await asyncio.sleep((target - now).total_seconds())
            await self._run(jobs)
