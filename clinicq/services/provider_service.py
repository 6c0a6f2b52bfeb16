"""Provider directory backed by the provider_schedules table."""

from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import UUID

import structlog
from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from clinicq.core.exceptions import NotFoundException
from clinicq.core.redis_client import CacheManager
from clinicq.models.providers import provider_schedules
from clinicq.schemas.providers import ProviderSchedule, ProviderScheduleUpdate, TimeRange

logger = structlog.get_logger(__name__)


class ProviderDirectory(Protocol):
    """Read-only view of provider schedules consumed by the scheduler."""

    async def get_schedule(self, provider_id: UUID) -> ProviderSchedule: ...

    async def is_verified_and_active(self, provider_id: UUID) -> bool: ...


def _row_to_schedule(row: dict[str, Any]) -> ProviderSchedule:
    return ProviderSchedule(
        provider_id=row["provider_id"],
        working_days=row["working_days"],
        working_hours=TimeRange(start=row["work_start"], end=row["work_end"]),
        breaks=row["breaks"],
        slot_duration_minutes=row["slot_duration_minutes"],
        max_appointments_per_slot=row["max_appointments_per_slot"],
        is_verified=row["is_verified"],
        is_active=row["is_active"],
        updated_at=row["updated_at"],
    )


class ProviderService:
    """Service for provider schedules."""

    def __init__(
        self,
        db: AsyncSession,
        cache_manager: CacheManager | None = None,
        cache_ttl: int = 300,
    ):
        """Initialize service with database session and optional cache manager."""
        self.db = db
        self.cache = cache_manager
        self.cache_ttl = cache_ttl

    @staticmethod
    def _cache_key(provider_id: UUID) -> str:
        """Generate cache key for a provider schedule."""
        return f"provider_schedule:{provider_id}"

    async def find_schedule(self, provider_id: UUID) -> ProviderSchedule | None:
        """Get a provider schedule, or None if the provider is unknown."""
        if self.cache:
            cached = self.cache.get_json(self._cache_key(provider_id))
            if cached:
                return ProviderSchedule.model_validate(cached)

        stmt = select(provider_schedules).where(provider_schedules.c.provider_id == provider_id)
        result = await self.db.execute(stmt)
        row = result.mappings().first()
        if not row:
            return None

        schedule = _row_to_schedule(dict(row))

        if self.cache:
            self.cache.set_json(
                self._cache_key(provider_id),
                schedule.model_dump(mode="json"),
                ttl=self.cache_ttl,
            )

        return schedule

    async def get_schedule(self, provider_id: UUID) -> ProviderSchedule:
        """
        Get a provider schedule.

        Raises:
            NotFoundException: If the provider is unknown
        """
        schedule = await self.find_schedule(provider_id)
        if schedule is None:
            raise NotFoundException(
                "Provider not found",
                context={"provider_id": str(provider_id)},
            )
        return schedule

    async def is_verified_and_active(self, provider_id: UUID) -> bool:
        schedule = await self.find_schedule(provider_id)
        return schedule is not None and schedule.bookable

    async def upsert_schedule(
        self,
        provider_id: UUID,
        data: ProviderScheduleUpdate,
    ) -> ProviderSchedule:
        """
        Create or replace a provider's schedule.

        Args:
            provider_id: Provider ID
            data: Validated schedule

        Returns:
            Stored schedule
        """
        now = datetime.now(UTC)
        values = {
            "working_days": [day.value for day in data.working_days],
            "work_start": data.working_hours.start,
            "work_end": data.working_hours.end,
            "breaks": [interval.model_dump(mode="json") for interval in data.breaks],
            "slot_duration_minutes": data.slot_duration_minutes,
            "max_appointments_per_slot": data.max_appointments_per_slot,
            "is_verified": data.is_verified,
            "is_active": data.is_active,
            "updated_at": now,
        }

        exists = await self.db.execute(
            select(provider_schedules.c.provider_id).where(
                provider_schedules.c.provider_id == provider_id
            )
        )
        if exists.first():
            stmt = (
                update(provider_schedules)
                .where(provider_schedules.c.provider_id == provider_id)
                .values(**values)
            )
        else:
            stmt = insert(provider_schedules).values(
                provider_id=provider_id, created_at=now, **values
            )

        await self.db.execute(stmt)
        await self.db.commit()

        if self.cache:
            self.cache.delete(self._cache_key(provider_id))

        logger.info("provider_schedule_saved", provider_id=str(provider_id))
        return await self.get_schedule(provider_id)
