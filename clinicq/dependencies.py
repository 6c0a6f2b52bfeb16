"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from clinicq.config import settings
from clinicq.core.clock import Clock, get_clock
from clinicq.core.exceptions import ForbiddenException, UnauthorizedException
from clinicq.core.locks import LockManager, get_lock_manager
from clinicq.core.redis_client import CacheManager, get_redis_client
from clinicq.database import AsyncSessionLocal, get_db
from clinicq.scheduling.sweeper import AppointmentSweeper
from clinicq.schemas.appointments import Actor, ActorContext
from clinicq.services.appointment_service import AppointmentService
from clinicq.services.notification_service import (
    NotificationDispatcher,
    get_notification_dispatcher,
)
from clinicq.services.provider_service import ProviderService


async def get_actor(
    x_actor_role: Annotated[str | None, Header()] = None,
    x_actor_id: Annotated[str | None, Header()] = None,
) -> ActorContext:
    """
    Build the caller identity from gateway-asserted headers.

    Args:
        x_actor_role: ``X-Actor-Role`` header (patient, provider or admin)
        x_actor_id: ``X-Actor-Id`` header, the caller's UUID

    Returns:
        Actor context of the request

    Raises:
        UnauthorizedException: If the headers are missing or malformed
    """
    if not x_actor_role:
        raise UnauthorizedException("Missing actor role")

    try:
        role = Actor(x_actor_role.lower())
    except ValueError:
        raise UnauthorizedException(f"Unknown actor role: {x_actor_role}")

    # The system actor is reserved for the sweeper
    if role is Actor.SYSTEM:
        raise UnauthorizedException("System actor cannot be asserted by a request")

    user_id = None
    if x_actor_id:
        try:
            user_id = UUID(x_actor_id)
        except ValueError:
            raise UnauthorizedException("Invalid actor ID format")

    if role is not Actor.ADMIN and user_id is None:
        raise UnauthorizedException("Missing actor ID")

    return ActorContext(role=role, user_id=user_id)


async def get_admin(actor: Annotated[ActorContext, Depends(get_actor)]) -> ActorContext:
    """Require an admin caller."""
    if actor.role is not Actor.ADMIN:
        raise ForbiddenException("Admin access required")
    return actor


def get_cache_manager() -> CacheManager | None:
    """Schedule cache, when enabled."""
    if not settings.schedule_cache_enabled:
        return None
    return CacheManager(get_redis_client())


def get_provider_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CacheManager | None, Depends(get_cache_manager)],
) -> ProviderService:
    return ProviderService(db, cache_manager=cache, cache_ttl=settings.schedule_cache_ttl_seconds)


def get_appointment_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    clock: Annotated[Clock, Depends(get_clock)],
    locks: Annotated[LockManager, Depends(get_lock_manager)],
    dispatcher: Annotated[NotificationDispatcher, Depends(get_notification_dispatcher)],
    directory: Annotated[ProviderService, Depends(get_provider_service)],
) -> AppointmentService:
    return AppointmentService(
        db,
        clock=clock,
        locks=locks,
        dispatcher=dispatcher,
        directory=directory,
    )


def get_sweeper(
    clock: Annotated[Clock, Depends(get_clock)],
    locks: Annotated[LockManager, Depends(get_lock_manager)],
    dispatcher: Annotated[NotificationDispatcher, Depends(get_notification_dispatcher)],
) -> AppointmentSweeper:
    return AppointmentSweeper(
        AsyncSessionLocal,
        clock=clock,
        locks=locks,
        dispatcher=dispatcher,
    )


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentActor = Annotated[ActorContext, Depends(get_actor)]
AdminActor = Annotated[ActorContext, Depends(get_admin)]
Appointments = Annotated[AppointmentService, Depends(get_appointment_service)]
Providers = Annotated[ProviderService, Depends(get_provider_service)]
Sweeper = Annotated[AppointmentSweeper, Depends(get_sweeper)]
