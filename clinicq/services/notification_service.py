"""Outbound notification dispatch, fire-and-forget after a transition commits."""

import asyncio
from enum import Enum
from functools import lru_cache
from typing import Any, Protocol
from uuid import UUID

import structlog
from firebase_admin import messaging

from clinicq.config import settings
from clinicq.core.firebase import initialize_firebase
from clinicq.schemas.appointments import AppointmentResponse

logger = structlog.get_logger(__name__)


class NotificationKind(str, Enum):
    """Events reported to patients and providers."""

    APPOINTMENT_BOOKED = "appointment_booked"
    APPOINTMENT_APPROVED = "appointment_approved"
    APPOINTMENT_REJECTED = "appointment_rejected"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    QUEUE_UPDATE = "queue_update"
    PATIENT_CALLED = "patient_called"
    APPOINTMENT_FINISHED = "appointment_finished"
    APPOINTMENT_COMPLETED = "appointment_completed"
    APPOINTMENT_REMINDER = "appointment_reminder"
    CLINICAL_RECORD_READY = "clinical_record_ready"


class NotificationDispatcher(Protocol):
    """Delivery collaborator. Implementations may raise; callers log and move on."""

    async def notify(
        self,
        user_id: UUID,
        kind: NotificationKind,
        payload: dict[str, Any],
    ) -> None: ...


class LoggingNotificationDispatcher:
    """Records notifications in the structured log only."""

    async def notify(
        self,
        user_id: UUID,
        kind: NotificationKind,
        payload: dict[str, Any],
    ) -> None:
        logger.info("notification_dispatched", user_id=str(user_id), kind=kind.value, **payload)


class FirebaseNotificationDispatcher:
    """Sends data messages to the per-user FCM topic ``user-<id>``."""

    def __init__(self) -> None:
        initialize_firebase(settings.firebase_credentials_path, settings.firebase_config_json)

    async def notify(
        self,
        user_id: UUID,
        kind: NotificationKind,
        payload: dict[str, Any],
    ) -> None:
        message = messaging.Message(
            topic=f"user-{user_id}",
            data={"type": kind.value, **{k: str(v) for k, v in payload.items() if v is not None}},
            android=messaging.AndroidConfig(priority="high"),
        )
        message_id = await asyncio.to_thread(messaging.send, message)
        logger.info(
            "push_notification_sent",
            user_id=str(user_id),
            kind=kind.value,
            message_id=message_id,
        )


def appointment_payload(appointment: AppointmentResponse) -> dict[str, Any]:
    """Notification payload describing an appointment."""
    return {
        "appointment_id": str(appointment.id),
        "reference_code": appointment.reference_code,
        "appointment_date": appointment.appointment_date.isoformat(),
        "slot_start": appointment.slot_start.strftime("%H:%M"),
        "status": appointment.status.value,
        "queue_token": appointment.queue_token,
        "queue_position": appointment.queue_position,
    }


async def dispatch_safely(
    dispatcher: NotificationDispatcher,
    user_id: UUID,
    kind: NotificationKind,
    payload: dict[str, Any],
) -> bool:
    """
    Dispatch a notification, logging delivery failures instead of raising.

    Returns:
        True if the dispatcher accepted the notification
    """
    try:
        await dispatcher.notify(user_id, kind, payload)
        return True
    except Exception as e:
        logger.warning(
            "notification_dispatch_failed",
            user_id=str(user_id),
            kind=kind.value,
            error=str(e),
        )
        return False


@lru_cache
def get_notification_dispatcher() -> NotificationDispatcher:
    """Get the dispatcher for the configured backend."""
    if settings.notification_backend.lower() == "firebase":
        return FirebaseNotificationDispatcher()
    return LoggingNotificationDispatcher()
