"""Tests for notification dispatch."""

from uuid import uuid4

import pytest
from firebase_admin import messaging

from clinicq.services import notification_service
from clinicq.services.notification_service import (
    FirebaseNotificationDispatcher,
    LoggingNotificationDispatcher,
    NotificationKind,
    dispatch_safely,
    get_notification_dispatcher,
)


def test_default_dispatcher_logs():
    assert isinstance(get_notification_dispatcher(), LoggingNotificationDispatcher)


@pytest.mark.asyncio
async def test_logging_dispatcher_accepts_notifications():
    delivered = await dispatch_safely(
        LoggingNotificationDispatcher(),
        uuid4(),
        NotificationKind.APPOINTMENT_APPROVED,
        {"appointment_id": "abc", "queue_token": 1},
    )
    assert delivered is True


@pytest.mark.asyncio
async def test_dispatch_safely_reports_failures():
    class Unreachable:
        async def notify(self, user_id, kind, payload):
            raise ConnectionError("FCM unreachable")

    delivered = await dispatch_safely(Unreachable(), uuid4(), NotificationKind.QUEUE_UPDATE, {})
    assert delivered is False


@pytest.mark.asyncio
async def test_firebase_dispatcher_targets_user_topic(monkeypatch):
    sent: list[messaging.Message] = []
    monkeypatch.setattr(notification_service, "initialize_firebase", lambda *args: None)
    monkeypatch.setattr(messaging, "send", lambda message: sent.append(message) or "msg-1")

    user_id = uuid4()
    dispatcher = FirebaseNotificationDispatcher()
    await dispatcher.notify(
        user_id,
        NotificationKind.PATIENT_CALLED,
        {"appointment_id": "abc", "queue_token": 4, "queue_position": None},
    )

    assert len(sent) == 1
    message = sent[0]
    assert message.topic == f"user-{user_id}"
    assert message.data == {"type": "patient_called", "appointment_id": "abc", "queue_token": "4"}
    assert message.android.priority == "high"
