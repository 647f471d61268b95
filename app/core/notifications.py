"""
Outcome notifications.

The engine reports what happened (a registration was confirmed, waitlisted,
promoted, cancelled, checked in) to a ``NotificationSink`` once the
transaction has committed. Delivery is someone else's job: the production sink
hands each outcome to a Celery task by name.
"""

import logging
from typing import Any, Dict, Optional

from app.core.settings import get_settings
from app.models.registration import Registration

logger = logging.getLogger(__name__)
settings = get_settings()

REGISTRATION_CONFIRMED = "registration_confirmed"
REGISTRATION_WAITLISTED = "registration_waitlisted"
REGISTRATION_PROMOTED = "registration_promoted"
REGISTRATION_CANCELLED = "registration_cancelled"
ATTENDEE_CHECKED_IN = "attendee_checked_in"
BATCH_COMPLETED = "batch_completed"


def registration_payload(registration: Registration) -> Dict[str, Any]:
    return {
        "registration_id": registration.id,
        "event_id": registration.event_id,
        "attendee_id": registration.attendee_id,
        "status": registration.status.value,
        "waitlist_position": registration.waitlist_position,
        "check_in_code": registration.check_in_code,
    }


class NotificationSink:
    """Receives engine outcomes after commit"""

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class CeleryNotificationSink(NotificationSink):
    """Dispatches each outcome to the ``app.tasks.<topic>`` Celery task"""

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        from app.celery_app import celery_app

        celery_app.send_task(f"app.tasks.{topic}", kwargs=payload)


def notify(
    sink: Optional[NotificationSink], topic: str, payload: Dict[str, Any]
) -> None:
    """Publish an outcome; a failing sink never fails the operation"""
    if sink is None or not settings.registration.NOTIFICATIONS_ENABLED:
        return
    try:
        sink.publish(topic, payload)
    except Exception as e:
        logger.warning(f"Failed to publish {topic} notification: {e}")


def notify_registration(
    sink: Optional[NotificationSink], topic: str, registration: Registration
) -> None:
    notify(sink, topic, registration_payload(registration))
