"""
Celery tasks receiving registration outcomes.

Each task gets the payload built by ``app.core.notifications`` and records it
in the structured log. Rendering and delivering emails or QR badges is the job
of downstream consumers and lives outside this service.
"""

import logging
from typing import Any, Dict, Optional

from .celery_app import celery_app

logger = logging.getLogger(__name__)


def _record_outcome(topic: str, message: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    logger.info(message, extra={"topic": topic, **payload})
    return {"topic": topic, **payload}


@celery_app.task(name="app.tasks.registration_confirmed")  # type: ignore[misc]
def registration_confirmed(
    registration_id: int,
    event_id: int,
    attendee_id: int,
    status: str,
    check_in_code: str,
    waitlist_position: Optional[int] = None,
) -> Dict[str, Any]:
    return _record_outcome(
        "registration_confirmed",
        f"Registration {registration_id} confirmed for event {event_id}",
        {
            "registration_id": registration_id,
            "event_id": event_id,
            "attendee_id": attendee_id,
            "status": status,
            "check_in_code": check_in_code,
        },
    )


@celery_app.task(name="app.tasks.registration_waitlisted")  # type: ignore[misc]
def registration_waitlisted(
    registration_id: int,
    event_id: int,
    attendee_id: int,
    status: str,
    check_in_code: str,
    waitlist_position: Optional[int] = None,
) -> Dict[str, Any]:
    return _record_outcome(
        "registration_waitlisted",
        f"Registration {registration_id} waitlisted at position {waitlist_position}",
        {
            "registration_id": registration_id,
            "event_id": event_id,
            "attendee_id": attendee_id,
            "waitlist_position": waitlist_position,
        },
    )


@celery_app.task(name="app.tasks.registration_promoted")  # type: ignore[misc]
def registration_promoted(
    registration_id: int,
    event_id: int,
    attendee_id: int,
    status: str,
    check_in_code: str,
    waitlist_position: Optional[int] = None,
) -> Dict[str, Any]:
    return _record_outcome(
        "registration_promoted",
        f"Registration {registration_id} promoted from the waitlist",
        {
            "registration_id": registration_id,
            "event_id": event_id,
            "attendee_id": attendee_id,
            "check_in_code": check_in_code,
        },
    )


@celery_app.task(name="app.tasks.registration_cancelled")  # type: ignore[misc]
def registration_cancelled(
    registration_id: int,
    event_id: int,
    attendee_id: int,
    status: str,
    check_in_code: str,
    waitlist_position: Optional[int] = None,
) -> Dict[str, Any]:
    return _record_outcome(
        "registration_cancelled",
        f"Registration {registration_id} cancelled",
        {
            "registration_id": registration_id,
            "event_id": event_id,
            "attendee_id": attendee_id,
        },
    )


@celery_app.task(name="app.tasks.attendee_checked_in")  # type: ignore[misc]
def attendee_checked_in(
    registration_id: int,
    event_id: int,
    attendee_id: int,
    status: str,
    check_in_code: str,
    waitlist_position: Optional[int] = None,
) -> Dict[str, Any]:
    return _record_outcome(
        "attendee_checked_in",
        f"Attendee {attendee_id} checked in to event {event_id}",
        {
            "registration_id": registration_id,
            "event_id": event_id,
            "attendee_id": attendee_id,
        },
    )


@celery_app.task(name="app.tasks.batch_completed")  # type: ignore[misc]
def batch_completed(
    type: str,
    action: str,
    actor_id: int,
    processed: int,
    ids: list,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    return _record_outcome(
        "batch_completed",
        f"Batch {action} on {processed} {type} by user {actor_id}",
        {
            "batch_type": type,
            "action": action,
            "actor_id": actor_id,
            "processed": processed,
            "ids": ids,
            "reason": reason or "None provided",
        },
    )
