"""
Check-in validation.

A presented code resolves to one of the ``CheckInOutcome`` values. Outcomes
are answers, not failures: a scanner shows "already checked in" or "on the
waitlist" to the door staff, so only a missing event or a missing permission
raise.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.core.db_utils import db_transaction, utcnow
from app.core.exceptions import CheckInNotOpen, EventNotAvailable, Forbidden, NotFound
from app.core.notifications import (
    ATTENDEE_CHECKED_IN,
    NotificationSink,
    notify_registration,
)
from app.core.security import Actor
from app.models.event import Event
from app.models.registration import Registration, RegistrationStatus
from app.schemas.registration import (
    CheckInOutcome,
    CheckInResult,
    CheckInStats,
    RecentCheckIn,
)
from app.services.state_machine import check_transition, transition

logger = logging.getLogger(__name__)

RECENT_CHECK_INS_LIMIT = 10

_STATUS_OUTCOMES = {
    RegistrationStatus.ATTENDED: (
        CheckInOutcome.ALREADY_CHECKED_IN,
        "Attendee is already checked in",
    ),
    RegistrationStatus.WAITLISTED: (
        CheckInOutcome.ON_WAITLIST,
        "Registration is on the waitlist",
    ),
    RegistrationStatus.CANCELLED: (
        CheckInOutcome.CANCELLED,
        "Registration has been cancelled",
    ),
}


def normalize_code(code: str) -> str:
    return code.strip().upper()


def evaluate(
    registration: Optional[Registration],
    event: Event,
    now: datetime,
    attendee_name: Optional[str] = None,
) -> CheckInResult:
    """Decide what presenting this registration's code would do right now.

    Pure: nothing is written. ``SUCCESS`` means the registration may move to
    ATTENDED.
    """
    if registration is None:
        return CheckInResult(
            outcome=CheckInOutcome.INVALID_CODE, message="Invalid check-in code"
        )

    hours_until_event = round((event.starts_at - now).total_seconds() / 3600, 2)
    result = CheckInResult(
        outcome=CheckInOutcome.SUCCESS,
        message="Check-in successful",
        registration_id=registration.id,
        attendee_id=registration.attendee_id,
        attendee_name=attendee_name,
        status=registration.status,
        waitlist_position=registration.waitlist_position,
        check_in_time=registration.check_in_time,
        hours_until_event=hours_until_event,
    )

    if registration.status in _STATUS_OUTCOMES:
        outcome, message = _STATUS_OUTCOMES[registration.status]
        if outcome == CheckInOutcome.ON_WAITLIST:
            message = f"{message} at position {registration.waitlist_position}"
        return result.model_copy(update={"outcome": outcome, "message": message})

    try:
        check_transition(registration, RegistrationStatus.ATTENDED, event, now)
    except EventNotAvailable:
        return result.model_copy(
            update={
                "outcome": CheckInOutcome.EVENT_NOT_PUBLISHED,
                "message": "Event is not published",
            }
        )
    except CheckInNotOpen as e:
        return result.model_copy(
            update={"outcome": CheckInOutcome(e.extra["reason"]), "message": e.message}
        )
    return result


async def _attendee_name(db: AsyncSession, registration: Optional[Registration]) -> Optional[str]:
    if registration is None:
        return None
    attendee = await crud.user.get(db, registration.attendee_id)
    return attendee.display_name if attendee else None


async def check_in(
    db: AsyncSession,
    event_id: int,
    code: str,
    actor: Actor,
    notifier: Optional[NotificationSink] = None,
    now: Optional[datetime] = None,
) -> CheckInResult:
    """Check an attendee in by code (organizer or admin)"""
    now = now or utcnow()
    code = normalize_code(code)

    async with db_transaction(db):
        event = await crud.event.lock_event(db, event_id)
        if event is None:
            raise NotFound("Event not found")
        if not actor.can_manage(event.organizer_id):
            raise Forbidden("Only the event organizer or an admin can check attendees in")

        registration = await crud.registration.get_by_check_in_code(
            db, event_id, code, for_update=True
        )
        result = evaluate(registration, event, now, await _attendee_name(db, registration))

        if result.outcome == CheckInOutcome.SUCCESS and registration is not None:
            transition(registration, RegistrationStatus.ATTENDED, event, now)
            await db.flush()
            result = result.model_copy(
                update={
                    "status": registration.status,
                    "check_in_time": registration.check_in_time,
                }
            )

    if result.outcome == CheckInOutcome.SUCCESS and registration is not None:
        logger.info(
            f"Registration {registration.id} checked in to event {event_id} "
            f"by user {actor.user_id}"
        )
        notify_registration(notifier, ATTENDEE_CHECKED_IN, registration)
    else:
        logger.info(
            f"Check-in on event {event_id} answered {result.outcome.value}"
        )
    return result


async def validate_check_in(
    db: AsyncSession,
    event_id: int,
    code: str,
    actor: Optional[Actor] = None,
    now: Optional[datetime] = None,
) -> CheckInResult:
    """Preview a check-in without changing anything.

    With an ``actor``, only admins, the event organizer and the registration's
    own attendee may look a code up.
    """
    now = now or utcnow()
    event = await crud.event.get_event(db, event_id)
    if event is None:
        raise NotFound("Event not found")

    registration = await crud.registration.get_by_check_in_code(
        db, event_id, normalize_code(code)
    )
    if (
        actor is not None
        and registration is not None
        and not actor.can_manage(event.organizer_id)
        and actor.user_id != registration.attendee_id
    ):
        raise Forbidden("You don't have permission to validate this check-in code")

    result = evaluate(registration, event, now, await _attendee_name(db, registration))
    if result.outcome == CheckInOutcome.SUCCESS:
        result = result.model_copy(update={"message": "Check-in code is valid"})
    return result


async def check_in_stats(db: AsyncSession, event_id: int, actor: Actor) -> CheckInStats:
    event = await crud.event.get_event(db, event_id)
    if event is None:
        raise NotFound("Event not found")
    if not actor.can_manage(event.organizer_id):
        raise Forbidden("You don't have permission to view check-in statistics")

    counts = await crud.registration.count_by_status(db, event_id)
    registered = counts.get(RegistrationStatus.REGISTERED, 0)
    attended = counts.get(RegistrationStatus.ATTENDED, 0)
    expected = registered + attended
    recent = await crud.registration.get_recent_check_ins(
        db, event_id, limit=RECENT_CHECK_INS_LIMIT
    )

    return CheckInStats(
        total=sum(counts.values()),
        registered=registered,
        attended=attended,
        waitlisted=counts.get(RegistrationStatus.WAITLISTED, 0),
        cancelled=counts.get(RegistrationStatus.CANCELLED, 0),
        attendance_rate=round(attended / expected * 100) if expected else 0,
        recent_check_ins=[
            RecentCheckIn(
                registration_id=registration_id,
                attendee_name=name,
                check_in_time=checked_in_at,
            )
            for registration_id, name, checked_in_at in recent
        ],
    )
