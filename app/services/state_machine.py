"""
Legal states and transitions of a single registration.

Registrations are created REGISTERED or WAITLISTED and end ATTENDED or
CANCELLED. ``transition`` is the only function that changes
``Registration.status``; it enforces the guards and keeps
``waitlist_position`` and ``check_in_time`` consistent with the new state.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Optional

from app.core.exceptions import (
    AlreadyAttended,
    AlreadyCancelled,
    AlreadyCheckedIn,
    CheckInNotOpen,
    EventExpired,
    EventNotAvailable,
    InvalidStateTransition,
)
from app.core.settings import get_settings
from app.models.event import Event, EventStatus
from app.models.registration import Registration, RegistrationStatus

logger = logging.getLogger(__name__)
settings = get_settings()

REGISTERED = RegistrationStatus.REGISTERED
WAITLISTED = RegistrationStatus.WAITLISTED
ATTENDED = RegistrationStatus.ATTENDED
CANCELLED = RegistrationStatus.CANCELLED

TRANSITIONS: Dict[RegistrationStatus, FrozenSet[RegistrationStatus]] = {
    REGISTERED: frozenset({ATTENDED, CANCELLED}),
    WAITLISTED: frozenset({REGISTERED, CANCELLED}),
    ATTENDED: frozenset(),
    CANCELLED: frozenset(),
}


def check_in_window() -> timedelta:
    return timedelta(hours=settings.registration.CHECK_IN_WINDOW_HOURS)


def initial_status(occupancy: int, capacity: Optional[int]) -> RegistrationStatus:
    """Status a new registration starts in given the event's current occupancy"""
    if capacity is None or occupancy < capacity:
        return REGISTERED
    return WAITLISTED


def check_transition(
    registration: Registration,
    target: RegistrationStatus,
    event: Event,
    now: datetime,
    *,
    promotion: bool = False,
) -> bool:
    """Validate moving ``registration`` to ``target`` without changing it.

    Returns ``False`` for the one idempotent case, checking in an attendee who
    is already ATTENDED, and ``True`` when the transition would apply. Every
    other illegal request raises.
    """
    source = registration.status

    if source == ATTENDED:
        if target == ATTENDED:
            return False
        if target == CANCELLED:
            raise AlreadyAttended()
        raise AlreadyCheckedIn()
    if source == CANCELLED:
        raise AlreadyCancelled()
    if target not in TRANSITIONS[source]:
        raise InvalidStateTransition(source, target)

    if target == ATTENDED:
        if event.status != EventStatus.PUBLISHED:
            raise EventNotAvailable("Event is not published")
        starts_at = event.starts_at
        if now > starts_at:
            raise CheckInNotOpen("Event has already ended", reason="EVENT_ENDED")
        if now < starts_at - check_in_window():
            raise CheckInNotOpen("Check-in has not opened yet", reason="TOO_EARLY")
    elif target == CANCELLED:
        if now >= event.starts_at:
            raise EventExpired("Cannot cancel registration for past events")
    elif target == REGISTERED and not promotion:
        # Leaving the waitlist is reserved to the promoter
        raise InvalidStateTransition(source, target)

    return True


def transition(
    registration: Registration,
    target: RegistrationStatus,
    event: Event,
    now: datetime,
    *,
    promotion: bool = False,
) -> bool:
    """Apply a transition; see ``check_transition`` for the return value"""
    if not check_transition(registration, target, event, now, promotion=promotion):
        return False

    source = registration.status
    registration.status = target
    if target != WAITLISTED:
        registration.waitlist_position = None
    if target == ATTENDED:
        registration.check_in_time = now
    registration.updated_at = now

    logger.debug(
        "Registration %s moved %s -> %s", registration.id, source.value, target.value
    )
    return True
