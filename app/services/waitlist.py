"""
Cancellation and waitlist promotion.

Cancelling a registration that held a slot hands the slot to the earliest
waitlisted registration, and every position behind a vacated one moves up by
one. Cancellation, promotion and recompaction share one transaction under the
event lock so the waitlist is never left with a gap.
"""

import logging
from datetime import datetime, timedelta
from typing import List, NamedTuple, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.core.db_utils import db_transaction, utcnow
from app.core.exceptions import (
    CancellationNotAllowed,
    CapacityExceeded,
    Forbidden,
    NotFound,
)
from app.core.notifications import (
    REGISTRATION_CANCELLED,
    REGISTRATION_PROMOTED,
    NotificationSink,
    notify_registration,
)
from app.core.security import Actor
from app.core.settings import get_settings
from app.models.event import Event
from app.models.registration import Registration, RegistrationStatus
from app.services.state_machine import check_transition, transition

logger = logging.getLogger(__name__)
settings = get_settings()


class Cancellation(NamedTuple):
    cancelled: Registration
    promoted: Optional[Registration] = None


async def has_free_slot(db: AsyncSession, event: Event) -> bool:
    if event.has_unlimited_capacity:
        return True
    return await crud.registration.count_occupancy(db, event.id) < event.capacity


async def promote(
    db: AsyncSession, registration: Registration, event: Event, now: datetime
) -> Registration:
    """Move a WAITLISTED registration to REGISTERED and close its gap.

    Must run inside a transaction that holds the event lock.
    """
    if registration.status == RegistrationStatus.WAITLISTED and not await has_free_slot(
        db, event
    ):
        raise CapacityExceeded(f"Event {event.title} is at capacity")

    vacated = registration.waitlist_position
    transition(registration, RegistrationStatus.REGISTERED, event, now, promotion=True)
    await db.flush()
    if vacated is not None:
        await crud.registration.close_waitlist_gap(db, event.id, vacated)
    logger.info(
        f"Registration {registration.id} promoted from waitlist position {vacated} "
        f"on event {event.id}"
    )
    return registration


async def promote_next(
    db: AsyncSession, event: Event, now: datetime
) -> Optional[Registration]:
    """Promote the head of the waitlist, if there is one and a slot is free"""
    head = await crud.registration.first_waitlisted(db, event.id)
    if head is None:
        return None
    if not await has_free_slot(db, event):
        logger.warning(
            f"Event {event.id} is over capacity, waitlist head {head.id} stays waitlisted"
        )
        return None
    return await promote(db, head, event, now)


def is_self_service(registration: Registration, event: Event, actor: Actor) -> bool:
    """The attendee acting on their own registration, without staff rights"""
    return actor.user_id == registration.attendee_id and not actor.can_manage(
        event.organizer_id
    )


def ensure_can_cancel(
    registration: Registration, event: Event, actor: Actor, now: datetime
) -> None:
    if not (
        actor.can_manage(event.organizer_id)
        or actor.user_id == registration.attendee_id
    ):
        raise Forbidden("You don't have permission to cancel this registration")

    check_transition(registration, RegistrationStatus.CANCELLED, event, now)

    cutoff = timedelta(hours=settings.registration.ATTENDEE_CANCELLATION_CUTOFF_HOURS)
    if is_self_service(registration, event, actor) and event.starts_at - now < cutoff:
        raise CancellationNotAllowed(
            f"Registrations cannot be cancelled less than "
            f"{settings.registration.ATTENDEE_CANCELLATION_CUTOFF_HOURS} hours before the event"
        )


async def cancel_locked(
    db: AsyncSession,
    registration: Registration,
    event: Event,
    actor: Actor,
    now: datetime,
) -> Cancellation:
    """Cancel inside a transaction that already holds the event lock"""
    ensure_can_cancel(registration, event, actor, now)

    held_slot = registration.occupies_slot
    previous_position = registration.waitlist_position
    transition(registration, RegistrationStatus.CANCELLED, event, now)
    await db.flush()

    promoted: Optional[Registration] = None
    if held_slot:
        promoted = await promote_next(db, event, now)
    elif previous_position is not None:
        # A waitlisted registration frees no slot, its place in line closes
        await crud.registration.close_waitlist_gap(db, event.id, previous_position)

    return Cancellation(registration, promoted)


async def cancel(
    db: AsyncSession,
    registration_id: int,
    actor: Actor,
    notifier: Optional[NotificationSink] = None,
    now: Optional[datetime] = None,
) -> Cancellation:
    """Cancel a registration and promote from the waitlist if a slot opened"""
    now = now or utcnow()
    async with db_transaction(db):
        registration = await crud.registration.get_registration(db, registration_id)
        if registration is None:
            raise NotFound("Registration not found")
        event = await crud.event.lock_event(db, registration.event_id)
        if event is None:
            raise NotFound("Event not found")
        # Re-read under the event lock; a concurrent request may have moved it
        registration = await crud.registration.get_registration(
            db, registration_id, for_update=True
        )
        if registration is None:
            raise NotFound("Registration not found")
        result = await cancel_locked(db, registration, event, actor, now)

    logger.info(
        f"Registration {registration_id} cancelled by user {actor.user_id}"
        + (f", promoted registration {result.promoted.id}" if result.promoted else "")
    )
    notify_registration(notifier, REGISTRATION_CANCELLED, result.cancelled)
    if result.promoted is not None:
        notify_registration(notifier, REGISTRATION_PROMOTED, result.promoted)
    return result


async def waitlist_snapshot(
    db: AsyncSession, event_id: int, actor: Optional[Actor] = None
) -> List[Registration]:
    """The event's waitlist in promotion order.

    When ``actor`` is given it must be the event's organizer or an admin.
    """
    event = await crud.event.get_event(db, event_id)
    if event is None:
        raise NotFound("Event not found")
    if actor is not None and not actor.can_manage(event.organizer_id):
        raise Forbidden("You don't have permission to view this waitlist")
    return await crud.registration.get_waitlist(db, event_id)
