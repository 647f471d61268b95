"""
Capacity allocation: admitting attendees to an event.

Occupancy is read and the new registration written inside one transaction
that holds the event's row lock, so two admissions racing for the last slot
are serialised: one lands REGISTERED, the other WAITLISTED.
"""

import logging
import secrets
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.core.db_utils import db_transaction, utcnow
from app.core.exceptions import (
    AlreadyRegistered,
    CheckInCodeExhausted,
    EventExpired,
    EventNotAvailable,
    Forbidden,
    InvalidRequest,
    NotFound,
    RegistrationClosed,
)
from app.core.notifications import (
    REGISTRATION_CONFIRMED,
    REGISTRATION_WAITLISTED,
    NotificationSink,
    notify_registration,
)
from app.core.security import Actor
from app.core.settings import get_settings
from app.models.event import Event, EventStatus
from app.models.registration import Registration, RegistrationStatus
from app.services.state_machine import initial_status

logger = logging.getLogger(__name__)
settings = get_settings()


def generate_check_in_code() -> str:
    alphabet = settings.registration.CHECK_IN_CODE_ALPHABET
    length = settings.registration.CHECK_IN_CODE_LENGTH
    return "".join(secrets.choice(alphabet) for _ in range(length))


def ensure_admission_open(event: Optional[Event], now: datetime) -> Event:
    if event is None:
        raise NotFound("Event not found")
    if event.status != EventStatus.PUBLISHED:
        raise EventNotAvailable()
    if event.registration_deadline and now > event.registration_deadline:
        raise RegistrationClosed()
    if now >= event.starts_at:
        raise EventExpired("Cannot register for past events")
    return event


async def _insert_registration(
    db: AsyncSession,
    event: Event,
    attendee_id: int,
    status: RegistrationStatus,
    waitlist_position: Optional[int],
    now: datetime,
    notes: Optional[str],
) -> Registration:
    """Insert with a fresh check-in code, retrying on a code collision"""
    max_attempts = settings.registration.CHECK_IN_CODE_MAX_ATTEMPTS
    for attempt in range(1, max_attempts + 1):
        code = generate_check_in_code()
        if await crud.registration.check_in_code_taken(db, event.id, code):
            continue
        registration = Registration(
            event_id=event.id,
            attendee_id=attendee_id,
            status=status,
            waitlist_position=waitlist_position,
            check_in_code=code,
            registration_date=now,
            notes=notes,
        )
        try:
            async with db.begin_nested():
                db.add(registration)
        except IntegrityError:
            if await crud.registration.get_active_registration(
                db, attendee_id, event.id
            ):
                raise AlreadyRegistered()
            logger.warning(
                f"Check-in code collision on event {event.id} (attempt {attempt}), retrying"
            )
            continue
        return registration

    raise CheckInCodeExhausted()


async def allocate(
    db: AsyncSession,
    event: Event,
    attendee_id: int,
    now: datetime,
    notes: Optional[str] = None,
) -> Registration:
    """Create a registration in the status current occupancy allows.

    Must run inside a transaction that holds the event lock.
    """
    occupancy = await crud.registration.count_occupancy(db, event.id)
    status = initial_status(occupancy, event.capacity)
    waitlist_position: Optional[int] = None
    if status == RegistrationStatus.WAITLISTED:
        waitlist_position = (
            await crud.registration.max_waitlist_position(db, event.id) + 1
        )
    return await _insert_registration(
        db, event, attendee_id, status, waitlist_position, now, notes
    )


def _announce(notifier: Optional[NotificationSink], registration: Registration) -> None:
    topic = (
        REGISTRATION_CONFIRMED
        if registration.status == RegistrationStatus.REGISTERED
        else REGISTRATION_WAITLISTED
    )
    notify_registration(notifier, topic, registration)


async def admit(
    db: AsyncSession,
    event_id: int,
    attendee_id: int,
    notes: Optional[str] = None,
    notifier: Optional[NotificationSink] = None,
    now: Optional[datetime] = None,
) -> Registration:
    """Register an attendee, or waitlist them when the event is full"""
    now = now or utcnow()
    async with db_transaction(db):
        event = ensure_admission_open(await crud.event.lock_event(db, event_id), now)
        if await crud.registration.get_active_registration(db, attendee_id, event_id):
            raise AlreadyRegistered()
        registration = await allocate(db, event, attendee_id, now, notes)

    if registration.status == RegistrationStatus.REGISTERED:
        logger.info(f"User {attendee_id} registered for event {event_id}")
    else:
        logger.info(
            f"User {attendee_id} waitlisted for event {event_id} "
            f"at position {registration.waitlist_position}"
        )
    _announce(notifier, registration)
    return registration


async def admit_many(
    db: AsyncSession,
    event_id: int,
    attendee_ids: Sequence[int],
    actor: Actor,
    notes: Optional[str] = None,
    notifier: Optional[NotificationSink] = None,
    now: Optional[datetime] = None,
) -> List[Registration]:
    """Register several attendees at once on an organizer's behalf.

    Free slots go to the first ids in order and the rest are waitlisted in
    order. Nothing is written unless every attendee can be admitted.
    """
    now = now or utcnow()
    ids = list(attendee_ids)
    if not ids:
        raise InvalidRequest("At least one user ID required")
    if len(ids) > settings.registration.BULK_ADMIT_MAX:
        raise InvalidRequest(
            f"Maximum {settings.registration.BULK_ADMIT_MAX} users per bulk registration"
        )
    if len(set(ids)) != len(ids):
        raise InvalidRequest("User IDs must be unique")

    async with db_transaction(db):
        event = await crud.event.lock_event(db, event_id)
        if event is None:
            raise NotFound("Event not found")
        if not actor.can_manage(event.organizer_id):
            raise Forbidden("You don't have permission to register users for this event")
        ensure_admission_open(event, now)

        users = await crud.user.get_users_by_ids(db, user_ids=ids)
        missing = sorted(set(ids) - {user.id for user in users})
        if missing:
            raise NotFound("Some users not found", user_ids=missing)

        already = sorted(
            await crud.registration.get_active_attendee_ids(db, event_id, ids)
        )
        if already:
            raise AlreadyRegistered(
                f"Users already registered: {', '.join(str(i) for i in already)}",
                user_ids=already,
            )

        registrations = [
            await allocate(db, event, attendee_id, now, notes) for attendee_id in ids
        ]

    logger.info(
        f"User {actor.user_id} bulk registered {len(registrations)} users for event {event_id}"
    )
    for registration in registrations:
        _announce(notifier, registration)
    return registrations


async def update_notes(
    db: AsyncSession,
    registration_id: int,
    notes: Optional[str],
    actor: Actor,
    now: Optional[datetime] = None,
) -> Registration:
    """Replace a registration's notes; status is never touched here"""
    now = now or utcnow()
    async with db_transaction(db):
        registration = await crud.registration.get_registration(
            db, registration_id, for_update=True
        )
        if registration is None:
            raise NotFound("Registration not found")
        event = await crud.event.get_event(db, registration.event_id)
        if event is None:
            raise NotFound("Event not found")
        if not (
            actor.can_manage(event.organizer_id)
            or actor.user_id == registration.attendee_id
        ):
            raise Forbidden("You don't have permission to update this registration")
        if now > event.starts_at:
            raise EventExpired("Cannot update registration for past events")

        registration.notes = notes
        registration.updated_at = now
        await db.flush()

    logger.info(f"Registration {registration_id} notes updated by user {actor.user_id}")
    return registration
