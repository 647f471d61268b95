from datetime import timedelta
from typing import Any, Callable, List

import pytest
from conftest import NOW, RecordingNotificationSink

from app.core.exceptions import (
    AlreadyAttended,
    AlreadyCancelled,
    CancellationNotAllowed,
    EventExpired,
    Forbidden,
    NotFound,
)
from app.core.security import Actor
from app.models.registration import Registration, RegistrationStatus
from app.models.user import UserRole
from app.services import admission, checkin, waitlist


async def _fill(
    db: Any, make_user: Callable, event_id: int, count: int
) -> List[Registration]:
    return [
        await admission.admit(db, event_id, (await make_user()).id, now=NOW)
        for _ in range(count)
    ]


async def test_cancel_promotes_head_of_waitlist(
    db: Any,
    make_user: Callable,
    make_event: Callable,
    fetch: Callable,
    waitlist_of: Callable,
    notifier: RecordingNotificationSink,
) -> None:
    event = await make_event(capacity=2)
    a, b, c, d = await _fill(db, make_user, event.id, 4)
    assert (c.status, c.waitlist_position) == (RegistrationStatus.WAITLISTED, 1)
    assert (d.status, d.waitlist_position) == (RegistrationStatus.WAITLISTED, 2)

    result = await waitlist.cancel(
        db, a.id, Actor(user_id=a.attendee_id, role=UserRole.ATTENDEE), notifier=notifier, now=NOW
    )

    assert result.cancelled.id == a.id
    assert result.promoted is not None and result.promoted.id == c.id
    assert (await fetch(a.id)).status == RegistrationStatus.CANCELLED
    promoted = await fetch(c.id)
    assert promoted.status == RegistrationStatus.REGISTERED
    assert promoted.waitlist_position is None
    assert (await fetch(b.id)).status == RegistrationStatus.REGISTERED
    assert await waitlist_of(event.id) == [(d.id, 1)]
    assert notifier.topics == ["registration_cancelled", "registration_promoted"]


async def test_cancel_without_waitlist_frees_the_seat(
    db: Any, make_user: Callable, make_event: Callable
) -> None:
    event = await make_event(capacity=2)
    (a,) = await _fill(db, make_user, event.id, 1)

    result = await waitlist.cancel(
        db, a.id, Actor(user_id=a.attendee_id, role=UserRole.ATTENDEE), now=NOW
    )

    assert result.promoted is None
    assert result.cancelled.status == RegistrationStatus.CANCELLED


async def test_cancel_waitlisted_closes_the_gap_only_behind_it(
    db: Any,
    make_user: Callable,
    make_event: Callable,
    fetch: Callable,
    waitlist_of: Callable,
) -> None:
    event = await make_event(capacity=1)
    holder, w1, w2, w3, w4 = await _fill(db, make_user, event.id, 5)

    result = await waitlist.cancel(
        db, w2.id, Actor(user_id=w2.attendee_id, role=UserRole.ATTENDEE), now=NOW
    )

    assert result.promoted is None
    assert (await fetch(holder.id)).status == RegistrationStatus.REGISTERED
    assert await waitlist_of(event.id) == [(w1.id, 1), (w3.id, 2), (w4.id, 3)]


async def test_waitlist_stays_contiguous_across_many_cancellations(
    db: Any, make_user: Callable, make_event: Callable, admin: Any, waitlist_of: Callable
) -> None:
    event = await make_event(capacity=2)
    registrations = await _fill(db, make_user, event.id, 8)
    staff = Actor.from_user(admin)

    for victim in (registrations[0], registrations[4], registrations[2], registrations[7]):
        await waitlist.cancel(db, victim.id, staff, now=NOW)

    positions = [position for _, position in await waitlist_of(event.id)]
    assert positions == list(range(1, len(positions) + 1))
    ids_in_line = [registration_id for registration_id, _ in await waitlist_of(event.id)]
    assert ids_in_line == sorted(ids_in_line)


async def test_cancel_permissions(
    db: Any, make_user: Callable, make_event: Callable, organizer: Any, admin: Any
) -> None:
    event = await make_event(capacity=5)
    first, second = await _fill(db, make_user, event.id, 2)
    first_id, second_id = first.id, second.id
    stranger = Actor.from_user(await make_user())
    owner = Actor.from_user(organizer)
    staff = Actor.from_user(admin)

    with pytest.raises(Forbidden):
        await waitlist.cancel(db, first_id, stranger, now=NOW)
    assert (await waitlist.cancel(db, first_id, owner, now=NOW)).cancelled.id == first_id
    assert (await waitlist.cancel(db, second_id, staff, now=NOW)).cancelled.id == second_id


async def test_cancel_missing_registration(db: Any, admin: Any) -> None:
    with pytest.raises(NotFound):
        await waitlist.cancel(db, 12345, Actor.from_user(admin), now=NOW)


async def test_attendee_cannot_cancel_inside_cutoff(
    db: Any, make_user: Callable, make_event: Callable, organizer: Any, fetch: Callable
) -> None:
    event = await make_event(capacity=5, starts_in=timedelta(hours=23))
    (registration,) = await _fill(db, make_user, event.id, 1)
    registration_id = registration.id
    attendee = Actor(user_id=registration.attendee_id, role=UserRole.ATTENDEE)
    owner = Actor.from_user(organizer)

    with pytest.raises(CancellationNotAllowed):
        await waitlist.cancel(db, registration_id, attendee, now=NOW)
    assert (await fetch(registration_id)).status == RegistrationStatus.REGISTERED

    # Staff are not bound by the cutoff
    result = await waitlist.cancel(db, registration_id, owner, now=NOW)
    assert result.cancelled.status == RegistrationStatus.CANCELLED


async def test_cancel_terminal_and_past(
    db: Any, make_user: Callable, make_event: Callable, organizer: Any
) -> None:
    event = await make_event(capacity=5, starts_in=timedelta(hours=2))
    event_id = event.id
    attended, cancelled, late = await _fill(db, make_user, event_id, 3)
    attended_id, cancelled_id, late_id = attended.id, cancelled.id, late.id
    attended_code = attended.check_in_code
    owner = Actor.from_user(organizer)

    await checkin.check_in(db, event_id, attended_code, owner, now=NOW)
    await waitlist.cancel(db, cancelled_id, owner, now=NOW)

    with pytest.raises(AlreadyAttended):
        await waitlist.cancel(db, attended_id, owner, now=NOW)
    with pytest.raises(AlreadyCancelled):
        await waitlist.cancel(db, cancelled_id, owner, now=NOW)
    with pytest.raises(EventExpired):
        await waitlist.cancel(db, late_id, owner, now=NOW + timedelta(hours=2))


async def test_waitlist_snapshot_is_ordered_and_restricted(
    db: Any, make_user: Callable, make_event: Callable, organizer: Any
) -> None:
    event = await make_event(capacity=1)
    event_id = event.id
    _, w1, w2 = await _fill(db, make_user, event_id, 3)
    stranger = Actor.from_user(await make_user())

    snapshot = await waitlist.waitlist_snapshot(db, event_id, Actor.from_user(organizer))
    assert [(r.id, r.waitlist_position) for r in snapshot] == [(w1.id, 1), (w2.id, 2)]

    with pytest.raises(Forbidden):
        await waitlist.waitlist_snapshot(db, event_id, stranger)
    with pytest.raises(NotFound):
        await waitlist.waitlist_snapshot(db, 777)
