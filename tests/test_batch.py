from datetime import timedelta
from typing import Any, Callable, List

import pytest
from conftest import NOW, RecordingNotificationSink

from app.core.exceptions import BatchPreconditionFailed, Forbidden, InvalidRequest
from app.core.security import Actor
from app.models.event import EventStatus
from app.models.registration import Registration, RegistrationStatus
from app.models.user import UserRole
from app.schemas.batch import BatchRequest, BatchType
from app.services import admission, batch, checkin


async def _fill(
    db: Any, make_user: Callable, event_id: int, count: int
) -> List[Registration]:
    return [
        await admission.admit(db, event_id, (await make_user()).id, now=NOW)
        for _ in range(count)
    ]


def _request(action: str, ids: List[int], **kwargs: Any) -> BatchRequest:
    return BatchRequest(action=action, ids=ids, **kwargs)


def test_batch_request_rejects_unknown_action() -> None:
    with pytest.raises(ValueError):
        BatchRequest(type=BatchType.EVENTS, action="checkin", ids=[1])


async def test_batch_cancel_is_all_or_nothing(
    db: Any, make_user: Callable, make_event: Callable, organizer: Any, fetch: Callable
) -> None:
    event = await make_event(capacity=5, starts_in=timedelta(hours=2))
    event_id = event.id
    r1, r2, r3 = await _fill(db, make_user, event_id, 3)
    ids = [r1.id, r2.id, r3.id]
    owner = Actor.from_user(organizer)
    await checkin.check_in(db, event_id, r2.check_in_code, owner, now=NOW)

    with pytest.raises(BatchPreconditionFailed) as exc_info:
        await batch.apply_batch(db, _request("cancel", ids), owner, now=NOW)

    assert exc_info.value.failing_id == ids[1]
    assert exc_info.value.reason_code == "ALREADY_ATTENDED"
    assert exc_info.value.to_dict()["code"] == "BATCH_PRECONDITION_FAILED"
    assert (await fetch(ids[0])).status == RegistrationStatus.REGISTERED
    assert (await fetch(ids[1])).status == RegistrationStatus.ATTENDED
    assert (await fetch(ids[2])).status == RegistrationStatus.REGISTERED


async def test_batch_cancel_promotes_from_waitlist(
    db: Any,
    make_user: Callable,
    make_event: Callable,
    organizer: Any,
    fetch: Callable,
    waitlist_of: Callable,
    notifier: RecordingNotificationSink,
) -> None:
    event = await make_event(capacity=2)
    a, b, c, d, e = await _fill(db, make_user, event.id, 5)

    result = await batch.apply_batch(
        db,
        _request("cancel", [a.id, b.id], reason="Double booked"),
        Actor.from_user(organizer),
        notifier=notifier,
        now=NOW,
    )

    assert result.processed == 2
    assert [item.status for item in result.results] == ["CANCELLED", "CANCELLED"]
    assert result.message == "Batch cancel completed: 2 processed"
    assert (await fetch(c.id)).status == RegistrationStatus.REGISTERED
    assert (await fetch(d.id)).status == RegistrationStatus.REGISTERED
    assert await waitlist_of(event.id) == [(e.id, 1)]
    assert notifier.topics == [
        "registration_cancelled",
        "registration_promoted",
        "registration_cancelled",
        "registration_promoted",
        "batch_completed",
    ]
    summary = notifier.published[-1][1]
    assert summary["processed"] == 2
    assert summary["reason"] == "Double booked"


async def test_batch_checkin(
    db: Any, make_user: Callable, make_event: Callable, organizer: Any, fetch: Callable
) -> None:
    event = await make_event(capacity=2, starts_in=timedelta(hours=2))
    r1, r2, waiting = await _fill(db, make_user, event.id, 3)
    r1_id, r2_id, waiting_id = r1.id, r2.id, waiting.id
    owner = Actor.from_user(organizer)

    with pytest.raises(BatchPreconditionFailed) as exc_info:
        await batch.apply_batch(
            db, _request("checkin", [r1_id, waiting_id]), owner, now=NOW
        )
    assert exc_info.value.failing_id == waiting_id
    assert exc_info.value.reason_code == "INVALID_STATE_TRANSITION"
    assert (await fetch(r1_id)).status == RegistrationStatus.REGISTERED

    result = await batch.apply_batch(db, _request("checkin", [r1_id, r2_id]), owner, now=NOW)
    assert [item.status for item in result.results] == ["ATTENDED", "ATTENDED"]
    assert (await fetch(r2_id)).check_in_time == NOW

    # Checking in twice through a batch is a failure, not a no-op
    with pytest.raises(BatchPreconditionFailed) as again:
        await batch.apply_batch(db, _request("checkin", [r1_id]), owner, now=NOW)
    assert again.value.reason_code == "ALREADY_CHECKED_IN"


async def test_batch_checkin_requires_event_management(
    db: Any, make_user: Callable, make_event: Callable
) -> None:
    event = await make_event(starts_in=timedelta(hours=2))
    attendee = await make_user()
    registration = await admission.admit(db, event.id, attendee.id, now=NOW)
    registration_id = registration.id

    with pytest.raises(BatchPreconditionFailed) as exc_info:
        await batch.apply_batch(
            db, _request("checkin", [registration_id]), Actor.from_user(attendee), now=NOW
        )
    assert exc_info.value.reason_code == "FORBIDDEN"


async def test_batch_promote_respects_capacity(
    db: Any,
    make_user: Callable,
    make_event: Callable,
    organizer: Any,
    fetch: Callable,
    waitlist_of: Callable,
) -> None:
    event = await make_event(capacity=2)
    event_id = event.id
    _, _, c, d = await _fill(db, make_user, event_id, 4)
    c_id, d_id = c.id, d.id
    owner = Actor.from_user(organizer)
    event.capacity = 3
    await db.commit()

    with pytest.raises(BatchPreconditionFailed) as exc_info:
        await batch.apply_batch(db, _request("promote", [c_id, d_id]), owner, now=NOW)
    assert exc_info.value.failing_id == d_id
    assert exc_info.value.reason_code == "CAPACITY_EXCEEDED"
    assert await waitlist_of(event_id) == [(c_id, 1), (d_id, 2)]

    result = await batch.apply_batch(db, _request("promote", [c_id]), owner, now=NOW)
    assert result.results[0].status == "REGISTERED"
    assert (await fetch(c_id)).waitlist_position is None
    assert await waitlist_of(event_id) == [(d_id, 1)]


async def test_batch_id_checks(
    db: Any, make_user: Callable, make_event: Callable, organizer: Any, admin: Any
) -> None:
    event = await make_event(capacity=5)
    (registration,) = await _fill(db, make_user, event.id, 1)
    registration_id = registration.id
    owner = Actor.from_user(organizer)

    with pytest.raises(BatchPreconditionFailed) as duplicate:
        await batch.apply_batch(
            db, _request("cancel", [registration_id, registration_id]), owner, now=NOW
        )
    assert duplicate.value.reason_code == "DUPLICATE_ID"

    with pytest.raises(BatchPreconditionFailed) as missing:
        await batch.apply_batch(
            db, _request("cancel", [registration_id, 98765]), owner, now=NOW
        )
    assert missing.value.failing_id == 98765
    assert missing.value.reason_code == "NOT_FOUND"

    with pytest.raises(InvalidRequest):
        await batch.apply_batch(
            db,
            _request("publish", list(range(1, 52)), type=BatchType.EVENTS),
            Actor.from_user(admin),
            now=NOW,
        )


async def test_event_batches(
    db: Any, make_event: Callable, organizer: Any, admin: Any
) -> None:
    draft = await make_event(status=EventStatus.DRAFT)
    other_draft = await make_event(status=EventStatus.DRAFT)
    upcoming = await make_event()
    past = await make_event(starts_in=timedelta(days=-2))
    draft_id, other_id = draft.id, other_draft.id
    upcoming_id, past_id = upcoming.id, past.id
    staff = Actor.from_user(admin)

    with pytest.raises(Forbidden):
        await batch.apply_batch(
            db,
            _request("publish", [draft_id], type=BatchType.EVENTS),
            Actor.from_user(organizer),
            now=NOW,
        )

    published = await batch.apply_batch(
        db, _request("publish", [draft_id, other_id], type=BatchType.EVENTS), staff, now=NOW
    )
    assert [item.status for item in published.results] == ["PUBLISHED", "PUBLISHED"]

    with pytest.raises(BatchPreconditionFailed) as already:
        await batch.apply_batch(
            db, _request("publish", [draft_id], type=BatchType.EVENTS), staff, now=NOW
        )
    assert already.value.reason_code == "ALREADY_PUBLISHED"

    with pytest.raises(BatchPreconditionFailed) as not_past:
        await batch.apply_batch(
            db, _request("archive", [past_id, upcoming_id], type=BatchType.EVENTS), staff, now=NOW
        )
    assert not_past.value.failing_id == upcoming_id
    assert not_past.value.reason_code == "EVENT_NOT_PAST"

    archived = await batch.apply_batch(
        db, _request("archive", [past_id], type=BatchType.EVENTS), staff, now=NOW
    )
    assert archived.results[0].status == "COMPLETED"


async def test_user_batches(db: Any, make_user: Callable, admin: Any) -> None:
    admin_id = admin.id
    staff = Actor.from_user(admin)
    first = await make_user()
    second = await make_user(role=UserRole.ORGANIZER)
    first_id, second_id = first.id, second.id

    with pytest.raises(BatchPreconditionFailed) as self_change:
        await batch.apply_batch(
            db,
            _request("deactivate", [first_id, admin_id], type=BatchType.USERS),
            staff,
            now=NOW,
        )
    assert self_change.value.failing_id == admin_id
    assert self_change.value.reason_code == "CANNOT_MODIFY_SELF"

    with pytest.raises(InvalidRequest):
        await batch.apply_batch(
            db, _request("promote", [first_id], type=BatchType.USERS), staff, now=NOW
        )

    deactivated = await batch.apply_batch(
        db, _request("deactivate", [first_id, second_id], type=BatchType.USERS), staff, now=NOW
    )
    assert [item.status for item in deactivated.results] == ["INACTIVE", "INACTIVE"]

    promoted = await batch.apply_batch(
        db,
        _request("promote", [first_id], type=BatchType.USERS, new_role=UserRole.ORGANIZER),
        staff,
        now=NOW,
    )
    assert promoted.results[0].status == "ORGANIZER"

    with pytest.raises(BatchPreconditionFailed) as unchanged:
        await batch.apply_batch(
            db, _request("demote", [first_id, admin_id], type=BatchType.USERS), staff, now=NOW
        )
    assert unchanged.value.reason_code == "CANNOT_MODIFY_SELF"
