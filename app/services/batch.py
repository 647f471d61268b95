"""
All-or-nothing batch operations over registrations, events and users.

Each member goes through the same checks as its single-item counterpart. The
first member that fails rejects the whole batch with
``BatchPreconditionFailed`` naming it, and the transaction rolls back so no
member is changed.
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.core.db_utils import db_transaction, utcnow
from app.core.exceptions import (
    AlreadyCheckedIn,
    BatchPreconditionFailed,
    Forbidden,
    InvalidRequest,
    RegistrationError,
)
from app.core.notifications import (
    ATTENDEE_CHECKED_IN,
    BATCH_COMPLETED,
    REGISTRATION_CANCELLED,
    REGISTRATION_PROMOTED,
    NotificationSink,
    notify,
    notify_registration,
)
from app.core.security import Actor
from app.core.settings import get_settings
from app.models.event import EventStatus
from app.models.registration import Registration, RegistrationStatus
from app.models.user import UserRole
from app.schemas.batch import (
    BatchItemResult,
    BatchRequest,
    BatchResult,
    BatchType,
    EventBatchAction,
    RegistrationBatchAction,
    UserBatchAction,
)
from app.services.state_machine import transition
from app.services.waitlist import cancel_locked, promote

logger = logging.getLogger(__name__)
settings = get_settings()

# (topic, registration) pairs to publish once the batch has committed
Announcements = List[Tuple[str, Registration]]
Handler = Callable[
    [AsyncSession, BatchRequest, Actor, datetime],
    Awaitable[Tuple[List[BatchItemResult], Announcements]],
]


def _max_ids(batch_type: BatchType) -> int:
    return {
        BatchType.REGISTRATIONS: settings.registration.BATCH_MAX_REGISTRATIONS,
        BatchType.EVENTS: settings.registration.BATCH_MAX_EVENTS,
        BatchType.USERS: settings.registration.BATCH_MAX_USERS,
    }[batch_type]


def _check_ids(request: BatchRequest) -> None:
    limit = _max_ids(request.type)
    if len(request.ids) > limit:
        raise InvalidRequest(
            f"Maximum {limit} {request.type.value} per batch", max_ids=limit
        )
    seen = set()
    for item_id in request.ids:
        if item_id in seen:
            raise BatchPreconditionFailed(item_id, "Duplicate id in batch", "DUPLICATE_ID")
        seen.add(item_id)


def _require_all(request: BatchRequest, found: Dict[int, object], label: str) -> None:
    for item_id in request.ids:
        if item_id not in found:
            raise BatchPreconditionFailed(item_id, f"{label} not found", "NOT_FOUND")


async def _registrations(
    db: AsyncSession, request: BatchRequest, actor: Actor, now: datetime
) -> Tuple[List[BatchItemResult], Announcements]:
    action = request.typed_action
    found = {
        r.id: r
        for r in await crud.registration.get_registrations_by_ids(db, request.ids)
    }
    _require_all(request, found, "Registration")

    events = {
        e.id: e
        for e in await crud.event.lock_events(
            db, sorted({r.event_id for r in found.values()})
        )
    }
    # Re-read under the event locks
    registrations = {
        r.id: r
        for r in await crud.registration.get_registrations_by_ids(
            db, request.ids, for_update=True
        )
    }

    results: List[BatchItemResult] = []
    announcements: Announcements = []
    for registration_id in request.ids:
        registration = registrations[registration_id]
        event = events[registration.event_id]
        try:
            if action == RegistrationBatchAction.CANCEL:
                outcome = await cancel_locked(db, registration, event, actor, now)
                announcements.append((REGISTRATION_CANCELLED, outcome.cancelled))
                if outcome.promoted is not None:
                    announcements.append((REGISTRATION_PROMOTED, outcome.promoted))
            else:
                if not actor.can_manage(event.organizer_id):
                    raise Forbidden(
                        "Only the event organizer or an admin can do this"
                    )
                if action == RegistrationBatchAction.CHECKIN:
                    if registration.status == RegistrationStatus.ATTENDED:
                        raise AlreadyCheckedIn()
                    transition(registration, RegistrationStatus.ATTENDED, event, now)
                    await db.flush()
                    announcements.append((ATTENDEE_CHECKED_IN, registration))
                else:
                    await promote(db, registration, event, now)
                    announcements.append((REGISTRATION_PROMOTED, registration))
        except RegistrationError as e:
            raise BatchPreconditionFailed(registration_id, e.message, e.code) from e
        results.append(
            BatchItemResult(id=registration_id, status=registration.status.value)
        )
    return results, announcements


async def _events(
    db: AsyncSession, request: BatchRequest, actor: Actor, now: datetime
) -> Tuple[List[BatchItemResult], Announcements]:
    action = request.typed_action
    events = {e.id: e for e in await crud.event.lock_events(db, request.ids)}
    _require_all(request, events, "Event")

    results: List[BatchItemResult] = []
    for event_id in request.ids:
        event = events[event_id]
        if action == EventBatchAction.PUBLISH:
            if event.status == EventStatus.PUBLISHED:
                raise BatchPreconditionFailed(
                    event_id, f"Event {event.title} is already published", "ALREADY_PUBLISHED"
                )
            event.status = EventStatus.PUBLISHED
        elif action == EventBatchAction.CANCEL:
            if event.status == EventStatus.CANCELLED:
                raise BatchPreconditionFailed(
                    event_id, f"Event {event.title} is already cancelled", "ALREADY_CANCELLED"
                )
            event.status = EventStatus.CANCELLED
        else:
            if now <= event.starts_at:
                raise BatchPreconditionFailed(
                    event_id, f"Event {event.title} has not happened yet", "EVENT_NOT_PAST"
                )
            event.status = EventStatus.COMPLETED
        event.updated_at = now
        results.append(BatchItemResult(id=event_id, status=event.status.value))
    await db.flush()
    return results, []


async def _users(
    db: AsyncSession, request: BatchRequest, actor: Actor, now: datetime
) -> Tuple[List[BatchItemResult], Announcements]:
    action = request.typed_action
    if action == UserBatchAction.PROMOTE and request.new_role is None:
        raise InvalidRequest("new_role is required for promote action")

    users = {
        u.id: u
        for u in await crud.user.get_users_by_ids(
            db, user_ids=request.ids, for_update=True
        )
    }
    _require_all(request, users, "User")

    if actor.user_id in users:
        changes_own_role = action == UserBatchAction.DEMOTE or (
            action == UserBatchAction.PROMOTE and request.new_role != UserRole.ADMIN
        )
        if changes_own_role or action == UserBatchAction.DEACTIVATE:
            raise BatchPreconditionFailed(
                actor.user_id, "Cannot change your own admin account", "CANNOT_MODIFY_SELF"
            )

    results: List[BatchItemResult] = []
    for user_id in request.ids:
        user = users[user_id]
        if action == UserBatchAction.PROMOTE:
            if user.role == request.new_role:
                raise BatchPreconditionFailed(
                    user_id, f"User {user.display_name} already has role {user.role.value}", "ROLE_UNCHANGED"
                )
            user.role = request.new_role  # type: ignore[assignment]
            status = user.role.value
        elif action == UserBatchAction.DEMOTE:
            if user.role == UserRole.ATTENDEE:
                raise BatchPreconditionFailed(
                    user_id, f"User {user.display_name} is already an attendee", "ROLE_UNCHANGED"
                )
            user.role = UserRole.ATTENDEE
            status = user.role.value
        else:
            active = action == UserBatchAction.ACTIVATE
            if user.is_active == active:
                raise BatchPreconditionFailed(
                    user_id,
                    f"User {user.display_name} is already {'active' if active else 'inactive'}",
                    "ACTIVE_UNCHANGED",
                )
            user.is_active = active
            status = "ACTIVE" if active else "INACTIVE"
        user.updated_at = now
        results.append(BatchItemResult(id=user_id, status=status))
    await db.flush()
    return results, []


_HANDLERS: Dict[BatchType, Handler] = {
    BatchType.REGISTRATIONS: _registrations,
    BatchType.EVENTS: _events,
    BatchType.USERS: _users,
}


async def apply_batch(
    db: AsyncSession,
    request: BatchRequest,
    actor: Actor,
    notifier: Optional[NotificationSink] = None,
    now: Optional[datetime] = None,
) -> BatchResult:
    """Apply one action to every id in the request, or to none of them"""
    now = now or utcnow()
    if request.type != BatchType.REGISTRATIONS and not actor.is_admin:
        raise Forbidden("Admin access required for batch operations")
    _check_ids(request)

    async with db_transaction(db):
        results, announcements = await _HANDLERS[request.type](db, request, actor, now)

    logger.info(
        f"Batch {request.action} on {len(results)} {request.type.value} "
        f"by user {actor.user_id}. Reason: {request.reason or 'None provided'}"
    )
    for topic, registration in announcements:
        notify_registration(notifier, topic, registration)
    notify(
        notifier,
        BATCH_COMPLETED,
        {
            "type": request.type.value,
            "action": request.action,
            "actor_id": actor.user_id,
            "processed": len(results),
            "ids": list(request.ids),
            "reason": request.reason,
        },
    )

    return BatchResult(
        type=request.type,
        action=request.action,
        processed=len(results),
        results=results,
        reason=request.reason,
        message=f"Batch {request.action} completed: {len(results)} processed",
    )
