from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.api import deps
from app.core.db_utils import PaginatedResponse, PaginationParams
from app.core.exceptions import Forbidden, NotFound
from app.core.notifications import NotificationSink
from app.core.security import Actor
from app.models.registration import RegistrationStatus
from app.schemas.registration import (
    BulkRegistrationCreate,
    CheckInRequest,
    CheckInResult,
    CheckInStats,
    Registration,
)
from app.services import admission, checkin, waitlist

router = APIRouter()


@router.post(
    "/{event_id}/registrations",
    response_model=List[Registration],
    status_code=status.HTTP_201_CREATED,
    summary="Register Attendees in Bulk",
)  # type: ignore[misc]
async def bulk_register(
    *,
    db: AsyncSession = Depends(deps.get_db),
    event_id: int,
    registration_in: BulkRegistrationCreate,
    actor: Actor = Depends(deps.get_current_actor),
    notifier: NotificationSink = Depends(deps.get_notifier),
) -> List[Registration]:
    """
    **Register Attendees in Bulk** (Organizer or Admin)

    Free seats go to the listed users in order; the rest join the waitlist
    in order. Nothing is registered if any user is missing or already
    registered.

    **Errors:**
    - `400`: Event closed for registration, or a user is already registered
    - `403`: Not the event organizer
    - `404`: Event or users not found
    """
    registrations = await admission.admit_many(
        db,
        event_id,
        registration_in.user_ids,
        actor,
        notes=registration_in.notes,
        notifier=notifier,
    )
    return [Registration.model_validate(r) for r in registrations]


@router.get(
    "/{event_id}/registrations",
    response_model=PaginatedResponse,
    summary="List Event Registrations",
)  # type: ignore[misc]
async def read_event_registrations(
    *,
    db: AsyncSession = Depends(deps.get_db),
    event_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    status_filter: Optional[RegistrationStatus] = Query(None, alias="status"),
    actor: Actor = Depends(deps.get_current_actor),
) -> PaginatedResponse:
    """
    Registrations of an event, newest first, optionally filtered by status.
    """
    event = await crud.event.get_event(db, event_id)
    if not event:
        raise NotFound("Event not found")
    if not actor.can_manage(event.organizer_id):
        raise Forbidden("You don't have permission to view these registrations")

    pagination = PaginationParams(page=page, page_size=page_size)
    registrations, total = await crud.registration.get_event_registrations_with_pagination(
        db,
        event_id,
        skip=pagination.offset,
        limit=pagination.limit,
        status_filter=status_filter,
    )
    return PaginatedResponse.create(
        items=[Registration.model_validate(r) for r in registrations],
        total=total,
        pagination=pagination,
    )


@router.get(
    "/{event_id}/waitlist",
    response_model=List[Registration],
    summary="Event Waitlist",
)  # type: ignore[misc]
async def read_waitlist(
    *,
    db: AsyncSession = Depends(deps.get_db),
    event_id: int,
    actor: Actor = Depends(deps.get_current_actor),
) -> List[Registration]:
    """
    Waitlisted registrations in promotion order, position 1 first.
    """
    entries = await waitlist.waitlist_snapshot(db, event_id, actor)
    return [Registration.model_validate(r) for r in entries]


@router.post(
    "/{event_id}/checkin", response_model=CheckInResult, summary="Check In Attendee"
)  # type: ignore[misc]
async def check_in_attendee(
    *,
    db: AsyncSession = Depends(deps.get_db),
    event_id: int,
    checkin_in: CheckInRequest,
    actor: Actor = Depends(deps.get_current_actor),
    notifier: NotificationSink = Depends(deps.get_notifier),
) -> CheckInResult:
    """
    **Check In Attendee** (Organizer or Admin)

    Always answers 200 with an `outcome`: `SUCCESS`, `ALREADY_CHECKED_IN`,
    `ON_WAITLIST`, `CANCELLED`, `INVALID_CODE`, `EVENT_NOT_PUBLISHED`,
    `TOO_EARLY` or `EVENT_ENDED`. Scanning the same code twice is safe.
    """
    return await checkin.check_in(
        db, event_id, checkin_in.code, actor, notifier=notifier
    )


@router.get(
    "/{event_id}/checkin", response_model=CheckInStats, summary="Check-in Statistics"
)  # type: ignore[misc]
async def read_check_in_stats(
    *,
    db: AsyncSession = Depends(deps.get_db),
    event_id: int,
    actor: Actor = Depends(deps.get_current_actor),
) -> CheckInStats:
    return await checkin.check_in_stats(db, event_id, actor)
