from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.api import deps
from app.core.db_utils import PaginatedResponse, PaginationParams, utcnow
from app.core.exceptions import Forbidden, InvalidRequest, NotFound
from app.core.notifications import NotificationSink
from app.core.security import Actor
from app.models.registration import RegistrationStatus
from app.schemas.batch import BatchRequest, BatchResult, BatchType
from app.schemas.registration import (
    CancellationResult,
    Registration,
    RegistrationCreate,
    RegistrationUpdate,
)
from app.services import admission, batch, waitlist

router = APIRouter()


@router.post(
    "", response_model=Registration, status_code=status.HTTP_201_CREATED
)  # type: ignore[misc]
async def create_registration(
    *,
    db: AsyncSession = Depends(deps.get_db),
    registration_in: RegistrationCreate,
    actor: Actor = Depends(deps.get_current_actor),
    notifier: NotificationSink = Depends(deps.get_notifier),
) -> Registration:
    """
    Register the current user for an event. A full event puts them on the
    waitlist instead.
    """
    registration = await admission.admit(
        db,
        registration_in.event_id,
        actor.user_id,
        notes=registration_in.notes,
        notifier=notifier,
    )
    return Registration.model_validate(registration)


@router.get("", response_model=PaginatedResponse)  # type: ignore[misc]
async def read_registrations(
    *,
    db: AsyncSession = Depends(deps.get_db),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    status_filter: Optional[RegistrationStatus] = Query(None, alias="status"),
    event_id: Optional[int] = None,
    user_id: Optional[int] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    include_expired: bool = False,
    actor: Actor = Depends(deps.get_current_actor),
) -> PaginatedResponse:
    """
    **List Registrations**, newest first.

    Admins see every registration. Everyone else sees their own
    registrations and those for events they organize. Registrations for past
    events are hidden unless `include_expired=true`; `user_id` narrows the
    list to one attendee.
    """
    pagination = PaginationParams(page=page, page_size=page_size)
    registrations, total = await crud.registration.list_registrations(
        db,
        viewer_id=None if actor.is_admin else actor.user_id,
        status_filter=status_filter,
        event_id=event_id,
        attendee_id=user_id,
        from_date=from_date,
        to_date=to_date,
        upcoming_after=None if include_expired else utcnow(),
        skip=pagination.offset,
        limit=pagination.limit,
    )
    return PaginatedResponse.create(
        items=[Registration.model_validate(r) for r in registrations],
        total=total,
        pagination=pagination,
    )


@router.post("/batch", response_model=BatchResult)  # type: ignore[misc]
async def batch_registrations(
    *,
    db: AsyncSession = Depends(deps.get_db),
    batch_in: BatchRequest,
    actor: Actor = Depends(deps.get_current_actor),
    notifier: NotificationSink = Depends(deps.get_notifier),
) -> BatchResult:
    """
    Cancel, check in or promote several registrations at once. Either every
    registration changes or none does.
    """
    if batch_in.type != BatchType.REGISTRATIONS:
        raise InvalidRequest("Only registration batches are accepted here")
    return await batch.apply_batch(db, batch_in, actor, notifier=notifier)


@router.get("/{registration_id}", response_model=Registration)  # type: ignore[misc]
async def read_registration(
    *,
    db: AsyncSession = Depends(deps.get_db),
    registration_id: int,
    actor: Actor = Depends(deps.get_current_actor),
) -> Registration:
    registration = await crud.registration.get_registration(db, registration_id)
    if not registration:
        raise NotFound("Registration not found")
    if actor.user_id != registration.attendee_id:
        event = await crud.event.get_event(db, registration.event_id)
        if event is None or not actor.can_manage(event.organizer_id):
            raise Forbidden("You don't have permission to view this registration")
    return Registration.model_validate(registration)


@router.put("/{registration_id}", response_model=Registration)  # type: ignore[misc]
async def update_registration(
    *,
    db: AsyncSession = Depends(deps.get_db),
    registration_id: int,
    registration_in: RegistrationUpdate,
    actor: Actor = Depends(deps.get_current_actor),
) -> Registration:
    """
    Update a registration's notes. Status changes are rejected; use cancel,
    check-in or batch promote instead.
    """
    registration = await admission.update_notes(
        db, registration_id, registration_in.notes, actor
    )
    return Registration.model_validate(registration)


@router.delete("/{registration_id}", response_model=CancellationResult)  # type: ignore[misc]
async def cancel_registration(
    *,
    db: AsyncSession = Depends(deps.get_db),
    registration_id: int,
    actor: Actor = Depends(deps.get_current_actor),
    notifier: NotificationSink = Depends(deps.get_notifier),
) -> CancellationResult:
    """
    Cancel a registration. When it held a seat, the first waitlisted
    registration is promoted and returned alongside.
    """
    result = await waitlist.cancel(db, registration_id, actor, notifier=notifier)
    return CancellationResult(
        cancelled=Registration.model_validate(result.cancelled),
        promoted=(
            Registration.model_validate(result.promoted) if result.promoted else None
        ),
    )
