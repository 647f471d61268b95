from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.event import Event
from app.models.registration import (
    ACTIVE_STATUSES,
    OCCUPYING_STATUSES,
    Registration,
    RegistrationStatus,
)
from app.models.user import User


async def get_registration(
    db: AsyncSession, registration_id: int, for_update: bool = False
) -> Optional[Registration]:
    query = select(Registration).filter(Registration.id == registration_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    first: Optional[Registration] = result.scalars().first()
    return first


async def get_registrations_by_ids(
    db: AsyncSession, registration_ids: Sequence[int], for_update: bool = False
) -> List[Registration]:
    query = select(Registration).filter(Registration.id.in_(registration_ids))
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_active_registration(
    db: AsyncSession, attendee_id: int, event_id: int
) -> Optional[Registration]:
    result = await db.execute(
        select(Registration).filter(
            Registration.attendee_id == attendee_id,
            Registration.event_id == event_id,
            Registration.status.in_(ACTIVE_STATUSES),
        )
    )
    first: Optional[Registration] = result.scalars().first()
    return first


async def get_active_attendee_ids(
    db: AsyncSession, event_id: int, attendee_ids: Sequence[int]
) -> List[int]:
    result = await db.execute(
        select(Registration.attendee_id).filter(
            Registration.event_id == event_id,
            Registration.attendee_id.in_(attendee_ids),
            Registration.status.in_(ACTIVE_STATUSES),
        )
    )
    return list(result.scalars().all())


async def get_by_check_in_code(
    db: AsyncSession, event_id: int, code: str, for_update: bool = False
) -> Optional[Registration]:
    query = select(Registration).filter(
        Registration.event_id == event_id,
        Registration.check_in_code == code,
    )
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    first: Optional[Registration] = result.scalars().first()
    return first


async def check_in_code_taken(db: AsyncSession, event_id: int, code: str) -> bool:
    result = await db.execute(
        select(func.count(Registration.id)).filter(
            Registration.event_id == event_id,
            Registration.check_in_code == code,
        )
    )
    return bool(result.scalar_one())


async def count_occupancy(db: AsyncSession, event_id: int) -> int:
    """REGISTERED + ATTENDED registrations, the figure compared to capacity"""
    result = await db.execute(
        select(func.count(Registration.id)).filter(
            Registration.event_id == event_id,
            Registration.status.in_(OCCUPYING_STATUSES),
        )
    )
    return int(result.scalar_one())


async def max_waitlist_position(db: AsyncSession, event_id: int) -> int:
    result = await db.execute(
        select(func.max(Registration.waitlist_position)).filter(
            Registration.event_id == event_id,
            Registration.status == RegistrationStatus.WAITLISTED,
        )
    )
    return int(result.scalar_one() or 0)


async def first_waitlisted(
    db: AsyncSession, event_id: int
) -> Optional[Registration]:
    """The WAITLISTED registration with the smallest position"""
    result = await db.execute(
        select(Registration)
        .filter(
            Registration.event_id == event_id,
            Registration.status == RegistrationStatus.WAITLISTED,
        )
        .order_by(Registration.waitlist_position.asc(), Registration.id.asc())
        .limit(1)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    first: Optional[Registration] = result.scalars().first()
    return first


async def close_waitlist_gap(db: AsyncSession, event_id: int, vacated: int) -> int:
    """Shift every waitlist position behind ``vacated`` forward by one.

    Returns the number of registrations moved.
    """
    result = await db.execute(
        update(Registration)
        .where(
            Registration.event_id == event_id,
            Registration.status == RegistrationStatus.WAITLISTED,
            Registration.waitlist_position > vacated,
        )
        .values(waitlist_position=Registration.waitlist_position - 1)
        .execution_options(synchronize_session="fetch")
    )
    return int(result.rowcount or 0)


async def get_waitlist(db: AsyncSession, event_id: int) -> List[Registration]:
    result = await db.execute(
        select(Registration)
        .filter(
            Registration.event_id == event_id,
            Registration.status == RegistrationStatus.WAITLISTED,
        )
        .order_by(Registration.waitlist_position.asc())
    )
    return list(result.scalars().all())


async def get_event_registrations_with_pagination(
    db: AsyncSession,
    event_id: int,
    skip: int = 0,
    limit: int = 20,
    status_filter: Optional[RegistrationStatus] = None,
) -> Tuple[List[Registration], int]:
    filters = [Registration.event_id == event_id]
    if status_filter:
        filters.append(Registration.status == status_filter)
    count_query = select(func.count(Registration.id)).filter(and_(*filters))
    total = (await db.execute(count_query)).scalar_one()
    query = (
        select(Registration)
        .filter(and_(*filters))
        .order_by(Registration.registration_date.desc(), Registration.id.desc())
        .offset(skip)
        .limit(limit)
    )
    result = await db.execute(query)
    return list(result.scalars().all()), total


async def list_registrations(
    db: AsyncSession,
    *,
    viewer_id: Optional[int] = None,
    status_filter: Optional[RegistrationStatus] = None,
    event_id: Optional[int] = None,
    attendee_id: Optional[int] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    upcoming_after: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 20,
) -> Tuple[List[Registration], int]:
    """Filtered registrations, newest first.

    With a ``viewer_id`` only that user's own registrations and those for
    events they organize are visible. ``upcoming_after`` drops registrations
    for events dated before it.
    """
    filters = []
    if viewer_id is not None:
        filters.append(
            or_(Registration.attendee_id == viewer_id, Event.organizer_id == viewer_id)
        )
    if status_filter:
        filters.append(Registration.status == status_filter)
    if event_id is not None:
        filters.append(Registration.event_id == event_id)
    if attendee_id is not None:
        filters.append(Registration.attendee_id == attendee_id)
    if from_date is not None:
        filters.append(Registration.registration_date >= from_date)
    if to_date is not None:
        filters.append(Registration.registration_date <= to_date)
    if upcoming_after is not None:
        filters.append(Event.event_date >= upcoming_after)

    count_query = (
        select(func.count(Registration.id))
        .join(Event, Event.id == Registration.event_id)
        .filter(*filters)
    )
    total = (await db.execute(count_query)).scalar_one()
    query = (
        select(Registration)
        .join(Event, Event.id == Registration.event_id)
        .filter(*filters)
        .order_by(Registration.registration_date.desc(), Registration.id.desc())
        .offset(skip)
        .limit(limit)
    )
    result = await db.execute(query)
    return list(result.scalars().all()), total


async def count_by_status(
    db: AsyncSession, event_id: int
) -> Dict[RegistrationStatus, int]:
    result = await db.execute(
        select(Registration.status, func.count(Registration.id))
        .filter(Registration.event_id == event_id)
        .group_by(Registration.status)
    )
    return {status: count for status, count in result.all()}


async def get_recent_check_ins(
    db: AsyncSession, event_id: int, limit: int = 10
) -> List[Tuple[int, str, datetime]]:
    result = await db.execute(
        select(
            Registration.id,
            func.coalesce(User.full_name, User.email),
            Registration.check_in_time,
        )
        .join(User, User.id == Registration.attendee_id)
        .filter(
            Registration.event_id == event_id,
            Registration.status == RegistrationStatus.ATTENDED,
        )
        .order_by(Registration.check_in_time.desc())
        .limit(limit)
    )
    return [(row[0], row[1], row[2]) for row in result.all()]
