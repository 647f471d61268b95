from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.event import Event


async def get_event(db: AsyncSession, event_id: int) -> Optional[Event]:
    result = await db.execute(select(Event).filter(Event.id == event_id))
    first: Optional[Event] = result.scalars().first()
    return first


async def lock_event(db: AsyncSession, event_id: int) -> Optional[Event]:
    """Load an event holding its row lock until the transaction ends.

    Every read-then-write over an event's registrations takes this lock first,
    which serialises admissions, cancellations and promotions per event.
    """
    result = await db.execute(
        select(Event)
        .filter(Event.id == event_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    first: Optional[Event] = result.scalars().first()
    return first


async def lock_events(db: AsyncSession, event_ids: List[int]) -> List[Event]:
    # Ascending id order keeps lock acquisition consistent across batches
    result = await db.execute(
        select(Event)
        .filter(Event.id.in_(event_ids))
        .order_by(Event.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())
