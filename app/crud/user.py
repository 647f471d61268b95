from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User


async def get(db: AsyncSession, id: Any) -> Optional[User]:
    result = await db.execute(select(User).filter(User.id == id))
    first: Optional[User] = result.scalars().first()
    return first


async def get_users_by_ids(
    db: AsyncSession, *, user_ids: List[int], for_update: bool = False
) -> List[User]:
    """Get multiple users by their IDs"""
    query = select(User).filter(User.id.in_(user_ids))
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    return list(result.scalars().all())


def is_active(user: User) -> bool:
    return bool(user.is_active)
