from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.notifications import NotificationSink
from app.core.security import Actor
from app.schemas.batch import BatchRequest, BatchResult
from app.services import batch

router = APIRouter()


@router.post("/batch", response_model=BatchResult)  # type: ignore[misc]
async def admin_batch(
    *,
    db: AsyncSession = Depends(deps.get_db),
    batch_in: BatchRequest,
    actor: Actor = Depends(deps.get_current_admin_actor),
    notifier: NotificationSink = Depends(deps.get_notifier),
) -> BatchResult:
    """
    **Batch Operations** (Admin Only)

    - `registrations`: `cancel`, `checkin`, `promote` (up to 100 ids)
    - `events`: `publish`, `cancel`, `archive` (up to 50 ids)
    - `users`: `promote` (with `new_role`), `demote`, `activate`,
      `deactivate` (up to 50 ids)

    The batch is all or nothing: the first failing id is reported under
    `failing_id` and nothing is changed.
    """
    return await batch.apply_batch(db, batch_in, actor, notifier=notifier)
