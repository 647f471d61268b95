from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.security import Actor
from app.schemas.registration import CheckInResult, ValidateCheckInRequest
from app.services import checkin

router = APIRouter()


@router.post("/validate", response_model=CheckInResult)  # type: ignore[misc]
async def validate_check_in(
    *,
    db: AsyncSession = Depends(deps.get_db),
    validate_in: ValidateCheckInRequest,
    actor: Actor = Depends(deps.get_current_actor),
) -> CheckInResult:
    """
    Preview what scanning a code would do, without checking anyone in.
    """
    return await checkin.validate_check_in(
        db, validate_in.event_id, validate_in.code, actor=actor
    )
