from enum import Enum
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field, model_validator

from app.models.user import UserRole


class BatchType(str, Enum):
    REGISTRATIONS = "registrations"
    EVENTS = "events"
    USERS = "users"


class RegistrationBatchAction(str, Enum):
    CANCEL = "cancel"
    CHECKIN = "checkin"
    PROMOTE = "promote"


class EventBatchAction(str, Enum):
    PUBLISH = "publish"
    CANCEL = "cancel"
    ARCHIVE = "archive"


class UserBatchAction(str, Enum):
    PROMOTE = "promote"
    DEMOTE = "demote"
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"


_ACTIONS = {
    BatchType.REGISTRATIONS: RegistrationBatchAction,
    BatchType.EVENTS: EventBatchAction,
    BatchType.USERS: UserBatchAction,
}


class BatchRequest(BaseModel):
    type: BatchType = BatchType.REGISTRATIONS
    action: str
    ids: List[int] = Field(..., min_length=1, max_length=100)
    new_role: Optional[UserRole] = None
    reason: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def check_action(self) -> "BatchRequest":
        allowed = _ACTIONS[self.type]
        try:
            allowed(self.action)
        except ValueError:
            names = ", ".join(a.value for a in allowed)
            raise ValueError(
                f"Invalid action '{self.action}' for {self.type.value}; use one of: {names}"
            )
        return self

    @property
    def typed_action(self) -> Union[RegistrationBatchAction, EventBatchAction, UserBatchAction]:
        return _ACTIONS[self.type](self.action)


class BatchItemResult(BaseModel):
    id: int
    status: Any


class BatchResult(BaseModel):
    type: BatchType
    action: str
    processed: int
    results: List[BatchItemResult]
    reason: Optional[str] = None
    message: str
