from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.registration import RegistrationStatus


class RegistrationCreate(BaseModel):
    event_id: int
    notes: Optional[str] = Field(None, max_length=500)


class BulkRegistrationCreate(BaseModel):
    user_ids: List[int] = Field(..., min_length=1, max_length=50)
    notes: Optional[str] = Field(None, max_length=500)


class Registration(BaseModel):
    id: int
    event_id: int
    attendee_id: int
    status: RegistrationStatus
    waitlist_position: Optional[int] = None
    check_in_code: str
    check_in_time: Optional[datetime] = None
    registration_date: datetime
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class RegistrationUpdate(BaseModel):
    """Only notes are editable; status moves through cancel, promote and check-in"""

    notes: Optional[str] = Field(None, max_length=500)

    model_config = ConfigDict(extra="forbid")


class CancellationResult(BaseModel):
    cancelled: Registration
    promoted: Optional[Registration] = None


class CheckInRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=16)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class ValidateCheckInRequest(CheckInRequest):
    event_id: int


class CheckInOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    ALREADY_CHECKED_IN = "ALREADY_CHECKED_IN"
    ON_WAITLIST = "ON_WAITLIST"
    CANCELLED = "CANCELLED"
    INVALID_CODE = "INVALID_CODE"
    EVENT_NOT_PUBLISHED = "EVENT_NOT_PUBLISHED"
    TOO_EARLY = "TOO_EARLY"
    EVENT_ENDED = "EVENT_ENDED"


class CheckInResult(BaseModel):
    outcome: CheckInOutcome
    message: str
    registration_id: Optional[int] = None
    attendee_id: Optional[int] = None
    attendee_name: Optional[str] = None
    status: Optional[RegistrationStatus] = None
    waitlist_position: Optional[int] = None
    check_in_time: Optional[datetime] = None
    hours_until_event: Optional[float] = None

    @property
    def admitted(self) -> bool:
        """True when the code lets the holder in (now or on a repeat scan)"""
        return self.outcome in (
            CheckInOutcome.SUCCESS,
            CheckInOutcome.ALREADY_CHECKED_IN,
        )


class RecentCheckIn(BaseModel):
    registration_id: int
    attendee_name: str
    check_in_time: datetime


class CheckInStats(BaseModel):
    total: int = 0
    registered: int = 0
    attended: int = 0
    waitlisted: int = 0
    cancelled: int = 0
    attendance_rate: int = 0
    recent_check_ins: List[RecentCheckIn] = []
