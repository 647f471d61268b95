import enum
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime
from sqlalchemy import Enum as SQLEnum
from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from ..database import Base

if TYPE_CHECKING:
    from .event import Event
    from .user import User


class RegistrationStatus(str, enum.Enum):
    REGISTERED = "REGISTERED"
    WAITLISTED = "WAITLISTED"
    ATTENDED = "ATTENDED"
    CANCELLED = "CANCELLED"


# Statuses that hold a capacity slot
OCCUPYING_STATUSES = (RegistrationStatus.REGISTERED, RegistrationStatus.ATTENDED)
# Statuses that block a second registration for the same attendee
ACTIVE_STATUSES = (
    RegistrationStatus.REGISTERED,
    RegistrationStatus.WAITLISTED,
    RegistrationStatus.ATTENDED,
)

_ACTIVE_ONLY = text("status <> 'CANCELLED'")


class Registration(Base):
    __tablename__ = "registrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    event_id: Mapped[int] = mapped_column(
        ForeignKey("events.id"), nullable=False, index=True
    )
    attendee_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"), nullable=False, index=True
    )
    status: Mapped[RegistrationStatus] = mapped_column(
        SQLEnum(RegistrationStatus), nullable=False, index=True
    )
    waitlist_position: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    check_in_code: Mapped[str] = mapped_column(String(16), nullable=False)
    check_in_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    registration_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    event: Mapped["Event"] = relationship("Event", back_populates="registrations")
    attendee: Mapped["User"] = relationship("User", back_populates="registrations")

    __table_args__ = (
        UniqueConstraint("event_id", "check_in_code", name="uq_registration_event_code"),
        Index(
            "uq_registration_active_attendee",
            "attendee_id",
            "event_id",
            unique=True,
            postgresql_where=_ACTIVE_ONLY,
            sqlite_where=_ACTIVE_ONLY,
        ),
        Index("idx_registration_event_status", "event_id", "status"),
        Index("idx_registration_event_waitlist", "event_id", "waitlist_position"),
    )

    @property
    def occupies_slot(self) -> bool:
        return self.status in OCCUPYING_STATUSES
