import enum
from datetime import datetime, time
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import DateTime
from sqlalchemy import Enum as SQLEnum
from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from ..database import Base

if TYPE_CHECKING:
    from .registration import Registration
    from .user import User


class EventStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    event_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    # "HH:MM"; overrides the time-of-day part of event_date when present
    event_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[EventStatus] = mapped_column(
        SQLEnum(EventStatus), default=EventStatus.DRAFT, nullable=False, index=True
    )
    registration_deadline: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    organizer_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    organizer: Mapped["User"] = relationship("User")
    registrations: Mapped[List["Registration"]] = relationship(
        "Registration", back_populates="event"
    )

    __table_args__ = (
        Index("idx_event_date_status", "event_date", "status"),
        Index("idx_event_organizer_status", "organizer_id", "status"),
    )

    @property
    def starts_at(self) -> datetime:
        """The instant the event begins"""
        if not self.event_time:
            return self.event_date
        hours, minutes = self.event_time.split(":")
        return datetime.combine(self.event_date.date(), time(int(hours), int(minutes)))

    @property
    def has_unlimited_capacity(self) -> bool:
        return self.capacity is None
