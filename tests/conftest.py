"""Pytest conftest: importable repository, a file-backed SQLite database per test
and small factories for users, events and registrations."""
import os
import sys
from datetime import datetime, timedelta
from itertools import count
from pathlib import Path
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional, Tuple

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    # Insert at front so local package imports resolve
    sys.path.insert(0, str(REPO_ROOT))

# Must be set before the settings are first loaded
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("REGISTRATION_NOTIFICATIONS_ENABLED", "true")

import pytest  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from app.core.database_manager import DatabaseManager  # noqa: E402
from app.core.db_utils import utcnow  # noqa: E402
from app.core.notifications import NotificationSink  # noqa: E402
from app.models.event import Event, EventStatus  # noqa: E402
from app.models.registration import Registration, RegistrationStatus  # noqa: E402
from app.models.user import User, UserRole  # noqa: E402

# One fixed instant per test run; services take it as ``now``
NOW = utcnow().replace(microsecond=0)

_sequence = count(1)


class RecordingNotificationSink(NotificationSink):
    """Keeps published outcomes in memory"""

    def __init__(self) -> None:
        self.published: List[Tuple[str, Dict[str, Any]]] = []

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        self.published.append((topic, payload))

    @property
    def topics(self) -> List[str]:
        return [topic for topic, _ in self.published]


class FailingNotificationSink(NotificationSink):
    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        raise ConnectionError("broker unavailable")


@pytest.fixture  # type: ignore[misc]
async def database(tmp_path: Path) -> AsyncGenerator[DatabaseManager, None]:
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'rollcall.db'}")
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture  # type: ignore[misc]
async def db(database: DatabaseManager) -> AsyncGenerator[AsyncSession, None]:
    assert database.session_factory is not None
    async with database.session_factory() as session:
        yield session


@pytest.fixture  # type: ignore[misc]
def notifier() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture  # type: ignore[misc]
def make_user(db: AsyncSession) -> Callable[..., Awaitable[User]]:
    async def _make_user(
        role: UserRole = UserRole.ATTENDEE,
        full_name: Optional[str] = None,
        is_active: bool = True,
    ) -> User:
        n = next(_sequence)
        user = User(
            email=f"user{n}@example.com",
            full_name=full_name or f"User {n}",
            role=role,
            is_active=is_active,
        )
        db.add(user)
        await db.commit()
        return user

    return _make_user


@pytest.fixture  # type: ignore[misc]
async def organizer(make_user: Callable[..., Awaitable[User]]) -> User:
    return await make_user(role=UserRole.ORGANIZER, full_name="Olive Organizer")


@pytest.fixture  # type: ignore[misc]
async def admin(make_user: Callable[..., Awaitable[User]]) -> User:
    return await make_user(role=UserRole.ADMIN, full_name="Ada Admin")


@pytest.fixture  # type: ignore[misc]
def make_event(
    db: AsyncSession, organizer: User
) -> Callable[..., Awaitable[Event]]:
    # Captured up front; a rolled back session expires the organizer row
    default_organizer_id = organizer.id

    async def _make_event(
        capacity: Optional[int] = 2,
        starts_in: timedelta = timedelta(days=7),
        status: EventStatus = EventStatus.PUBLISHED,
        registration_deadline: Optional[datetime] = None,
        organizer_id: Optional[int] = None,
    ) -> Event:
        event = Event(
            title=f"Event {next(_sequence)}",
            event_date=NOW + starts_in,
            capacity=capacity,
            status=status,
            registration_deadline=registration_deadline,
            organizer_id=organizer_id or default_organizer_id,
        )
        db.add(event)
        await db.commit()
        return event

    return _make_event


@pytest.fixture  # type: ignore[misc]
def fetch(db: AsyncSession) -> Callable[[int], Awaitable[Registration]]:
    """Reload a registration from the database, ending the read transaction"""

    async def _fetch(registration_id: int) -> Registration:
        registration = await db.get(
            Registration, registration_id, populate_existing=True
        )
        await db.commit()
        assert registration is not None
        return registration

    return _fetch


@pytest.fixture  # type: ignore[misc]
def waitlist_of(db: AsyncSession) -> Callable[[int], Awaitable[List[Tuple[int, int]]]]:
    """(registration id, position) pairs of an event's waitlist in order"""

    async def _waitlist_of(event_id: int) -> List[Tuple[int, int]]:
        result = await db.execute(
            select(Registration.id, Registration.waitlist_position)
            .filter(
                Registration.event_id == event_id,
                Registration.status == RegistrationStatus.WAITLISTED,
            )
            .order_by(Registration.waitlist_position)
        )
        rows = [(row[0], row[1]) for row in result.all()]
        await db.commit()
        return rows

    return _waitlist_of
