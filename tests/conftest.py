import os
from datetime import datetime
from decimal import Decimal
from typing import Generator

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("LOCAL_TIMEZONE", "UTC")

from common.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from common.auth import create_access_token  # noqa: E402
from common.database import Base, SessionLocal, engine  # noqa: E402
from common.models import Court, Facility, MaintenanceBlock, RoleEnum, User  # noqa: E402
from scheduler.events import InMemoryEventPublisher  # noqa: E402
from scheduler.service import BookingScheduler  # noqa: E402
from services.bookings.app import app as bookings_app  # noqa: E402
from services.bookings.app import availability_cache, get_scheduler  # noqa: E402

# Every scheduler test runs on this day unless it moves the clock.
BOOKING_DAY = datetime(2030, 6, 3)


def at(hour: int, minute: int = 0, day: datetime = BOOKING_DAY) -> datetime:
    return day.replace(hour=hour, minute=minute)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingNotifier:
    def __init__(self) -> None:
        self.created: list[tuple[int, int]] = []
        self.cancelled: list[tuple[int, int]] = []

    def notify_booking_created(self, owner_id, booking, court, facility) -> None:
        self.created.append((owner_id, booking.id))

    def notify_booking_cancelled(self, owner_id, booking, court, facility) -> None:
        self.cancelled.append((owner_id, booking.id))


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    availability_cache.clear()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def _add_user(session, username: str, role: RoleEnum) -> User:
    user = User(name=username.title(), username=username, email=f"{username}@example.com", role=role)
    session.add(user)
    session.commit()
    return user


@pytest.fixture()
def owner(db_session) -> User:
    return _add_user(db_session, "owner", RoleEnum.OWNER)


@pytest.fixture()
def player(db_session) -> User:
    return _add_user(db_session, "player", RoleEnum.USER)


@pytest.fixture()
def other_player(db_session) -> User:
    return _add_user(db_session, "rival", RoleEnum.USER)


@pytest.fixture()
def admin(db_session) -> User:
    return _add_user(db_session, "admin", RoleEnum.ADMIN)


@pytest.fixture()
def facility(db_session, owner) -> Facility:
    venue = Facility(name="Riverside Arena", location="Pune", owner_id=owner.id)
    db_session.add(venue)
    db_session.commit()
    return venue


@pytest.fixture()
def court(db_session, facility) -> Court:
    """Court C: open 06:00-22:00 at 500 per hour."""
    court = Court(
        facility_id=facility.id,
        name="Court C",
        open_minute=360,
        close_minute=1320,
        price_per_hour=Decimal("500.00"),
    )
    db_session.add(court)
    db_session.commit()
    return court


@pytest.fixture()
def add_maintenance(db_session):
    def _add(court_id: int, start: datetime, end: datetime, reason: str | None = "Resurfacing") -> MaintenanceBlock:
        block = MaintenanceBlock(court_id=court_id, start_time=start, end_time=end, reason=reason)
        db_session.add(block)
        db_session.commit()
        return block

    return _add


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock(at(5))


@pytest.fixture()
def publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def scheduler(publisher, notifier, clock) -> BookingScheduler:
    return BookingScheduler(SessionLocal, publisher=publisher, notifier=notifier, clock=clock)


@pytest.fixture()
def bookings_client(scheduler) -> Generator[TestClient, None, None]:
    bookings_app.dependency_overrides[get_scheduler] = lambda: scheduler
    with TestClient(bookings_app) as client:
        yield client
    bookings_app.dependency_overrides.pop(get_scheduler, None)


def auth_header(user: User) -> dict[str, str]:
    token = create_access_token({"sub": user.username})
    return {"Authorization": f"Bearer {token}"}
