from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from studywell.core.lifecycle import ServiceLifecycle
from studywell.db.base import Base
from studywell.db.session import build_engine
from studywell.reminders import models  # noqa: F401  (registers the table)
from studywell.reminders.config import ReminderSettings
from studywell.reminders.dispatcher import DeliveryGateway
from studywell.reminders.schemas import RecurrenceConfig


# 2024-01-01 is a Monday
MONDAY_8AM = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def test_settings():
    return ReminderSettings(
        DATABASE_URL="sqlite://",
        METRICS_ENABLED=False,
        WATCH_START_DELAY_SECONDS=0,
        DISPATCH_INTERVAL_SECONDS=3600,
        HEARTBEAT_INTERVAL_SECONDS=3600,
        DELIVERY_TIMEOUT_SECONDS=1.0,
        FIREBASE_SERVICE_ACCOUNT=None,
    )


@pytest.fixture
def engine(tmp_path):
    # File-backed so each worker thread gets its own connection
    engine = build_engine(f"sqlite:///{tmp_path / 'reminders.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def ready_lifecycle():
    lifecycle = ServiceLifecycle()
    lifecycle.mark_ready()
    return lifecycle


@pytest.fixture
def daily_config():
    return RecurrenceConfig(
        owner_id="user-1",
        hour=9,
        minute=0,
        frequency="daily",
        message="Time to focus on your studies.",
        push_address="fcm-token-user-1-abcdefghijklmnop",
        enabled=True,
        timezone_offset_minutes=480,
    )


class FakeGateway(DeliveryGateway):
    def __init__(self, error=None):
        self.error = error
        self.sent = []

    async def send(self, occurrence):
        self.sent.append(occurrence.id)
        if self.error is not None:
            raise self.error
        return f"projects/studywell/messages/{len(self.sent)}"


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock(MONDAY_8AM)
