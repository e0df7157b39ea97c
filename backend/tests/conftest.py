"""
Pytest configuration and fixtures for backend tests.

Provides shared fixtures for:
- In-memory SQLite engine / session (StaticPool, one connection per test)
- A controllable clock
- User / task factories with notification settings
- Fake delivery transport (doubles live in tests/fakes.py)
- QueueManager wired to the SQL stores
"""

import os
import threading

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app modules
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["OPENAI_API_KEY"] = ""
os.environ["SCHEDULER_ENABLED"] = "false"

import app.models  # noqa: E402,F401
from app.core.notify_config import NotifyConfig  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.models.notification_settings import NotificationSettings  # noqa: E402
from app.models.task import Task  # noqa: E402
from app.models.user import User  # noqa: E402
from app.services.notifications.content import ContentGenerator  # noqa: E402
from app.services.notifications.queue import QueueManager  # noqa: E402
from app.services.notifications.sql_stores import (  # noqa: E402
    SqlNotificationStore,
    SqlTaskStore,
    SqlUserStore,
)
from tests.fakes import BASE_NOW, FakeClock, FakeTransport  # noqa: E402


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def test_db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    def _fk_pragma_on_connect(dbapi_con, con_record):
        dbapi_con.execute("pragma foreign_keys=ON")

    event.listen(engine, "connect", _fk_pragma_on_connect)

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def test_db_session(test_db_engine):
    """Create a test database session."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def clock():
    return FakeClock(BASE_NOW)


# ============================================================================
# Sample Data Factories
# ============================================================================

# Whole-day window in UTC: every instant is deliverable unless a test says otherwise
OPEN_SETTINGS = {
    "personality": "casual",
    "quiet_hours_start": "00:00",
    "quiet_hours_end": "23:59",
    "max_per_day": 5,
    "enabled_types": ["ALERT", "REMINDER", "MOTIVATION"],
    "timezone": "UTC",
}


@pytest.fixture
def make_user(test_db_session):
    """Factory for users with a notification settings row (OPEN_SETTINGS + overrides)."""
    _counter = [0]

    def _create(name=None, level=1, streak=0, xp_points=0, settings=None, with_settings=True):
        _counter[0] += 1
        user = User(
            name=name or f"User {_counter[0]}",
            email=f"user{_counter[0]}@example.com",
            level=level,
            streak=streak,
            xp_points=xp_points,
        )
        test_db_session.add(user)
        test_db_session.commit()
        test_db_session.refresh(user)
        if with_settings:
            values = {**OPEN_SETTINGS, **(settings or {})}
            test_db_session.add(NotificationSettings(user_id=user.id, **values))
            test_db_session.commit()
        return user

    return _create


@pytest.fixture
def make_task(test_db_session, clock):
    """Factory for tasks owned by a user."""

    def _create(user, name="Write report", points=10, due_at=None, completed=False, created_at=None, **kwargs):
        task = Task(
            user_id=user.id,
            name=name,
            points=points,
            due_at=due_at,
            completed=completed,
            created_at=created_at or clock.now,
            category_names=kwargs.pop("category_names", ["work"]),
            tag_names=kwargs.pop("tag_names", []),
            **kwargs,
        )
        test_db_session.add(task)
        test_db_session.commit()
        test_db_session.refresh(task)
        return task

    return _create


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def notify_config():
    return NotifyConfig(
        batch_size=10,
        max_attempts=5,
        retry_backoff_seconds=0,
        retry_backoff_max_seconds=3600,
        duplicate_cooldown_minutes=120,
        retention_days=30,
        deadline_window_hours=24,
        insight_activity_days=7,
        engagement_cache_minutes=60,
    )


@pytest.fixture
def make_manager(test_db_session, clock, transport, notify_config):
    """QueueManager over the SQL stores with fake transport, injected clock and a private guard."""

    def _create(transport_=None, content=None, config=None, guard=None):
        return QueueManager(
            users=SqlUserStore(test_db_session),
            tasks=SqlTaskStore(test_db_session),
            notifications=SqlNotificationStore(test_db_session),
            transport=transport_ or transport,
            content=content or ContentGenerator(),
            config=config or notify_config,
            clock=clock,
            guard=guard or threading.Lock(),
        )

    return _create


@pytest.fixture
def manager(make_manager):
    return make_manager()
