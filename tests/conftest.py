"""
Shared test setup: required settings come from the environment, the database is an
in-memory SQLite per test, and the clock can be pinned through lawnet.utils.clock.utcnow.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("OWNER_KEY", "test-owner-key-0123456789")
os.environ.setdefault("LIVE_UPDATES_BACKEND", "memory")
os.environ.setdefault("APPROVAL_RETRY_BACKOFF_SECONDS", "0")

from datetime import datetime, timezone  # noqa: E402
from unittest.mock import patch  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import lawnet.models  # noqa: E402,F401
from lawnet.db.base import Base  # noqa: E402

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


class FrozenClock:
    """Mutable pinned clock; advance() moves it forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        from datetime import timedelta

        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def frozen_clock():
    fc = FrozenClock(FIXED_NOW)
    with patch("lawnet.utils.clock.utcnow", fc):
        yield fc
