"""
Pytest will auto-discover / import this file called 'conftest.py'.
This file defines fixtures/variables required for testing multiple layers.
"""

from typing import Iterator

import pytest
from sqlalchemy import StaticPool, create_engine
from sqlalchemy.orm import Session, sessionmaker

from wildchess.core.config import Settings
from wildchess.db.schema import Base

# Setup an in-memory SQLite database for testing
DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autoflush=False, bind=engine, expire_on_commit=False)


@pytest.fixture
def session_factory() -> Iterator[sessionmaker[Session]]:
    """Session factory bound to a test database. Tables are removed at teardown to keep tests independent of each other."""
    Base.metadata.create_all(bind=engine)
    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def settings() -> Settings:
    """Short timers so scheduled tasks can be observed within a test. No archive."""
    return Settings(
        reconnect_grace_seconds=0.05,
        room_cleanup_seconds=0.05,
        max_spectators=2,
        max_chat_length=20,
        database_url="",
    )
