"""Generate database sessions for the archive"""

import logging

from sqlalchemy import StaticPool, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from wildchess.db.schema import Base

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str) -> Engine:
    """In-memory SQLite only lives as long as its single connection, so it gets a StaticPool."""
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url)


def create_session_factory(database_url: str) -> sessionmaker[Session]:
    engine = create_db_engine(database_url)
    # Ensure all tables are created
    Base.metadata.create_all(bind=engine)
    logger.info("Game archive ready (%s)", engine.url.render_as_string(hide_password=True))
    return sessionmaker(bind=engine, expire_on_commit=False)
