"""Database tables / schema"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class DBGame(Base):
    __tablename__ = "finished_games"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    room_id: Mapped[str] = mapped_column(String(16), index=True)
    players: Mapped[dict[str, str]] = mapped_column(JSON)
    result: Mapped[str]
    winner: Mapped[Optional[str]]
    reason: Mapped[str] = mapped_column(default="")
    moves: Mapped[list[str]] = mapped_column(JSON, default=list)
    started_at: Mapped[datetime]
    ended_at: Mapped[datetime]
    archived_at: Mapped[datetime] = mapped_column(default=utc_now)
