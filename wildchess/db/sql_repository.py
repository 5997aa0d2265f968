"""Implementation of GameArchive using SQLAlchemy"""

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from wildchess.core.exceptions import RepositoryError
from wildchess.core.models import GameRecord
from wildchess.db.schema import DBGame


class SQLGameArchive:
    """Data stored using SQL / methods implemented using SQLAlchemy.

    NOTE: Every call opens its own short-lived session, as the archive is shared by all rooms.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory

    def save_game(self, record: GameRecord) -> GameRecord:
        """Store the record of a finished game."""
        game_db = DBGame(
            room_id=record.room_id,
            players=record.players,
            result=record.result,
            winner=record.winner,
            reason=record.reason,
            moves=record.moves,
            started_at=record.started_at,
            ended_at=record.ended_at,
        )
        try:
            with self.session_factory() as db:
                db.add(game_db)
                db.commit()
                db.refresh(game_db)
                return self._to_model(game_db)
        except SQLAlchemyError as error:
            raise RepositoryError(
                f"Could not archive game of room {record.room_id}: {error}"
            ) from error

    def get_game(self, room_id: str) -> GameRecord | None:
        """Get the finished game played in the given room, if a record exists."""
        query = (
            select(DBGame)
            .where(DBGame.room_id == room_id)
            .order_by(DBGame.id.desc())
            .limit(1)
        )
        with self.session_factory() as db:
            game_db = db.scalar(query)
            return self._to_model(game_db) if game_db else None

    def list_games(self, limit: int = 50) -> list[GameRecord]:
        """Most recently finished games first."""
        query = select(DBGame).order_by(DBGame.id.desc()).limit(limit)
        with self.session_factory() as db:
            return [self._to_model(game_db) for game_db in db.scalars(query)]

    def _to_model(self, game_db: DBGame) -> GameRecord:
        """Convert SQLAlchemy model to data transfer model."""
        return GameRecord(
            room_id=game_db.room_id,
            players=dict(game_db.players),
            result=game_db.result,
            winner=game_db.winner,
            reason=game_db.reason,
            moves=list(game_db.moves),
            started_at=game_db.started_at,
            ended_at=game_db.ended_at,
        )
