"""Protocol repository for the archive of finished games (implemented with SQLAlchemy, see sql_repository.py)"""

from typing import Protocol

from wildchess.core.models import GameRecord


class GameArchive(Protocol):
    """Persistence layer orchestration"""

    def save_game(self, record: GameRecord) -> GameRecord:
        """Store the record of a finished game."""
        ...

    def get_game(self, room_id: str) -> GameRecord | None:
        """Get the finished game played in the given room, if a record exists."""
        ...

    def list_games(self, limit: int = 50) -> list[GameRecord]:
        """Most recently finished games first."""
        ...
