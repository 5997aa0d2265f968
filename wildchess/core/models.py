"""
Boundary layer data model(s).

The room manager hands a GameRecord to the archive once a game has ended.
(Decouples the data model specific to the DB layer from the live, in-memory game objects)
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

# Type aliases to make GameRecord easier to read
PieceColor = str
PlayerName = str


@dataclass
class GameRecord:
    """Transport-safe summary of a finished game."""

    room_id: str
    players: dict[PieceColor, PlayerName]
    result: str
    winner: Optional[PieceColor]
    reason: str
    moves: list[str]
    started_at: datetime
    ended_at: datetime
