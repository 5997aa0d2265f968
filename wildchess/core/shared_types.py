"""
Type definitions used across layers
"""

from enum import StrEnum


class Color(StrEnum):
    WHITE = "white"
    BLACK = "black"

    @property
    def opponent(self) -> "Color":
        return Color.BLACK if self == Color.WHITE else Color.WHITE


class PieceType(StrEnum):
    PAWN = "pawn"
    KNIGHT = "knight"
    BISHOP = "bishop"
    ROOK = "rook"
    QUEEN = "queen"
    KING = "king"


class Phase(StrEnum):
    """Top-level state of a game. Transitions only ever move forward: setup -> placing -> playing -> ended."""

    SETUP = "setup"
    PLACING = "placing"
    PLAYING = "playing"
    ENDED = "ended"


class GameEndType(StrEnum):
    CHECKMATE = "checkmate"
    RESIGNATION = "resignation"
    STALEMATE = "stalemate"
    DRAW = "draw"


# Order in which phases are allowed to follow each other
PHASE_ORDER: tuple[Phase, ...] = (
    Phase.SETUP,
    Phase.PLACING,
    Phase.PLAYING,
    Phase.ENDED,
)
