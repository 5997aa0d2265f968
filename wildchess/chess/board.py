"""
The Game board: which piece stands on which square.

Boards are value objects. Every update returns a new Board, so the legality engine can probe hypothetical
moves on a copy without ever touching the authoritative board a Game holds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Mapping, Optional

from wildchess.chess.pieces import Piece
from wildchess.chess.square import ALL_SQUARES, BOARD_SIZE, Square
from wildchess.core.shared_types import Color, PieceType

if TYPE_CHECKING:
    from wildchess.chess.moves import MoveRecord

# Wire format of a board: rows indexed by rank (rank 0 first), then by file
BoardRows = list[list[Optional[dict[str, str]]]]


@dataclass(frozen=True)
class Board:
    # only occupied squares are stored
    position: Mapping[Square, Piece] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> Board:
        return cls({})

    @classmethod
    def from_labels(cls, pieces: Mapping[str, str]) -> Board:
        """Convenience constructor, ex. {"E1": "white-king", "E8": "black-king"}"""
        return cls(
            {
                Square.from_label(label): Piece.from_name(name)
                for label, name in pieces.items()
            }
        )

    def to_rows(self) -> BoardRows:
        rows: BoardRows = []
        for rank in range(BOARD_SIZE):
            row: list[Optional[dict[str, str]]] = []
            for file in range(BOARD_SIZE):
                piece = self.piece(Square(rank, file))
                row.append(piece.to_dict() if piece else None)
            rows.append(row)
        return rows

    def piece(self, square: Square) -> Optional[Piece]:
        return self.position.get(square)

    def is_empty(self, square: Square) -> bool:
        return square not in self.position

    def empty_squares(self) -> list[Square]:
        """Squares still available, ex. for placing the kings and queens by hand."""
        return [square for square in ALL_SQUARES if self.is_empty(square)]

    def locate_color(self, color: Color) -> list[Square]:
        return [square for square, piece in self.position.items() if piece.color == color]

    def find_king(self, color: Color) -> Optional[Square]:
        return next(
            (
                square
                for square, piece in self.position.items()
                if piece.type == PieceType.KING and piece.color == color
            ),
            None,
        )

    def count_pieces(self, color: Color) -> dict[PieceType, int]:
        counts = {piece_type: 0 for piece_type in PieceType}
        for piece in self.position.values():
            if piece.color == color:
                counts[piece.type] += 1
        return counts

    # --- UPDATES (all return a new board) ---
    def with_piece(self, square: Square, piece: Piece) -> Board:
        position = dict(self.position)
        position[square] = piece
        return Board(position)

    def without_piece(self, square: Square) -> Board:
        position = dict(self.position)
        position.pop(square, None)
        return Board(position)

    def with_move(self, from_square: Square, to_square: Square) -> Board:
        """Relocate the piece. Whatever stood on the target square is gone afterwards."""
        position = dict(self.position)
        position[to_square] = position.pop(from_square)
        return Board(position)

    def reverted(self, record: MoveRecord) -> Board:
        """The board as it was right before the recorded move (undoes promotion and capture as well)."""
        position = dict(self.position)
        position.pop(record.to_square, None)
        position[record.from_square] = record.piece
        if record.captured_piece is not None:
            position[record.to_square] = record.captured_piece
        return Board(position)
