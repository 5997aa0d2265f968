"""
Move Legality Engine
--------------------

Geometry/Base movement rules per piece type, path clearance, and check/checkmate/stalemate detection.

Key idea: Use strategy pattern to define the geometric rule for each piece type.

Every function in here is stateless and never mutates the board it receives: hypothetical moves are
played out on a new Board (see `Board.with_move()`).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

from wildchess.chess.board import Board
from wildchess.chess.pieces import Piece
from wildchess.chess.square import ALL_SQUARES, BOARD_SIZE, Square
from wildchess.core.shared_types import Color, GameEndType, PieceType

Vector = tuple[int, int]

# white moves UP the board, black moves DOWN
PAWN_DIRECTION: dict[Color, int] = {Color.WHITE: 1, Color.BLACK: -1}
PAWN_START_RANK: dict[Color, int] = {Color.WHITE: 1, Color.BLACK: BOARD_SIZE - 2}
PROMOTION_RANK: dict[Color, int] = {Color.WHITE: BOARD_SIZE - 1, Color.BLACK: 0}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Move:
    """basic definition of a move to be made"""

    from_square: Square
    to_square: Square


@dataclass(frozen=True)
class MoveRecord:
    """Snapshot of an accepted move. Immutable once appended to a game's history."""

    from_square: Square
    to_square: Square
    piece: Piece  # as it was BEFORE the move (a promoted pawn is still recorded as a pawn)
    captured_piece: Optional[Piece]
    color: Color
    timestamp: datetime = field(default_factory=utc_now)

    def to_label(self) -> str:
        return f"{self.from_square.to_label()}{self.to_square.to_label()}"


# --- PATH HELPERS ---
def _sign(value: int) -> int:
    return (value > 0) - (value < 0)


def squares_between(from_square: Square, to_square: Square) -> list[Square]:
    """
    Squares strictly in between two squares on the same rank, file or diagonal (both ends excluded).
    Returns an empty list if the squares are adjacent, or not on a common line.
    """
    d_rank = to_square.rank - from_square.rank
    d_file = to_square.file - from_square.file
    on_line = d_rank == 0 or d_file == 0 or abs(d_rank) == abs(d_file)
    if not on_line:
        return []

    step = (_sign(d_rank), _sign(d_file))
    squares: list[Square] = []
    current = from_square.offset(*step)
    while current != to_square:
        squares.append(current)
        current = current.offset(*step)
    return squares


def is_path_clear(board: Board, from_square: Square, to_square: Square) -> bool:
    return all(board.is_empty(square) for square in squares_between(from_square, to_square))


# --- GEOMETRIC RULES ---
def pawn_rule(board: Board, piece: Piece, from_square: Square, to_square: Square) -> bool:
    """
    A pawn:
    - moves forward only, a single square onto an empty square.
    - can move by two when on its starting rank, if both squares are empty.
    - takes diagonally (one step), only onto an occupied square.

    NOTE: No en passant in this variant.
    """
    direction = PAWN_DIRECTION[piece.color]
    d_rank = to_square.rank - from_square.rank
    d_file = to_square.file - from_square.file
    target_empty = board.is_empty(to_square)

    if d_file == 0:
        if d_rank == direction:
            return target_empty
        if d_rank == 2 * direction and from_square.rank == PAWN_START_RANK[piece.color]:
            in_between = from_square.offset(direction, 0)
            return target_empty and board.is_empty(in_between)
        return False

    # diagonal capture (base checks already ruled out own pieces on the target square)
    return abs(d_file) == 1 and d_rank == direction and not target_empty


def knight_rule(board: Board, piece: Piece, from_square: Square, to_square: Square) -> bool:
    """Knights always move such that (|delta_rank|, |delta_file|) is (2, 1) or (1, 2)"""
    deltas = (
        abs(to_square.rank - from_square.rank),
        abs(to_square.file - from_square.file),
    )
    return deltas in {(2, 1), (1, 2)}


def bishop_rule(board: Board, piece: Piece, from_square: Square, to_square: Square) -> bool:
    """Bishops move diagonally: |delta_rank| = |delta_file|"""
    d_rank = abs(to_square.rank - from_square.rank)
    d_file = abs(to_square.file - from_square.file)
    if d_rank != d_file:
        return False
    return is_path_clear(board, from_square, to_square)


def rook_rule(board: Board, piece: Piece, from_square: Square, to_square: Square) -> bool:
    """Rooks move either horizontally or vertically"""
    if from_square.rank != to_square.rank and from_square.file != to_square.file:
        return False
    return is_path_clear(board, from_square, to_square)


def queen_rule(board: Board, piece: Piece, from_square: Square, to_square: Square) -> bool:
    """The Queen combines the rook moves and bishop moves"""
    return rook_rule(board, piece, from_square, to_square) or bishop_rule(
        board, piece, from_square, to_square
    )


def king_rule(board: Board, piece: Piece, from_square: Square, to_square: Square) -> bool:
    """The king can move by a single square at the time. (No castling in this variant)"""
    return (
        abs(to_square.rank - from_square.rank) <= 1
        and abs(to_square.file - from_square.file) <= 1
    )


# -- STRATEGY PATTERN: MOVEMENT RULES ---
GeometryFn = Callable[[Board, Piece, Square, Square], bool]
MOVEMENT_RULES: dict[PieceType, GeometryFn] = {
    PieceType.PAWN: pawn_rule,
    PieceType.KNIGHT: knight_rule,
    PieceType.BISHOP: bishop_rule,
    PieceType.ROOK: rook_rule,
    PieceType.QUEEN: queen_rule,
    PieceType.KING: king_rule,
}


# --- LEGALITY ---
def is_legal_move(
    board: Board, from_square: Square, to_square: Square, moving_color: Color
) -> bool:
    """
    Base checks + geometry of the moving piece.
    ----

    1. Both squares on the board, and they differ
    2. The source square holds a piece of the moving color
    3. The target square is empty, or holds an opponent's piece
    4. The per-piece rule (see MOVEMENT_RULES) allows the displacement

    NOTE: Does not look at king safety. Use `is_safe_move()` for that.
    """
    if not (from_square.is_within_bounds() and to_square.is_within_bounds()):
        return False
    if from_square == to_square:
        return False

    piece = board.piece(from_square)
    if piece is None or piece.color != moving_color:
        return False

    target = board.piece(to_square)
    if target is not None and target.color == moving_color:
        return False

    return MOVEMENT_RULES[piece.type](board, piece, from_square, to_square)


def is_in_check(board: Board, color: Color) -> bool:
    """
    Is the king of `color` attacked by any opponent piece (regardless of whose turn it is)?

    NOTE: A color without a king on the board counts as being in check.
    """
    king_square = board.find_king(color)
    if king_square is None:
        return True

    opponent = color.opponent
    return any(
        is_legal_move(board, square, king_square, opponent)
        for square in board.locate_color(opponent)
    )


def is_safe_move(board: Board, from_square: Square, to_square: Square) -> bool:
    """Return True if playing the move does not put (or leave) the mover's own king in check.

    plan:
    1. Create a new board with the candidate move played
    2. determine if the mover's king is in check on the new board
    """
    piece = board.piece(from_square)
    if piece is None:
        return False
    simulated = board.with_move(from_square, to_square)
    return not is_in_check(simulated, piece.color)


def iter_legal_moves(board: Board, color: Color) -> Iterator[Move]:
    """Lazily enumerate the moves that pass geometry AND keep the own king safe."""
    for from_square in board.locate_color(color):
        for to_square in ALL_SQUARES:
            if is_legal_move(board, from_square, to_square, color) and is_safe_move(
                board, from_square, to_square
            ):
                yield Move(from_square, to_square)


def legal_moves(board: Board, color: Color) -> list[Move]:
    return list(iter_legal_moves(board, color))


def has_any_legal_move(board: Board, color: Color) -> bool:
    return next(iter_legal_moves(board, color), None) is not None


def classify_position(board: Board, color: Color) -> Optional[GameEndType]:
    """
    From the perspective of the player to move:
    * no legal move and in check --> checkmate
    * no legal move and not in check --> stalemate
    * otherwise the game goes on (None)
    """
    if has_any_legal_move(board, color):
        return None
    return GameEndType.CHECKMATE if is_in_check(board, color) else GameEndType.STALEMATE


def is_promotion(piece: Piece, to_square: Square) -> bool:
    return piece.type == PieceType.PAWN and to_square.rank == PROMOTION_RANK[piece.color]
