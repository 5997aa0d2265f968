"""
Card Draft Engine
-----------------

Produces the randomized starting layout from two decks of square labels ("cards").

* small deck: the 16 labels of ranks 1 and 8
* large deck: the 48 labels of ranks 2 through 7

1. Shuffle the large deck, draw 8 pawn cards (first 4 for white, last 4 for black)
2. Merge the 40 unused large-deck cards with the small deck, shuffle, draw 6 piece cards
   (bishop, knight, rook for white, then the same for black)

Kings and queens are NOT drafted: the players place those by hand (see Game.place_piece()).
"""

import random
from dataclasses import dataclass, field
from typing import Optional

from wildchess.chess.board import Board
from wildchess.chess.pieces import Piece
from wildchess.chess.square import BOARD_SIZE, FILES, Square
from wildchess.core.exceptions import GameStateError
from wildchess.core.shared_types import Color, PieceType

PAWN_CARDS = 8
PIECE_CARDS = 6
PIECE_CYCLE: tuple[PieceType, ...] = (PieceType.BISHOP, PieceType.KNIGHT, PieceType.ROOK)

# Zero-based ranks on which a drafted pawn may stand (labels rank 2 - 7)
PAWN_RANKS = range(1, BOARD_SIZE - 1)

# What every side should own once the draft is done
DRAFT_COUNTS: dict[PieceType, int] = {
    PieceType.PAWN: 4,
    PieceType.KNIGHT: 1,
    PieceType.BISHOP: 1,
    PieceType.ROOK: 1,
    PieceType.QUEEN: 0,
    PieceType.KING: 0,
}

MAX_DRAFT_ATTEMPTS = 10


@dataclass
class DrawnCards:
    pawn: list[str] = field(default_factory=list)
    piece: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[str]]:
        return {"pawn": list(self.pawn), "piece": list(self.piece)}


@dataclass(frozen=True)
class DraftResult:
    board: Board
    cards: DrawnCards


@dataclass(frozen=True)
class SetupValidation:
    errors: list[str]
    counts: dict[Color, dict[PieceType, int]]

    @property
    def is_valid(self) -> bool:
        return not self.errors


def build_decks() -> tuple[list[str], list[str]]:
    """Returns (small deck, large deck)"""
    small = [f"{file}{rank}" for file in FILES for rank in (1, BOARD_SIZE)]
    large = [f"{file}{rank}" for rank in range(2, BOARD_SIZE) for file in FILES]
    return small, large


def shuffled(cards: list[str], rng: random.Random) -> list[str]:
    """Uniform (Fisher-Yates) permutation of a copy of the cards."""
    deck = list(cards)
    rng.shuffle(deck)
    return deck


def place_pawns(board: Board, cards: list[str]) -> Board:
    """First half of the cards for white, second half for black. Out-of-range ranks get dropped."""
    half = len(cards) // 2
    for index, card in enumerate(cards):
        square = Square.from_label(card)
        if square.rank not in PAWN_RANKS:
            continue
        color = Color.WHITE if index < half else Color.BLACK
        board = board.with_piece(square, Piece(PieceType.PAWN, color))
    return board


def place_pieces(board: Board, cards: list[str]) -> Board:
    """Types cycle bishop, knight, rook. First three for white, last three for black. Occupied squares get skipped."""
    for index, card in enumerate(cards[:PIECE_CARDS]):
        square = Square.from_label(card)
        if not board.is_empty(square):
            continue
        color = Color.WHITE if index < len(PIECE_CYCLE) else Color.BLACK
        piece_type = PIECE_CYCLE[index % len(PIECE_CYCLE)]
        board = board.with_piece(square, Piece(piece_type, color))
    return board


def validate_setup(board: Board) -> SetupValidation:
    """Compare the piece counts of both sides with what a complete draft produces."""
    counts = {color: board.count_pieces(color) for color in Color}
    errors = [
        f"{color.value.capitalize()} should have {expected} {piece_type.value}(s), has {counts[color][piece_type]}"
        for color in Color
        for piece_type, expected in DRAFT_COUNTS.items()
        if counts[color][piece_type] != expected
    ]
    return SetupValidation(errors=errors, counts=counts)


def draft_once(rng: random.Random) -> DraftResult:
    small, large = build_decks()
    shuffled_large = shuffled(large, rng)
    pawn_cards = shuffled_large[:PAWN_CARDS]

    remaining = shuffled(shuffled_large[PAWN_CARDS:] + small, rng)
    piece_cards = remaining[:PIECE_CARDS]

    board = place_pawns(Board.empty(), pawn_cards)
    board = place_pieces(board, piece_cards)
    return DraftResult(board=board, cards=DrawnCards(pawn=pawn_cards, piece=piece_cards))


def draw_setup(rng: Optional[random.Random] = None) -> DraftResult:
    """
    Draw a complete randomized setup.
    ---

    A draft that comes out under-filled (dropped pawn card or skipped piece card) is drawn again.
    NOTE: With the deck composition above that cannot happen (pawn cards come from ranks 2-7 only, and
    piece cards never share a label with a pawn card), so the loop normally runs exactly once.
    """
    rng = rng or random.Random()
    for _ in range(MAX_DRAFT_ATTEMPTS):
        draft = draft_once(rng)
        if validate_setup(draft.board).is_valid:
            return draft
    raise GameStateError(
        f"Could not draw a complete setup in {MAX_DRAFT_ATTEMPTS} attempts."
    )
