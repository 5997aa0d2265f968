"""
The Game class is the entrypoint into the domain layer for the service layer.
It owns a single game: its board, turn order and phase transitions (setup -> placing -> playing -> ended),
composing the Card Draft Engine (cards.py) and the Move Legality Engine (moves.py).

Every operation validates first and only then mutates: a rejected request raises one of the errors in
wildchess.core.exceptions and leaves board, phase and history exactly as they were.
"""

import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from wildchess.chess.board import Board
from wildchess.chess.cards import DrawnCards, draw_setup
from wildchess.chess.moves import (
    Move,
    MoveRecord,
    classify_position,
    is_legal_move,
    is_promotion,
    is_safe_move,
    utc_now,
)
from wildchess.chess.pieces import Piece
from wildchess.chess.square import Square
from wildchess.core.exceptions import (
    GameStateError,
    IllegalMoveError,
    InvalidRequestError,
    NotYourTurnError,
    PlacementIncompleteError,
    PlayerNotInRoomError,
    SquareOccupiedError,
    WrongPlacementColorError,
)
from wildchess.core.shared_types import PHASE_ORDER, Color, GameEndType, Phase

# setup_step values, as reported to clients
SETUP_STEP_DRAFT = 1
SETUP_STEP_PLACEMENT = 2
SETUP_STEP_FINISHED = 3

PLACEMENT_ORDER: tuple[str, ...] = (
    "white-queen",
    "black-queen",
    "white-king",
    "black-king",
)


@dataclass
class PlacementQueue:
    """Fixed queue of the pieces placed by hand. Consumed front-to-back, never reordered."""

    pieces_to_place: tuple[Piece, ...] = tuple(
        Piece.from_name(name) for name in PLACEMENT_ORDER
    )
    current_index: int = 0

    @property
    def is_complete(self) -> bool:
        return self.current_index >= len(self.pieces_to_place)

    @property
    def next_piece(self) -> Optional[Piece]:
        return None if self.is_complete else self.pieces_to_place[self.current_index]

    def advance(self) -> None:
        self.current_index += 1

    def to_dict(self) -> dict:
        next_piece = self.next_piece
        return {
            "currentPiece": next_piece.to_name() if next_piece else None,
            "piecesToPlace": [piece.to_name() for piece in self.pieces_to_place],
            "currentIndex": self.current_index,
        }


@dataclass(frozen=True)
class GameEnd:
    type: GameEndType
    winner: Optional[Color] = None
    resigned_player: Optional[Color] = None
    reason: str = ""
    is_auto_resign: bool = False


@dataclass(frozen=True)
class SetupResult:
    board: Board
    cards: DrawnCards
    setup_step: int


@dataclass(frozen=True)
class PlacementResult:
    square: Square
    piece: Piece
    next_piece: Optional[Piece]
    is_complete: bool
    board: Board


@dataclass(frozen=True)
class MoveResult:
    move: MoveRecord
    board: Board
    current_player: Color
    captured_pieces: dict[Color, list[Piece]]
    last_move: Move
    game_end: Optional[GameEnd]


def _empty_captures() -> dict[Color, list[Piece]]:
    return {Color.WHITE: [], Color.BLACK: []}


@dataclass
class Game:
    # --- DOMAIN LAYER API CALLED BY SERVICE---

    room_id: str
    players: dict[Color, str]  # color -> player id
    board: Board = field(default_factory=Board.empty)
    current_player: Color = Color.WHITE
    phase: Phase = Phase.SETUP
    setup_step: int = SETUP_STEP_DRAFT
    drawn_cards: DrawnCards = field(default_factory=DrawnCards)
    placement: Optional[PlacementQueue] = None
    move_history: list[MoveRecord] = field(default_factory=list)
    last_move: Optional[Move] = None
    captured_pieces: dict[Color, list[Piece]] = field(default_factory=_empty_captures)
    result: Optional[GameEnd] = None
    created_at: datetime = field(default_factory=utc_now)
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)

    def color_of(self, player_id: str) -> Optional[Color]:
        return next(
            (color for color, player in self.players.items() if player == player_id),
            None,
        )

    @property
    def move_count(self) -> int:
        return len(self.move_history)

    # --- SETUP ---
    def generate_setup(self) -> SetupResult:
        """
        Draft pawns, bishops, knights and rooks, then open the manual placement queue.

        NOTE: Drafting again is allowed as long as nobody placed a piece by hand yet (the new draft overwrites the old one).
        Restricting who may ask for a draft (white) is the job of the service layer.
        """
        redraw_allowed = (
            self.phase == Phase.PLACING
            and self.placement is not None
            and self.placement.current_index == 0
        )
        if self.phase != Phase.SETUP and not redraw_allowed:
            raise GameStateError(f"Cannot draw a setup now. phase: {self.phase}")

        draft = draw_setup(self.rng)

        self.board = draft.board
        self.drawn_cards = draft.cards
        self.placement = PlacementQueue()
        self.setup_step = SETUP_STEP_PLACEMENT
        self._change_phase(Phase.PLACING)
        return SetupResult(self.board, self.drawn_cards, self.setup_step)

    def place_piece(self, player_id: str, rank: int, file: int) -> PlacementResult:
        """
        Place the next piece of the placement queue (queens first, then kings; white before black).
        ---

        Turn-locked: only the owner of the color of the next queued piece may place it.
        NOTE: Placing the last piece does NOT start play. `finish_setup()` confirms the setup explicitly.
        """
        if self.phase != Phase.PLACING or self.placement is None:
            raise GameStateError(f"Not in manual placement phase. phase: {self.phase}")

        square = Square(rank, file)
        if not square.is_within_bounds():
            raise InvalidRequestError(f"Square ({rank}, {file}) is not on the board.")

        next_piece = self.placement.next_piece
        if next_piece is None:
            raise GameStateError("All pieces have been placed. Finish the setup.")

        if not self.board.is_empty(square):
            raise SquareOccupiedError(f"Square {square.to_label()} is occupied.")

        player_color = self._get_player_color(player_id)
        if player_color != next_piece.color:
            raise WrongPlacementColorError(
                f"Not your turn to place a piece. Waiting for {next_piece.color} to place the {next_piece.type}."
            )

        self.board = self.board.with_piece(square, next_piece)
        self.placement.advance()
        return PlacementResult(
            square=square,
            piece=next_piece,
            next_piece=self.placement.next_piece,
            is_complete=self.placement.is_complete,
            board=self.board,
        )

    def finish_setup(self) -> None:
        """Confirm the setup once the placement queue is exhausted. White moves first."""
        if self.phase not in (Phase.SETUP, Phase.PLACING):
            raise GameStateError(f"Game is not in setup phase. phase: {self.phase}")

        if self.placement is None or not self.placement.is_complete:
            raise PlacementIncompleteError("Not all pieces have been placed.")

        self.placement = None
        self.setup_step = SETUP_STEP_FINISHED
        self._change_phase(Phase.PLAYING)

    # --- PLAY ---
    def make_move(self, player_id: str, from_square: Square, to_square: Square) -> MoveResult:
        """
        Attempt to make a move
        -----

        1. make sure the game is (still) in progress and it is your turn
        2. geometry (legality engine) + your own king may not be in check after the move
        3. capture (recorded under the mover's color), relocate, auto-promote to a queen
        4. update the history, flip the turn
        5. check for end of game: missing king, checkmate or stalemate of the player now to move
        """
        if self.phase != Phase.PLAYING:
            raise GameStateError(f"Game is not in playing phase. phase: {self.phase}")

        self._assert_your_turn(player_id)
        mover = self.current_player

        if not is_legal_move(self.board, from_square, to_square, mover):
            raise IllegalMoveError(
                f"Move not allowed: {from_square.to_label()}-{to_square.to_label()}"
            )
        if not is_safe_move(self.board, from_square, to_square):
            raise IllegalMoveError(
                f"Move not allowed: {from_square.to_label()}-{to_square.to_label()} leaves your king in check"
            )

        # Store move info before update
        piece = self.board.piece(from_square)
        assert piece is not None  # for the type checker: is_legal_move() checked this
        record = MoveRecord(
            from_square=from_square,
            to_square=to_square,
            piece=piece,
            captured_piece=self.board.piece(to_square),
            color=mover,
        )

        # update the board
        board = self.board.with_move(from_square, to_square)
        if is_promotion(piece, to_square):
            board = board.with_piece(to_square, piece.promoted())
        self.board = board

        if record.captured_piece is not None:
            self.captured_pieces[mover].append(record.captured_piece)
        self.move_history.append(record)
        self.last_move = Move(from_square, to_square)
        self.current_player = mover.opponent

        game_end = self._evaluate_game_end(mover)
        if game_end is not None:
            self._end(game_end)

        return MoveResult(
            move=record,
            board=self.board,
            current_player=self.current_player,
            captured_pieces={
                color: list(pieces) for color, pieces in self.captured_pieces.items()
            },
            last_move=self.last_move,
            game_end=game_end,
        )

    def resign(self, player_id: str, is_auto_resign: bool = False) -> GameEnd:
        """The resigning player's color loses."""
        if self.phase != Phase.PLAYING:
            raise GameStateError(f"Game is not in progress. phase: {self.phase}")

        player_color = self._get_player_color(player_id)
        game_end = GameEnd(
            type=GameEndType.RESIGNATION,
            winner=player_color.opponent,
            resigned_player=player_color,
            reason="Resignation",
            is_auto_resign=is_auto_resign,
        )
        self._end(game_end)
        return game_end

    def agree_draw(self) -> GameEnd:
        if self.phase != Phase.PLAYING:
            raise GameStateError(f"Game is not in progress. phase: {self.phase}")

        game_end = GameEnd(type=GameEndType.DRAW, reason="Agreement")
        self._end(game_end)
        return game_end

    # -- PRIVATE HELPERS ---
    def _get_player_color(self, player_id: str) -> Color:
        player_color = self.color_of(player_id)
        if player_color is None:
            raise PlayerNotInRoomError(f"Player {player_id!r} is not playing this game.")
        return player_color

    def _assert_your_turn(self, player_id: str) -> None:
        """You must wait for your turn before making a move."""
        if self._get_player_color(player_id) != self.current_player:
            raise NotYourTurnError(
                f"It is not your turn. Waiting for {self.current_player} to make a move first."
            )

    def _evaluate_game_end(self, mover: Color) -> Optional[GameEnd]:
        """
        NOTE the turn has already been flipped. The player to move now is the opponent of the mover.
        """
        opponent = mover.opponent
        if self.board.find_king(opponent) is None:
            return GameEnd(type=GameEndType.CHECKMATE, winner=mover, reason="King captured")

        outcome = classify_position(self.board, opponent)
        if outcome == GameEndType.CHECKMATE:
            return GameEnd(type=GameEndType.CHECKMATE, winner=mover, reason="Checkmate")
        if outcome == GameEndType.STALEMATE:
            return GameEnd(type=GameEndType.STALEMATE, reason="No legal moves")
        return None

    def _end(self, game_end: GameEnd) -> None:
        self.result = game_end
        self._change_phase(Phase.ENDED)

    def _change_phase(self, new_phase: Phase) -> None:
        """Phases only move forward (staying in the same phase is fine, ex. re-drawing the setup)"""
        if PHASE_ORDER.index(new_phase) < PHASE_ORDER.index(self.phase):
            raise GameStateError(f"Cannot go back from {self.phase} to {new_phase}.")
        self.phase = new_phase
