"""
Event protocol: the messages exchanged with remote clients.

* inbound: a closed, tagged union keyed on `event` (one model per message kind)
* outbound: one model per broadcast, serialized with camelCase keys

Plus the response models of the stateless REST queries.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Self, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from wildchess.chess.board import Board
from wildchess.chess.game import Game, GameEnd
from wildchess.chess.moves import Move, MoveRecord
from wildchess.chess.pieces import Piece
from wildchess.chess.square import Square
from wildchess.core.exceptions import InvalidRequestError
from wildchess.core.models import GameRecord
from wildchess.core.shared_types import Color, GameEndType, Phase, PieceType

PlayerName = Annotated[str, Field(max_length=40)]
Coordinate = Annotated[int, Field(ge=0, le=7)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# --- REQUEST MODELS (client -> server) ---
class FindGame(CamelModel):
    event: Literal["findGame"]
    name: Optional[PlayerName] = None
    rating: Optional[int] = None


class CreateRoom(CamelModel):
    event: Literal["createRoom"]
    name: Optional[PlayerName] = None
    rating: Optional[int] = None


class JoinRoom(CamelModel):
    event: Literal["joinRoom"]
    room_id: str
    name: Optional[PlayerName] = None
    rating: Optional[int] = None


class GenerateSetup(CamelModel):
    event: Literal["generateSetup"]
    room_id: str


class PlacePiece(CamelModel):
    event: Literal["placePiece"]
    room_id: str
    rank: Coordinate
    file: Coordinate


class FinishSetup(CamelModel):
    event: Literal["finishSetup"]
    room_id: str


class MakeMove(CamelModel):
    event: Literal["makeMove"]
    room_id: str
    from_rank: Coordinate
    from_file: Coordinate
    to_rank: Coordinate
    to_file: Coordinate

    @property
    def from_square(self) -> Square:
        return Square(self.from_rank, self.from_file)

    @property
    def to_square(self) -> Square:
        return Square(self.to_rank, self.to_file)


class ResignGame(CamelModel):
    event: Literal["resignGame"]
    room_id: str


class RequestDraw(CamelModel):
    event: Literal["requestDraw"]
    room_id: str


class RespondDraw(CamelModel):
    event: Literal["respondDraw"]
    room_id: str
    accept: bool


class SendChatMessage(CamelModel):
    event: Literal["chatMessage"]
    room_id: str
    text: str


class SpectateGame(CamelModel):
    event: Literal["spectateGame"]
    room_id: str


class GetRoomList(CamelModel):
    event: Literal["getRoomList"]


class GetGameState(CamelModel):
    event: Literal["getGameState"]
    room_id: str


InboundMessage = Annotated[
    Union[
        FindGame,
        CreateRoom,
        JoinRoom,
        GenerateSetup,
        PlacePiece,
        FinishSetup,
        MakeMove,
        ResignGame,
        RequestDraw,
        RespondDraw,
        SendChatMessage,
        SpectateGame,
        GetRoomList,
        GetGameState,
    ],
    Field(discriminator="event"),
]

_INBOUND_ADAPTER = TypeAdapter(InboundMessage)


def parse_inbound(data: Any) -> InboundMessage:
    """Validate a decoded JSON frame. Unknown events and malformed payloads become InvalidRequestError."""
    try:
        return _INBOUND_ADAPTER.validate_python(data)
    except ValidationError as error:
        first = error.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "event"
        raise InvalidRequestError(
            f"Malformed message ({location}): {first['msg']}"
        ) from error


# --- BUILDING BLOCKS OF RESPONSES ---
class PieceOut(CamelModel):
    type: PieceType
    color: Color

    @classmethod
    def from_piece(cls, piece: Piece) -> Self:
        return cls(type=piece.type, color=piece.color)


BoardOut = list[list[Optional[PieceOut]]]


def board_out(board: Board) -> BoardOut:
    """board[rank][file], rank 0 first"""
    return [
        [PieceOut.model_validate(cell) if cell else None for cell in row]
        for row in board.to_rows()
    ]


class SquareOut(CamelModel):
    rank: int
    file: int

    @classmethod
    def from_square(cls, square: Square) -> Self:
        return cls(rank=square.rank, file=square.file)


class LastMoveOut(CamelModel):
    from_square: SquareOut = Field(alias="from")
    to_square: SquareOut = Field(alias="to")

    @classmethod
    def from_move(cls, move: Move) -> Self:
        return cls(
            from_square=SquareOut.from_square(move.from_square),
            to_square=SquareOut.from_square(move.to_square),
        )


class MoveOut(CamelModel):
    from_square: SquareOut = Field(alias="from")
    to_square: SquareOut = Field(alias="to")
    piece: PieceOut
    captured_piece: Optional[PieceOut]
    player: Color
    timestamp: datetime

    @classmethod
    def from_record(cls, record: MoveRecord) -> Self:
        return cls(
            from_square=SquareOut.from_square(record.from_square),
            to_square=SquareOut.from_square(record.to_square),
            piece=PieceOut.from_piece(record.piece),
            captured_piece=(
                PieceOut.from_piece(record.captured_piece)
                if record.captured_piece
                else None
            ),
            player=record.color,
            timestamp=record.timestamp,
        )


class GameEndOut(CamelModel):
    type: GameEndType
    winner: Optional[Color] = None
    resigned_player: Optional[Color] = None
    reason: str = ""
    is_auto_resign: bool = False

    @classmethod
    def from_game_end(cls, game_end: GameEnd) -> Self:
        return cls(
            type=game_end.type,
            winner=game_end.winner,
            resigned_player=game_end.resigned_player,
            reason=game_end.reason,
            is_auto_resign=game_end.is_auto_resign,
        )


CapturedOut = dict[Color, list[PieceOut]]


def captured_out(captured: dict[Color, list[Piece]]) -> CapturedOut:
    return {
        color: [PieceOut.from_piece(piece) for piece in pieces]
        for color, pieces in captured.items()
    }


class GameStateOut(CamelModel):
    """Public snapshot of a game. Everything clients need to mirror the authoritative state."""

    board: BoardOut
    current_player: Color
    game_phase: Phase
    setup_step: int
    drawn_cards: dict[str, list[str]]
    last_move: Optional[LastMoveOut]
    captured_pieces: CapturedOut
    manual_placement: Optional[dict[str, Any]]
    move_count: int
    result: Optional[GameEndOut]

    @classmethod
    def from_game(cls, game: Game) -> Self:
        return cls(
            board=board_out(game.board),
            current_player=game.current_player,
            game_phase=game.phase,
            setup_step=game.setup_step,
            drawn_cards=game.drawn_cards.to_dict(),
            last_move=LastMoveOut.from_move(game.last_move) if game.last_move else None,
            captured_pieces=captured_out(game.captured_pieces),
            manual_placement=game.placement.to_dict() if game.placement else None,
            move_count=game.move_count,
            result=GameEndOut.from_game_end(game.result) if game.result else None,
        )


class PlayerOut(CamelModel):
    id: str
    name: str
    color: Optional[Color] = None
    rating: Optional[int] = None
    disconnected: bool = False


class RoomSummaryOut(CamelModel):
    id: str
    players: int
    spectators: int
    game_phase: str
    is_private: bool
    created_at: datetime


# --- OUTBOUND MESSAGES (server -> client) ---
class Connected(CamelModel):
    event: Literal["connected"] = "connected"
    session_id: str
    reconnected: bool = False


class WaitingForOpponent(CamelModel):
    event: Literal["waitingForOpponent"] = "waitingForOpponent"


class RoomCreated(CamelModel):
    event: Literal["roomCreated"] = "roomCreated"
    room_id: str
    player: PlayerOut


class RoomJoined(CamelModel):
    event: Literal["roomJoined"] = "roomJoined"
    room_id: str
    players: list[PlayerOut]
    is_ready: bool


class PlayerJoined(CamelModel):
    event: Literal["playerJoined"] = "playerJoined"
    player: PlayerOut


class GameStarted(CamelModel):
    event: Literal["gameStarted"] = "gameStarted"
    room_id: str
    game_state: GameStateOut
    your_color: Optional[Color] = None
    opponent: Optional[PlayerOut] = None
    players: Optional[dict[Color, PlayerOut]] = None
    is_spectator: bool = False


class SetupGenerated(CamelModel):
    event: Literal["setupGenerated"] = "setupGenerated"
    board: BoardOut
    cards: dict[str, list[str]]
    setup_step: int


class PiecePlaced(CamelModel):
    event: Literal["piecePlaced"] = "piecePlaced"
    rank: int
    file: int
    piece: PieceOut
    next_piece: Optional[str]
    is_complete: bool
    board: BoardOut


class SetupFinished(CamelModel):
    event: Literal["setupFinished"] = "setupFinished"
    game_phase: Phase
    board: BoardOut
    current_player: Color


class MoveMade(CamelModel):
    event: Literal["moveMade"] = "moveMade"
    move: MoveOut
    board: BoardOut
    current_player: Color
    captured_pieces: CapturedOut
    last_move: LastMoveOut
    game_end: Optional[GameEndOut] = None


class GameEnded(GameEndOut):
    event: Literal["gameEnded"] = "gameEnded"


class DrawRequested(CamelModel):
    event: Literal["drawRequested"] = "drawRequested"
    from_player: PlayerOut = Field(alias="from")


class DrawDeclined(CamelModel):
    event: Literal["drawDeclined"] = "drawDeclined"


class ChatMessageOut(CamelModel):
    event: Literal["chatMessage"] = "chatMessage"
    sender: PlayerOut
    message: str
    timestamp: datetime


class PlayerDisconnected(CamelModel):
    event: Literal["playerDisconnected"] = "playerDisconnected"
    player: PlayerOut


class PlayerReconnected(CamelModel):
    event: Literal["playerReconnected"] = "playerReconnected"
    player: PlayerOut


class SpectatingGame(CamelModel):
    event: Literal["spectatingGame"] = "spectatingGame"
    room_id: str
    players: list[PlayerOut]
    game_state: Optional[GameStateOut]


class SpectatorJoined(CamelModel):
    event: Literal["spectatorJoined"] = "spectatorJoined"
    spectator: PlayerOut


class GameStateMessage(CamelModel):
    event: Literal["gameState"] = "gameState"
    room_id: str
    game_state: GameStateOut
    your_color: Optional[Color] = None


class RoomList(CamelModel):
    event: Literal["roomList"] = "roomList"
    rooms: list[RoomSummaryOut]


class ErrorMessage(CamelModel):
    event: Literal["error"] = "error"
    message: str
    code: str


OutboundMessage = Union[
    Connected,
    WaitingForOpponent,
    RoomCreated,
    RoomJoined,
    PlayerJoined,
    GameStarted,
    SetupGenerated,
    PiecePlaced,
    SetupFinished,
    MoveMade,
    GameEnded,
    DrawRequested,
    DrawDeclined,
    ChatMessageOut,
    PlayerDisconnected,
    PlayerReconnected,
    SpectatingGame,
    SpectatorJoined,
    GameStateMessage,
    RoomList,
    ErrorMessage,
]


# --- REST RESPONSE MODELS ---
class HealthResponse(CamelModel):
    status: str
    uptime: float
    players: int
    rooms: int


class ArchivedGameResponse(CamelModel):
    room_id: str
    players: dict[str, str]
    result: str
    winner: Optional[str]
    reason: str
    moves: list[str]
    started_at: datetime
    ended_at: datetime

    @classmethod
    def from_record(cls, record: GameRecord) -> Self:
        return cls(
            room_id=record.room_id,
            players=record.players,
            result=record.result,
            winner=record.winner,
            reason=record.reason,
            moves=record.moves,
            started_at=record.started_at,
            ended_at=record.ended_at,
        )
