"""
Room & Matchmaking Manager
--------------------------

Orchestration between the remote clients (event protocol) and the game domain:
matchmaking, private rooms, spectators, disconnect/reconnect, draw offers and chat.

Owns the only state shared between rooms: the room directory, the waiting queue, the session -> room index and
the session -> connection lookup. Those get mutated while holding the directory lock. Everything scoped to a
single room runs while holding that room's lock (lock order: directory first, then room), so inbound events for
the same room are handled one at a time: validate -> mutate -> broadcast.
"""

import asyncio
import logging
import random
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, assert_never
from uuid import uuid4

from wildchess.api.models import (
    ChatMessageOut,
    Connected,
    CreateRoom,
    DrawDeclined,
    DrawRequested,
    ErrorMessage,
    FindGame,
    FinishSetup,
    GameEnded,
    GameStarted,
    GameStateMessage,
    GameStateOut,
    GenerateSetup,
    GetGameState,
    GetRoomList,
    InboundMessage,
    JoinRoom,
    LastMoveOut,
    MakeMove,
    MoveMade,
    MoveOut,
    OutboundMessage,
    PieceOut,
    PiecePlaced,
    PlacePiece,
    PlayerDisconnected,
    PlayerJoined,
    PlayerReconnected,
    RequestDraw,
    ResignGame,
    RespondDraw,
    RoomCreated,
    RoomJoined,
    RoomList,
    RoomSummaryOut,
    SendChatMessage,
    SetupFinished,
    SetupGenerated,
    SpectateGame,
    SpectatingGame,
    SpectatorJoined,
    WaitingForOpponent,
    board_out,
    captured_out,
    parse_inbound,
)
from wildchess.chess.game import Game, GameEnd
from wildchess.chess.moves import utc_now
from wildchess.chess.square import Square
from wildchess.core.config import Settings
from wildchess.core.exceptions import (
    AlreadyInRoomError,
    GameError,
    GameNotFoundError,
    GameStateError,
    InvalidRequestError,
    NoDrawOfferError,
    NotAllowedError,
    PlayerNotInRoomError,
    RepositoryError,
    RoomFullError,
    RoomNotFoundError,
)
from wildchess.core.models import GameRecord
from wildchess.core.shared_types import Color, Phase
from wildchess.db.repository import GameArchive
from wildchess.services.rooms import (
    DEFAULT_RATING,
    Connection,
    Player,
    Room,
    Spectator,
)

logger = logging.getLogger(__name__)

INTERNAL_ERROR_CODE = "INTERNAL_ERROR"

# a room still in one of these phases is dropped once all of its players are gone
PRE_GAME_PHASES = (Phase.SETUP, Phase.PLACING)


class RoomManager:
    """Single source of truth for all rooms. Constructed once at process start, closed at shutdown."""

    def __init__(
        self,
        settings: Settings,
        archive: Optional[GameArchive] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.settings = settings
        self.archive = archive
        self.rng = rng or random.Random()
        self.rooms: dict[str, Room] = {}
        self.waiting: deque[Player] = deque()
        self.session_rooms: dict[str, str] = {}
        self.connections: dict[str, Connection] = {}
        self.started_at = time.monotonic()
        self._directory_lock = asyncio.Lock()

    # --- CONNECTION LIFECYCLE ---
    async def connect(self, connection: Connection, session_id: Optional[str] = None) -> str:
        """
        Attach a transport to a session and return the session id.
        ----

        * no (or an already attached) session id --> a fresh one gets minted
        * the id of a disconnected player --> reconnection: flag and auto-resign timer are cleared
        """
        async with self._directory_lock:
            if not session_id or session_id in self.connections:
                session_id = uuid4().hex
            self.connections[session_id] = connection

            room = self._room_of(session_id)
            player = room.player(session_id) if room else None
            reconnecting = player is not None and player.disconnected
            if room is not None and player is not None and reconnecting:
                async with room.lock:
                    self._mark_reconnected(room, player)

        # sends happen outside the directory lock
        await self._send(session_id, Connected(session_id=session_id, reconnected=reconnecting))
        if room is not None and player is not None and reconnecting:
            async with room.lock:
                await self._announce_reconnect(room, player)

        logger.info("Session %s connected (reconnected=%s)", session_id, reconnecting)
        return session_id

    async def disconnect(self, session_id: str) -> None:
        """
        Transport lost.
        ----

        * waiting queue: removed immediately
        * spectator: removed immediately
        * player: marked disconnected (kept for reconnection), room notified, auto-resign scheduled
        * a room whose game never reached play is removed once none of its players is connected
        """
        async with self._directory_lock:
            self.connections.pop(session_id, None)
            self._leave_waiting(session_id)

            room = self._room_of(session_id)
            if room is None:
                self.session_rooms.pop(session_id, None)
                logger.info("Session %s disconnected", session_id)
                return

            if room.spectator(session_id) is not None:
                self._release(session_id, room)
                logger.info("Spectator %s left room %s", session_id, room.id)
                return

            player = room.player(session_id)
            if player is None:
                return

            nobody_left = all(
                p.disconnected or p.session_id == session_id for p in room.players
            )
            if nobody_left and (room.game is None or room.game.phase in PRE_GAME_PHASES):
                self._drop_room(room)
                logger.info("Room %s removed: no players left", room.id)
                return

            async with room.lock:
                player.disconnected = True
                player.disconnected_at = utc_now()
                if room.game is not None and room.game.phase != Phase.ENDED:
                    room.schedule_auto_resign(
                        session_id,
                        self.settings.reconnect_grace_seconds,
                        lambda: self._auto_resign(room.id, session_id),
                    )

        async with room.lock:
            await self._broadcast(
                room, PlayerDisconnected(player=player.to_out()), exclude=session_id
            )
        logger.info("Player %s disconnected from room %s", session_id, room.id)

    async def handle(self, session_id: str, data: Any) -> None:
        """
        Boundary of the service: parse, dispatch, and turn every failure into an `error` for the requester only.
        """
        try:
            message = parse_inbound(data)
            await self.dispatch(session_id, message)
        except GameError as error:
            logger.debug("Rejected request of %s: [%s] %s", session_id, error.code, error.message)
            await self._send(session_id, ErrorMessage(message=error.message, code=error.code))
        except Exception:
            logger.exception("Unexpected error while handling a message of %s", session_id)
            await self._send(
                session_id,
                ErrorMessage(message="Internal server error", code=INTERNAL_ERROR_CODE),
            )

    async def dispatch(self, session_id: str, message: InboundMessage) -> None:
        match message:
            case FindGame():
                await self.find_game(session_id, message.name, message.rating)
            case CreateRoom():
                await self.create_room(session_id, message.name, message.rating)
            case JoinRoom():
                await self.join_room(session_id, message.room_id, message.name, message.rating)
            case GenerateSetup():
                await self.generate_setup(session_id, message.room_id)
            case PlacePiece():
                await self.place_piece(session_id, message.room_id, message.rank, message.file)
            case FinishSetup():
                await self.finish_setup(session_id, message.room_id)
            case MakeMove():
                await self.make_move(
                    session_id, message.room_id, message.from_square, message.to_square
                )
            case ResignGame():
                await self.resign(session_id, message.room_id)
            case RequestDraw():
                await self.request_draw(session_id, message.room_id)
            case RespondDraw():
                await self.respond_draw(session_id, message.room_id, message.accept)
            case SendChatMessage():
                await self.chat(session_id, message.room_id, message.text)
            case SpectateGame():
                await self.spectate(session_id, message.room_id)
            case GetRoomList():
                await self._send(session_id, RoomList(rooms=self.public_rooms()))
            case GetGameState():
                await self.send_game_state(session_id, message.room_id)
            case _:
                assert_never(message)

    # --- MATCHMAKING ---
    async def find_game(
        self, session_id: str, name: Optional[str] = None, rating: Optional[int] = None
    ) -> None:
        """FIFO: the oldest waiting player gets paired with the requester, otherwise the requester waits."""
        async with self._directory_lock:
            if any(p.session_id == session_id for p in self.waiting):
                await self._send(session_id, WaitingForOpponent())
                return
            self._ensure_free(session_id)

            player = self._new_player(session_id, name, rating)
            if not self.waiting:
                self.waiting.append(player)
                await self._send(session_id, WaitingForOpponent())
                return

            opponent = self.waiting.popleft()
            room = self._register_room([opponent, player], is_private=False)
            async with room.lock:
                await self._start_game(room)

    async def create_room(
        self, session_id: str, name: Optional[str] = None, rating: Optional[int] = None
    ) -> None:
        """Private room, joined by sharing its id."""
        async with self._directory_lock:
            self._ensure_free(session_id)
            self._leave_waiting(session_id)
            player = self._new_player(session_id, name, rating)
            room = self._register_room([player], is_private=True)
            await self._send(session_id, RoomCreated(room_id=room.id, player=player.to_out()))

    async def join_room(
        self,
        session_id: str,
        room_id: str,
        name: Optional[str] = None,
        rating: Optional[int] = None,
    ) -> None:
        """Second player starts the game. Anybody after that is admitted as a spectator."""
        async with self._directory_lock:
            room = self._get_room(room_id)
            if room.player(session_id) is not None or room.spectator(session_id) is not None:
                raise AlreadyInRoomError(f"You are already in room {room.id}.")
            self._ensure_free(session_id)
            self._leave_waiting(session_id)

            if room.is_full:
                await self._admit_spectator(room, session_id)
                return

            player = self._new_player(session_id, name, rating)
            room.players.append(player)
            self.session_rooms[session_id] = room.id

            async with room.lock:
                await self._broadcast(room, PlayerJoined(player=player.to_out()), exclude=session_id)
                await self._send(
                    session_id,
                    RoomJoined(
                        room_id=room.id,
                        players=[p.to_out() for p in room.players],
                        is_ready=room.is_full,
                    ),
                )
                if room.is_full:
                    await self._start_game(room)

    async def spectate(self, session_id: str, room_id: str) -> None:
        async with self._directory_lock:
            room = self._get_room(room_id)
            if room.player(session_id) is not None or room.spectator(session_id) is not None:
                raise AlreadyInRoomError(f"You are already in room {room.id}.")
            self._ensure_free(session_id)
            self._leave_waiting(session_id)
            await self._admit_spectator(room, session_id)

    # --- GAME OPERATIONS ---
    async def generate_setup(self, session_id: str, room_id: str) -> None:
        async with self._locked_game(room_id, session_id) as (room, game, player):
            if player.color != Color.WHITE:
                raise NotAllowedError("Only the white player can generate the setup.")
            result = game.generate_setup()
            await self._broadcast(
                room,
                SetupGenerated(
                    board=board_out(result.board),
                    cards=result.cards.to_dict(),
                    setup_step=result.setup_step,
                ),
            )

    async def place_piece(self, session_id: str, room_id: str, rank: int, file: int) -> None:
        async with self._locked_game(room_id, session_id) as (room, game, _):
            result = game.place_piece(session_id, rank, file)
            await self._broadcast(
                room,
                PiecePlaced(
                    rank=result.square.rank,
                    file=result.square.file,
                    piece=PieceOut.from_piece(result.piece),
                    next_piece=result.next_piece.to_name() if result.next_piece else None,
                    is_complete=result.is_complete,
                    board=board_out(result.board),
                ),
            )

    async def finish_setup(self, session_id: str, room_id: str) -> None:
        async with self._locked_game(room_id, session_id) as (room, game, _):
            game.finish_setup()
            logger.info("Room %s: setup finished, play begins", room.id)
            await self._broadcast(
                room,
                SetupFinished(
                    game_phase=game.phase,
                    board=board_out(game.board),
                    current_player=game.current_player,
                ),
            )

    async def make_move(
        self, session_id: str, room_id: str, from_square: Square, to_square: Square
    ) -> None:
        record = None
        async with self._locked_game(room_id, session_id) as (room, game, _):
            result = game.make_move(session_id, from_square, to_square)
            # an accepted move withdraws any pending draw offer
            room.pending_draw_from = None
            await self._broadcast(
                room,
                MoveMade(
                    move=MoveOut.from_record(result.move),
                    board=board_out(result.board),
                    current_player=result.current_player,
                    captured_pieces=captured_out(result.captured_pieces),
                    last_move=LastMoveOut.from_move(result.last_move),
                    game_end=(
                        GameEnded.from_game_end(result.game_end) if result.game_end else None
                    ),
                ),
            )
            if result.game_end is not None:
                record = await self._handle_game_end(room, game, result.game_end)
        await self._archive(record)

    async def resign(self, session_id: str, room_id: str) -> None:
        async with self._locked_game(room_id, session_id) as (room, game, _):
            game_end = game.resign(session_id)
            record = await self._handle_game_end(room, game, game_end)
        await self._archive(record)

    async def request_draw(self, session_id: str, room_id: str) -> None:
        """The offer goes to the opponent only."""
        async with self._locked_game(room_id, session_id) as (room, game, player):
            if game.phase != Phase.PLAYING:
                raise GameStateError(f"Game is not in progress. phase: {game.phase}")
            room.pending_draw_from = session_id
            opponent = room.opponent_of(session_id)
            if opponent is not None:
                await self._send(opponent.session_id, DrawRequested(from_player=player.to_out()))

    async def respond_draw(self, session_id: str, room_id: str, accept: bool) -> None:
        """Accepting ends the game as a draw. Declining only notifies the offering player."""
        record = None
        async with self._locked_game(room_id, session_id) as (room, game, _):
            offered_by = room.pending_draw_from
            if offered_by is None or offered_by == session_id:
                raise NoDrawOfferError("There is no draw offer to respond to.")

            if accept:
                game_end = game.agree_draw()
                room.pending_draw_from = None
                record = await self._handle_game_end(room, game, game_end)
            else:
                room.pending_draw_from = None
                await self._send(offered_by, DrawDeclined())
        await self._archive(record)

    async def chat(self, session_id: str, room_id: str, text: str) -> None:
        room = self._get_room(room_id)
        async with room.lock:
            sender = room.player(session_id) or room.spectator(session_id)
            if sender is None:
                raise PlayerNotInRoomError(f"You are not in room {room.id}.")
            message = text.strip()
            if not message:
                return
            if len(message) > self.settings.max_chat_length:
                raise InvalidRequestError(
                    f"Chat message too long ({len(message)} > {self.settings.max_chat_length} characters)."
                )
            await self._broadcast(
                room, ChatMessageOut(sender=sender.to_out(), message=message, timestamp=utc_now())
            )

    async def send_game_state(self, session_id: str, room_id: str) -> None:
        room = self._get_room(room_id)
        async with room.lock:
            game = self._get_game(room)
            player = room.player(session_id)
            await self._send(
                session_id,
                GameStateMessage(
                    room_id=room.id,
                    game_state=GameStateOut.from_game(game),
                    your_color=player.color if player else None,
                ),
            )

    # --- QUERIES ---
    def public_rooms(self) -> list[RoomSummaryOut]:
        return [room.summary() for room in self.rooms.values() if not room.is_private]

    def room_summary(self, room_id: str) -> RoomSummaryOut:
        return self._get_room(room_id).summary()

    def player_count(self) -> int:
        in_rooms = sum(len(room.players) + len(room.spectators) for room in self.rooms.values())
        return in_rooms + len(self.waiting)

    def room_count(self) -> int:
        return len(self.rooms)

    def uptime(self) -> float:
        return time.monotonic() - self.started_at

    # --- LIFECYCLE ---
    async def cleanup_room(self, room_id: str) -> None:
        """Remove a room. A room that is already gone is not an error."""
        async with self._directory_lock:
            room = self.rooms.get(room_id)
            if room is None:
                return
            self._drop_room(room)
        logger.info("Room %s cleaned up", room_id)

    async def close(self) -> None:
        """Shutdown: cancel every scheduled task and forget all state."""
        async with self._directory_lock:
            cancelled: list[asyncio.Task] = []
            for room in self.rooms.values():
                cancelled.extend(room.cancel_tasks())
            self.rooms.clear()
            self.session_rooms.clear()
            self.waiting.clear()
            self.connections.clear()
        await asyncio.gather(*cancelled, return_exceptions=True)
        logger.info("Room manager closed")

    # -- Internal helpers: directory (call while holding the directory lock) --
    def _room_of(self, session_id: str) -> Optional[Room]:
        room_id = self.session_rooms.get(session_id)
        return self.rooms.get(room_id) if room_id else None

    def _get_room(self, room_id: str) -> Room:
        room = self.rooms.get(room_id)
        if room is None:
            raise RoomNotFoundError(f"Room {room_id!r} not found.")
        return room

    def _ensure_free(self, session_id: str) -> None:
        """A session belongs to at most one room. Being in a room whose game has ended does not count."""
        room_id = self.session_rooms.get(session_id)
        if room_id is None:
            return
        room = self.rooms.get(room_id)
        if room is None or (room.game is not None and room.game.phase == Phase.ENDED):
            self._release(session_id, room)
            return
        raise AlreadyInRoomError(f"You are already in room {room_id}.")

    def _release(self, session_id: str, room: Optional[Room]) -> None:
        if room is not None:
            room.spectators = [s for s in room.spectators if s.session_id != session_id]
            if self.session_rooms.get(session_id) != room.id:
                return
        self.session_rooms.pop(session_id, None)

    def _leave_waiting(self, session_id: str) -> None:
        self.waiting = deque(p for p in self.waiting if p.session_id != session_id)

    def _new_player(self, session_id: str, name: Optional[str], rating: Optional[int]) -> Player:
        return Player(
            session_id=session_id,
            name=(name or "").strip() or f"Player{self.rng.randint(0, 999)}",
            rating=rating if rating is not None else DEFAULT_RATING,
        )

    def _new_room_id(self) -> str:
        while True:
            room_id = uuid4().hex[:8].upper()
            if room_id not in self.rooms:
                return room_id

    def _register_room(self, players: list[Player], is_private: bool) -> Room:
        room = Room(id=self._new_room_id(), players=players, is_private=is_private)
        self.rooms[room.id] = room
        for player in players:
            self.session_rooms[player.session_id] = room.id
        logger.info(
            "Room %s created (%s) for %s",
            room.id,
            "private" if is_private else "matchmaking",
            ", ".join(p.name for p in players),
        )
        return room

    def _drop_room(self, room: Room) -> None:
        self.rooms.pop(room.id, None)
        for session_id in room.member_ids():
            if self.session_rooms.get(session_id) == room.id:
                del self.session_rooms[session_id]
        room.cancel_tasks()

    async def _admit_spectator(self, room: Room, session_id: str) -> None:
        if len(room.spectators) >= self.settings.max_spectators:
            raise RoomFullError(f"Room {room.id} is full.")
        spectator = Spectator(session_id=session_id, name=f"Spectator{self.rng.randint(0, 999)}")
        async with room.lock:
            room.spectators.append(spectator)
            self.session_rooms[session_id] = room.id
            await self._send(
                session_id,
                SpectatingGame(
                    room_id=room.id,
                    players=[p.to_out() for p in room.players],
                    game_state=GameStateOut.from_game(room.game) if room.game else None,
                ),
            )
            await self._broadcast(
                room, SpectatorJoined(spectator=spectator.to_out()), exclude=session_id
            )

    # -- Internal helpers: room scoped (call while holding the room lock) --
    @asynccontextmanager
    async def _locked_game(
        self, room_id: str, session_id: str
    ) -> AsyncIterator[tuple[Room, Game, Player]]:
        """Lock the room, then re-validate: the game must exist and the requester must be one of its players."""
        room = self._get_room(room_id)
        async with room.lock:
            game = self._get_game(room)
            player = room.player(session_id)
            if player is None:
                raise PlayerNotInRoomError(f"You are not a player in room {room.id}.")
            yield room, game, player

    def _get_game(self, room: Room) -> Game:
        if room.game is None:
            raise GameNotFoundError(f"The game in room {room.id} has not started yet.")
        return room.game

    async def _start_game(self, room: Room) -> None:
        """Fair coin flip for the colors, then everybody gets told."""
        first, second = room.players
        white, black = (first, second) if self.rng.random() < 0.5 else (second, first)
        white.color = Color.WHITE
        black.color = Color.BLACK
        room.game = Game(
            room_id=room.id,
            players={Color.WHITE: white.session_id, Color.BLACK: black.session_id},
            rng=random.Random(self.rng.getrandbits(64)),
        )
        logger.info("Room %s: game started, %s (white) vs %s (black)", room.id, white.name, black.name)

        game_state = GameStateOut.from_game(room.game)
        for player, opponent in ((white, black), (black, white)):
            await self._send(
                player.session_id,
                GameStarted(
                    room_id=room.id,
                    your_color=player.color,
                    opponent=opponent.to_out(),
                    game_state=game_state,
                ),
            )
        for spectator in room.spectators:
            await self._send(
                spectator.session_id,
                GameStarted(
                    room_id=room.id,
                    players={Color.WHITE: white.to_out(), Color.BLACK: black.to_out()},
                    game_state=game_state,
                    is_spectator=True,
                ),
            )

    def _mark_reconnected(self, room: Room, player: Player) -> None:
        player.disconnected = False
        player.disconnected_at = None
        room.cancel_auto_resign(player.session_id)

    async def _announce_reconnect(self, room: Room, player: Player) -> None:
        await self._broadcast(
            room, PlayerReconnected(player=player.to_out()), exclude=player.session_id
        )
        if room.game is not None:
            await self._send(
                player.session_id,
                GameStateMessage(
                    room_id=room.id,
                    game_state=GameStateOut.from_game(room.game),
                    your_color=player.color,
                ),
            )
        logger.info("Player %s reconnected to room %s", player.session_id, room.id)

    async def _auto_resign(self, room_id: str, session_id: str) -> None:
        """Grace window elapsed. Only resigns if the player is still gone and the game is still being played."""
        room = self.rooms.get(room_id)
        if room is None:
            return
        async with room.lock:
            player = room.player(session_id)
            game = room.game
            if player is None or not player.disconnected:
                return
            if game is None or game.phase != Phase.PLAYING:
                return
            logger.warning("Room %s: auto-resigning disconnected player %s", room.id, session_id)
            game_end = game.resign(session_id, is_auto_resign=True)
            record = await self._handle_game_end(room, game, game_end)
        await self._archive(record)

    async def _handle_game_end(
        self, room: Room, game: Game, game_end: GameEnd
    ) -> Optional[GameRecord]:
        """Announce the end and schedule the cleanup. Returns the record to archive once the room lock is released."""
        logger.info(
            "Room %s: game ended (%s, winner: %s)", room.id, game_end.type, game_end.winner
        )
        await self._broadcast(room, GameEnded.from_game_end(game_end))
        room.schedule_cleanup(
            self.settings.room_cleanup_seconds, lambda: self.cleanup_room(room.id)
        )
        return self._game_record(room, game, game_end)

    def _game_record(self, room: Room, game: Game, game_end: GameEnd) -> Optional[GameRecord]:
        if self.archive is None:
            return None
        players_by_id = {p.session_id: p.name for p in room.players}
        record = GameRecord(
            room_id=room.id,
            players={
                color.value: players_by_id.get(session_id, session_id)
                for color, session_id in game.players.items()
            },
            result=game_end.type.value,
            winner=game_end.winner.value if game_end.winner else None,
            reason=game_end.reason,
            moves=[move.to_label() for move in game.move_history],
            started_at=game.created_at,
            ended_at=utc_now(),
        )
        return record

    async def _archive(self, record: Optional[GameRecord]) -> None:
        """The archive is synchronous (SQLAlchemy). Runs in a worker thread, never on the event loop."""
        if self.archive is None or record is None:
            return
        try:
            await asyncio.to_thread(self.archive.save_game, record)
        except RepositoryError:
            logger.exception("Room %s: could not archive the finished game", record.room_id)

    # -- Internal helpers: sending --
    async def _send(self, session_id: str, message: OutboundMessage) -> None:
        connection = self.connections.get(session_id)
        if connection is None:
            return
        try:
            await connection.send(message)
        except ConnectionError:
            logger.warning("Dropped %s for session %s: connection closed", message.event, session_id)

    async def _broadcast(
        self, room: Room, message: OutboundMessage, exclude: Optional[str] = None
    ) -> None:
        """Fan out to both players and all spectators."""
        for session_id in room.member_ids():
            if session_id != exclude:
                await self._send(session_id, message)
