"""Unit tests for wildchess/services/room_manager.py"""

import asyncio
import random
import threading
from typing import Any, AsyncIterator
from unittest.mock import patch

import pytest
import pytest_asyncio

from wildchess.api.models import OutboundMessage
from wildchess.chess.game import PLACEMENT_ORDER
from wildchess.chess.moves import Move, legal_moves
from wildchess.core.config import Settings
from wildchess.core.exceptions import RepositoryError
from wildchess.core.models import GameRecord
from wildchess.core.shared_types import Color, Phase
from wildchess.services.room_manager import RoomManager

# Longer than the grace window / cleanup delay of the `settings` fixture
WAIT_FOR_TIMERS = 0.2


# --- MOCK DEPENDENCIES ----
class MockConnection:
    """Collects everything the room manager sends, in wire format."""

    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []
        self.closed = False

    async def send(self, message: OutboundMessage) -> None:
        if self.closed:
            raise ConnectionError("connection closed")
        self.messages.append(message.to_wire())

    def events(self) -> list[str]:
        return [message["event"] for message in self.messages]

    def last(self, event: str) -> dict[str, Any]:
        return next(m for m in reversed(self.messages) if m["event"] == event)

    def clear(self) -> None:
        self.messages.clear()


class MockArchive:
    """Mock the GameArchive using a list of records."""

    def __init__(self) -> None:
        self.records: list[GameRecord] = []
        self.thread_ids: list[int] = []

    def save_game(self, record: GameRecord) -> GameRecord:
        self.thread_ids.append(threading.get_ident())
        self.records.append(record)
        return record

    def get_game(self, room_id: str) -> GameRecord | None:
        return next((r for r in reversed(self.records) if r.room_id == room_id), None)

    def list_games(self, limit: int = 50) -> list[GameRecord]:
        return list(reversed(self.records))[:limit]


class SlowConnection(MockConnection):
    """Holds every send until released"""

    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()

    async def send(self, message: OutboundMessage) -> None:
        await self.release.wait()
        await super().send(message)


@pytest_asyncio.fixture
async def manager(settings: Settings) -> AsyncIterator[RoomManager]:
    """Room manager with short timers, a mock archive and a seeded random generator"""
    room_manager = RoomManager(settings, archive=MockArchive(), rng=random.Random(0))
    try:
        yield room_manager
    finally:
        await room_manager.close()


# --- HELPERS ---
async def connect(manager: RoomManager, session_id: str) -> MockConnection:
    connection = MockConnection()
    await manager.connect(connection, session_id)
    return connection


async def private_game(manager: RoomManager) -> tuple[str, dict[str, MockConnection]]:
    """Alice creates a room, Bob joins it: the game starts."""
    connections = {
        "alice": await connect(manager, "alice"),
        "bob": await connect(manager, "bob"),
    }
    await manager.handle("alice", {"event": "createRoom", "name": "Alice"})
    room_id = connections["alice"].last("roomCreated")["roomId"]
    await manager.handle("bob", {"event": "joinRoom", "roomId": room_id, "name": "Bob"})
    return room_id, connections


def public_id(manager: RoomManager, room_id: str, session_id: str) -> str:
    """The id the other participants see for a player"""
    player = manager.rooms[room_id].player(session_id)
    assert player is not None
    return player.public_id


def colors(manager: RoomManager, room_id: str) -> tuple[str, str]:
    """(white session id, black session id)"""
    room = manager.rooms[room_id]
    white = next(p.session_id for p in room.players if p.color == Color.WHITE)
    black = next(p.session_id for p in room.players if p.color == Color.BLACK)
    return white, black


async def play_setup(manager: RoomManager, room_id: str) -> tuple[str, str]:
    """Draft, place the four pieces (white low on the board, black high) and start play."""
    white, black = colors(manager, room_id)
    await manager.handle(white, {"event": "generateSetup", "roomId": room_id})
    game = manager.rooms[room_id].game
    assert game is not None
    for name in PLACEMENT_ORDER:
        free = game.board.empty_squares()
        square, player = (free[0], white) if name.startswith("white") else (free[-1], black)
        await manager.handle(
            player,
            {"event": "placePiece", "roomId": room_id, "rank": square.rank, "file": square.file},
        )
    await manager.handle(white, {"event": "finishSetup", "roomId": room_id})
    assert game.phase == Phase.PLAYING
    return white, black


def quiet_move(manager: RoomManager, room_id: str) -> Move:
    """Any legal move of the player to move that does not capture"""
    game = manager.rooms[room_id].game
    assert game is not None
    return next(
        move
        for move in legal_moves(game.board, game.current_player)
        if game.board.is_empty(move.to_square)
    )


def move_message(room_id: str, move: Move) -> dict[str, Any]:
    return {
        "event": "makeMove",
        "roomId": room_id,
        "fromRank": move.from_square.rank,
        "fromFile": move.from_square.file,
        "toRank": move.to_square.rank,
        "toFile": move.to_square.file,
    }


# --- CONNECTIONS ---
@pytest.mark.asyncio
async def test_connect_keeps_or_mints_session_id(manager: RoomManager) -> None:
    connection = MockConnection()
    assert await manager.connect(connection, "alice") == "alice"
    assert connection.last("connected") == {
        "event": "connected",
        "sessionId": "alice",
        "reconnected": False,
    }

    # an id that is already attached to a live connection is not handed out twice
    other = MockConnection()
    minted = await manager.connect(other, "alice")
    assert minted != "alice"
    assert other.last("connected")["sessionId"] == minted

    assert await manager.connect(MockConnection(), None) not in ("alice", minted)


@pytest.mark.asyncio
async def test_slow_client_does_not_block_other_sessions(manager: RoomManager) -> None:
    slow = SlowConnection()
    connecting = asyncio.create_task(manager.connect(slow, "slow"))
    await asyncio.sleep(0)

    alice = await asyncio.wait_for(connect(manager, "alice"), timeout=1)
    await asyncio.wait_for(manager.handle("alice", {"event": "createRoom"}), timeout=1)
    assert "roomCreated" in alice.events()
    assert not connecting.done()

    slow.release.set()
    assert await connecting == "slow"
    assert slow.last("connected")["sessionId"] == "slow"


# --- MATCHMAKING ---
@pytest.mark.asyncio
async def test_find_game_pairs_two_players(manager: RoomManager) -> None:
    """The second caller is paired with the first: one room, both as players, nobody left waiting"""
    alice = await connect(manager, "alice")
    bob = await connect(manager, "bob")

    await manager.handle("alice", {"event": "findGame", "name": "Alice"})
    assert alice.events()[-1] == "waitingForOpponent"
    assert len(manager.waiting) == 1

    await manager.handle("bob", {"event": "findGame", "name": "Bob"})
    assert len(manager.waiting) == 0
    assert manager.room_count() == 1

    room = next(iter(manager.rooms.values()))
    assert {p.session_id for p in room.players} == {"alice", "bob"}
    assert not room.is_private

    started_alice = alice.last("gameStarted")
    started_bob = bob.last("gameStarted")
    assert {started_alice["yourColor"], started_bob["yourColor"]} == {"white", "black"}
    assert started_alice["opponent"]["name"] == "Bob"
    # the session id is a reconnection credential: nobody else gets to see it
    assert started_alice["opponent"]["id"] not in ("alice", "bob")
    assert started_alice["gameState"]["gamePhase"] == "setup"
    assert started_alice["gameState"]["setupStep"] == 1


@pytest.mark.asyncio
async def test_find_game_twice_does_not_pair_with_self(manager: RoomManager) -> None:
    await connect(manager, "alice")
    await manager.handle("alice", {"event": "findGame"})
    await manager.handle("alice", {"event": "findGame"})
    assert len(manager.waiting) == 1
    assert manager.room_count() == 0


@pytest.mark.asyncio
async def test_default_name_and_rating(manager: RoomManager) -> None:
    alice = await connect(manager, "alice")
    await manager.handle("alice", {"event": "createRoom"})
    player = alice.last("roomCreated")["player"]
    assert player["name"].startswith("Player")
    assert player["rating"] == 1200


@pytest.mark.asyncio
async def test_private_room(manager: RoomManager) -> None:
    room_id, connections = await private_game(manager)
    alice, bob = connections["alice"], connections["bob"]

    assert len(room_id) == 8
    assert manager.rooms[room_id].is_private
    assert manager.public_rooms() == []

    joined = bob.last("roomJoined")
    assert joined["isReady"] is True
    assert [p["name"] for p in joined["players"]] == ["Alice", "Bob"]
    assert alice.last("playerJoined")["player"]["name"] == "Bob"
    assert "gameStarted" in alice.events()
    assert "gameStarted" in bob.events()


@pytest.mark.asyncio
async def test_already_in_room(manager: RoomManager) -> None:
    alice = await connect(manager, "alice")
    await manager.handle("alice", {"event": "createRoom"})
    await manager.handle("alice", {"event": "createRoom"})
    assert alice.last("error")["code"] == "ALREADY_IN_ROOM"
    assert manager.room_count() == 1


@pytest.mark.asyncio
async def test_join_unknown_room(manager: RoomManager) -> None:
    alice = await connect(manager, "alice")
    await manager.handle("alice", {"event": "joinRoom", "roomId": "NOPE0000"})
    assert alice.last("error")["code"] == "ROOM_NOT_FOUND"


@pytest.mark.asyncio
async def test_game_not_started_yet(manager: RoomManager) -> None:
    alice = await connect(manager, "alice")
    await manager.handle("alice", {"event": "createRoom"})
    room_id = alice.last("roomCreated")["roomId"]
    await manager.handle("alice", {"event": "generateSetup", "roomId": room_id})
    assert alice.last("error")["code"] == "GAME_NOT_FOUND"


# --- SPECTATORS ---
@pytest.mark.asyncio
async def test_third_joiner_becomes_spectator(manager: RoomManager) -> None:
    room_id, connections = await private_game(manager)
    carol = await connect(manager, "carol")
    await manager.handle("carol", {"event": "joinRoom", "roomId": room_id})

    spectating = carol.last("spectatingGame")
    assert spectating["roomId"] == room_id
    assert len(spectating["players"]) == 2
    assert spectating["gameState"]["gamePhase"] == "setup"
    assert connections["alice"].last("spectatorJoined")["spectator"]["name"].startswith("Spectator")

    # spectators receive the public broadcasts ...
    white, _ = colors(manager, room_id)
    await manager.handle(white, {"event": "generateSetup", "roomId": room_id})
    assert "setupGenerated" in carol.events()

    # ... but cannot act
    await manager.handle("carol", {"event": "resignGame", "roomId": room_id})
    assert carol.last("error")["code"] == "PLAYER_NOT_IN_ROOM"


@pytest.mark.asyncio
async def test_spectator_limit(manager: RoomManager) -> None:
    """The `settings` fixture allows two spectators"""
    room_id, _ = await private_game(manager)
    for name in ("carol", "dave"):
        await connect(manager, name)
        await manager.handle(name, {"event": "spectateGame", "roomId": room_id})
    erin = await connect(manager, "erin")
    await manager.handle("erin", {"event": "spectateGame", "roomId": room_id})
    assert erin.last("error")["code"] == "ROOM_FULL"
    assert len(manager.rooms[room_id].spectators) == 2


# --- GAME FLOW ---
@pytest.mark.asyncio
async def test_setup_and_first_move(manager: RoomManager) -> None:
    room_id, connections = await private_game(manager)
    white, black = colors(manager, room_id)

    # only white draws the setup
    await manager.handle(black, {"event": "generateSetup", "roomId": room_id})
    assert connections[black].last("error")["code"] == "NOT_ALLOWED"

    await play_setup(manager, room_id)
    for connection in connections.values():
        assert connection.events().count("piecePlaced") == 4
        finished = connection.last("setupFinished")
        assert finished["gamePhase"] == "playing"
        assert finished["currentPlayer"] == "white"

    last_placed = connections[white].last("piecePlaced")
    assert last_placed["isComplete"] is True
    assert last_placed["nextPiece"] is None

    move = quiet_move(manager, room_id)
    await manager.handle(white, move_message(room_id, move))
    made = connections[black].last("moveMade")
    assert made["currentPlayer"] == "black"
    assert made["move"]["from"] == {"rank": move.from_square.rank, "file": move.from_square.file}
    assert made["lastMove"]["to"] == {"rank": move.to_square.rank, "file": move.to_square.file}
    assert made["gameEnd"] is None


@pytest.mark.asyncio
async def test_placement_is_turn_locked(manager: RoomManager) -> None:
    room_id, connections = await private_game(manager)
    white, black = colors(manager, room_id)
    await manager.handle(white, {"event": "generateSetup", "roomId": room_id})
    game = manager.rooms[room_id].game
    assert game is not None
    square = game.board.empty_squares()[0]

    await manager.handle(
        black, {"event": "placePiece", "roomId": room_id, "rank": square.rank, "file": square.file}
    )
    assert connections[black].last("error")["code"] == "WRONG_PLACEMENT_COLOR"
    assert game.placement is not None and game.placement.current_index == 0


@pytest.mark.asyncio
async def test_errors_go_to_the_requester_only(manager: RoomManager) -> None:
    """Moving during setup is rejected: the other participants see nothing"""
    room_id, connections = await private_game(manager)
    white, black = colors(manager, room_id)
    connections[black].clear()

    await manager.handle(
        white,
        {"event": "makeMove", "roomId": room_id, "fromRank": 1, "fromFile": 0, "toRank": 2, "toFile": 0},
    )
    assert connections[white].last("error")["code"] == "PHASE_VIOLATION"
    assert connections[black].messages == []
    assert manager.rooms[room_id].game.phase == Phase.SETUP


@pytest.mark.asyncio
async def test_not_your_turn(manager: RoomManager) -> None:
    room_id, connections = await private_game(manager)
    white, black = await play_setup(manager, room_id)
    game = manager.rooms[room_id].game
    move = next(iter(legal_moves(game.board, Color.BLACK)))
    await manager.handle(black, move_message(room_id, move))
    assert connections[black].last("error")["code"] == "NOT_YOUR_TURN"
    assert game.move_count == 0


@pytest.mark.asyncio
async def test_resign(manager: RoomManager) -> None:
    """Everybody is told once. Resigning again does not produce a second game end."""
    room_id, connections = await private_game(manager)
    white, black = await play_setup(manager, room_id)

    await manager.handle(black, {"event": "resignGame", "roomId": room_id})
    ended = connections[white].last("gameEnded")
    assert ended["type"] == "resignation"
    assert ended["winner"] == "white"
    assert ended["resignedPlayer"] == "black"
    assert ended["isAutoResign"] is False

    await manager.handle(black, {"event": "resignGame", "roomId": room_id})
    assert connections[black].last("error")["code"] == "PHASE_VIOLATION"
    assert connections[white].events().count("gameEnded") == 1

    record = manager.archive.get_game(room_id)
    assert record is not None
    assert record.result == "resignation"
    assert record.winner == "white"
    assert set(record.players.values()) == {"Alice", "Bob"}
    # the synchronous archive never runs on the event loop thread
    assert threading.get_ident() not in manager.archive.thread_ids


@pytest.mark.asyncio
async def test_archive_failure_does_not_break_the_game_end(
    manager: RoomManager, caplog: pytest.LogCaptureFixture
) -> None:
    room_id, connections = await private_game(manager)
    white, black = await play_setup(manager, room_id)
    with patch.object(manager.archive, "save_game", side_effect=RepositoryError("disk full")):
        await manager.handle(white, {"event": "resignGame", "roomId": room_id})

    assert connections[black].last("gameEnded")["winner"] == "black"
    assert "error" not in connections[white].events()
    assert "could not archive" in caplog.text


# --- DRAW OFFERS ---
@pytest.mark.asyncio
async def test_draw_declined(manager: RoomManager) -> None:
    room_id, connections = await private_game(manager)
    white, black = await play_setup(manager, room_id)

    await manager.handle(white, {"event": "requestDraw", "roomId": room_id})
    assert connections[black].last("drawRequested")["from"]["id"] == public_id(manager, room_id, white)
    assert "drawRequested" not in connections[white].events()

    # you cannot accept your own offer
    await manager.handle(white, {"event": "respondDraw", "roomId": room_id, "accept": True})
    assert connections[white].last("error")["code"] == "NO_DRAW_OFFER"

    await manager.handle(black, {"event": "respondDraw", "roomId": room_id, "accept": False})
    assert "drawDeclined" in connections[white].events()
    assert manager.rooms[room_id].game.phase == Phase.PLAYING


@pytest.mark.asyncio
async def test_draw_accepted(manager: RoomManager) -> None:
    room_id, connections = await private_game(manager)
    white, black = await play_setup(manager, room_id)

    await manager.handle(black, {"event": "requestDraw", "roomId": room_id})
    await manager.handle(white, {"event": "respondDraw", "roomId": room_id, "accept": True})
    for connection in connections.values():
        ended = connection.last("gameEnded")
        assert ended["type"] == "draw"
        assert ended["winner"] is None
    assert manager.rooms[room_id].game.phase == Phase.ENDED


@pytest.mark.asyncio
async def test_move_withdraws_draw_offer(manager: RoomManager) -> None:
    room_id, connections = await private_game(manager)
    white, black = await play_setup(manager, room_id)

    await manager.handle(white, {"event": "requestDraw", "roomId": room_id})
    await manager.handle(white, move_message(room_id, quiet_move(manager, room_id)))
    await manager.handle(black, {"event": "respondDraw", "roomId": room_id, "accept": True})
    assert connections[black].last("error")["code"] == "NO_DRAW_OFFER"
    assert manager.rooms[room_id].game.phase == Phase.PLAYING


@pytest.mark.asyncio
async def test_draw_only_while_playing(manager: RoomManager) -> None:
    room_id, connections = await private_game(manager)
    white, _ = colors(manager, room_id)
    await manager.handle(white, {"event": "requestDraw", "roomId": room_id})
    assert connections[white].last("error")["code"] == "PHASE_VIOLATION"


# --- CHAT ---
@pytest.mark.asyncio
async def test_chat(manager: RoomManager) -> None:
    room_id, connections = await private_game(manager)
    carol = await connect(manager, "carol")
    await manager.handle("carol", {"event": "spectateGame", "roomId": room_id})

    await manager.handle("alice", {"event": "chatMessage", "roomId": room_id, "text": "  good luck  "})
    for connection in (connections["alice"], connections["bob"], carol):
        chat = connection.last("chatMessage")
        assert chat["message"] == "good luck"
        assert chat["sender"]["name"] == "Alice"

    # blank messages are dropped silently
    carol.clear()
    await manager.handle("bob", {"event": "chatMessage", "roomId": room_id, "text": "   "})
    assert carol.messages == []

    await manager.handle("bob", {"event": "chatMessage", "roomId": room_id, "text": "x" * 21})
    assert connections["bob"].last("error")["code"] == "INVALID_REQUEST"

    await connect(manager, "mallory")
    await manager.handle("mallory", {"event": "chatMessage", "roomId": room_id, "text": "hi"})
    assert carol.messages == []


# --- QUERIES ---
@pytest.mark.asyncio
async def test_room_list_and_game_state(manager: RoomManager) -> None:
    for name in ("alice", "bob"):
        await connect(manager, name)
        await manager.handle(name, {"event": "findGame"})
    await manager.handle("alice", {"event": "getRoomList"})
    alice = manager.connections["alice"]
    rooms = alice.last("roomList")["rooms"]
    assert len(rooms) == 1
    assert rooms[0]["players"] == 2
    assert rooms[0]["gamePhase"] == "setup"

    room_id = rooms[0]["id"]
    await manager.handle("alice", {"event": "getGameState", "roomId": room_id})
    state = alice.last("gameState")
    assert state["roomId"] == room_id
    assert state["yourColor"] in ("white", "black")
    assert len(state["gameState"]["board"]) == 8

    assert manager.player_count() == 2
    assert manager.room_summary(room_id).id == room_id


# --- MALFORMED INPUT ---
@pytest.mark.asyncio
@pytest.mark.parametrize(
    "data",
    [
        {"event": "teleport"},
        {"noEvent": True},
        {"event": "placePiece", "roomId": "X", "rank": 9, "file": 0},
        {"event": "joinRoom"},
        ["not", "an", "object"],
    ],
)
async def test_malformed_messages(manager: RoomManager, data: Any) -> None:
    alice = await connect(manager, "alice")
    await manager.handle("alice", data)
    assert alice.last("error")["code"] == "INVALID_REQUEST"


@pytest.mark.asyncio
async def test_unexpected_errors_are_contained(manager: RoomManager) -> None:
    alice = await connect(manager, "alice")
    with patch.object(manager, "dispatch", side_effect=RuntimeError("boom")):
        await manager.handle("alice", {"event": "getRoomList"})
    assert alice.last("error") == {
        "event": "error",
        "message": "Internal server error",
        "code": "INTERNAL_ERROR",
    }


# --- DISCONNECT / RECONNECT ---
@pytest.mark.asyncio
async def test_disconnect_leaves_waiting_queue(manager: RoomManager) -> None:
    await connect(manager, "alice")
    await manager.handle("alice", {"event": "findGame"})
    await manager.disconnect("alice")
    assert len(manager.waiting) == 0

    bob = await connect(manager, "bob")
    await manager.handle("bob", {"event": "findGame"})
    assert bob.events()[-1] == "waitingForOpponent"


@pytest.mark.asyncio
async def test_abandoned_private_room_is_removed(manager: RoomManager) -> None:
    alice = await connect(manager, "alice")
    await manager.handle("alice", {"event": "createRoom"})
    room_id = alice.last("roomCreated")["roomId"]
    await manager.disconnect("alice")
    assert room_id not in manager.rooms
    assert "alice" not in manager.session_rooms


@pytest.mark.asyncio
@pytest.mark.parametrize("drafted", [False, True])
async def test_room_removed_when_both_players_leave_before_play(
    manager: RoomManager, drafted: bool
) -> None:
    room_id, _ = await private_game(manager)
    white, black = colors(manager, room_id)
    if drafted:
        await manager.handle(white, {"event": "generateSetup", "roomId": room_id})
        assert manager.rooms[room_id].game.phase == Phase.PLACING

    await manager.disconnect(white)
    assert room_id in manager.rooms
    await manager.disconnect(black)
    assert room_id not in manager.rooms
    assert white not in manager.session_rooms
    assert black not in manager.session_rooms
    assert manager.room_count() == 0


@pytest.mark.asyncio
async def test_room_kept_while_game_is_played(manager: RoomManager) -> None:
    """Both players gone mid-game: the room waits for the grace windows instead of vanishing"""
    room_id, _ = await private_game(manager)
    white, black = await play_setup(manager, room_id)
    await manager.disconnect(white)
    await manager.disconnect(black)
    assert room_id in manager.rooms
    assert set(manager.rooms[room_id].resign_tasks) == {white, black}


@pytest.mark.asyncio
async def test_spectator_disconnect(manager: RoomManager) -> None:
    room_id, _ = await private_game(manager)
    await connect(manager, "carol")
    await manager.handle("carol", {"event": "spectateGame", "roomId": room_id})
    await manager.disconnect("carol")
    assert manager.rooms[room_id].spectators == []
    assert "carol" not in manager.session_rooms


@pytest.mark.asyncio
async def test_reconnect_before_grace_window(manager: RoomManager) -> None:
    """No auto-resignation is ever emitted for a player who came back in time"""
    room_id, connections = await private_game(manager)
    white, black = await play_setup(manager, room_id)

    await manager.disconnect(white)
    disconnected = connections[black].last("playerDisconnected")
    assert disconnected["player"]["id"] == public_id(manager, room_id, white)
    assert disconnected["player"]["disconnected"] is True

    back = MockConnection()
    assert await manager.connect(back, white) == white
    assert back.last("connected")["reconnected"] is True
    assert back.last("gameState")["yourColor"] == "white"
    assert connections[black].last("playerReconnected")["player"]["id"] == public_id(
        manager, room_id, white
    )

    await asyncio.sleep(WAIT_FOR_TIMERS)
    assert "gameEnded" not in connections[black].events()
    assert "gameEnded" not in back.events()
    assert manager.rooms[room_id].game.phase == Phase.PLAYING
    assert manager.rooms[room_id].resign_tasks == {}


@pytest.mark.asyncio
async def test_spectator_cannot_take_over_a_seat(manager: RoomManager) -> None:
    """Connecting with an id seen in the room does not hand out the seat of a disconnected player"""
    room_id, connections = await private_game(manager)
    white, black = await play_setup(manager, room_id)
    carol = await connect(manager, "carol")
    await manager.handle("carol", {"event": "spectateGame", "roomId": room_id})
    seen_ids = {p["id"] for p in carol.last("spectatingGame")["players"]}
    assert seen_ids.isdisjoint({white, black})

    await manager.disconnect(white)
    seen_id = connections[black].last("playerDisconnected")["player"]["id"]
    assert seen_id in seen_ids

    intruder = MockConnection()
    session_id = await manager.connect(intruder, seen_id)
    assert session_id != white
    assert intruder.last("connected")["reconnected"] is False
    assert "gameState" not in intruder.events()
    assert "playerReconnected" not in connections[black].events()

    await manager.handle(session_id, {"event": "resignGame", "roomId": room_id})
    assert intruder.last("error")["code"] == "PLAYER_NOT_IN_ROOM"
    room = manager.rooms[room_id]
    assert room.player(white).disconnected is True
    assert room.game.phase == Phase.PLAYING


@pytest.mark.asyncio
async def test_auto_resign_after_grace_window(manager: RoomManager) -> None:
    room_id, connections = await private_game(manager)
    white, black = await play_setup(manager, room_id)

    await manager.disconnect(white)
    await asyncio.sleep(WAIT_FOR_TIMERS)

    ended = connections[black].last("gameEnded")
    assert ended["type"] == "resignation"
    assert ended["winner"] == "black"
    assert ended["isAutoResign"] is True
    assert connections[black].events().count("gameEnded") == 1


@pytest.mark.asyncio
async def test_no_auto_resign_during_setup(manager: RoomManager) -> None:
    room_id, connections = await private_game(manager)
    white, black = colors(manager, room_id)

    await manager.disconnect(white)
    await asyncio.sleep(WAIT_FOR_TIMERS)
    assert "gameEnded" not in connections[black].events()
    assert manager.rooms[room_id].game.phase == Phase.SETUP


@pytest.mark.asyncio
async def test_room_cleanup_after_game_end(manager: RoomManager) -> None:
    """Room disappears after the cleanup delay; both players are free to play again"""
    room_id, connections = await private_game(manager)
    white, black = await play_setup(manager, room_id)
    await manager.handle(white, {"event": "resignGame", "roomId": room_id})

    # a finished game does not keep its players from looking for the next one
    await manager.handle(black, {"event": "findGame"})
    assert connections[black].events()[-1] == "waitingForOpponent"

    await asyncio.sleep(WAIT_FOR_TIMERS)
    assert room_id not in manager.rooms
    assert white not in manager.session_rooms

    # cleaning up a room that is already gone is fine
    await manager.cleanup_room(room_id)


@pytest.mark.asyncio
async def test_send_to_closed_connection(manager: RoomManager) -> None:
    """A dead transport does not break the broadcast for everybody else"""
    room_id, connections = await private_game(manager)
    connections["alice"].closed = True
    await manager.handle("bob", {"event": "chatMessage", "roomId": room_id, "text": "anyone?"})
    assert connections["bob"].last("chatMessage")["message"] == "anyone?"


@pytest.mark.asyncio
async def test_close_cancels_scheduled_tasks(settings: Settings) -> None:
    room_manager = RoomManager(settings, rng=random.Random(0))
    room_id, _ = await private_game(room_manager)
    white, _ = await play_setup(room_manager, room_id)
    await room_manager.disconnect(white)
    tasks = list(room_manager.rooms[room_id].resign_tasks.values())
    assert len(tasks) == 1

    await room_manager.close()
    assert tasks[0].cancelled()
    assert room_manager.room_count() == 0
