"""
Records the room manager keeps per room: the players, the spectators, the game and the scheduled tasks.

A participant is identified by a stable session id. Transport objects never live in here: the room manager
looks up the connection of a session when it needs to send something.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional, Protocol
from uuid import uuid4

from wildchess.api.models import OutboundMessage, PlayerOut, RoomSummaryOut
from wildchess.chess.game import Game
from wildchess.chess.moves import utc_now
from wildchess.core.shared_types import Color

DEFAULT_RATING = 1200
ROOM_CAPACITY = 2

Action = Callable[[], Awaitable[None]]


class Connection(Protocol):
    """Just the part of a transport the room manager needs"""

    async def send(self, message: OutboundMessage) -> None:
        """Deliver one message. Raises ConnectionError if the transport is gone."""
        ...


@dataclass
class Player:
    session_id: str
    name: str
    # shown to everybody in the room. The session id is a reconnection credential and stays with its owner
    public_id: str = field(default_factory=lambda: uuid4().hex)
    rating: int = DEFAULT_RATING
    color: Optional[Color] = None  # assigned once, when the game starts
    disconnected: bool = False
    disconnected_at: Optional[datetime] = None

    def to_out(self) -> PlayerOut:
        return PlayerOut(
            id=self.public_id,
            name=self.name,
            color=self.color,
            rating=self.rating,
            disconnected=self.disconnected,
        )


@dataclass
class Spectator:
    session_id: str
    name: str
    public_id: str = field(default_factory=lambda: uuid4().hex)

    def to_out(self) -> PlayerOut:
        return PlayerOut(id=self.public_id, name=self.name)


@dataclass
class Room:
    id: str
    players: list[Player]
    is_private: bool
    spectators: list[Spectator] = field(default_factory=list)
    game: Optional[Game] = None
    created_at: datetime = field(default_factory=utc_now)
    pending_draw_from: Optional[str] = None  # session id of the player offering a draw
    # held for the full validate -> mutate -> broadcast cycle of one inbound event
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)
    resign_tasks: dict[str, asyncio.Task] = field(default_factory=dict, repr=False)
    cleanup_task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def is_full(self) -> bool:
        return len(self.players) >= ROOM_CAPACITY

    @property
    def phase_name(self) -> str:
        return self.game.phase.value if self.game else "waiting"

    def player(self, session_id: str) -> Optional[Player]:
        return next((p for p in self.players if p.session_id == session_id), None)

    def spectator(self, session_id: str) -> Optional[Spectator]:
        return next((s for s in self.spectators if s.session_id == session_id), None)

    def opponent_of(self, session_id: str) -> Optional[Player]:
        return next((p for p in self.players if p.session_id != session_id), None)

    def member_ids(self) -> list[str]:
        return [p.session_id for p in self.players] + [
            s.session_id for s in self.spectators
        ]

    def summary(self) -> RoomSummaryOut:
        return RoomSummaryOut(
            id=self.id,
            players=len(self.players),
            spectators=len(self.spectators),
            game_phase=self.phase_name,
            is_private=self.is_private,
            created_at=self.created_at,
        )

    # --- SCHEDULED TASKS ---
    def schedule_auto_resign(self, session_id: str, delay: float, action: Action) -> None:
        """(Re)start the grace window of a disconnected player. `action` runs once the window elapsed."""
        self.cancel_auto_resign(session_id)

        async def _run() -> None:
            await asyncio.sleep(delay)
            self.resign_tasks.pop(session_id, None)
            await action()

        self.resign_tasks[session_id] = asyncio.create_task(
            _run(), name=f"auto-resign-{self.id}-{session_id}"
        )

    def cancel_auto_resign(self, session_id: str) -> None:
        task = self.resign_tasks.pop(session_id, None)
        if task is not None:
            task.cancel()

    def schedule_cleanup(self, delay: float, action: Action) -> None:
        if self.cleanup_task is not None:
            return

        async def _run() -> None:
            await asyncio.sleep(delay)
            await action()

        self.cleanup_task = asyncio.create_task(_run(), name=f"cleanup-{self.id}")

    def cancel_tasks(self) -> list[asyncio.Task]:
        """Cancel everything still scheduled (except the task calling this). Returns the cancelled tasks."""
        current = asyncio.current_task()
        tasks = list(self.resign_tasks.values())
        if self.cleanup_task is not None:
            tasks.append(self.cleanup_task)
        self.resign_tasks.clear()
        self.cleanup_task = None

        cancelled = [task for task in tasks if task is not current and not task.done()]
        for task in cancelled:
            task.cancel()
        return cancelled
