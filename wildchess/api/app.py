"""
FastAPI application: the WebSocket event endpoint plus a few stateless REST queries.

One RoomManager per process, built in the lifespan and closed at shutdown (which cancels every pending
auto-resign and cleanup task).
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
import uvicorn

from wildchess.api.models import (
    ArchivedGameResponse,
    ErrorMessage,
    HealthResponse,
    OutboundMessage,
    RoomSummaryOut,
)
from wildchess.core.config import Settings
from wildchess.core.exceptions import GameError
from wildchess.db.database import create_session_factory
from wildchess.db.sql_repository import SQLGameArchive
from wildchess.services.room_manager import RoomManager

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


class WebSocketConnection:
    """Adapts a WebSocket to the Connection protocol of the room manager."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket

    async def send(self, message: OutboundMessage) -> None:
        try:
            await self.websocket.send_json(message.to_wire())
        except (WebSocketDisconnect, RuntimeError) as error:
            raise ConnectionError(str(error)) from error


def build_manager(settings: Settings) -> RoomManager:
    archive = None
    if settings.database_url:
        archive = SQLGameArchive(create_session_factory(settings.database_url))
    return RoomManager(settings, archive=archive)


def create_app(settings: Optional[Settings] = None, manager: Optional[RoomManager] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.manager = manager or build_manager(settings)
        logger.info("Wild chess server ready")
        yield
        await app.state.manager.close()

    app = FastAPI(
        title="Wild Chess",
        description="Real-time multiplayer chess variant with drafted setups",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    @app.websocket("/ws")
    async def events(websocket: WebSocket) -> None:
        manager: RoomManager = websocket.app.state.manager
        await websocket.accept()
        connection = WebSocketConnection(websocket)
        session_id = await manager.connect(connection, websocket.query_params.get("sessionId"))
        try:
            while True:
                try:
                    data: Any = await websocket.receive_json()
                except ValueError:
                    await connection.send(
                        ErrorMessage(message="Frames must be JSON objects.", code="INVALID_REQUEST")
                    )
                    continue
                await manager.handle(session_id, data)
        except (WebSocketDisconnect, ConnectionError):
            pass
        finally:
            await manager.disconnect(session_id)

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        """Liveness plus a rough load indicator"""
        manager: RoomManager = request.app.state.manager
        return HealthResponse(
            status="ok",
            uptime=manager.uptime(),
            players=manager.player_count(),
            rooms=manager.room_count(),
        )

    @app.get("/api/rooms", response_model=list[RoomSummaryOut])
    async def list_rooms(request: Request) -> list[RoomSummaryOut]:
        """Public rooms only. Private rooms are joined by sharing their id."""
        return request.app.state.manager.public_rooms()

    @app.get("/api/rooms/{room_id}", response_model=RoomSummaryOut)
    async def get_room(room_id: str, request: Request) -> RoomSummaryOut:
        try:
            return request.app.state.manager.room_summary(room_id)
        except GameError as error:
            raise HTTPException(status_code=404, detail=error.message) from error

    @app.get("/api/games", response_model=list[ArchivedGameResponse])
    def list_games(request: Request, limit: int = 50) -> list[ArchivedGameResponse]:
        """Most recently finished games first. Empty when archiving is disabled. Plain def: FastAPI runs it in its threadpool."""
        archive = request.app.state.manager.archive
        if archive is None:
            return []
        return [ArchivedGameResponse.from_record(record) for record in archive.list_games(limit)]

    return app


def main() -> None:
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        timeout_graceful_shutdown=int(settings.shutdown_timeout_seconds),
    )


if __name__ == "__main__":
    main()
