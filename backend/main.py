from __future__ import annotations

import logging
import uuid
from typing import Dict, List, Optional

from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from app.api.auth import router as auth_router
from app.api.ratings import router as ratings_router
from app.database import AsyncSessionMaker, init_db
from app.services.ratings import load_ratings, save_ratings
from app.settings import settings
from auth import resolve_player_id
from game import GameService
from gateway import Gateway, Outbound
from models import ConnectedEvent, RoomsEvent
from rating import RatingService

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins(),
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

logger.info("CORS allow_origins: %s", settings.allowed_origins())

app.include_router(auth_router)
app.include_router(ratings_router)

ratings = RatingService(settings.starting_rating, settings.min_rating)
service = GameService(
    ratings,
    max_players=settings.max_players,
    winner_delta=settings.winner_delta,
    loser_delta=settings.loser_delta,
    nickname_max_length=settings.nickname_max_length,
    room_code_length=settings.room_code_length,
)
gateway = Gateway(service)

app.state.ratings = ratings
app.state.service = service


@app.on_event("startup")
async def _prepare_db() -> None:
    await init_db()
    async with AsyncSessionMaker() as session:
        ratings.load(await load_ratings(session))


async def _persist_ratings() -> None:
    pending = ratings.drain_pending()
    if not pending:
        return
    try:
        async with AsyncSessionMaker() as session:
            await save_ratings(session, pending)
    except SQLAlchemyError:
        # in-memory ratings stay authoritative for this process
        logger.exception("Failed to persist ratings for %s", sorted(pending))


# ---------- REST ----------
@app.get("/api/rooms")
async def rooms():
    return [summary.model_dump(by_alias=True) for summary in service.list_rooms()]


# ---------- WebSockets hub ----------
class Hub:
    def __init__(self):
        self.connections: Dict[str, WebSocket] = {}
        self.lobby: List[WebSocket] = []

    async def connect(self, ws: WebSocket) -> str:
        await ws.accept()
        conn_ref = uuid.uuid4().hex
        self.connections[conn_ref] = ws
        return conn_ref

    def drop(self, conn_ref: str):
        self.connections.pop(conn_ref, None)

    async def connect_lobby(self, ws: WebSocket):
        await ws.accept()
        self.lobby.append(ws)

    async def deliver(self, outbounds: List[Outbound]):
        for item in outbounds:
            payload = item.payload()
            for conn_ref in item.targets:
                ws = self.connections.get(conn_ref)
                if ws is None:
                    continue
                try:
                    await ws.send_json(payload)
                except (RuntimeError, WebSocketDisconnect):
                    # the peer's own handler runs its leave
                    logger.info("Dropped %s for dead connection %s", payload.get("type"), conn_ref)

    async def send_lobby(self, message: dict):
        for ws in list(self.lobby):
            try:
                await ws.send_json(message)
            except (RuntimeError, WebSocketDisconnect):
                if ws in self.lobby:
                    self.lobby.remove(ws)


hub = Hub()


async def broadcast_lobby():
    await hub.send_lobby(_rooms_payload())


def _rooms_payload() -> dict:
    return RoomsEvent(rooms=service.list_rooms()).model_dump(by_alias=True, mode="json")


# ---------- WS endpoints ----------
@app.websocket("/ws")
async def ws_game(
    ws: WebSocket,
    player_id: Optional[str] = Query(None),
    token: Optional[str] = Query(None),
):
    try:
        pid = resolve_player_id(player_id, token)
    except ValueError as exc:
        await ws.close(code=1008, reason=str(exc))
        return

    conn_ref = await hub.connect(ws)
    logger.info("Connection %s opened for %s", conn_ref, pid)
    try:
        await ws.send_json(ConnectedEvent(playerId=pid).model_dump(by_alias=True))
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            lobby_before = _rooms_payload()
            await hub.deliver(gateway.handle_raw(conn_ref, pid, raw))
            await _persist_ratings()
            if _rooms_payload() != lobby_before:
                await broadcast_lobby()
    except WebSocketDisconnect:
        pass
    finally:
        # leave the room before the first await so a cancelled handler still cleans up
        logger.info("Connection %s closed", conn_ref)
        hub.drop(conn_ref)
        departure = gateway.disconnect(conn_ref)
        await hub.deliver(departure)
        await _persist_ratings()
        await broadcast_lobby()


@app.websocket("/ws/lobby")
async def ws_lobby(ws: WebSocket):
    await hub.connect_lobby(ws)
    try:
        await ws.send_json(_rooms_payload())
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                break
    except WebSocketDisconnect:
        pass
    finally:
        if ws in hub.lobby:
            hub.lobby.remove(ws)
