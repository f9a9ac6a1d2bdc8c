"""Maps client frames to GameService calls and results to outbound events.

The gateway knows nothing about sockets: it returns ``Outbound`` items naming
the connection refs each event goes to, and the transport delivers them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Union

from pydantic import TypeAdapter, ValidationError

from game import GameError, GameService, RoomNotFound, RoomSnapshot, RoundOutcome
from models import (
    Card,
    CardDrawnEvent,
    ClientMessage,
    CreateRoomRequest,
    DrawCardRequest,
    ErrorEvent,
    GameOverEvent,
    GameStartedEvent,
    GetRoomsRequest,
    HandDealtEvent,
    InvalidMoveEvent,
    JoinRoomRequest,
    LeaveRoomRequest,
    PairsPurgedEvent,
    PlayerEmptiedEvent,
    PlayerJoinedEvent,
    PlayerLeftEvent,
    PlayerReadyChangeEvent,
    PlayerReadyRequest,
    RoomCreatedEvent,
    RoomJoinedEvent,
    RoomsEvent,
    RoundOverEvent,
    ServerEvent,
    StartGameRequest,
    YourTurnEvent,
)
from deck import sort_hand

logger = logging.getLogger(__name__)

_client_message = TypeAdapter(ClientMessage)


@dataclass
class Outbound:
    targets: List[str]
    event: ServerEvent

    def payload(self) -> dict:
        return self.event.model_dump(by_alias=True, mode="json")


class Gateway:
    def __init__(self, service: GameService):
        self.service = service

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def parse(self, raw: Union[str, bytes, dict]) -> ClientMessage:
        if isinstance(raw, dict):
            return _client_message.validate_python(raw)
        return _client_message.validate_json(raw)

    def handle_raw(self, conn_ref: str, player_id: str, raw: Union[str, bytes, dict]) -> List[Outbound]:
        try:
            message = self.parse(raw)
        except ValidationError as exc:
            logger.info("Rejected frame from %s: %s", conn_ref, exc.errors()[:1])
            return [Outbound([conn_ref], ErrorEvent(code="INVALID_MESSAGE", message="Malformed message"))]
        return self.handle(conn_ref, player_id, message)

    def handle(self, conn_ref: str, player_id: str, message: ClientMessage) -> List[Outbound]:
        try:
            if isinstance(message, CreateRoomRequest):
                return self._create_room(conn_ref, player_id, message)
            elif isinstance(message, JoinRoomRequest):
                return self._join_room(conn_ref, player_id, message)
            elif isinstance(message, LeaveRoomRequest):
                return self.disconnect(conn_ref, notify_self=True)
            elif isinstance(message, PlayerReadyRequest):
                return self._player_ready(conn_ref)
            elif isinstance(message, StartGameRequest):
                return self._start_game(conn_ref)
            elif isinstance(message, DrawCardRequest):
                return self._draw_card(conn_ref, message)
            elif isinstance(message, GetRoomsRequest):
                return [Outbound([conn_ref], RoomsEvent(rooms=self.service.list_rooms()))]
            raise TypeError(f"Unhandled message type {type(message).__name__}")
        except GameError as exc:
            logger.info("Rejected %s from %s: %s", message.type, conn_ref, exc)
            if isinstance(message, DrawCardRequest):
                return [Outbound([conn_ref], InvalidMoveEvent(code=exc.code, reason=exc.message))]
            return [Outbound([conn_ref], ErrorEvent(code=exc.code, message=exc.message))]

    def disconnect(self, conn_ref: str, notify_self: bool = False) -> List[Outbound]:
        result = self.service.leave_room(conn_ref)
        if result is None:
            return []
        leaver = [conn_ref] if notify_self else []
        room = result.room
        if room is None:
            return [Outbound(leaver, PlayerLeftEvent(playerId=result.player_id))] if leaver else []
        out = [
            Outbound(
                room.connection_refs() + leaver,
                PlayerLeftEvent(playerId=result.player_id, creatorId=room.creator_id),
            )
        ]
        departure = result.departure
        if departure.folded:
            out.append(Outbound(room.connection_refs(), PairsPurgedEvent(pairs=departure.folded)))
        out.extend(self._private_hands(room, result.hands))
        out.extend(self._emptied(room, departure.emptied))
        if result.outcome is not None:
            out.extend(self._round_over(room, result.outcome))
        elif departure.turn_passed:
            out.extend(self._your_turn(room.room_id))
        return out

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    def _create_room(self, conn_ref: str, player_id: str, message: CreateRoomRequest) -> List[Outbound]:
        room = self.service.create_room(player_id, conn_ref, message.mask_type, message.nickname)
        return [
            Outbound([conn_ref], RoomCreatedEvent(roomId=room.room_id)),
            Outbound([conn_ref], self._room_joined(room)),
        ]

    def _join_room(self, conn_ref: str, player_id: str, message: JoinRoomRequest) -> List[Outbound]:
        room = self.service.join_room(message.room_id.strip().upper(), player_id, conn_ref, message.mask_type, message.nickname)
        joined = next(p for p in room.players if p.id == player_id)
        others = [ref for pid, ref in room.connections.items() if pid != player_id]
        return [
            Outbound(others, PlayerJoinedEvent(player=joined)),
            Outbound([conn_ref], self._room_joined(room)),
        ]

    def _player_ready(self, conn_ref: str) -> List[Outbound]:
        result = self.service.set_ready(conn_ref, True)
        event = PlayerReadyChangeEvent(playerId=result.player_id, isReady=result.is_ready)
        return [Outbound(result.room.connection_refs(), event)]

    def _start_game(self, conn_ref: str) -> List[Outbound]:
        located = self.service.locate(conn_ref)
        if located is None:
            raise RoomNotFound("You are not in a room")
        room_id, player_id = located
        result = self.service.start_game(room_id, player_id)
        room = result.room
        out = [
            Outbound(
                room.connection_refs(),
                GameStartedEvent(
                    phase=room.phase,
                    roundNumber=room.round_number,
                    currentPlayerId=room.current_player_id,
                    players=room.players,
                ),
            )
        ]
        out.extend(self._private_hands(room, result.hands))
        out.append(Outbound(room.connection_refs(), PairsPurgedEvent(pairs=result.purged)))
        out.extend(self._emptied(room, result.emptied))
        if result.outcome is not None:
            out.extend(self._round_over(room, result.outcome))
        else:
            out.extend(self._your_turn(room.room_id))
        return out

    def _draw_card(self, conn_ref: str, message: DrawCardRequest) -> List[Outbound]:
        result = self.service.draw_card(conn_ref, message.card_index)
        room, turn = result.room, result.turn
        out: List[Outbound] = []
        if turn.action is not None:
            action = turn.action
            pair_cards = [action.matched_card, action.drawn_card] if action.formed_pair else None
            counts = {p.id: p.card_count for p in room.players}
            out.append(
                Outbound(
                    room.connection_refs(),
                    CardDrawnEvent(
                        drawerId=action.drawer_id,
                        targetId=action.target_id,
                        formedPair=action.formed_pair,
                        pairCards=pair_cards,
                        drawerCardCount=counts.get(action.drawer_id, 0),
                        targetCardCount=counts.get(action.target_id, 0),
                    ),
                )
            )
            out.extend(self._private_hands(room, result.hands))
        out.extend(self._emptied(room, turn.emptied, skipped=turn.skipped))
        if result.outcome is not None:
            out.extend(self._round_over(room, result.outcome))
        else:
            out.extend(self._your_turn(room.room_id))
        return out

    # ------------------------------------------------------------------
    # Event builders
    # ------------------------------------------------------------------
    def _room_joined(self, room: RoomSnapshot) -> RoomJoinedEvent:
        return RoomJoinedEvent(roomId=room.room_id, creatorId=room.creator_id, players=room.players)

    def _private_hands(self, room: RoomSnapshot, hands: Dict[str, List[Card]]) -> List[Outbound]:
        out = []
        for pid, cards in hands.items():
            conn_ref = room.connections.get(pid)
            if conn_ref:
                out.append(Outbound([conn_ref], HandDealtEvent(cards=sort_hand(cards))))
        return out

    def _emptied(self, room: RoomSnapshot, player_ids: List[str], skipped: bool = False) -> List[Outbound]:
        return [
            Outbound(room.connection_refs(), PlayerEmptiedEvent(playerId=pid, skipped=skipped))
            for pid in player_ids
        ]

    def _your_turn(self, room_id: str) -> List[Outbound]:
        prompt = self.service.turn_prompt(room_id)
        if prompt is None:
            return []
        event = YourTurnEvent(targetId=prompt.target_id, targetCardCount=prompt.target_card_count)
        return [Outbound([prompt.conn_ref], event)]

    def _round_over(self, room: RoomSnapshot, outcome: RoundOutcome) -> List[Outbound]:
        targets = room.connection_refs()
        winner_ids = outcome.winner_ids
        if outcome.abandoned:
            winner_ids = [p.id for p in room.players]
        return [
            Outbound(
                targets,
                RoundOverEvent(loserId=outcome.loser_id, standings=outcome.standings, abandoned=outcome.abandoned),
            ),
            Outbound(
                targets,
                GameOverEvent(winnerIds=winner_ids, loserId=outcome.loser_id, finalStandings=outcome.standings),
            ),
        ]
