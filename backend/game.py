from __future__ import annotations

import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from deck import build_deck, deal, hand_labels, is_glitch, shuffle
from models import (
    Card,
    DiscardedPair,
    DrawAction,
    MaskType,
    Phase,
    PlayerStanding,
    PublicPlayer,
    RoomSummary,
)
from rating import RatingService
from rules import get_next_player, get_previous_player, is_game_over, process_drawn_card, purge_pairs

logger = logging.getLogger(__name__)

MIN_PLAYERS = 2
MAX_PLAYERS = 4
WINNER_DELTA = 35
LOSER_DELTA = -35
NICKNAME_MAX_LENGTH = 20
DEFAULT_NICKNAME = "Anonymous"
ROOM_CODE_LENGTH = 6


# ----------------------------------------------------------------------
# Errors
# ----------------------------------------------------------------------
class GameError(ValueError):
    """Recoverable, caller-scoped failure. Never mutates room state."""

    code = "GAME_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"[{self.code}] {message}")


class RoomNotFound(GameError):
    code = "ROOM_NOT_FOUND"


class RoomNotWaiting(GameError):
    code = "ROOM_NOT_WAITING"


class RoomFull(GameError):
    code = "ROOM_FULL"


class DuplicatePlayer(GameError):
    code = "DUPLICATE_PLAYER"


class AlreadyInRoom(GameError):
    code = "ALREADY_IN_ROOM"


class NotYourTurn(GameError):
    code = "NOT_YOUR_TURN"


class GameNotInProgress(GameError):
    code = "GAME_NOT_IN_PROGRESS"


class GameNotWaiting(GameError):
    code = "GAME_NOT_WAITING"


class InsufficientPlayers(GameError):
    code = "INSUFFICIENT_PLAYERS"


class NotRoomCreator(GameError):
    code = "NOT_ROOM_CREATOR"


def sanitize_nickname(raw: Optional[str], max_length: int = NICKNAME_MAX_LENGTH) -> str:
    nickname = (raw or "").strip()[:max_length].strip()
    return nickname or DEFAULT_NICKNAME


# ----------------------------------------------------------------------
# Room state
# ----------------------------------------------------------------------
@dataclass
class Player:
    id: str
    conn_ref: str
    mask_type: MaskType
    nickname: str
    rating: int
    hand: List[Card] = field(default_factory=list)
    is_eliminated: bool = False
    is_ready: bool = False
    has_won: bool = False

    def to_public(self) -> PublicPlayer:
        return PublicPlayer(
            id=self.id,
            maskType=self.mask_type,
            nickname=self.nickname,
            isEliminated=self.is_eliminated,
            isReady=self.is_ready,
            rating=self.rating,
            cardCount=len(self.hand),
            hasWon=self.has_won,
        )


@dataclass
class DealReport:
    purged: List[DiscardedPair] = field(default_factory=list)
    emptied: List[str] = field(default_factory=list)


@dataclass
class TurnReport:
    drawer_id: str
    target_id: Optional[str] = None
    action: Optional[DrawAction] = None
    discarded: Optional[DiscardedPair] = None
    emptied: List[str] = field(default_factory=list)
    skipped: bool = False
    round_over: bool = False


@dataclass
class DepartureReport:
    player_id: str
    heir_id: Optional[str] = None
    folded: List[DiscardedPair] = field(default_factory=list)
    emptied: List[str] = field(default_factory=list)
    new_creator_id: Optional[str] = None
    turn_passed: bool = False
    round_over: bool = False
    abandoned: bool = False


class Room:
    def __init__(self, room_id: str, creator: Player, *, max_players: int = MAX_PLAYERS):
        self.id = room_id
        self.creator_id = creator.id
        self.max_players = max_players
        self.phase: Phase = "WAITING"
        self.players: List[Player] = [creator]
        self.current_player_index = 0
        self.round_number = 0
        self.discarded_pairs: List[DiscardedPair] = []
        self.draw_history: List[DrawAction] = []
        self.glitch_holder_id: Optional[str] = None
        self.loser_id: Optional[str] = None
        self.standings: List[PlayerStanding] = []

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------
    def add_player(self, player: Player):
        if self.phase != "WAITING":
            raise RoomNotWaiting(f"Room {self.id} is not accepting players")
        if any(p.id == player.id for p in self.players):
            raise DuplicatePlayer(f"Player {player.id} is already in room {self.id}")
        if len(self.players) >= self.max_players:
            raise RoomFull(f"Room {self.id} is full")
        self.players.append(player)

    def remove_player(self, player_id: str) -> DepartureReport:
        idx = self._player_index(player_id)
        departing = self.players[idx]
        report = DepartureReport(player_id=player_id)

        if self.phase == "PLAYING":
            self._fold_hand(idx, report)
            was_current = idx == self.current_player_index
            del self.players[idx]
            if idx < self.current_player_index:
                self.current_player_index -= 1
            if len(self.players) < MIN_PLAYERS:
                self.phase = "GAME_OVER"
                report.abandoned = True
                report.round_over = True
                logger.info("Room %s abandoned: %s left mid-round", self.id, player_id)
            else:
                self._refresh_glitch_holder()
                check = is_game_over(self.hands())
                if check.over:
                    self._eliminate(check.loser_index)
                    report.round_over = True
                elif was_current:
                    self.current_player_index = (idx - 1) % len(self.players)
                    self._advance_turn()
                    report.turn_passed = True
        else:
            del self.players[idx]
            if self.players:
                self.current_player_index %= len(self.players)

        if departing.id == self.creator_id and self.players:
            self.creator_id = self.players[0].id
            report.new_creator_id = self.creator_id
        return report

    def _fold_hand(self, idx: int, report: DepartureReport):
        departing = self.players[idx]
        if not departing.hand:
            return
        hands = [[] if i == idx else hand for i, hand in enumerate(self.hands())]
        heir_idx = get_next_player(idx, hands)
        if heir_idx is None:
            departing.hand = []
            return
        heir = self.players[heir_idx]
        report.heir_id = heir.id
        now = time.time()
        for card in departing.hand:
            resolution = process_drawn_card(heir.hand, card)
            heir.hand = resolution.new_hand
            if resolution.formed_pair:
                pair = DiscardedPair(playerId=heir.id, cards=[resolution.matched_card, card], timestamp=now)
                self.discarded_pairs.append(pair)
                report.folded.append(pair)
        departing.hand = []
        if not heir.hand and not heir.has_won:
            heir.has_won = True
            report.emptied.append(heir.id)

    # ------------------------------------------------------------------
    # Match lifecycle
    # ------------------------------------------------------------------
    def start(self, player_id: str, rng: random.Random) -> DealReport:
        if player_id != self.creator_id:
            raise NotRoomCreator("Only the room creator can start the game")
        if self.phase != "WAITING":
            raise GameNotWaiting(f"Room {self.id} is not waiting to start")
        if not MIN_PLAYERS <= len(self.players) <= self.max_players:
            raise InsufficientPlayers(f"Need {MIN_PLAYERS}-{self.max_players} players to start")

        self.phase = "PLAYING"
        self.round_number += 1
        self.discarded_pairs = []
        self.draw_history = []
        self.loser_id = None
        self.standings = []
        report = self._deal_and_purge(rng)

        active = [idx for idx, p in enumerate(self.players) if p.hand]
        self.current_player_index = rng.choice(active) if active else 0

        check = is_game_over(self.hands())
        if check.over:
            self._eliminate(check.loser_index)
        return report

    def _deal_and_purge(self, rng: random.Random) -> DealReport:
        report = DealReport()
        deck = shuffle(build_deck(), rng)
        hands = deal(deck, len(self.players))
        now = time.time()
        for player, hand in zip(self.players, hands):
            split = purge_pairs(hand)
            player.hand = split.remaining
            player.is_eliminated = False
            player.has_won = False
            for first, second in split.pairs:
                pair = DiscardedPair(playerId=player.id, cards=[first, second], timestamp=now)
                self.discarded_pairs.append(pair)
                report.purged.append(pair)
            if not player.hand:
                player.has_won = True
                report.emptied.append(player.id)
            logger.debug("Room %s dealt %s: %s", self.id, player.id, hand_labels(player.hand))
        self._refresh_glitch_holder()
        logger.info(
            "Room %s round %s dealt to %s players, %s pairs purged",
            self.id,
            self.round_number,
            len(self.players),
            len(report.purged),
        )
        return report

    def draw(self, player_id: str, card_index: Optional[int], rng: random.Random) -> TurnReport:
        if self.phase != "PLAYING":
            raise GameNotInProgress(f"Room {self.id} has no round in progress")
        drawer_idx = self._player_index(player_id)
        if drawer_idx != self.current_player_index:
            raise NotYourTurn("Not your turn")

        drawer = self.players[drawer_idx]
        report = TurnReport(drawer_id=drawer.id)
        if not drawer.hand:
            report.skipped = True
            report.emptied.append(drawer.id)
            self._advance_turn()
            return report

        hands = self.hands()
        target_idx = get_previous_player(drawer_idx, hands)
        if target_idx is None or target_idx == drawer_idx:
            logger.warning("Room %s: %s has nobody to draw from", self.id, drawer.id)
            report.skipped = True
            self._advance_turn()
            return report

        target = self.players[target_idx]
        report.target_id = target.id
        if card_index is not None and 0 <= card_index < len(target.hand):
            pick = card_index
        else:
            pick = rng.randrange(len(target.hand))
        drawn = target.hand.pop(pick)

        resolution = process_drawn_card(drawer.hand, drawn)
        drawer.hand = resolution.new_hand
        now = time.time()
        if resolution.formed_pair:
            pair = DiscardedPair(playerId=drawer.id, cards=[resolution.matched_card, drawn], timestamp=now)
            self.discarded_pairs.append(pair)
            report.discarded = pair
        action = DrawAction(
            drawerId=drawer.id,
            targetId=target.id,
            drawnCard=drawn,
            formedPair=resolution.formed_pair,
            matchedCard=resolution.matched_card,
            timestamp=now,
        )
        self.draw_history.append(action)
        report.action = action
        self._refresh_glitch_holder()

        for player in (drawer, target):
            if not player.hand and not player.has_won:
                player.has_won = True
                report.emptied.append(player.id)

        check = is_game_over(self.hands())
        if check.over:
            self._eliminate(check.loser_index)
            report.round_over = True
            return report

        self._advance_turn()
        return report

    def _eliminate(self, loser_index: int):
        loser = self.players[loser_index]
        loser.is_eliminated = True
        self.loser_id = loser.id
        self.phase = "GAME_OVER"
        logger.info("Room %s round %s over: %s holds the Glitch", self.id, self.round_number, loser.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _player_index(self, player_id: str) -> int:
        for idx, player in enumerate(self.players):
            if player.id == player_id:
                return idx
        raise RoomNotFound(f"Player {player_id} is not in room {self.id}")

    def _advance_turn(self):
        nxt = get_next_player(self.current_player_index, self.hands())
        if nxt is not None:
            self.current_player_index = nxt

    def _refresh_glitch_holder(self):
        self.glitch_holder_id = next(
            (p.id for p in self.players if any(is_glitch(card) for card in p.hand)),
            None,
        )

    def hands(self) -> List[List[Card]]:
        return [p.hand for p in self.players]

    def player(self, player_id: str) -> Player:
        return self.players[self._player_index(player_id)]

    def current_player(self) -> Optional[Player]:
        if self.phase != "PLAYING" or not self.players:
            return None
        return self.players[self.current_player_index]

    def draw_target(self) -> Optional[Player]:
        current = self.current_player()
        if current is None:
            return None
        idx = get_previous_player(self.current_player_index, self.hands())
        if idx is None or idx == self.current_player_index:
            return None
        return self.players[idx]

    def public_players(self) -> List[PublicPlayer]:
        return [p.to_public() for p in self.players]

    def summary(self) -> RoomSummary:
        return RoomSummary(id=self.id, playerCount=len(self.players), phase=self.phase)


# ----------------------------------------------------------------------
# Orchestrator results
# ----------------------------------------------------------------------
@dataclass
class RoomSnapshot:
    room_id: str
    creator_id: str
    phase: Phase
    round_number: int
    players: List[PublicPlayer]
    connections: Dict[str, str]
    current_player_id: Optional[str] = None

    def connection_refs(self) -> List[str]:
        return list(self.connections.values())


@dataclass
class RoundOutcome:
    loser_id: Optional[str]
    standings: List[PlayerStanding] = field(default_factory=list)
    abandoned: bool = False

    @property
    def winner_ids(self) -> List[str]:
        return [s.player_id for s in self.standings if not s.is_loser]


@dataclass
class TurnPrompt:
    player_id: str
    conn_ref: str
    target_id: Optional[str]
    target_card_count: int


@dataclass
class ReadyResult:
    room: RoomSnapshot
    player_id: str
    is_ready: bool


@dataclass
class StartResult:
    room: RoomSnapshot
    hands: Dict[str, List[Card]]
    purged: List[DiscardedPair]
    emptied: List[str]
    outcome: Optional[RoundOutcome] = None


@dataclass
class DrawResult:
    room: RoomSnapshot
    turn: TurnReport
    hands: Dict[str, List[Card]]
    outcome: Optional[RoundOutcome] = None


@dataclass
class LeaveResult:
    room_id: str
    player_id: str
    room: Optional[RoomSnapshot]
    departure: DepartureReport
    hands: Dict[str, List[Card]] = field(default_factory=dict)
    outcome: Optional[RoundOutcome] = None

    @property
    def destroyed(self) -> bool:
        return self.room is None


# ----------------------------------------------------------------------
# Registry
# ----------------------------------------------------------------------
class RoomRegistry:
    """Room-id -> Room and connection -> room-id maps, owned by GameService."""

    def __init__(self):
        self._rooms: Dict[str, Room] = {}
        self._connections: Dict[str, str] = {}

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)

    def add(self, room: Room):
        self._rooms[room.id] = room

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def remove(self, room_id: str):
        self._rooms.pop(room_id, None)
        for conn_ref in [c for c, rid in self._connections.items() if rid == room_id]:
            self._connections.pop(conn_ref, None)

    def bind(self, conn_ref: str, room_id: str):
        self._connections[conn_ref] = room_id

    def unbind(self, conn_ref: str):
        self._connections.pop(conn_ref, None)

    def room_for(self, conn_ref: str) -> Optional[Room]:
        room_id = self._connections.get(conn_ref)
        return self._rooms.get(room_id) if room_id else None

    def is_bound(self, conn_ref: str) -> bool:
        return conn_ref in self._connections

    def rooms(self) -> Iterator[Room]:
        return iter(list(self._rooms.values()))


# ----------------------------------------------------------------------
# Orchestrator
# ----------------------------------------------------------------------
class GameService:
    """Serialized entry points for every room mutation.

    Each public method runs to completion without awaiting, so on a single
    event loop two calls against the same room can never interleave.
    """

    def __init__(
        self,
        ratings: RatingService,
        *,
        rng: Optional[random.Random] = None,
        max_players: int = MAX_PLAYERS,
        winner_delta: int = WINNER_DELTA,
        loser_delta: int = LOSER_DELTA,
        nickname_max_length: int = NICKNAME_MAX_LENGTH,
        room_code_length: int = ROOM_CODE_LENGTH,
    ):
        self.ratings = ratings
        self.rng = rng or random.Random()
        self.max_players = max_players
        self.winner_delta = winner_delta
        self.loser_delta = loser_delta
        self.nickname_max_length = nickname_max_length
        self.room_code_length = room_code_length
        self.registry = RoomRegistry()

    # ------------------------------------------------------------------
    # Lobby management
    # ------------------------------------------------------------------
    def create_room(self, player_id: str, conn_ref: str, mask_type: MaskType, nickname: str) -> RoomSnapshot:
        self._ensure_unbound(conn_ref)
        room_id = self._generate_room_id()
        room = Room(room_id, self._new_player(player_id, conn_ref, mask_type, nickname), max_players=self.max_players)
        self.registry.add(room)
        self.registry.bind(conn_ref, room_id)
        logger.info("Room %s created by %s", room_id, player_id)
        return self._snapshot(room)

    def join_room(
        self, room_id: str, player_id: str, conn_ref: str, mask_type: MaskType, nickname: str
    ) -> RoomSnapshot:
        self._ensure_unbound(conn_ref)
        room = self._get_room(room_id)
        room.add_player(self._new_player(player_id, conn_ref, mask_type, nickname))
        self.registry.bind(conn_ref, room.id)
        logger.info("Player %s joined room %s (%s/%s)", player_id, room.id, len(room.players), room.max_players)
        return self._snapshot(room)

    def leave_room(self, conn_ref: str) -> Optional[LeaveResult]:
        room = self.registry.room_for(conn_ref)
        if room is None:
            return None
        player = next((p for p in room.players if p.conn_ref == conn_ref), None)
        self.registry.unbind(conn_ref)
        if player is None:
            return None

        departure = room.remove_player(player.id)
        logger.info("Player %s left room %s", player.id, room.id)
        if not room.players:
            self.registry.remove(room.id)
            logger.info("Room %s deleted (empty)", room.id)
            return LeaveResult(room_id=room.id, player_id=player.id, room=None, departure=departure)

        outcome = None
        if departure.abandoned:
            outcome = RoundOutcome(loser_id=None, abandoned=True)
        elif departure.round_over:
            outcome = self._settle(room)
        hands = {}
        if departure.heir_id:
            hands[departure.heir_id] = list(room.player(departure.heir_id).hand)
        return LeaveResult(
            room_id=room.id,
            player_id=player.id,
            room=self._snapshot(room),
            departure=departure,
            hands=hands,
            outcome=outcome,
        )

    def set_ready(self, conn_ref: str, is_ready: bool = True) -> ReadyResult:
        room, player = self._resolve(conn_ref)
        player.is_ready = is_ready
        return ReadyResult(room=self._snapshot(room), player_id=player.id, is_ready=is_ready)

    def list_rooms(self) -> List[RoomSummary]:
        return [room.summary() for room in self.registry.rooms() if room.phase == "WAITING"]

    # ------------------------------------------------------------------
    # Match lifecycle
    # ------------------------------------------------------------------
    def start_game(self, room_id: str, player_id: str) -> StartResult:
        room = self._get_room(room_id)
        report = room.start(player_id, self.rng)
        outcome = self._settle(room) if room.phase == "GAME_OVER" else None
        logger.info("Game started in room %s", room.id)
        return StartResult(
            room=self._snapshot(room),
            hands={p.id: list(p.hand) for p in room.players},
            purged=report.purged,
            emptied=report.emptied,
            outcome=outcome,
        )

    def draw_card(self, conn_ref: str, card_index: Optional[int] = None) -> DrawResult:
        room, player = self._resolve(conn_ref)
        turn = room.draw(player.id, card_index, self.rng)
        hands = {pid: list(room.player(pid).hand) for pid in (turn.drawer_id, turn.target_id) if pid}
        outcome = self._settle(room) if turn.round_over else None
        return DrawResult(room=self._snapshot(room), turn=turn, hands=hands, outcome=outcome)

    def _settle(self, room: Room) -> RoundOutcome:
        standings: List[PlayerStanding] = []
        for player in room.players:
            if player.is_eliminated:
                placement, delta = len(room.players), self.loser_delta
            else:
                placement, delta = 1, self.winner_delta
            player.rating = self.ratings.update_rating(player.id, delta)
            standings.append(
                PlayerStanding(
                    playerId=player.id,
                    placement=placement,
                    isLoser=player.is_eliminated,
                    ratingChange=delta,
                    newRating=player.rating,
                )
            )
        standings.sort(key=lambda s: s.placement)
        room.standings = standings
        return RoundOutcome(loser_id=room.loser_id, standings=standings)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    def locate(self, conn_ref: str) -> Optional[tuple[str, str]]:
        room = self.registry.room_for(conn_ref)
        if room is None:
            return None
        player = next((p for p in room.players if p.conn_ref == conn_ref), None)
        return (room.id, player.id) if player else None

    def snapshot(self, room_id: str) -> Optional[RoomSnapshot]:
        room = self.registry.get(room_id)
        return self._snapshot(room) if room else None

    def turn_prompt(self, room_id: str) -> Optional[TurnPrompt]:
        room = self.registry.get(room_id)
        if room is None:
            return None
        current = room.current_player()
        if current is None:
            return None
        target = room.draw_target()
        return TurnPrompt(
            player_id=current.id,
            conn_ref=current.conn_ref,
            target_id=target.id if target else None,
            target_card_count=len(target.hand) if target else 0,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _generate_room_id(self) -> str:
        while True:
            room_id = uuid.UUID(int=self.rng.getrandbits(128)).hex[: self.room_code_length].upper()
            if room_id not in self.registry:
                return room_id

    def _new_player(self, player_id: str, conn_ref: str, mask_type: MaskType, nickname: str) -> Player:
        return Player(
            id=player_id,
            conn_ref=conn_ref,
            mask_type=mask_type,
            nickname=sanitize_nickname(nickname, self.nickname_max_length),
            rating=self.ratings.get_rating(player_id),
        )

    def _ensure_unbound(self, conn_ref: str):
        if self.registry.is_bound(conn_ref):
            raise AlreadyInRoom("Leave your current room first")

    def _get_room(self, room_id: str) -> Room:
        room = self.registry.get(room_id)
        if room is None:
            raise RoomNotFound(f"Room {room_id} not found")
        return room

    def _resolve(self, conn_ref: str) -> tuple[Room, Player]:
        room = self.registry.room_for(conn_ref)
        if room is None:
            raise RoomNotFound("You are not in a room")
        player = next((p for p in room.players if p.conn_ref == conn_ref), None)
        if player is None:
            raise RoomNotFound("You are not in a room")
        return room, player

    def _snapshot(self, room: Room) -> RoomSnapshot:
        current = room.current_player()
        return RoomSnapshot(
            room_id=room.id,
            creator_id=room.creator_id,
            phase=room.phase,
            round_number=room.round_number,
            players=room.public_players(),
            connections={p.id: p.conn_ref for p in room.players},
            current_player_id=current.id if current else None,
        )
