from __future__ import annotations
from typing import Annotated, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field, ConfigDict, model_validator

Suit = Literal["hearts", "diamonds", "clubs", "spades"]
Rank = Literal["2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K", "A"]
MaskType = Literal["venetian", "kabuki", "tribal", "plague", "jester", "phantom"]
Phase = Literal["WAITING", "PLAYING", "GAME_OVER"]

RANK_VALUES: Dict[str, int] = {
    "2": 2,
    "3": 3,
    "4": 4,
    "5": 5,
    "6": 6,
    "7": 7,
    "8": 8,
    "9": 9,
    "10": 10,
    "J": 11,
    "Q": 12,
    "K": 13,
    "A": 14,
}

SUIT_SYMBOLS: Dict[str, str] = {
    "hearts": "♥",
    "diamonds": "♦",
    "clubs": "♣",
    "spades": "♠",
}


class Card(BaseModel):
    suit: Suit
    rank: Rank
    value: int = Field(ge=2, le=14)
    is_glitch: bool = Field(default=False, alias="isGlitch")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @model_validator(mode="before")
    @classmethod
    def fill_defaults(cls, value):
        # value and glitch flag always follow from suit and rank
        if isinstance(value, dict):
            suit = value.get("suit")
            rank = value.get("rank")
            if rank in RANK_VALUES and value.get("value") is None:
                value = {**value, "value": RANK_VALUES[rank]}
            if value.get("isGlitch") is None and value.get("is_glitch") is None:
                value = {**value, "isGlitch": suit == "spades" and rank == "Q"}
        return value

    @property
    def label(self) -> str:
        return f"{self.rank}{SUIT_SYMBOLS[self.suit]}"


class DiscardedPair(BaseModel):
    player_id: str = Field(alias="playerId")
    cards: List[Card] = Field(min_length=2, max_length=2)
    timestamp: float

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class DrawAction(BaseModel):
    drawer_id: str = Field(alias="drawerId")
    target_id: str = Field(alias="targetId")
    drawn_card: Card = Field(alias="drawnCard")
    formed_pair: bool = Field(alias="formedPair")
    matched_card: Optional[Card] = Field(default=None, alias="matchedCard")
    timestamp: float

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PublicPlayer(BaseModel):
    id: str
    mask_type: MaskType = Field(alias="maskType")
    nickname: str
    is_eliminated: bool = Field(False, alias="isEliminated")
    is_ready: bool = Field(False, alias="isReady")
    rating: int
    card_count: int = Field(0, alias="cardCount")
    has_won: bool = Field(False, alias="hasWon")

    model_config = ConfigDict(populate_by_name=True)


class PlayerStanding(BaseModel):
    player_id: str = Field(alias="playerId")
    placement: int
    is_loser: bool = Field(alias="isLoser")
    rating_change: int = Field(alias="ratingChange")
    new_rating: int = Field(alias="newRating")

    model_config = ConfigDict(populate_by_name=True)


class RoomSummary(BaseModel):
    id: str
    player_count: int = Field(alias="playerCount")
    phase: Phase

    model_config = ConfigDict(populate_by_name=True)


# ---------- client -> server ----------
class CreateRoomRequest(BaseModel):
    type: Literal["create_room"]
    mask_type: MaskType = Field("venetian", alias="maskType")
    nickname: str = ""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class JoinRoomRequest(BaseModel):
    type: Literal["join_room"]
    room_id: str = Field(alias="roomId", min_length=1, max_length=32)
    mask_type: MaskType = Field("venetian", alias="maskType")
    nickname: str = ""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class LeaveRoomRequest(BaseModel):
    type: Literal["leave_room"]

    model_config = ConfigDict(extra="ignore")


class PlayerReadyRequest(BaseModel):
    type: Literal["player_ready"]

    model_config = ConfigDict(extra="ignore")


class StartGameRequest(BaseModel):
    type: Literal["start_game"]

    model_config = ConfigDict(extra="ignore")


class DrawCardRequest(BaseModel):
    type: Literal["draw_card"]
    card_index: Optional[int] = Field(default=None, alias="cardIndex")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class GetRoomsRequest(BaseModel):
    type: Literal["get_rooms"]

    model_config = ConfigDict(extra="ignore")


ClientMessage = Annotated[
    Union[
        CreateRoomRequest,
        JoinRoomRequest,
        LeaveRoomRequest,
        PlayerReadyRequest,
        StartGameRequest,
        DrawCardRequest,
        GetRoomsRequest,
    ],
    Field(discriminator="type"),
]


# ---------- server -> client ----------
class ServerEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ConnectedEvent(ServerEvent):
    type: Literal["connected"] = "connected"
    player_id: str = Field(alias="playerId")


class RoomCreatedEvent(ServerEvent):
    type: Literal["room_created"] = "room_created"
    room_id: str = Field(alias="roomId")


class RoomJoinedEvent(ServerEvent):
    type: Literal["room_joined"] = "room_joined"
    room_id: str = Field(alias="roomId")
    creator_id: str = Field(alias="creatorId")
    players: List[PublicPlayer]


class PlayerJoinedEvent(ServerEvent):
    type: Literal["player_joined"] = "player_joined"
    player: PublicPlayer


class PlayerLeftEvent(ServerEvent):
    type: Literal["player_left"] = "player_left"
    player_id: str = Field(alias="playerId")
    creator_id: Optional[str] = Field(default=None, alias="creatorId")


class PlayerReadyChangeEvent(ServerEvent):
    type: Literal["player_ready_change"] = "player_ready_change"
    player_id: str = Field(alias="playerId")
    is_ready: bool = Field(alias="isReady")


class GameStartedEvent(ServerEvent):
    type: Literal["game_started"] = "game_started"
    phase: Phase
    round_number: int = Field(alias="roundNumber")
    current_player_id: Optional[str] = Field(default=None, alias="currentPlayerId")
    players: List[PublicPlayer]


class HandDealtEvent(ServerEvent):
    type: Literal["hand_dealt"] = "hand_dealt"
    cards: List[Card]


class PairsPurgedEvent(ServerEvent):
    type: Literal["pairs_purged"] = "pairs_purged"
    pairs: List[DiscardedPair]


class YourTurnEvent(ServerEvent):
    type: Literal["your_turn"] = "your_turn"
    target_id: Optional[str] = Field(default=None, alias="targetId")
    target_card_count: int = Field(0, alias="targetCardCount")


class CardDrawnEvent(ServerEvent):
    type: Literal["card_drawn"] = "card_drawn"
    drawer_id: str = Field(alias="drawerId")
    target_id: str = Field(alias="targetId")
    formed_pair: bool = Field(alias="formedPair")
    pair_cards: Optional[List[Card]] = Field(default=None, alias="pairCards")
    drawer_card_count: int = Field(alias="drawerCardCount")
    target_card_count: int = Field(alias="targetCardCount")


class PlayerEmptiedEvent(ServerEvent):
    type: Literal["player_emptied"] = "player_emptied"
    player_id: str = Field(alias="playerId")
    skipped: bool = False


class RoundOverEvent(ServerEvent):
    type: Literal["round_over"] = "round_over"
    loser_id: Optional[str] = Field(default=None, alias="loserId")
    standings: List[PlayerStanding] = Field(default_factory=list)
    abandoned: bool = False


class GameOverEvent(ServerEvent):
    type: Literal["game_over"] = "game_over"
    winner_ids: List[str] = Field(default_factory=list, alias="winnerIds")
    loser_id: Optional[str] = Field(default=None, alias="loserId")
    final_standings: List[PlayerStanding] = Field(default_factory=list, alias="finalStandings")


class RoomsEvent(ServerEvent):
    type: Literal["rooms"] = "rooms"
    rooms: List[RoomSummary]


class InvalidMoveEvent(ServerEvent):
    type: Literal["invalid_move"] = "invalid_move"
    code: str
    reason: str


class ErrorEvent(ServerEvent):
    type: Literal["error"] = "error"
    code: str
    message: str
