import random
import re
from collections import Counter

import pytest

from deck import is_glitch, make_card
from game import (
    AlreadyInRoom,
    DuplicatePlayer,
    GameNotInProgress,
    GameNotWaiting,
    GameService,
    InsufficientPlayers,
    NotRoomCreator,
    NotYourTurn,
    Player,
    Room,
    RoomFull,
    RoomNotFound,
    RoomNotWaiting,
    sanitize_nickname,
)
from rating import RatingService

GLITCH = make_card("spades", "Q")


def c(label: str):
    suits = {"H": "hearts", "D": "diamonds", "C": "clubs", "S": "spades"}
    return make_card(suits[label[-1]], label[:-1])


def make_service(seed: int = 1) -> GameService:
    return GameService(RatingService(), rng=random.Random(seed))


def open_room(svc: GameService, *player_ids: str) -> str:
    creator, *others = player_ids
    room_id = svc.create_room(creator, f"conn-{creator}", "venetian", creator).room_id
    for pid in others:
        svc.join_room(room_id, pid, f"conn-{pid}", "kabuki", pid)
    return room_id


def rig(svc: GameService, hands: dict, current: str) -> Room:
    """Put a room mid-round with hand-picked cards."""
    ids = list(hands)

    def seat(pid):
        return Player(id=pid, conn_ref=f"conn-{pid}", mask_type="venetian", nickname=pid, rating=svc.ratings.get_rating(pid))

    room = Room("RIGGED", seat(ids[0]))
    for pid in ids[1:]:
        room.add_player(seat(pid))
    for player in room.players:
        player.hand = list(hands[player.id])
    room.phase = "PLAYING"
    room.round_number = 1
    room.current_player_index = room._player_index(current)
    svc.registry.add(room)
    for player in room.players:
        svc.registry.bind(player.conn_ref, room.id)
    return room


def labels(cards):
    return [card.label for card in cards]


# ---------- lobby ----------
def test_create_room_returns_code_and_creator():
    svc = make_service()
    room = svc.create_room("a", "conn-a", "plague", "  Alice  ")
    assert re.fullmatch(r"[0-9A-F]{6}", room.room_id)
    assert room.creator_id == "a"
    assert room.phase == "WAITING"
    assert room.players[0].nickname == "Alice"
    assert room.players[0].rating == 1000
    assert room.connections == {"a": "conn-a"}


def test_room_codes_are_unique():
    svc = make_service()
    codes = {svc.create_room(f"p{i}", f"conn-{i}", "venetian", "").room_id for i in range(50)}
    assert len(codes) == 50


def test_nickname_is_trimmed_and_defaulted():
    assert sanitize_nickname("   ") == "Anonymous"
    assert sanitize_nickname(None) == "Anonymous"
    assert sanitize_nickname("x" * 40) == "x" * 20


def test_join_room_errors():
    svc = make_service()
    room_id = open_room(svc, "a", "b", "c", "d")
    with pytest.raises(RoomNotFound):
        svc.join_room("NOPE00", "e", "conn-e", "venetian", "")
    with pytest.raises(RoomFull):
        svc.join_room(room_id, "e", "conn-e", "venetian", "")
    with pytest.raises(AlreadyInRoom):
        svc.join_room(room_id, "a", "conn-a", "venetian", "")

    other = open_room(svc, "x")
    with pytest.raises(DuplicatePlayer):
        svc.join_room(other, "x", "conn-x2", "venetian", "")


def test_join_rejected_once_game_started():
    svc = make_service()
    room_id = open_room(svc, "a", "b")
    svc.start_game(room_id, "a")
    with pytest.raises(RoomNotWaiting):
        svc.join_room(room_id, "c", "conn-c", "venetian", "")


def test_failed_join_leaves_room_untouched():
    svc = make_service()
    room_id = open_room(svc, "a", "b", "c", "d")
    before = svc.snapshot(room_id)
    with pytest.raises(RoomFull):
        svc.join_room(room_id, "e", "conn-e", "venetian", "")
    assert svc.snapshot(room_id) == before
    assert not svc.registry.is_bound("conn-e")


def test_set_ready_flags_player():
    svc = make_service()
    open_room(svc, "a", "b")
    result = svc.set_ready("conn-b")
    assert result.player_id == "b" and result.is_ready
    assert [p.is_ready for p in result.room.players] == [False, True]


def test_list_rooms_only_waiting_and_idempotent():
    svc = make_service()
    waiting = open_room(svc, "a")
    started = open_room(svc, "b", "c")
    svc.start_game(started, "b")
    first = svc.list_rooms()
    assert [summary.id for summary in first] == [waiting]
    assert first[0].player_count == 1
    assert svc.list_rooms() == first


def test_creator_leaving_transfers_ownership_and_last_leave_deletes():
    svc = make_service()
    room_id = open_room(svc, "a", "b")
    result = svc.leave_room("conn-a")
    assert result.room.creator_id == "b"
    assert result.departure.new_creator_id == "b"
    assert not result.destroyed

    result = svc.leave_room("conn-b")
    assert result.destroyed
    assert room_id not in svc.registry
    assert svc.leave_room("conn-b") is None


# ---------- start ----------
def test_start_requires_creator_and_players():
    svc = make_service()
    room_id = open_room(svc, "a")
    with pytest.raises(InsufficientPlayers):
        svc.start_game(room_id, "a")
    svc.join_room(room_id, "b", "conn-b", "venetian", "")
    with pytest.raises(NotRoomCreator):
        svc.start_game(room_id, "b")
    svc.start_game(room_id, "a")
    with pytest.raises(GameNotWaiting):
        svc.start_game(room_id, "a")


@pytest.mark.parametrize("players", [2, 3, 4])
def test_start_deals_and_purges(players):
    svc = make_service(seed=players)
    ids = ["a", "b", "c", "d"][:players]
    room_id = open_room(svc, *ids)
    result = svc.start_game(room_id, "a")

    assert result.room.round_number == 1
    held = sum(len(hand) for hand in result.hands.values())
    assert held + 2 * len(result.purged) == 49
    assert sum(1 for hand in result.hands.values() for card in hand if is_glitch(card)) == 1
    for hand in result.hands.values():
        counts = Counter(card.rank for card in hand)
        assert all(n == 1 for n in counts.values())
    if result.outcome is None:
        assert result.room.phase == "PLAYING"
        assert result.hands[result.room.current_player_id]


def test_draw_before_start_is_rejected():
    svc = make_service()
    open_room(svc, "a", "b")
    with pytest.raises(GameNotInProgress):
        svc.draw_card("conn-a")


def test_draw_out_of_turn_is_rejected():
    svc = make_service()
    rig(svc, {"a": [c("4H")], "b": [c("2H"), c("3D")]}, current="a")
    with pytest.raises(NotYourTurn):
        svc.draw_card("conn-b")


# ---------- draws ----------
def test_draw_uses_requested_index_and_advances_turn():
    svc = make_service()
    room = rig(svc, {"a": [c("4H")], "b": [c("2H"), c("3D")]}, current="a")
    result = svc.draw_card("conn-a", 1)

    assert result.turn.target_id == "b"
    assert not result.turn.action.formed_pair
    assert labels(room.player("a").hand) == ["4♥", "3♦"]
    assert labels(room.player("b").hand) == ["2♥"]
    assert result.room.current_player_id == "b"
    assert result.outcome is None
    assert len(room.draw_history) == 1


@pytest.mark.parametrize("card_index", [5, -1])
def test_out_of_range_index_falls_back_to_random_card(card_index):
    svc = make_service()
    room = rig(svc, {"a": [c("4H")], "b": [c("2H"), c("3D")]}, current="a")
    result = svc.draw_card("conn-a", card_index)

    drawn = result.turn.action.drawn_card
    assert drawn in (c("2H"), c("3D"))
    assert len(room.player("b").hand) == 1
    assert drawn not in room.player("b").hand
    assert room.player("a").hand == [c("4H"), drawn]


def test_draw_forming_last_pair_settles_round():
    svc = make_service()
    room = rig(svc, {"a": [c("5H"), GLITCH], "b": [c("5C")]}, current="a")
    result = svc.draw_card("conn-a")

    assert result.turn.action.formed_pair
    assert result.turn.discarded.player_id == "a"
    assert result.turn.emptied == ["b"]
    assert room.phase == "GAME_OVER"
    assert room.loser_id == "a"
    outcome = result.outcome
    assert outcome.loser_id == "a"
    assert outcome.winner_ids == ["b"]
    assert [(s.player_id, s.placement, s.rating_change, s.new_rating) for s in outcome.standings] == [
        ("b", 1, 35, 1035),
        ("a", 2, -35, 965),
    ]
    assert svc.ratings.get_rating("a") == 965
    assert svc.ratings.drain_pending() == {"a": 965, "b": 1035}


def test_losing_rating_clamps_at_zero():
    svc = make_service()
    svc.ratings.set_rating("a", 10)
    rig(svc, {"a": [c("5H"), GLITCH], "b": [c("5C")]}, current="a")
    outcome = svc.draw_card("conn-a").outcome
    loser = next(s for s in outcome.standings if s.is_loser)
    assert loser.rating_change == -35
    assert loser.new_rating == 0


def test_empty_handed_current_player_is_skipped():
    svc = make_service()
    room = rig(svc, {"a": [], "b": [c("2H")], "c": [c("2D"), GLITCH]}, current="a")
    result = svc.draw_card("conn-a")
    assert result.turn.skipped
    assert result.turn.action is None
    assert room.current_player().id == "b"


def test_target_emptied_by_draw_has_won():
    svc = make_service()
    room = rig(svc, {"a": [c("2H"), GLITCH], "b": [c("3H")], "c": [c("3D"), c("2D")]}, current="c")
    result = svc.draw_card("conn-c")
    assert result.turn.target_id == "b"
    assert result.turn.emptied == ["b"]
    assert room.player("b").has_won
    assert result.outcome is None
    assert result.room.current_player_id == "a"


@pytest.mark.parametrize("players", [2, 3, 4])
def test_random_games_end_with_single_glitch(players):
    svc = make_service(seed=100 + players)
    ids = ["a", "b", "c", "d"][:players]
    room_id = open_room(svc, *ids)
    result = svc.start_game(room_id, "a")
    room = svc.registry.get(room_id)
    outcome = result.outcome

    for _ in range(5000):
        if outcome is not None:
            break
        prompt = svc.turn_prompt(room_id)
        outcome = svc.draw_card(prompt.conn_ref).outcome
        held = sum(len(hand) for hand in room.hands())
        assert held + 2 * len(room.discarded_pairs) == 49
        assert sum(1 for hand in room.hands() for card in hand if is_glitch(card)) == 1

    assert outcome is not None
    assert room.phase == "GAME_OVER"
    loser = room.player(outcome.loser_id)
    assert loser.hand == [GLITCH]
    assert loser.is_eliminated
    assert all(not p.hand for p in room.players if p.id != loser.id)
    assert len(outcome.standings) == players
    assert svc.ratings.get_rating(loser.id) == 965
    assert all(svc.ratings.get_rating(pid) == 1035 for pid in outcome.winner_ids)


# ---------- departures ----------
def test_leaving_current_player_folds_hand_and_passes_turn():
    svc = make_service()
    room = rig(svc, {"a": [c("5H"), c("9H")], "b": [c("5C"), GLITCH], "c": [c("9C")]}, current="a")
    result = svc.leave_room("conn-a")

    departure = result.departure
    assert departure.heir_id == "b"
    assert len(departure.folded) == 1
    assert departure.turn_passed
    assert labels(room.player("b").hand) == ["Q♠", "9♥"]
    assert result.room.current_player_id == "b"
    assert result.outcome is None
    assert sum(1 for hand in room.hands() for card in hand if is_glitch(card)) == 1


def test_fold_that_ends_round_settles_it():
    svc = make_service()
    rig(svc, {"a": [c("5H")], "b": [c("5C")], "c": [GLITCH]}, current="c")
    result = svc.leave_room("conn-a")
    assert result.departure.emptied == ["b"]
    assert result.outcome.loser_id == "c"
    assert result.outcome.winner_ids == ["b"]
    assert svc.ratings.get_rating("a") == 1000


def test_leaving_two_player_round_abandons_it():
    svc = make_service()
    room = rig(svc, {"a": [c("5H")], "b": [c("5C"), GLITCH]}, current="a")
    result = svc.leave_room("conn-a")
    assert result.departure.abandoned
    assert result.outcome.abandoned
    assert result.outcome.standings == []
    assert room.phase == "GAME_OVER"
    assert not svc.ratings.has_pending()
    assert svc.turn_prompt(room.id) is None
