import random
from collections import Counter

import pytest

from deck import DECK_SIZE, build_deck, card_label, deal, is_glitch, is_pair, make_card, shuffle, sort_hand


def test_deck_has_49_cards_and_one_glitch():
    deck = build_deck()
    assert len(deck) == DECK_SIZE == 49
    glitches = [card for card in deck if card.is_glitch]
    assert len(glitches) == 1
    assert glitches[0].suit == "spades" and glitches[0].rank == "Q"
    assert len({(card.suit, card.rank) for card in deck}) == 49


def test_only_spades_queen_survives():
    queens = [card for card in build_deck() if card.rank == "Q"]
    assert [card.suit for card in queens] == ["spades"]
    counts = Counter(card.rank for card in build_deck())
    assert counts["Q"] == 1
    assert all(counts[rank] == 4 for rank in counts if rank != "Q")


def test_card_values_follow_rank():
    assert make_card("hearts", "2").value == 2
    assert make_card("hearts", "10").value == 10
    assert make_card("clubs", "J").value == 11
    assert make_card("spades", "Q").value == 12
    assert make_card("diamonds", "A").value == 14
    assert make_card("spades", "Q").label == "Q♠"
    assert card_label(make_card("hearts", "10")) == "10♥"


def test_shuffle_returns_permutation_and_keeps_input():
    deck = build_deck()
    original = list(deck)
    shuffled = shuffle(deck, random.Random(7))
    assert deck == original
    assert sorted(shuffled, key=lambda c: (c.suit, c.value)) == sorted(original, key=lambda c: (c.suit, c.value))


def test_shuffle_is_reproducible_with_seed():
    assert shuffle(build_deck(), random.Random(42)) == shuffle(build_deck(), random.Random(42))


@pytest.mark.parametrize("players", [2, 3, 4])
def test_deal_conserves_cards(players):
    deck = shuffle(build_deck(), random.Random(players))
    hands = deal(deck, players)
    assert len(hands) == players
    assert sum(len(hand) for hand in hands) == 49
    sizes = [len(hand) for hand in hands]
    assert max(sizes) - min(sizes) <= 1
    assert sum(1 for hand in hands for card in hand if is_glitch(card)) == 1


def test_deal_round_robin_order():
    deck = build_deck()
    hands = deal(deck, 3)
    assert hands[0][:2] == [deck[0], deck[3]]
    assert hands[1][0] == deck[1]
    assert hands[2][0] == deck[2]
    assert len(hands[0]) == 17


@pytest.mark.parametrize("players", [1, 5])
def test_deal_rejects_bad_player_count(players):
    with pytest.raises(ValueError):
        deal(build_deck(), players)


def test_is_pair_compares_rank_only():
    assert is_pair(make_card("hearts", "5"), make_card("clubs", "5"))
    assert not is_pair(make_card("hearts", "5"), make_card("hearts", "6"))


def test_sort_hand_by_value_then_suit():
    hand = [make_card("clubs", "A"), make_card("hearts", "2"), make_card("spades", "2"), make_card("diamonds", "10")]
    labels = [card.label for card in sort_hand(hand)]
    assert labels == ["2♠", "2♥", "10♦", "A♣"]
    assert [card.label for card in hand][0] == "A♣"
