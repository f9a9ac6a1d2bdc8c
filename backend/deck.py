"""Deck construction and card primitives for Pair Annihilation.

The deck is a standard 52-card deck without the hearts, diamonds and clubs
Queens. The spades Queen stays in and is the Glitch: the only card that can
never be paired.
"""
from __future__ import annotations

import random
from typing import Dict, List, Optional, Sequence

from models import RANK_VALUES, Card

SUITS = ["hearts", "diamonds", "clubs", "spades"]
RANKS = ["2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K", "A"]
DECK_SIZE = 49

GLITCH_SUIT = "spades"
GLITCH_RANK = "Q"

# display order only
SUIT_ORDER: Dict[str, int] = {"spades": 0, "hearts": 1, "diamonds": 2, "clubs": 3}


def make_card(suit: str, rank: str) -> Card:
    return Card(
        suit=suit,
        rank=rank,
        value=RANK_VALUES[rank],
        is_glitch=suit == GLITCH_SUIT and rank == GLITCH_RANK,
    )


def build_deck() -> List[Card]:
    deck: List[Card] = []
    for suit in SUITS:
        for rank in RANKS:
            if rank == GLITCH_RANK and suit != GLITCH_SUIT:
                continue
            deck.append(make_card(suit, rank))
    if len(deck) != DECK_SIZE:
        raise RuntimeError(f"Deck construction produced {len(deck)} cards, expected {DECK_SIZE}")
    if sum(1 for card in deck if card.is_glitch) != 1:
        raise RuntimeError("Deck construction must produce exactly one Glitch card")
    return deck


def shuffle(deck: Sequence[Card], rng: Optional[random.Random] = None) -> List[Card]:
    """Return a uniformly shuffled copy of ``deck``.

    ``random.Random.shuffle`` is a Fisher-Yates shuffle, so every permutation
    is equally likely. Pass a seeded ``rng`` for reproducible games.
    """
    shuffled = list(deck)
    (rng or random).shuffle(shuffled)
    return shuffled


def deal(deck: Sequence[Card], player_count: int) -> List[List[Card]]:
    if not 2 <= player_count <= 4:
        raise ValueError("Pair Annihilation is dealt to 2-4 players")
    hands: List[List[Card]] = [[] for _ in range(player_count)]
    for idx, card in enumerate(deck):
        hands[idx % player_count].append(card)
    return hands


def is_pair(a: Card, b: Card) -> bool:
    return a.rank == b.rank


def is_glitch(card: Card) -> bool:
    return card.suit == GLITCH_SUIT and card.rank == GLITCH_RANK


def sort_hand(hand: Sequence[Card]) -> List[Card]:
    return sorted(hand, key=lambda card: (card.value, SUIT_ORDER[card.suit]))


def card_label(card: Card) -> str:
    return card.label


def hand_labels(hand: Sequence[Card]) -> str:
    return " ".join(card.label for card in hand)
