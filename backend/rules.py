"""Pure rule functions over hands.

Nothing here mutates its arguments; callers get fresh lists back and decide
what to store on the room.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from deck import is_glitch, is_pair
from models import Card


@dataclass
class PairSplit:
    pairs: List[Tuple[Card, Card]] = field(default_factory=list)
    remaining: List[Card] = field(default_factory=list)


@dataclass
class DrawResolution:
    formed_pair: bool
    matched_card: Optional[Card]
    new_hand: List[Card]


@dataclass
class GameOverCheck:
    over: bool
    loser_index: Optional[int] = None


def find_pairs(hand: Sequence[Card]) -> PairSplit:
    cards = list(hand)
    used = [False] * len(cards)
    split = PairSplit()
    for idx, card in enumerate(cards):
        if used[idx]:
            continue
        if is_glitch(card):
            split.remaining.append(card)
            continue
        partner = next(
            (j for j in range(idx + 1, len(cards)) if not used[j] and is_pair(card, cards[j])),
            None,
        )
        if partner is None:
            split.remaining.append(card)
            continue
        used[idx] = used[partner] = True
        split.pairs.append((card, cards[partner]))
    return split


purge_pairs = find_pairs


def process_drawn_card(hand: Sequence[Card], drawn: Card) -> DrawResolution:
    if not is_glitch(drawn):
        for idx, card in enumerate(hand):
            if is_pair(card, drawn):
                new_hand = list(hand[:idx]) + list(hand[idx + 1:])
                return DrawResolution(formed_pair=True, matched_card=card, new_hand=new_hand)
    return DrawResolution(formed_pair=False, matched_card=None, new_hand=list(hand) + [drawn])


def is_game_over(hands: Sequence[Sequence[Card]]) -> GameOverCheck:
    non_empty = [idx for idx, hand in enumerate(hands) if hand]
    if len(non_empty) != 1:
        return GameOverCheck(over=False)
    last = hands[non_empty[0]]
    if len(last) == 1 and is_glitch(last[0]):
        return GameOverCheck(over=True, loser_index=non_empty[0])
    return GameOverCheck(over=False)


def _walk(current: int, hands: Sequence[Sequence[Card]], step: int) -> Optional[int]:
    total = len(hands)
    if total == 0:
        return None
    for offset in range(1, total + 1):
        idx = (current + step * offset) % total
        if hands[idx]:
            return idx
    return None


def get_next_player(current: int, hands: Sequence[Sequence[Card]]) -> Optional[int]:
    """Index of the next player clockwise with cards, ``current`` last."""
    return _walk(current, hands, 1)


def get_previous_player(current: int, hands: Sequence[Sequence[Card]]) -> Optional[int]:
    """Index of the nearest preceding player with cards, ``current`` last."""
    return _walk(current, hands, -1)
