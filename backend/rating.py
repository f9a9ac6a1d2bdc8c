from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Tuple

logger = logging.getLogger(__name__)

STARTING_RATING = 1000
MIN_RATING = 0


class RatingService:
    """In-memory rating book keyed by player identity.

    Reads and writes are synchronous so the room orchestrator can settle a
    round without awaiting I/O. Every write is also queued as pending; the
    transport layer drains the queue and persists it once the room mutation
    has finished.
    """

    def __init__(self, starting_rating: int = STARTING_RATING, min_rating: int = MIN_RATING):
        self.starting_rating = starting_rating
        self.min_rating = min_rating
        self._ratings: Dict[str, int] = {}
        self._pending: Dict[str, int] = {}

    def load(self, ratings: Mapping[str, int]) -> None:
        self._ratings.update({pid: max(self.min_rating, int(value)) for pid, value in ratings.items()})
        logger.info("Loaded ratings for %s players", len(ratings))

    def get_rating(self, player_id: str) -> int:
        return self._ratings.get(player_id, self.starting_rating)

    def update_rating(self, player_id: str, delta: int) -> int:
        current = self.get_rating(player_id)
        new_rating = max(self.min_rating, current + delta)
        self._store(player_id, new_rating)
        logger.info("Rating %s: %s -> %s (%+d)", player_id, current, new_rating, delta)
        return new_rating

    def set_rating(self, player_id: str, rating: int) -> int:
        new_rating = max(self.min_rating, rating)
        self._store(player_id, new_rating)
        return new_rating

    def leaderboard(self, limit: int = 10) -> List[Tuple[str, int]]:
        ranked = sorted(self._ratings.items(), key=lambda item: (-item[1], item[0]))
        return ranked[:limit]

    def drain_pending(self) -> Dict[str, int]:
        pending, self._pending = self._pending, {}
        return pending

    def has_pending(self) -> bool:
        return bool(self._pending)

    def _store(self, player_id: str, rating: int) -> None:
        self._ratings[player_id] = rating
        self._pending[player_id] = rating
