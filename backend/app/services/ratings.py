from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import PlayerRating

logger = logging.getLogger(__name__)


async def load_ratings(session: AsyncSession) -> Dict[str, int]:
    result = await session.execute(select(PlayerRating.player_id, PlayerRating.rating))
    return {row.player_id: row.rating for row in result.all()}


async def save_ratings(session: AsyncSession, ratings: Mapping[str, int]) -> None:
    """Upsert the given ratings, last write wins."""
    if not ratings:
        return
    result = await session.execute(select(PlayerRating).where(PlayerRating.player_id.in_(list(ratings))))
    existing = {row.player_id: row for row in result.scalars().all()}
    now = datetime.utcnow()
    for player_id, rating in ratings.items():
        record = existing.get(player_id)
        if record:
            record.rating = rating
            record.updated_at = now
        else:
            session.add(PlayerRating(player_id=player_id, rating=rating, updated_at=now))
    await session.commit()
    logger.info("Saved %s ratings", len(ratings))
