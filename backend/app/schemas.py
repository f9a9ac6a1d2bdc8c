from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class GuestIdentity(BaseModel):
    player_id: str = Field(alias="playerId")
    token: str

    model_config = ConfigDict(populate_by_name=True)


class RatingOut(BaseModel):
    player_id: str = Field(alias="playerId")
    rating: int

    model_config = ConfigDict(populate_by_name=True)


class LeaderboardEntry(RatingOut):
    rank: int
