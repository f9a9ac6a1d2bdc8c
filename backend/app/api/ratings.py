from typing import List

from fastapi import APIRouter, Depends, Query, Request

from app.schemas import LeaderboardEntry, RatingOut
from rating import RatingService

router = APIRouter()


def get_rating_service(request: Request) -> RatingService:
    return request.app.state.ratings


@router.get("/api/ratings/leaderboard", response_model=List[LeaderboardEntry])
async def leaderboard(
    limit: int = Query(10, ge=1, le=100),
    ratings: RatingService = Depends(get_rating_service),
):
    return [
        LeaderboardEntry(rank=idx + 1, playerId=player_id, rating=rating)
        for idx, (player_id, rating) in enumerate(ratings.leaderboard(limit))
    ]


@router.get("/api/ratings/{player_id}", response_model=RatingOut)
async def player_rating(player_id: str, ratings: RatingService = Depends(get_rating_service)):
    return RatingOut(playerId=player_id, rating=ratings.get_rating(player_id))
