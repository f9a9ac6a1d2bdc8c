from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.schemas import GuestIdentity, RatingOut
from auth import decode_player_token, issue_player_token, new_guest_id

router = APIRouter()
logger = logging.getLogger(__name__)
http_bearer = HTTPBearer(auto_error=False)


async def get_current_player(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> str:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="credentials_not_provided")
    try:
        return decode_player_token(credentials.credentials)
    except ValueError as exc:
        logger.warning("Token decode failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))


@router.post("/api/auth/guest", response_model=GuestIdentity)
async def issue_guest_identity() -> GuestIdentity:
    player_id = new_guest_id()
    logger.info("Issued guest identity %s", player_id)
    return GuestIdentity(playerId=player_id, token=issue_player_token(player_id))


@router.get("/api/auth/me", response_model=RatingOut)
async def whoami(request: Request, player_id: str = Depends(get_current_player)) -> RatingOut:
    return RatingOut(playerId=player_id, rating=request.app.state.ratings.get_rating(player_id))
