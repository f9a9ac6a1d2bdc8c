import time
import uuid
from typing import Optional

import jwt
from jwt import ExpiredSignatureError, InvalidTokenError

from app.settings import get_settings


def new_guest_id() -> str:
    return f"guest_{uuid.uuid4().hex[:12]}"


def issue_player_token(player_id: str) -> str:
    settings = get_settings()
    now = int(time.time())
    payload = {"sub": player_id, "iat": now, "exp": now + settings.token_ttl_sec}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def decode_player_token(token: str) -> str:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except ExpiredSignatureError:
        raise ValueError("token_expired")
    except InvalidTokenError:
        raise ValueError("invalid_token")
    sub = payload.get("sub")
    if not sub:
        raise ValueError("invalid_subject")
    return str(sub)


def resolve_player_id(player_id: Optional[str], token: Optional[str]) -> str:
    """A signed token wins over a raw id; with neither, a new guest id is minted."""
    if token:
        return decode_player_token(token)
    if player_id and player_id.strip():
        return player_id.strip()[:64]
    return new_guest_id()
