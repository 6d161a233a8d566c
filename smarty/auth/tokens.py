from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt

from ..errors import Unauthorized

ALGORITHM = "HS256"


def issue_token(user_id: int, secret: str, ttl_seconds: int) -> str:
    now = datetime.now(timezone.utc)
    return jwt.encode(
        {
            "user_id": user_id,
            "iat": now,
            "exp": now + timedelta(seconds=ttl_seconds),
        },
        secret,
        algorithm=ALGORITHM,
    )


def decode_token(token: str, secret: str) -> int:
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("token has expired") from None
    except jwt.InvalidTokenError:
        raise Unauthorized("invalid token") from None

    user_id = payload.get("user_id")
    if not isinstance(user_id, int):
        raise Unauthorized("invalid token")
    return user_id
