from __future__ import annotations

from functools import wraps

from flask import current_app, g, request, session

from ..errors import Unauthorized
from .tokens import decode_token

__all__ = ["require_user"]


def current_user_id() -> int:
    """Caller's user id from a bearer token, falling back to the server session."""
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        token = auth.split(" ", 1)[1].strip()
        return decode_token(token, current_app.config["SECRET_KEY"])

    user_id = session.get("user_id")
    if user_id is None:
        raise Unauthorized("access token required")
    return int(user_id)


def require_user(f):
    @wraps(f)
    def wrapped(*args, **kwargs):
        g.user_id = current_user_id()
        return f(*args, **kwargs)

    return wrapped
