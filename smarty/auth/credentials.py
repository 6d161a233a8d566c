from __future__ import annotations

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from ..errors import Conflict, NotFound
from ..models import User


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def check_password(user: User, password: str) -> bool:
    return check_password_hash(user.password_hash, password)


def find_by_email(session, email: str) -> User | None:
    return session.execute(select(User).where(User.email == email)).scalar_one_or_none()


def find_by_id(session, user_id: int) -> User | None:
    return session.get(User, user_id)


def find_by_identity(session, email: str, username: str | None) -> User | None:
    clauses = [User.email == email]
    if username:
        clauses.append(User.username == username)
    stmt = select(User).where(or_(*clauses)).order_by(User.id)
    return session.execute(stmt).scalars().first()


def conflict_field(user: User, email: str) -> str:
    return "email" if user.email == email else "username"


def create_user(
    session,
    *,
    username: str,
    email: str,
    password_hash: str,
    is_verified: bool = True,
) -> User:
    existing = find_by_identity(session, email, username)
    if existing:
        raise Conflict(conflict_field(existing, email))

    user = User(
        username=username,
        email=email,
        password_hash=password_hash,
        is_verified=is_verified,
    )
    session.add(user)
    try:
        session.flush()
    except IntegrityError:
        # lost a race against a concurrent insert; find out which field collided
        session.rollback()
        winner = find_by_identity(session, email, username)
        raise Conflict(conflict_field(winner, email) if winner else "email") from None
    return user


def update_password(session, user_id: int, password_hash: str) -> None:
    result = session.execute(
        update(User).where(User.id == user_id).values(password_hash=password_hash)
    )
    if result.rowcount != 1:
        raise NotFound("user not found")
