"""Pending one-time codes.

A code row carries a purpose-tagged payload: the pre-hashed registration
data, a login marker, or a reset marker. Only the HMAC of the code is stored.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select

from ..models import PendingCode, utcnow

CODE_LENGTH = 6

PURPOSE_REGISTER = "register"
PURPOSE_LOGIN = "login"
PURPOSE_RESET = "reset"


@dataclass(frozen=True)
class RegistrationPayload:
    username: str
    password_hash: str

    purpose = PURPOSE_REGISTER


@dataclass(frozen=True)
class LoginPayload:
    username: str

    purpose = PURPOSE_LOGIN


@dataclass(frozen=True)
class ResetPayload:
    purpose = PURPOSE_RESET


CodePayload = RegistrationPayload | LoginPayload | ResetPayload


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** CODE_LENGTH):0{CODE_LENGTH}d}"


def hash_code(code: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), code.encode("utf-8"), hashlib.sha256).hexdigest()


def normalize_code(value) -> str | None:
    """Canonical six-digit string for a human-entered code, or None.

    Codes come back from forms and JSON clients as strings with stray
    whitespace or as numbers that lost their leading zeros. Only the numeric
    form is zero-padded; a typed string must already have six digits.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        value = str(value).zfill(CODE_LENGTH)
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value.isascii() or not value.isdigit() or len(value) != CODE_LENGTH:
        return None
    return value


def payload_from_record(record: PendingCode) -> CodePayload:
    if record.purpose == PURPOSE_REGISTER:
        return RegistrationPayload(username=record.username, password_hash=record.password_hash)
    if record.purpose == PURPOSE_LOGIN:
        return LoginPayload(username=record.username)
    if record.purpose == PURPOSE_RESET:
        return ResetPayload()
    raise ValueError(f"unknown code purpose: {record.purpose!r}")


def get_latest_code(session, email: str) -> PendingCode | None:
    stmt = (
        select(PendingCode)
        .where(PendingCode.email == email)
        .order_by(PendingCode.created_at.desc(), PendingCode.id.desc())
    )
    return session.execute(stmt).scalars().first()


def has_pending_code(session, email: str) -> bool:
    return get_latest_code(session, email) is not None


def delete_codes_for(session, email: str) -> int:
    result = session.execute(delete(PendingCode).where(PendingCode.email == email))
    return result.rowcount


def issue_code(
    session,
    *,
    email: str,
    payload: CodePayload,
    secret: str,
    ttl_seconds: int,
) -> str:
    now = utcnow()
    delete_codes_for(session, email)

    code = generate_code()
    record = PendingCode(
        email=email,
        purpose=payload.purpose,
        code_hash=hash_code(code, secret),
        username=getattr(payload, "username", None),
        password_hash=getattr(payload, "password_hash", None),
        expires_at=now + timedelta(seconds=ttl_seconds),
        created_at=now,
    )
    session.add(record)
    session.flush()
    return code


def reissue_code(session, *, email: str, secret: str, ttl_seconds: int) -> str | None:
    record = get_latest_code(session, email)
    if record is None:
        return None

    now = utcnow()
    if record.expires_at < now:
        # expired codes are gone for good; the caller has to start over
        delete_codes_for(session, email)
        return None

    code = generate_code()
    record.code_hash = hash_code(code, secret)
    record.expires_at = now + timedelta(seconds=ttl_seconds)
    session.flush()
    return code


def consume_code(
    session,
    *,
    email: str,
    code,
    secret: str,
    purpose: str | None = None,
):
    """Match, delete and return the payload of a pending code.

    Returns ``(payload, error)`` where error is ``"invalid"`` or ``"expired"``.
    Both a valid match and an expired match delete the row; the caller must
    commit before raising so the deletion sticks.
    """
    canonical = normalize_code(code)
    if canonical is None:
        return None, "invalid"

    stmt = select(PendingCode).where(
        PendingCode.email == email,
        PendingCode.code_hash == hash_code(canonical, secret),
    )
    if purpose is not None:
        stmt = stmt.where(PendingCode.purpose == purpose)
    record = session.execute(stmt).scalars().first()
    if record is None:
        return None, "invalid"

    # a code is still good at the exact expiry instant
    expired = record.expires_at < utcnow()
    payload = payload_from_record(record)

    # single-row delete; a concurrent consumer that got there first wins
    result = session.execute(delete(PendingCode).where(PendingCode.id == record.id))
    if result.rowcount != 1:
        return None, "invalid"

    if expired:
        return None, "expired"
    return payload, None


def purge_expired_codes(session, now: datetime | None = None) -> int:
    now = now or utcnow()
    result = session.execute(delete(PendingCode).where(PendingCode.expires_at < now))
    return result.rowcount
