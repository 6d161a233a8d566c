from datetime import timedelta

import pytest
from sqlalchemy import func, select

from smarty.auth.services import (
    LoginPayload,
    RegistrationPayload,
    ResetPayload,
    consume_code,
    generate_code,
    hash_code,
    has_pending_code,
    issue_code,
    normalize_code,
    purge_expired_codes,
    reissue_code,
)
from smarty.models import PendingCode, utcnow


def _count_codes(session, email):
    return session.execute(
        select(func.count()).select_from(PendingCode).where(PendingCode.email == email)
    ).scalar_one()


def test_generate_code_format():
    code = generate_code()
    assert code.isdigit()
    assert len(code) == 6


def test_hash_code_is_deterministic():
    assert hash_code("123456", "secret") == hash_code("123456", "secret")
    assert hash_code("123456", "secret") != hash_code("123456", "other")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("123456", "123456"),
        ("  123456\n", "123456"),
        (123456, "123456"),
        (12345, "012345"),
        ("12345", None),
        ("  012345 ", "012345"),
        (-12345, None),
        (1234567, None),
        ("12a456", None),
        ("1234567", None),
        ("", None),
        (None, None),
        (True, None),
        (12.5, None),
        ("١٢٣٤٥٦", None),
    ],
)
def test_normalize_code(raw, expected):
    assert normalize_code(raw) == expected


def test_new_code_replaces_previous(db_session, monkeypatch):
    codes = iter(["111111", "222222"])
    monkeypatch.setattr("smarty.auth.services.generate_code", lambda: next(codes))

    first = issue_code(
        db_session, email="user@example.com", payload=ResetPayload(), secret="secret", ttl_seconds=600
    )
    second = issue_code(
        db_session, email="user@example.com", payload=ResetPayload(), secret="secret", ttl_seconds=600
    )
    db_session.commit()

    assert _count_codes(db_session, "user@example.com") == 1
    assert consume_code(db_session, email="user@example.com", code=first, secret="secret") == (None, "invalid")
    payload, error = consume_code(db_session, email="user@example.com", code=second, secret="secret")
    assert error is None
    assert payload == ResetPayload()


def test_code_is_single_use(db_session):
    payload = RegistrationPayload(username="alice", password_hash="hashed")
    code = issue_code(db_session, email="a@x.com", payload=payload, secret="secret", ttl_seconds=600)
    db_session.commit()

    assert consume_code(db_session, email="a@x.com", code=code, secret="secret") == (payload, None)
    db_session.commit()
    assert consume_code(db_session, email="a@x.com", code=code, secret="secret") == (None, "invalid")
    assert not has_pending_code(db_session, "a@x.com")


def test_expired_code_rejected_and_removed(db_session):
    now = utcnow()
    db_session.add(
        PendingCode(
            email="user@example.com",
            purpose="register",
            code_hash=hash_code("123456", "secret"),
            username="user",
            password_hash="hashed",
            expires_at=now - timedelta(seconds=1),
            created_at=now - timedelta(seconds=5),
        )
    )
    db_session.commit()

    _, error = consume_code(db_session, email="user@example.com", code="123456", secret="secret")
    db_session.commit()

    assert error == "expired"
    assert _count_codes(db_session, "user@example.com") == 0


def test_numeric_submission_matches_zero_padded_code(db_session):
    now = utcnow()
    db_session.add(
        PendingCode(
            email="zero@example.com",
            purpose="login",
            code_hash=hash_code("012345", "secret"),
            username="zero",
            expires_at=now + timedelta(minutes=10),
            created_at=now,
        )
    )
    db_session.commit()

    payload, error = consume_code(db_session, email="zero@example.com", code=12345, secret="secret")
    assert error is None
    assert payload == LoginPayload(username="zero")


def test_purpose_mismatch_leaves_code_in_place(db_session):
    code = issue_code(
        db_session,
        email="login@example.com",
        payload=LoginPayload(username="login"),
        secret="secret",
        ttl_seconds=600,
    )
    db_session.commit()

    result = consume_code(
        db_session, email="login@example.com", code=code, secret="secret", purpose="register"
    )
    assert result == (None, "invalid")
    assert has_pending_code(db_session, "login@example.com")


def test_reissue_keeps_payload(db_session, monkeypatch):
    codes = iter(["333333", "444444"])
    monkeypatch.setattr("smarty.auth.services.generate_code", lambda: next(codes))

    payload = RegistrationPayload(username="bob", password_hash="hashed")
    old = issue_code(db_session, email="b@x.com", payload=payload, secret="secret", ttl_seconds=600)
    new = reissue_code(db_session, email="b@x.com", secret="secret", ttl_seconds=600)
    db_session.commit()

    assert new != old
    assert consume_code(db_session, email="b@x.com", code=old, secret="secret") == (None, "invalid")
    assert consume_code(db_session, email="b@x.com", code=new, secret="secret") == (payload, None)


def test_reissue_without_pending_code(db_session):
    assert reissue_code(db_session, email="nobody@x.com", secret="secret", ttl_seconds=600) is None


def test_purge_expired_codes(db_session):
    issue_code(db_session, email="old@x.com", payload=ResetPayload(), secret="secret", ttl_seconds=-1)
    issue_code(db_session, email="live@x.com", payload=ResetPayload(), secret="secret", ttl_seconds=600)
    db_session.commit()

    assert purge_expired_codes(db_session) == 1
    db_session.commit()
    assert not has_pending_code(db_session, "old@x.com")
    assert has_pending_code(db_session, "live@x.com")


def test_reissue_does_not_revive_expired_code(db_session):
    issue_code(db_session, email="late@x.com", payload=ResetPayload(), secret="secret", ttl_seconds=-1)
    db_session.commit()

    assert reissue_code(db_session, email="late@x.com", secret="secret", ttl_seconds=600) is None
    db_session.commit()
    assert not has_pending_code(db_session, "late@x.com")


def test_code_still_valid_at_expiry_instant(db_session, monkeypatch):
    code = issue_code(
        db_session, email="edge@x.com", payload=ResetPayload(), secret="secret", ttl_seconds=600
    )
    db_session.commit()
    expires_at = db_session.execute(
        select(PendingCode.expires_at).where(PendingCode.email == "edge@x.com")
    ).scalar_one()

    monkeypatch.setattr("smarty.auth.services.utcnow", lambda: expires_at)
    result = consume_code(db_session, email="edge@x.com", code=code, secret="secret")
    assert result == (ResetPayload(), None)
