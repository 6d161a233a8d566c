import os

import pytest
from sqlalchemy import delete

from smarty import create_app
from smarty.auth import credentials
from smarty.auth.machine import AuthService
from smarty.db import get_session, session_scope
from smarty.email_service import InMemoryEmailSender
from smarty.models import PendingCode, Task, User

SECRET = "test-secret"


@pytest.fixture
def app(tmp_path):
    test_db_url = os.getenv("TEST_DATABASE_URL") or f"sqlite:///{tmp_path / 'smarty.db'}"

    session_dir = tmp_path / "sessions"
    session_dir.mkdir(parents=True, exist_ok=True)
    config = {
        "DATABASE_URL": test_db_url,
        "AUTO_CREATE_DB": True,
        "EMAIL_BACKEND": "memory",
        "SESSION_TYPE": "filesystem",
        "SESSION_FILE_DIR": str(session_dir),
        "SECRET_KEY": SECRET,
        "SWEEPER_ENABLED": False,
        "TESTING": True,
    }
    app = create_app(config)

    with session_scope(app.extensions["db_sessionmaker"]) as db:
        db.execute(delete(Task))
        db.execute(delete(PendingCode))
        db.execute(delete(User))

    yield app

    app.extensions["task_sweeper"].stop()
    app.extensions["db_engine"].dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db_session(app):
    with app.app_context():
        session = get_session()
        try:
            yield session
        finally:
            session.close()


@pytest.fixture
def sessions(app):
    return app.extensions["db_sessionmaker"]


@pytest.fixture
def outbox(app):
    return app.extensions["email_outbox"]


@pytest.fixture
def auth_service(sessions, outbox):
    return AuthService(
        sessions,
        InMemoryEmailSender(outbox),
        secret=SECRET,
        code_ttl_seconds=600,
        token_ttl_seconds=3600,
        min_password_length=6,
    )


@pytest.fixture
def make_user(sessions):
    def _make_user(username="alice", email="a@x.com", password="Secr3t!", is_verified=True):
        with session_scope(sessions) as db:
            user = credentials.create_user(
                db,
                username=username,
                email=email,
                password_hash=credentials.hash_password(password),
                is_verified=is_verified,
            )
            return user.id

    return _make_user
