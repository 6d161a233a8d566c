"""Registration, login and password-reset flows.

Each public method runs one step of an attempt through
``Anonymous -> (DirectRegistered | PendingVerification) -> Verified -> SessionIssued``
and either returns the next state's result or raises a ``ServiceError``.
Store work is split into short transactions so that a code is committed
before it is handed to the delivery channel.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from flask import current_app

from ..db import get_sessionmaker, session_scope
from ..email_service import EmailSender, get_email_sender
from ..errors import (
    Conflict,
    DeliveryUnavailable,
    ExpiredCode,
    InvalidCode,
    NotFound,
    Unauthorized,
    ValidationError,
)
from . import credentials
from .services import (
    PURPOSE_LOGIN,
    PURPOSE_REGISTER,
    PURPOSE_RESET,
    LoginPayload,
    RegistrationPayload,
    ResetPayload,
    consume_code,
    issue_code,
    purge_expired_codes,
    reissue_code,
)
from .tokens import decode_token, issue_token

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 40


def normalize_email(email) -> str:
    if not isinstance(email, str):
        return ""
    return email.strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email))


@dataclass(frozen=True)
class UserSummary:
    id: int
    username: str
    email: str
    is_verified: bool

    @classmethod
    def from_user(cls, user) -> "UserSummary":
        return cls(id=user.id, username=user.username, email=user.email, is_verified=user.is_verified)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "isVerified": self.is_verified,
        }


@dataclass(frozen=True)
class AuthResult:
    user: UserSummary
    token: str

    def to_dict(self) -> dict:
        return {"user": self.user.to_dict(), "token": self.token}


@dataclass(frozen=True)
class CodeSent:
    email: str


class AuthService:
    def __init__(
        self,
        session_factory,
        sender: EmailSender,
        *,
        secret: str,
        code_ttl_seconds: int = 600,
        token_ttl_seconds: int = 86400,
        min_password_length: int = 6,
    ) -> None:
        self._sessions = session_factory
        self._sender = sender
        self._secret = secret
        self._code_ttl = code_ttl_seconds
        self._token_ttl = token_ttl_seconds
        self._min_password_length = min_password_length

    # ---- registration ----

    def register(self, username, email, password, wants_code: bool = False) -> AuthResult | CodeSent:
        username = username.strip() if isinstance(username, str) else ""
        email = normalize_email(email)
        if not username or not email or not password:
            raise ValidationError("username, email and password are required")
        if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
            raise ValidationError(
                f"username must be {USERNAME_MIN_LENGTH}-{USERNAME_MAX_LENGTH} characters"
            )
        if not is_valid_email(email):
            raise ValidationError("invalid email")
        self._check_password(password)

        with session_scope(self._sessions) as db:
            existing = credentials.find_by_identity(db, email, username)
            if existing:
                raise Conflict(credentials.conflict_field(existing, email))

        # hashed before the delivery round-trip so the plaintext is never stored
        password_hash = credentials.hash_password(password)

        if not wants_code:
            # TODO: direct registration skips email ownership proof; decide whether to keep it
            return self._create_verified_user(username, email, password_hash)

        with session_scope(self._sessions) as db:
            code = issue_code(
                db,
                email=email,
                payload=RegistrationPayload(username=username, password_hash=password_hash),
                secret=self._secret,
                ttl_seconds=self._code_ttl,
            )
        self._deliver(email, code, "Registration code")
        return CodeSent(email=email)

    def verify_registration(self, email, code) -> AuthResult:
        email = self._require_email_and_code(email, code)
        payload = self._consume(email, code, PURPOSE_REGISTER)
        return self._create_verified_user(payload.username, email, payload.password_hash)

    def resend_code(self, email) -> CodeSent:
        email = self._require_email(email)
        with session_scope(self._sessions) as db:
            code = reissue_code(db, email=email, secret=self._secret, ttl_seconds=self._code_ttl)
        if code is None:
            raise NotFound("no registration in progress for this email")
        self._deliver(email, code, "Resent code")
        return CodeSent(email=email)

    # ---- login ----

    def login(self, email, password) -> AuthResult:
        email = normalize_email(email)
        if not email or not isinstance(password, str) or not password:
            raise Unauthorized()

        with session_scope(self._sessions) as db:
            user = credentials.find_by_email(db, email)
            if not user or not user.is_verified or not credentials.check_password(user, password):
                raise Unauthorized()
            summary = UserSummary.from_user(user)

        logger.info("password login user_id=%s", summary.id)
        return self._issue_session(summary)

    def request_login_code(self, email) -> CodeSent:
        email = self._require_email(email)
        with session_scope(self._sessions) as db:
            user = credentials.find_by_email(db, email)
            if not user:
                raise NotFound("user not found")
            code = issue_code(
                db,
                email=email,
                payload=LoginPayload(username=user.username),
                secret=self._secret,
                ttl_seconds=self._code_ttl,
            )
        self._deliver(email, code, "Login code")
        return CodeSent(email=email)

    def verify_login_code(self, email, code) -> AuthResult:
        email = self._require_email_and_code(email, code)
        self._consume(email, code, PURPOSE_LOGIN)
        with session_scope(self._sessions) as db:
            user = credentials.find_by_email(db, email)
            if not user:
                raise NotFound("user not found")
            summary = UserSummary.from_user(user)

        logger.info("code login user_id=%s", summary.id)
        return self._issue_session(summary)

    # ---- password reset ----

    def forgot_password(self, email) -> CodeSent:
        email = self._require_email(email)
        with session_scope(self._sessions) as db:
            if not credentials.find_by_email(db, email):
                raise NotFound("user with this email does not exist")
            code = issue_code(
                db,
                email=email,
                payload=ResetPayload(),
                secret=self._secret,
                ttl_seconds=self._code_ttl,
            )
        self._deliver(email, code, "Password reset code")
        return CodeSent(email=email)

    def reset_password(self, email, code, new_password) -> None:
        email = self._require_email_and_code(email, code)
        if not new_password:
            raise ValidationError("new password is required")
        self._check_password(new_password)

        self._consume(email, code, PURPOSE_RESET)
        password_hash = credentials.hash_password(new_password)
        with session_scope(self._sessions) as db:
            user = credentials.find_by_email(db, email)
            if not user:
                raise NotFound("user not found")
            credentials.update_password(db, user.id, password_hash)
        logger.info("password reset user_id=%s", user.id)

    # ---- sessions ----

    def profile(self, user_id: int) -> UserSummary:
        with session_scope(self._sessions) as db:
            user = credentials.find_by_id(db, user_id)
            if not user:
                raise NotFound("user not found")
            return UserSummary.from_user(user)

    def authenticate_token(self, token: str) -> int:
        return decode_token(token, self._secret)

    # ---- maintenance ----

    def purge_expired_codes(self) -> int:
        with session_scope(self._sessions) as db:
            purged = purge_expired_codes(db)
        if purged:
            logger.info("purged %s expired pending codes", purged)
        return purged

    # ---- helpers ----

    def _check_password(self, password) -> None:
        if not isinstance(password, str) or len(password) < self._min_password_length:
            raise ValidationError(
                f"password must be at least {self._min_password_length} characters"
            )

    def _require_email(self, email) -> str:
        email = normalize_email(email)
        if not email:
            raise ValidationError("email is required")
        if not is_valid_email(email):
            raise ValidationError("invalid email")
        return email

    def _require_email_and_code(self, email, code) -> str:
        if code is None or code == "":
            raise ValidationError("email and code are required")
        return self._require_email(email)

    def _consume(self, email: str, code, purpose: str):
        # the scope must commit before raising so an expired match stays deleted
        with session_scope(self._sessions) as db:
            payload, error = consume_code(
                db,
                email=email,
                code=code,
                secret=self._secret,
                purpose=purpose,
            )
        if error == "expired":
            raise ExpiredCode()
        if error is not None:
            raise InvalidCode()
        return payload

    def _create_verified_user(self, username: str, email: str, password_hash: str) -> AuthResult:
        with session_scope(self._sessions) as db:
            user = credentials.create_user(
                db,
                username=username,
                email=email,
                password_hash=password_hash,
                is_verified=True,
            )
            summary = UserSummary.from_user(user)

        logger.info("registered user_id=%s", summary.id)
        return self._issue_session(summary)

    def _issue_session(self, summary: UserSummary) -> AuthResult:
        token = issue_token(summary.id, self._secret, self._token_ttl)
        return AuthResult(user=summary, token=token)

    def _deliver(self, email: str, code: str, subject: str) -> None:
        try:
            self._sender.send_code(email, code, subject)
        except DeliveryUnavailable:
            logger.warning("code delivery failed to=%s subject=%r; pending code kept", email, subject)
            raise


def get_auth_service() -> AuthService:
    cfg = current_app.config
    return AuthService(
        get_sessionmaker(),
        get_email_sender(),
        secret=cfg["SECRET_KEY"],
        code_ttl_seconds=cfg["CODE_TTL_SECONDS"],
        token_ttl_seconds=cfg["TOKEN_TTL_SECONDS"],
        min_password_length=cfg["MIN_PASSWORD_LENGTH"],
    )
