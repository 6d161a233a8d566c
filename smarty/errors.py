"""Failure kinds surfaced by the auth and task services.

Each error knows the HTTP status it maps to and any extra JSON fields the
client needs (``Conflict`` says which identity field collided).
"""

from __future__ import annotations


class ServiceError(Exception):
    status_code = 500
    default_message = "internal server error"

    def __init__(self, message: str | None = None, **extras) -> None:
        self.message = message or self.default_message
        self.extras = extras
        super().__init__(self.message)


class ValidationError(ServiceError):
    status_code = 400
    default_message = "invalid request"


class Conflict(ServiceError):
    status_code = 409
    default_message = "account already exists"

    def __init__(self, field: str, message: str | None = None) -> None:
        if message is None:
            message = "email already exists" if field == "email" else "username already taken"
        super().__init__(message, field=field)
        self.field = field


class InvalidCode(ServiceError):
    status_code = 400
    default_message = "invalid code"


class ExpiredCode(ServiceError):
    status_code = 400
    default_message = "code has expired"


class Unauthorized(ServiceError):
    status_code = 401
    default_message = "invalid email or password"


class NotFound(ServiceError):
    status_code = 404
    default_message = "not found"


class DeliveryUnavailable(ServiceError):
    status_code = 503
    default_message = "failed to send code email"


def error_payload(err: ServiceError) -> tuple[dict, int]:
    payload = {"ok": False, "error": err.message}
    payload.update(err.extras)
    return payload, err.status_code
