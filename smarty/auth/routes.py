from __future__ import annotations

from flask import Blueprint, g, request, session

from ..errors import ValidationError
from .guard import require_user
from .machine import AuthResult, get_auth_service


auth_bp = Blueprint("auth", __name__)


def _get_payload() -> dict:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _wants_code(data: dict) -> bool:
    if data.get("action") == "request_otp":
        return True
    flag = data.get("wantsCode", data.get("wants_code", False))
    if isinstance(flag, str):
        return flag.strip().lower() in {"1", "true", "yes", "on"}
    return bool(flag)


def _check_confirmation(password, data: dict) -> None:
    confirm = data.get("confirm_password")
    if confirm is not None and confirm != password:
        raise ValidationError("passwords do not match")


def _signed_in(result: AuthResult, message: str, status_code: int = 200):
    session["user_id"] = result.user.id
    body = {"ok": True, "message": message}
    body.update(result.to_dict())
    return body, status_code


@auth_bp.post("/register")
def register():
    data = _get_payload()
    password = data.get("password", "")
    _check_confirmation(password, data)

    result = get_auth_service().register(
        data.get("username", ""),
        data.get("email", ""),
        password,
        wants_code=_wants_code(data),
    )
    if isinstance(result, AuthResult):
        return _signed_in(result, "user created successfully", 201)
    return {"ok": True, "message": "code sent to your email", "email": result.email}


@auth_bp.post("/register/verify-code")
def register_verify_code():
    data = _get_payload()
    result = get_auth_service().verify_registration(data.get("email", ""), data.get("code"))
    return _signed_in(result, "user registered successfully", 201)


@auth_bp.post("/register/resend-code")
def register_resend_code():
    data = _get_payload()
    result = get_auth_service().resend_code(data.get("email", ""))
    return {"ok": True, "message": "new code sent to your email", "email": result.email}


@auth_bp.post("/login")
def login():
    data = _get_payload()
    result = get_auth_service().login(data.get("email", ""), data.get("password", ""))
    return _signed_in(result, "login successful")


@auth_bp.post("/login/send-code")
def login_send_code():
    data = _get_payload()
    result = get_auth_service().request_login_code(data.get("email", ""))
    return {"ok": True, "message": "code sent to your email", "email": result.email}


@auth_bp.post("/login/verify-code")
def login_verify_code():
    data = _get_payload()
    result = get_auth_service().verify_login_code(data.get("email", ""), data.get("code"))
    return _signed_in(result, "login successful")


@auth_bp.post("/logout")
def logout():
    session.clear()
    return {"ok": True}


@auth_bp.post("/forgot-password/send-code")
def forgot_password_send_code():
    data = _get_payload()
    result = get_auth_service().forgot_password(data.get("email", ""))
    return {"ok": True, "message": "password reset code sent to your email", "email": result.email}


@auth_bp.post("/forgot-password/verify-code")
def forgot_password_verify_code():
    data = _get_payload()
    new_password = data.get("new_password", data.get("newPassword", ""))
    _check_confirmation(new_password, data)

    get_auth_service().reset_password(data.get("email", ""), data.get("code"), new_password)
    return {"ok": True, "message": "password reset successfully", "redirect": "/login"}


@auth_bp.get("/profile")
@require_user
def profile():
    summary = get_auth_service().profile(g.user_id)
    return {"ok": True, "user": summary.to_dict()}
