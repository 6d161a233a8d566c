from __future__ import annotations

from flask import Blueprint, current_app, g, request

from ..auth.guard import require_user
from ..db import session_scope
from ..errors import ValidationError
from . import store


tasks_bp = Blueprint("tasks", __name__)


def _get_payload() -> dict:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


@tasks_bp.get("")
@require_user
def list_tasks():
    with session_scope() as db:
        tasks = store.list_tasks(db, g.user_id, assign_date=request.args.get("date"))
        return {"ok": True, "tasks": [t.to_dict() for t in tasks]}


@tasks_bp.post("")
@require_user
def create_task():
    data = _get_payload()
    with session_scope() as db:
        task = store.create_task(
            db,
            g.user_id,
            text=data.get("text", data.get("task")),
            assign_date=data.get("assignDate"),
            assign_time=data.get("assignTime"),
        )
        return {"ok": True, "task": task.to_dict()}, 201


@tasks_bp.put("/<int:task_id>")
@require_user
def edit_task(task_id: int):
    data = _get_payload()
    with session_scope() as db:
        task = store.edit_task(db, g.user_id, task_id, text=data.get("text", data.get("task")))
        return {"ok": True, "task": task.to_dict()}


@tasks_bp.delete("/<int:task_id>")
@require_user
def delete_task(task_id: int):
    with session_scope() as db:
        store.delete_task(db, g.user_id, task_id)
    return {"ok": True}


@tasks_bp.patch("/<int:task_id>/toggle-done")
@require_user
def toggle_done(task_id: int):
    with session_scope() as db:
        task = store.toggle_done(
            db,
            g.user_id,
            task_id,
            ttl_seconds=current_app.config["TASK_TTL_SECONDS"],
        )
        return {"ok": True, "task": task.to_dict()}


@tasks_bp.put("/<int:task_id>/done")
@require_user
def set_done(task_id: int):
    data = _get_payload()
    done = data.get("done")
    if not isinstance(done, bool):
        raise ValidationError("done must be true or false")
    with session_scope() as db:
        task = store.mark_done(
            db,
            g.user_id,
            task_id,
            done,
            ttl_seconds=current_app.config["TASK_TTL_SECONDS"],
        )
        return {"ok": True, "task": task.to_dict()}
