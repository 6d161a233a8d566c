"""Per-owner task storage.

``done`` and ``expires_at`` always change together in one UPDATE so the
sweeper never sees a done task without an expiry, and a toggle never races
a read-modify-write in Python.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta

from sqlalchemy import DateTime, case, delete, literal, not_, null, select, update

from ..errors import NotFound, ValidationError
from ..models import Task, utcnow

TEXT_MAX_LENGTH = 500
_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _clean_text(text) -> str:
    text = text.strip() if isinstance(text, str) else ""
    if not text:
        raise ValidationError("task text is required")
    if len(text) > TEXT_MAX_LENGTH:
        raise ValidationError(f"task text must be at most {TEXT_MAX_LENGTH} characters")
    return text


def _clean_date(value) -> str:
    if value is None or value == "":
        return date.today().isoformat()
    try:
        return date.fromisoformat(str(value)).isoformat()
    except ValueError:
        raise ValidationError("assign date must be YYYY-MM-DD") from None


def _clean_time(value) -> str:
    if value is None or value == "":
        return datetime.now().strftime("%H:%M")
    if not isinstance(value, str) or not _TIME_RE.match(value):
        raise ValidationError("assign time must be HH:MM")
    return value


def _owned(owner_id: int, task_id: int):
    return (Task.id == task_id, Task.owner_id == owner_id)


def create_task(session, owner_id: int, *, text, assign_date=None, assign_time=None) -> Task:
    task = Task(
        owner_id=owner_id,
        text=_clean_text(text),
        done=False,
        assign_date=_clean_date(assign_date),
        assign_time=_clean_time(assign_time),
        expires_at=None,
    )
    session.add(task)
    session.flush()
    return task


def list_tasks(session, owner_id: int, *, assign_date: str | None = None) -> list[Task]:
    stmt = select(Task).where(Task.owner_id == owner_id)
    if assign_date:
        stmt = stmt.where(Task.assign_date == _clean_date(assign_date))
    stmt = stmt.order_by(Task.assign_date, Task.assign_time, Task.id)
    return list(session.execute(stmt).scalars())


def get_task(session, owner_id: int, task_id: int) -> Task:
    stmt = select(Task).where(*_owned(owner_id, task_id)).execution_options(populate_existing=True)
    task = session.execute(stmt).scalar_one_or_none()
    if task is None:
        raise NotFound("task not found")
    return task


def edit_task(session, owner_id: int, task_id: int, *, text) -> Task:
    result = session.execute(
        update(Task)
        .where(*_owned(owner_id, task_id))
        .values(text=_clean_text(text))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFound("task not found")
    return get_task(session, owner_id, task_id)


def delete_task(session, owner_id: int, task_id: int) -> None:
    result = session.execute(
        delete(Task).where(*_owned(owner_id, task_id)).execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFound("task not found")


def mark_done(session, owner_id: int, task_id: int, done: bool, *, ttl_seconds: int) -> Task:
    if done:
        expiry = literal(utcnow() + timedelta(seconds=ttl_seconds), DateTime())
        # already-done tasks keep the expiry they got when they first became done
        new_expiry = case((Task.done.is_(True), Task.expires_at), else_=expiry)
    else:
        new_expiry = null()

    # expires_at first: MySQL evaluates SET assignments left to right
    stmt = (
        update(Task)
        .where(*_owned(owner_id, task_id))
        .ordered_values((Task.expires_at, new_expiry), (Task.done, bool(done)))
        .execution_options(synchronize_session=False)
    )
    if session.execute(stmt).rowcount != 1:
        raise NotFound("task not found")
    return get_task(session, owner_id, task_id)


def toggle_done(session, owner_id: int, task_id: int, *, ttl_seconds: int) -> Task:
    expiry = literal(utcnow() + timedelta(seconds=ttl_seconds), DateTime())
    stmt = (
        update(Task)
        .where(*_owned(owner_id, task_id))
        .ordered_values(
            (Task.expires_at, case((Task.done.is_(True), null()), else_=expiry)),
            (Task.done, not_(Task.done)),
        )
        .execution_options(synchronize_session=False)
    )
    if session.execute(stmt).rowcount != 1:
        raise NotFound("task not found")
    return get_task(session, owner_id, task_id)


def delete_expired_tasks(session, now: datetime | None = None) -> int:
    now = now or utcnow()
    result = session.execute(
        delete(Task)
        .where(
            Task.done.is_(True),
            Task.expires_at.is_not(None),
            Task.expires_at <= now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount
