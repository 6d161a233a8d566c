"""Background removal of completed tasks whose grace period has passed.

A fixed-cadence loop on a daemon thread. It only ever deletes task rows, using
one bulk DELETE per pass, so it can run alongside request handlers that
create, edit or toggle tasks. Clients may still see an expired task until the
next pass. Pending codes belong to the auth flows and are not touched here.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime

from ..db import session_scope
from ..models import utcnow
from .store import delete_expired_tasks

logger = logging.getLogger(__name__)


def sweep_expired_tasks(session_factory, now: datetime | None = None) -> int:
    """Delete done tasks with ``expires_at <= now``; return how many went."""
    now = now or utcnow()
    with session_scope(session_factory) as db:
        removed = delete_expired_tasks(db, now)

    if removed:
        logger.info("Swept %s expired done tasks", removed)
    return removed


class TaskSweeper:
    def __init__(self, session_factory, *, interval_seconds: float = 60.0) -> None:
        self._sessions = session_factory
        self._interval = float(interval_seconds)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="task-sweeper", daemon=True)
        self._thread.start()
        logger.info("Task sweeper started interval=%ss", self._interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self) -> int:
        try:
            return sweep_expired_tasks(self._sessions)
        except Exception:
            # store faults are transient here; the next tick retries
            logger.exception("Task sweep failed")
            return 0

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            self.run_once()
