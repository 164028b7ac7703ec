"""Export session persistence and the single-writer session tracker.

``SessionTracker`` owns the in-memory current session.  Every change goes
through ``SessionTracker.mutate`` under one ``asyncio.Lock``; each checkpointed
mutation hands a deep copy of the session to ``CheckpointWriter``, whose
bounded queue is drained by one task so snapshots reach the blob store in
mutation order.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import ValidationError

from asset_catalog.models.schema import ExportProgress, ExportSession, SessionStatus
from asset_catalog.storage.base import BlobStore
from asset_catalog.storage.keys import SESSIONS_PREFIX, id_from_key, session_key

logger = logging.getLogger(__name__)

_ACTIVE_STATUSES = (SessionStatus.IDLE, SessionStatus.RUNNING)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class SessionStore:
    """Read and write session records under ``sessions/``."""

    def __init__(self, store: BlobStore) -> None:
        self.store = store

    async def save(self, session: ExportSession) -> None:
        await self.store.put(session_key(session.session_id), session.model_dump(mode="json"))

    async def load(self, session_id: str) -> Optional[ExportSession]:
        data = await self.store.get(session_key(session_id))
        if data is None:
            return None
        try:
            return ExportSession.model_validate(data)
        except ValidationError as exc:
            logger.warning("Ignoring unreadable session record %s: %s", session_id, exc)
            return None

    async def list_sessions(self, limit: Optional[int] = None) -> list[ExportSession]:
        """Return persisted sessions, most recently started first."""
        infos = await self.store.list_by_prefix(SESSIONS_PREFIX)
        loaded = await asyncio.gather(*(self.load(id_from_key(i.key)) for i in infos))
        sessions = [s for s in loaded if s is not None]
        sessions.sort(key=lambda s: s.start_time, reverse=True)
        return sessions[:limit] if limit else sessions


# ---------------------------------------------------------------------------
# Checkpoint writer
# ---------------------------------------------------------------------------


class CheckpointWriter:
    """Persist session snapshots from a bounded queue on a single task.

    ``submit`` blocks while the queue is full.  A failed write is logged and
    the writer moves on to the next snapshot.
    """

    def __init__(self, sessions: SessionStore, maxsize: int = 32) -> None:
        self._sessions = sessions
        self._maxsize = maxsize
        self._queue: Optional[asyncio.Queue[ExportSession]] = None
        self._task: Optional[asyncio.Task[None]] = None
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self._maxsize)
        self._task = asyncio.create_task(self._run(), name="session-checkpoint-writer")

    async def submit(self, snapshot: ExportSession) -> None:
        if not self.running:
            self.start()
        assert self._queue is not None
        await self._queue.put(snapshot)

    async def flush(self) -> None:
        """Wait until every submitted snapshot has been written (or failed)."""
        if self._queue is not None and self.running:
            await self._queue.join()

    async def stop(self) -> None:
        if self._task is None:
            return
        await self.flush()
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        self._queue = None

    async def _run(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            snapshot = await queue.get()
            try:
                await self._sessions.save(snapshot)
            except Exception:
                self.failures += 1
                logger.exception("Failed to checkpoint export session %s", snapshot.session_id)
            finally:
                queue.task_done()


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class SessionTracker:
    """Owner of the current export session.

    Work bound to a session id only touches the session while that id is
    still current, so a cancelled or replaced session is never written again
    by stragglers.
    """

    def __init__(self, sessions: SessionStore, writer: CheckpointWriter) -> None:
        self.sessions = sessions
        self.writer = writer
        self._current: Optional[ExportSession] = None
        self._lock = asyncio.Lock()

    @property
    def session_id(self) -> Optional[str]:
        return self._current.session_id if self._current else None

    def snapshot(self) -> Optional[ExportSession]:
        return self._current.model_copy(deep=True) if self._current else None

    def is_active(self, session_id: Optional[str]) -> bool:
        current = self._current
        return (
            current is not None
            and current.session_id == session_id
            and current.status in _ACTIVE_STATUSES
        )

    async def begin(self, session: ExportSession) -> None:
        """Make *session* current and persist it before returning."""
        async with self._lock:
            session.last_updated = _utc_now()
            self._current = session
            await self.writer.submit(session.model_copy(deep=True))
        await self.writer.flush()

    async def adopt(self, session: ExportSession) -> None:
        """Make an already persisted session current without rewriting it."""
        async with self._lock:
            self._current = session

    async def mutate(
        self,
        change: Callable[[ExportSession], None],
        *,
        session_id: Optional[str] = None,
        checkpoint: bool = True,
        wait: bool = False,
    ) -> Optional[ExportSession]:
        """Apply *change* to the current session.

        With *session_id* the change is only applied while that session is
        current and still active.  Returns a snapshot of the updated session,
        or None when nothing was changed.
        """
        async with self._lock:
            current = self._current
            if current is None:
                return None
            if session_id is not None and not self.is_active(session_id):
                return None
            change(current)
            current.last_updated = _utc_now()
            snapshot = current.model_copy(deep=True)
            if checkpoint:
                await self.writer.submit(snapshot)
        if checkpoint and wait:
            await self.writer.flush()
        return snapshot

    async def update_progress(
        self,
        session_id: str,
        key: str,
        *,
        checkpoint: bool = True,
        wait: bool = False,
        **changes: Any,
    ) -> Optional[ExportSession]:
        def _apply(session: ExportSession) -> None:
            progress = session.progress.setdefault(key, ExportProgress())
            for name, value in changes.items():
                setattr(progress, name, value)

        return await self.mutate(_apply, session_id=session_id, checkpoint=checkpoint, wait=wait)

    async def clear(self, session_id: Optional[str] = None) -> None:
        async with self._lock:
            if self._current is not None and (
                session_id is None or self._current.session_id == session_id
            ):
                self._current = None
