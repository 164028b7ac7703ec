"""Export orchestrator: drives bulk and per-type exports as sessions.

Session lifecycle::

    idle -> running -> completed | error | cancelled

Only one session is current at a time.  Starting a new one cancels the
current one first.  On startup, persisted sessions left ``running`` by a
previous process are either force-closed (older than the stale threshold) or
adopted so their export can resume from the last checkpoint.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from asset_catalog.connectors.base import BaseAssetSource, SourceError
from asset_catalog.core.config import Settings
from asset_catalog.core.errors import (
    ConflictError,
    ExportCancelledError,
    ListingError,
    RetryExhaustedError,
)
from asset_catalog.core.retry import RetryPolicy
from asset_catalog.export.pagination import PaginationPolicy, iter_pages
from asset_catalog.export.processors import BaseAssetProcessor, ProcessingContext, create_processors
from asset_catalog.export.session import CheckpointWriter, SessionStore, SessionTracker
from asset_catalog.models.catalog import AssetIndex
from asset_catalog.models.schema import (
    EXPORT_ORDER,
    REBUILD_PROGRESS_KEY,
    AssetStats,
    AssetType,
    ExportErrorRecord,
    ExportProgress,
    ExportSession,
    ExportSummary,
    ProgressStatus,
    SessionStatus,
)
from asset_catalog.services.catalog import DataCatalogBuilder
from asset_catalog.services.indexing import AssetIndexBuilder
from asset_catalog.storage.base import BlobStore
from asset_catalog.storage.keys import EXPORT_SUMMARY_KEY

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Export cancelled by user"


@dataclass
class TypeExportResult:
    session_id: str
    stats: AssetStats
    session_completed: bool = False


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id() -> str:
    """``export-{epoch millis}-{random suffix}``."""
    return f"export-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def _close_session(session: ExportSession, status: SessionStatus, message: str) -> None:
    """Move *session* to a terminal status, erroring every unfinished entry."""
    now = _utc_now()
    for entry in session.progress.values():
        if entry.status in (ProgressStatus.IDLE, ProgressStatus.RUNNING):
            entry.status = ProgressStatus.ERROR
            entry.message = message
            entry.completed_at = now
    session.status = status
    session.end_time = now


class ExportOrchestrator:
    """Own the current export session and run exports against it."""

    def __init__(
        self,
        source: BaseAssetSource,
        store: BlobStore,
        *,
        index_builder: Optional[AssetIndexBuilder] = None,
        catalog_builder: Optional[DataCatalogBuilder] = None,
        processors: Optional[dict[AssetType, BaseAssetProcessor]] = None,
        pagination: Optional[PaginationPolicy] = None,
        retry: Optional[RetryPolicy] = None,
        stale_after: timedelta = timedelta(hours=1),
        cancel_grace_s: float = 0.1,
        history_limit: int = 6,
        checkpoint_queue_size: int = 32,
    ) -> None:
        self.source = source
        self.store = store
        self.pagination = pagination or PaginationPolicy()
        self.retry = retry or RetryPolicy()
        self.index_builder = index_builder or AssetIndexBuilder(store)
        self.catalog_builder = catalog_builder
        self.processors = processors or create_processors(source, store, retry=self.retry)
        self.stale_after = stale_after
        self.cancel_grace_s = cancel_grace_s
        self.history_limit = history_limit

        self.sessions = SessionStore(store)
        self.writer = CheckpointWriter(self.sessions, maxsize=checkpoint_queue_size)
        self.tracker = SessionTracker(self.sessions, self.writer)

        self._completing = False
        self._background: set[asyncio.Task[None]] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        source: BaseAssetSource,
        store: BlobStore,
        *,
        index_builder: Optional[AssetIndexBuilder] = None,
        catalog_builder: Optional[DataCatalogBuilder] = None,
    ) -> "ExportOrchestrator":
        retry = RetryPolicy(
            max_attempts=settings.EXPORT_MAX_ATTEMPTS,
            base_delay_s=settings.EXPORT_RETRY_BASE_DELAY_S,
            max_delay_s=settings.EXPORT_RETRY_MAX_DELAY_S,
        )
        pagination = PaginationPolicy(
            page_size=settings.EXPORT_PAGE_SIZE,
            page_delay_s=settings.EXPORT_PAGE_DELAY_S,
            large_page_delay_s=settings.EXPORT_LARGE_PAGE_DELAY_S,
            large_listing_threshold=settings.EXPORT_LARGE_LISTING_THRESHOLD,
            checkpoint_every_pages=settings.EXPORT_CHECKPOINT_EVERY_PAGES,
            checkpoint_every_items=settings.EXPORT_CHECKPOINT_EVERY_ITEMS,
        )
        processors = create_processors(
            source,
            store,
            retry=retry,
            concurrency=settings.EXPORT_ASSET_CONCURRENCY,
            cache_ttl=timedelta(seconds=settings.ASSET_CACHE_TTL_S),
        )
        return cls(
            source,
            store,
            index_builder=index_builder,
            catalog_builder=catalog_builder,
            processors=processors,
            pagination=pagination,
            retry=retry,
            stale_after=timedelta(seconds=settings.SESSION_STALE_AFTER_S),
            cancel_grace_s=settings.SESSION_CANCEL_GRACE_S,
            history_limit=settings.SESSION_HISTORY_LIMIT,
            checkpoint_queue_size=settings.CHECKPOINT_QUEUE_SIZE,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def startup(self) -> Optional[ExportSession]:
        """Recover sessions a previous process left running.

        Returns the adopted session, if any.
        """
        self.writer.start()
        now = _utc_now()
        running = [s for s in await self.sessions.list_sessions() if s.status == SessionStatus.RUNNING]

        fresh: list[ExportSession] = []
        for session in running:
            if session.is_stale(self.stale_after, now):
                logger.warning(
                    "Closing stale export session %s (last updated %s)",
                    session.session_id,
                    session.last_updated.isoformat(),
                )
                _close_session(session, SessionStatus.ERROR, "Session abandoned: no update for over an hour")
                session.last_updated = now
                await self.sessions.save(session)
            else:
                fresh.append(session)

        if not fresh:
            return None
        fresh.sort(key=lambda s: s.last_updated, reverse=True)
        adopted, superseded = fresh[0], fresh[1:]
        for session in superseded:
            logger.warning(
                "Closing export session %s, superseded by %s", session.session_id, adopted.session_id
            )
            _close_session(session, SessionStatus.ERROR, f"Superseded by session {adopted.session_id}")
            session.last_updated = now
            await self.sessions.save(session)

        await self.tracker.adopt(adopted)
        logger.info("Adopted running export session %s", adopted.session_id)
        return adopted.model_copy(deep=True)

    async def shutdown(self) -> None:
        """Stop background work and drain pending checkpoints.

        A session still running is left ``running`` in the store so the next
        process adopts it.
        """
        for task in list(self._background):
            task.cancel()
        await self.wait_for_background()
        await self.writer.stop()

    async def wait_for_background(self) -> None:
        """Wait for post-export rebuilds started by ``complete_session``."""
        while self._background:
            tasks = list(self._background)
            await asyncio.gather(*tasks, return_exceptions=True)
            self._background.difference_update(tasks)

    # ------------------------------------------------------------------
    # Session state machine
    # ------------------------------------------------------------------

    async def start_session(self, asset_types: Optional[Iterable[AssetType]] = None) -> str:
        """Open a new running session, cancelling the current one first."""
        if self.tracker.session_id is not None:
            logger.info("Cancelling export session %s before starting a new one", self.tracker.session_id)
            await self.cancel_session()

        types = list(asset_types) if asset_types else list(EXPORT_ORDER)
        session = ExportSession(
            session_id=new_session_id(),
            status=SessionStatus.RUNNING,
            progress={t.collection: ExportProgress() for t in types},
        )
        await self.tracker.begin(session)
        logger.info(
            "Started export session %s for %s",
            session.session_id,
            ", ".join(t.collection for t in types),
        )
        return session.session_id

    async def complete_session(
        self,
        summary: Optional[ExportSummary] = None,
        *,
        rebuild_index: bool = True,
    ) -> Optional[ExportSession]:
        """Mark the current session completed and kick off post-export rebuilds.

        The rebuilds run in the background; their failures are logged and
        never change the session outcome.
        """
        session_id = self.tracker.session_id
        if session_id is None:
            return None

        def _complete(session: ExportSession) -> None:
            session.status = SessionStatus.COMPLETED
            session.end_time = _utc_now()
            if summary is not None:
                session.summary = summary

        snapshot = await self.tracker.mutate(_complete, session_id=session_id, wait=True)
        if snapshot is None:
            return None
        await self.tracker.clear(session_id)
        logger.info("Export session %s completed", session_id)
        self._spawn(self._post_export_rebuild(rebuild_index), f"post-export-{session_id}")
        return snapshot

    async def fail_session(self, session_id: str, message: str) -> Optional[ExportSession]:
        snapshot = await self.tracker.mutate(
            lambda s: _close_session(s, SessionStatus.ERROR, message),
            session_id=session_id,
            wait=True,
        )
        await self.tracker.clear(session_id)
        if snapshot is not None:
            logger.error("Export session %s failed: %s", session_id, message)
        return snapshot

    async def cancel_session(self) -> Optional[ExportSession]:
        """Cancel the current session, or the latest persisted running one."""
        snapshot = await self.tracker.mutate(
            lambda s: _close_session(s, SessionStatus.CANCELLED, CANCELLED_MESSAGE),
            wait=True,
        )
        if snapshot is not None:
            await self.tracker.clear(snapshot.session_id)
        else:
            running = [s for s in await self.sessions.list_sessions() if s.status == SessionStatus.RUNNING]
            if not running:
                return None
            snapshot = running[0]
            _close_session(snapshot, SessionStatus.CANCELLED, CANCELLED_MESSAGE)
            snapshot.last_updated = _utc_now()
            await self.sessions.save(snapshot)

        logger.info("Cancelled export session %s", snapshot.session_id)
        # Give an eventually consistent store time to show the write.
        await asyncio.sleep(self.cancel_grace_s)
        return snapshot

    async def check_and_complete_session(self) -> bool:
        """Complete the current session once no type is running and one finished.

        Returns True when this call completed the session.
        """
        if self._completing:
            return False
        self._completing = True
        try:
            snapshot = self.tracker.snapshot()
            if snapshot is None or snapshot.status != SessionStatus.RUNNING:
                return False
            entries = [e for key, e in snapshot.progress.items() if key != REBUILD_PROGRESS_KEY]
            if any(e.status == ProgressStatus.RUNNING for e in entries):
                return False
            if not any(e.status == ProgressStatus.COMPLETED for e in entries):
                if entries and all(e.is_terminal for e in entries):
                    await self.fail_session(snapshot.session_id, "No asset type completed")
                return False
            summary = self._summary_from(snapshot)
            if await self.complete_session(summary) is None:
                return False
            await self.store.put(EXPORT_SUMMARY_KEY, summary.model_dump(mode="json"))
            return True
        finally:
            self._completing = False

    # ------------------------------------------------------------------
    # Exports
    # ------------------------------------------------------------------

    async def export_asset_type(
        self,
        asset_type: AssetType,
        force_refresh: bool = False,
        session_id: Optional[str] = None,
    ) -> AssetStats:
        """List and process every asset of one type inside the current session.

        Each page is processed and checkpointed before the next one is
        requested.  A type whose entry is still ``running`` (an adopted
        session) resumes from its checkpointed continuation token.

        Raises:
            ConflictError: there is no active session.
            ListingError: a page could not be listed.
            ExportCancelledError: the session stopped being current.
        """
        session_id = session_id or self.tracker.session_id
        if session_id is None or not self.tracker.is_active(session_id):
            raise ConflictError("No active export session")

        key = asset_type.collection
        snapshot = self.tracker.snapshot()
        entry = snapshot.progress.get(key) if snapshot else None
        resuming = bool(entry and entry.status == ProgressStatus.RUNNING and entry.resume_token)

        if resuming:
            assert entry is not None
            stats = entry.stats.model_copy(deep=True) if entry.stats else AssetStats()
            start_token, pages_done, items_listed = entry.resume_token, entry.pages_listed, entry.total
            logger.info("Resuming %s export after %d pages", key, pages_done)
            await self.tracker.update_progress(
                session_id, key, checkpoint=False, message=f"Resuming {key} export"
            )
        else:
            stats = AssetStats()
            start_token, pages_done, items_listed = None, 0, 0
            await self.tracker.update_progress(
                session_id,
                key,
                status=ProgressStatus.RUNNING,
                current=0,
                total=0,
                errors=[],
                stats=None,
                resume_token=None,
                pages_listed=0,
                message=f"Exporting {key}",
                started_at=_utc_now(),
                completed_at=None,
            )

        processor = self.processors[asset_type]
        context = ProcessingContext(session_id=session_id, force_refresh=force_refresh)
        pages = iter_pages(
            self.source.lister(asset_type),
            asset_type,
            pagination=self.pagination,
            retry=self.retry,
            start_token=start_token,
            items_listed=items_listed,
        )
        since_checkpoint = 0
        last_page = pages_done
        try:
            async with contextlib.aclosing(pages):
                async for page in pages:
                    self._ensure_active(session_id)
                    page_stats = await processor.process_batch(
                        page.items, context, lambda: self.tracker.is_active(session_id)
                    )
                    self._ensure_active(session_id)
                    stats.merge(page_stats)

                    page_number = pages_done + page.number
                    last_page = page_number
                    since_checkpoint += len(page.items)
                    checkpoint = self.pagination.should_checkpoint(page_number, since_checkpoint)
                    if checkpoint:
                        since_checkpoint = 0
                    await self.tracker.update_progress(
                        session_id,
                        key,
                        checkpoint=checkpoint,
                        current=stats.total,
                        total=page.items_listed,
                        stats=stats.model_copy(deep=True),
                        errors=list(stats.error_details),
                        resume_token=page.next_token,
                        pages_listed=page_number,
                        message=f"Processed {stats.total} {key}",
                    )
        except (RetryExhaustedError, SourceError) as exc:
            failed_page = last_page + 1
            page_error = ExportErrorRecord(
                asset_id=f"{key}-page-{failed_page}",
                asset_name=f"Page {failed_page} of {key}",
                error=str(exc),
                error_type=type(exc.__cause__ or exc).__name__,
            )
            await self.tracker.update_progress(
                session_id,
                key,
                wait=True,
                status=ProgressStatus.ERROR,
                message=f"Listing failed: {exc}",
                stats=stats.model_copy(deep=True),
                errors=[*stats.error_details, page_error],
                resume_token=None,
                completed_at=_utc_now(),
            )
            raise ListingError(key, str(exc)) from exc

        self._ensure_active(session_id)
        failed = stats.total > 0 and stats.errors == stats.total
        await self.tracker.update_progress(
            session_id,
            key,
            status=ProgressStatus.ERROR if failed else ProgressStatus.COMPLETED,
            current=stats.total,
            total=stats.total,
            stats=stats.model_copy(deep=True),
            errors=list(stats.error_details),
            resume_token=None,
            message=(
                f"All {stats.total} {key} failed to export"
                if failed
                else f"Exported {stats.total} {key} ({stats.updated} updated, {stats.cached} cached, {stats.errors} errors)"
            ),
            completed_at=_utc_now(),
        )
        logger.info(
            "Exported %s: %d total, %d updated, %d cached, %d errors",
            key,
            stats.total,
            stats.updated,
            stats.cached,
            stats.errors,
        )
        return stats

    async def export_all(self, force_refresh: bool = False, resume: bool = False) -> Optional[ExportSummary]:
        """Export all four types one after another and complete the session.

        With *resume*, continues the current (adopted) session instead of
        starting a new one; types already completed are not exported again.
        Returns None when the session was cancelled part-way.

        Raises:
            ListingError: a type could not be listed; the session is failed.
        """
        started = time.monotonic()
        if resume and self.tracker.is_active(self.tracker.session_id):
            session_id = self.tracker.session_id
            assert session_id is not None
        else:
            session_id = await self.start_session()

        results: dict[str, AssetStats] = {}
        try:
            for asset_type in EXPORT_ORDER:
                snapshot = self.tracker.snapshot()
                entry = snapshot.progress.get(asset_type.collection) if snapshot else None
                if entry is not None and entry.status == ProgressStatus.COMPLETED:
                    results[asset_type.collection] = entry.stats or AssetStats()
                    continue
                results[asset_type.collection] = await self.export_asset_type(
                    asset_type, force_refresh, session_id
                )
        except ListingError as exc:
            await self.fail_session(session_id, str(exc))
            raise
        except ExportCancelledError:
            logger.info("Export session %s was cancelled", session_id)
            return None

        snapshot = self.tracker.snapshot()
        summary = ExportSummary(
            results=results,
            incomplete_types=[
                key
                for key, entry in (snapshot.progress.items() if snapshot else [])
                if key != REBUILD_PROGRESS_KEY and entry.status != ProgressStatus.COMPLETED
            ],
            duration_s=round(time.monotonic() - started, 3),
        )
        await self.store.put(EXPORT_SUMMARY_KEY, summary.model_dump(mode="json"))
        await self._tracked_index_rebuild(session_id)
        await self.complete_session(summary, rebuild_index=False)
        return summary

    async def start_export_all(self, force_refresh: bool = False) -> str:
        """Open a session and run ``export_all`` on it in the background."""
        session_id = await self.start_session()

        async def _run() -> None:
            try:
                await self.export_all(force_refresh, resume=True)
            except Exception:
                logger.exception("Background export for session %s failed", session_id)

        self._spawn(_run(), f"export-all-{session_id}")
        return session_id

    async def export_type_progressive(
        self, asset_type: AssetType, force_refresh: bool = False
    ) -> TypeExportResult:
        """Export one type inside the current session, opening one if needed.

        The session completes once no requested type is still running.
        """
        session_id = self.tracker.session_id
        if session_id is None or not self.tracker.is_active(session_id):
            session_id = await self.start_session([asset_type])
        else:
            await self.tracker.mutate(
                lambda s: s.progress.setdefault(asset_type.collection, ExportProgress()),
                session_id=session_id,
            )

        try:
            stats = await self.export_asset_type(asset_type, force_refresh, session_id)
        except ListingError:
            await self.check_and_complete_session()
            raise
        completed = await self.check_and_complete_session()
        return TypeExportResult(session_id=session_id, stats=stats, session_completed=completed)

    # ------------------------------------------------------------------
    # Index
    # ------------------------------------------------------------------

    async def rebuild_index(self) -> AssetIndex:
        """Rebuild the master index, tracked in the current session if any."""
        session_id = self.tracker.session_id
        if session_id is not None and self.tracker.is_active(session_id):
            return await self._tracked_index_rebuild(session_id, swallow=False)
        return await self.index_builder.rebuild_index()

    async def _tracked_index_rebuild(self, session_id: str, swallow: bool = True) -> Optional[AssetIndex]:
        await self.tracker.update_progress(
            session_id,
            REBUILD_PROGRESS_KEY,
            status=ProgressStatus.RUNNING,
            message="Rebuilding asset index",
            started_at=_utc_now(),
        )
        try:
            index = await self.index_builder.rebuild_index()
        except Exception as exc:
            logger.exception("Index rebuild failed for session %s", session_id)
            await self.tracker.update_progress(
                session_id,
                REBUILD_PROGRESS_KEY,
                status=ProgressStatus.ERROR,
                message=f"Index rebuild failed: {exc}",
                completed_at=_utc_now(),
            )
            if swallow:
                return None
            raise
        await self.tracker.update_progress(
            session_id,
            REBUILD_PROGRESS_KEY,
            status=ProgressStatus.COMPLETED,
            current=index.summary.total_assets,
            total=index.summary.total_assets,
            message=f"Indexed {index.summary.total_assets} assets",
            completed_at=_utc_now(),
        )
        return index

    async def _post_export_rebuild(self, rebuild_index: bool) -> None:
        if rebuild_index:
            try:
                await self.index_builder.rebuild_index()
            except Exception:
                logger.exception("Post-export index rebuild failed")
                return
        if self.catalog_builder is not None:
            try:
                await self.catalog_builder.rebuild_catalog()
            except Exception:
                logger.exception("Post-export catalog rebuild failed")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_progress(self) -> Optional[ExportSession]:
        return self.tracker.snapshot()

    async def get_session(self, session_id: str) -> Optional[ExportSession]:
        current = self.tracker.snapshot()
        if current is not None and current.session_id == session_id:
            return current
        return await self.sessions.load(session_id)

    async def list_sessions(self, limit: Optional[int] = None) -> list[ExportSession]:
        """Recent sessions, newest first; the in-memory session wins over its checkpoint."""
        limit = limit or self.history_limit
        sessions = await self.sessions.list_sessions()
        current = self.tracker.snapshot()
        if current is not None:
            sessions = [s for s in sessions if s.session_id != current.session_id] + [current]
            sessions.sort(key=lambda s: s.start_time, reverse=True)
        return sessions[:limit]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_active(self, session_id: str) -> None:
        if not self.tracker.is_active(session_id):
            raise ExportCancelledError(session_id)

    def _summary_from(self, session: ExportSession) -> ExportSummary:
        results: dict[str, AssetStats] = {}
        incomplete: list[str] = []
        for key, entry in session.progress.items():
            if key == REBUILD_PROGRESS_KEY:
                continue
            if entry.stats is not None:
                results[key] = entry.stats
            if entry.status != ProgressStatus.COMPLETED:
                incomplete.append(key)
        duration = (_utc_now() - session.start_time).total_seconds()
        return ExportSummary(results=results, incomplete_types=incomplete, duration_s=round(duration, 3))

    def _spawn(self, coro, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
