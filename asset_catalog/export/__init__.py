"""Export pipeline: sessions, pagination, per-type processors and the orchestrator."""

from asset_catalog.export.orchestrator import ExportOrchestrator, new_session_id
from asset_catalog.export.pagination import Page, PaginationPolicy, iter_pages
from asset_catalog.export.processors import (
    BaseAssetProcessor,
    Outcome,
    ProcessingContext,
    create_processors,
)
from asset_catalog.export.session import CheckpointWriter, SessionStore, SessionTracker

__all__ = [
    "ExportOrchestrator",
    "new_session_id",
    "Page",
    "PaginationPolicy",
    "iter_pages",
    "BaseAssetProcessor",
    "Outcome",
    "ProcessingContext",
    "create_processors",
    "CheckpointWriter",
    "SessionStore",
    "SessionTracker",
]
