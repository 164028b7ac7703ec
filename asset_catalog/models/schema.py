"""Core records of the export pipeline.

Entity types:
  AssetRecord     — one persisted dashboard / analysis / dataset / datasource
  ExportSession   — one bulk export run, checkpointed to the blob store
  ExportProgress  — per asset-type (or "rebuild") progress inside a session
  AssetStats      — updated / cached / error counters for one asset type
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, computed_field

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class AssetType(str, Enum):
    """The four asset kinds exported from the BI provider."""

    DASHBOARD = "dashboard"
    ANALYSIS = "analysis"
    DATASET = "dataset"
    DATASOURCE = "datasource"

    @property
    def collection(self) -> str:
        """Plural name used in blob keys and progress maps."""
        return _COLLECTIONS[self]

    @classmethod
    def parse(cls, value: str) -> "AssetType":
        """Accept either the singular value or the plural collection name."""
        for asset_type, collection in _COLLECTIONS.items():
            if value in (asset_type.value, collection):
                return asset_type
        raise ValueError(f"Unknown asset type: {value!r}")


_COLLECTIONS: dict[AssetType, str] = {
    AssetType.DASHBOARD: "dashboards",
    AssetType.ANALYSIS: "analyses",
    AssetType.DATASET: "datasets",
    AssetType.DATASOURCE: "datasources",
}

# Order used by a full export run.
EXPORT_ORDER: tuple[AssetType, ...] = (
    AssetType.DASHBOARD,
    AssetType.DATASET,
    AssetType.ANALYSIS,
    AssetType.DATASOURCE,
)

REBUILD_PROGRESS_KEY = "rebuild"


class SessionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


class ProgressStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------


class Permission(BaseModel):
    """One permission grant on an asset."""

    principal: str
    principal_type: str = "UNKNOWN"
    actions: list[str] = Field(default_factory=list)


class AssetRecord(BaseModel):
    """The enriched blob persisted at ``assets/{collection}/{asset_id}.json``.

    ``definition`` holds the provider payload unchanged; everything the
    pipeline needs later is derived from it by the asset parser.
    """

    asset_id: str = Field(..., min_length=1)
    asset_type: AssetType
    name: str
    arn: Optional[str] = None
    definition: dict[str, Any] = Field(default_factory=dict)
    permissions: list[Permission] = Field(default_factory=list)
    tags: dict[str, str] = Field(default_factory=dict)
    created_time: Optional[datetime] = None
    last_modified: Optional[datetime] = None
    exported_at: datetime = Field(default_factory=_utc_now)
    extra_metadata: dict[str, Any] = Field(default_factory=dict)


class AssetSummary(BaseModel):
    """One item of a listing page."""

    asset_id: str
    name: str = ""
    arn: Optional[str] = None
    created_time: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    raw: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Export sessions
# ---------------------------------------------------------------------------


class ExportErrorRecord(BaseModel):
    asset_id: str
    asset_name: Optional[str] = None
    error: str
    error_type: str = "Error"
    timestamp: datetime = Field(default_factory=_utc_now)


class AssetStats(BaseModel):
    total: int = 0
    updated: int = 0
    cached: int = 0
    errors: int = 0
    error_details: list[ExportErrorRecord] = Field(default_factory=list)

    def merge(self, other: "AssetStats") -> None:
        self.total += other.total
        self.updated += other.updated
        self.cached += other.cached
        self.errors += other.errors
        self.error_details.extend(other.error_details)


class ExportProgress(BaseModel):
    status: ProgressStatus = ProgressStatus.IDLE
    current: int = 0
    total: int = 0
    message: str = ""
    errors: list[ExportErrorRecord] = Field(default_factory=list)
    stats: Optional[AssetStats] = None
    # Continuation token of the next page still to be listed.
    resume_token: Optional[str] = None
    pages_listed: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (ProgressStatus.COMPLETED, ProgressStatus.ERROR)


class ExportSummary(BaseModel):
    """Aggregate result of a session, also written to the export-summary blob."""

    results: dict[str, AssetStats] = Field(default_factory=dict)
    incomplete_types: list[str] = Field(default_factory=list)
    export_time: datetime = Field(default_factory=_utc_now)
    duration_s: Optional[float] = None

    @computed_field  # type: ignore[misc]
    @property
    def total_assets(self) -> int:
        return sum(s.total for s in self.results.values())

    @computed_field  # type: ignore[misc]
    @property
    def total_errors(self) -> int:
        return sum(s.errors for s in self.results.values())


class ExportSession(BaseModel):
    session_id: str
    status: SessionStatus = SessionStatus.IDLE
    start_time: datetime = Field(default_factory=_utc_now)
    end_time: Optional[datetime] = None
    last_updated: datetime = Field(default_factory=_utc_now)
    progress: dict[str, ExportProgress] = Field(default_factory=dict)
    summary: Optional[ExportSummary] = None

    def age(self, now: Optional[datetime] = None) -> timedelta:
        """Time since the last checkpointed mutation."""
        return (now or _utc_now()) - self.last_updated

    def is_stale(self, max_age: timedelta, now: Optional[datetime] = None) -> bool:
        return self.status == SessionStatus.RUNNING and self.age(now) > max_age
