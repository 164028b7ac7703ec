"""Request/response Pydantic models for the export API endpoints."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from asset_catalog.models.schema import AssetStats, AssetType, ExportSession, ExportSummary

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class StartSessionRequest(BaseModel):
    asset_types: Optional[list[str]] = Field(
        default=None,
        description="Asset types to track (singular or plural). Defaults to all four.",
    )

    @field_validator("asset_types")
    @classmethod
    def known_asset_types(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is not None:
            for value in v:
                AssetType.parse(value)
        return v

    def parsed_types(self) -> Optional[list[AssetType]]:
        if not self.asset_types:
            return None
        return [AssetType.parse(v) for v in self.asset_types]


class ExportRequest(BaseModel):
    force_refresh: bool = False


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SessionStartedResponse(BaseModel):
    session_id: str


class TypeExportResponse(BaseModel):
    session_id: Optional[str] = None
    asset_type: AssetType
    stats: AssetStats
    session_completed: bool = False


class ProgressResponse(BaseModel):
    active: bool
    session: Optional[ExportSession] = None


class SessionListResponse(BaseModel):
    items: list[ExportSession]
    count: int


SessionResponse = ExportSession
SummaryResponse = ExportSummary
