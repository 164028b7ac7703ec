"""Derived documents: the master asset index, lineage graph and field catalog."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from asset_catalog.models.schema import AssetType, Permission

INDEX_VERSION = "2.0"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Asset index
# ---------------------------------------------------------------------------


class AssetIndexEntry(BaseModel):
    """Denormalized per-asset summary kept in the master index."""

    id: str
    name: str
    type: AssetType
    arn: Optional[str] = None
    file_size: int = 0
    last_modified: Optional[datetime] = None
    last_exported: Optional[datetime] = None
    tags: dict[str, str] = Field(default_factory=dict)
    permissions: list[Permission] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class IndexSummary(BaseModel):
    total_assets: int = 0
    assets_by_type: dict[str, int] = Field(default_factory=dict)
    total_size: int = 0
    last_updated: datetime = Field(default_factory=_utc_now)
    index_version: str = INDEX_VERSION


class AssetIndex(BaseModel):
    """All index entries grouped by collection name (``dashboards``, …)."""

    assets: dict[str, list[AssetIndexEntry]] = Field(default_factory=dict)
    summary: IndexSummary = Field(default_factory=IndexSummary)

    def entries(self, asset_type: AssetType) -> list[AssetIndexEntry]:
        return self.assets.get(asset_type.collection, [])

    def find(self, asset_id: str) -> Optional[AssetIndexEntry]:
        for entries in self.assets.values():
            for entry in entries:
                if entry.id == asset_id:
                    return entry
        return None

    @property
    def is_empty(self) -> bool:
        return not any(self.assets.values())


# ---------------------------------------------------------------------------
# Lineage
# ---------------------------------------------------------------------------


class RelationshipType(str, Enum):
    USES = "uses"
    USED_BY = "used_by"


class LineageRelationship(BaseModel):
    source_asset_id: str
    source_asset_type: AssetType
    source_asset_name: str
    target_asset_id: str
    target_asset_type: AssetType
    target_asset_name: str
    relationship_type: RelationshipType


class AssetLineage(BaseModel):
    """One asset with its direct and transitive relationships."""

    asset_id: str
    asset_type: AssetType
    asset_name: str
    relationships: list[LineageRelationship] = Field(default_factory=list)

    def has_relationship(
        self, target_id: str, target_type: AssetType, relationship: RelationshipType
    ) -> bool:
        return any(
            r.target_asset_id == target_id
            and r.target_asset_type == target_type
            and r.relationship_type == relationship
            for r in self.relationships
        )

    def targets(
        self, relationship: RelationshipType, target_type: Optional[AssetType] = None
    ) -> list[LineageRelationship]:
        return [
            r
            for r in self.relationships
            if r.relationship_type == relationship
            and (target_type is None or r.target_asset_type == target_type)
        ]


# ---------------------------------------------------------------------------
# Field catalog
# ---------------------------------------------------------------------------


class FieldSource(BaseModel):
    """One occurrence of a field inside one asset."""

    asset_type: AssetType
    asset_id: str
    asset_name: str
    dataset_id: Optional[str] = None
    dataset_name: Optional[str] = None
    datasource_type: Optional[str] = None
    import_mode: Optional[str] = None
    last_modified: Optional[datetime] = None
    used_in_visuals: bool = False
    used_in_calculated_fields: bool = False


class ExpressionVariant(BaseModel):
    expression: str
    sources: list[FieldSource] = Field(default_factory=list)


class FieldLineage(BaseModel):
    dataset_id: Optional[str] = None
    dataset_name: Optional[str] = None
    datasource_type: Optional[str] = None
    analysis_ids: list[str] = Field(default_factory=list)
    dashboard_ids: list[str] = Field(default_factory=list)


class FieldTag(BaseModel):
    key: str
    value: str = ""


class FieldCustomMetadata(BaseModel):
    description: Optional[str] = None
    classification: Optional[str] = None
    tags: list[FieldTag] = Field(default_factory=list)


class FieldMetadata(FieldCustomMetadata):
    """User-maintained metadata for one field, stored outside the catalog."""

    source_type: str
    source_id: str
    field_name: str
    updated_at: datetime = Field(default_factory=_utc_now)

    def custom(self) -> FieldCustomMetadata:
        return FieldCustomMetadata(
            description=self.description,
            classification=self.classification,
            tags=list(self.tags),
        )


class CatalogField(BaseModel):
    field_id: str
    field_name: str
    data_type: Optional[str] = None
    is_calculated: bool = False
    expression: Optional[str] = None
    expression_variants: list[ExpressionVariant] = Field(default_factory=list)
    has_variants: bool = False
    sources: list[FieldSource] = Field(default_factory=list)
    lineage: FieldLineage = Field(default_factory=FieldLineage)
    usage_count: int = 0
    custom_metadata: Optional[FieldCustomMetadata] = None


class CatalogSummary(BaseModel):
    total_fields: int = 0
    total_calculated_fields: int = 0
    fields_with_variants: int = 0
    datasets_scanned: int = 0
    analyses_scanned: int = 0
    dashboards_scanned: int = 0
    last_updated: Optional[datetime] = None


class DataCatalog(BaseModel):
    fields: list[CatalogField] = Field(default_factory=list)
    calculated_fields: list[CatalogField] = Field(default_factory=list)
    summary: CatalogSummary = Field(default_factory=CatalogSummary)

    @property
    def is_empty(self) -> bool:
        return not self.fields and not self.calculated_fields
