"""Data models package.

Public surface area — import from here rather than from sub-modules directly.
"""

from asset_catalog.models.assets import (
    AnalysisAsset,
    CalculatedFieldDefinition,
    DashboardAsset,
    DatasetAsset,
    DatasetReference,
    DatasourceAsset,
    FieldReference,
    ParsedAsset,
    PhysicalTable,
    TableKind,
    arn_resource_id,
)
from asset_catalog.models.catalog import (
    INDEX_VERSION,
    AssetIndex,
    AssetIndexEntry,
    AssetLineage,
    CatalogField,
    CatalogSummary,
    DataCatalog,
    ExpressionVariant,
    FieldCustomMetadata,
    FieldLineage,
    FieldMetadata,
    FieldSource,
    FieldTag,
    IndexSummary,
    LineageRelationship,
    RelationshipType,
)
from asset_catalog.models.schema import (
    EXPORT_ORDER,
    REBUILD_PROGRESS_KEY,
    AssetRecord,
    AssetStats,
    AssetSummary,
    AssetType,
    ExportErrorRecord,
    ExportProgress,
    ExportSession,
    ExportSummary,
    Permission,
    ProgressStatus,
    SessionStatus,
)
from asset_catalog.models.validators import validate_asset_blob, validate_metadata

__all__ = [
    # Enums / constants
    "AssetType",
    "SessionStatus",
    "ProgressStatus",
    "RelationshipType",
    "TableKind",
    "EXPORT_ORDER",
    "REBUILD_PROGRESS_KEY",
    "INDEX_VERSION",
    # Assets
    "AssetRecord",
    "AssetSummary",
    "Permission",
    "ParsedAsset",
    "DashboardAsset",
    "AnalysisAsset",
    "DatasetAsset",
    "DatasourceAsset",
    "DatasetReference",
    "FieldReference",
    "CalculatedFieldDefinition",
    "PhysicalTable",
    "arn_resource_id",
    # Sessions
    "ExportSession",
    "ExportProgress",
    "ExportErrorRecord",
    "ExportSummary",
    "AssetStats",
    # Index / lineage / catalog
    "AssetIndex",
    "AssetIndexEntry",
    "IndexSummary",
    "AssetLineage",
    "LineageRelationship",
    "DataCatalog",
    "CatalogField",
    "CatalogSummary",
    "ExpressionVariant",
    "FieldSource",
    "FieldLineage",
    "FieldCustomMetadata",
    "FieldMetadata",
    "FieldTag",
    # Validation
    "validate_asset_blob",
    "validate_metadata",
]
