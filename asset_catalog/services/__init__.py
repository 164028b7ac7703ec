"""Read-side services and the container wiring them to the export pipeline.

Public surface area — import from here rather than sub-modules.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from asset_catalog.connectors.base import BaseAssetSource
from asset_catalog.core.config import Settings
from asset_catalog.services.catalog import DataCatalogBuilder, merge_fields
from asset_catalog.services.field_metadata import FieldMetadataService
from asset_catalog.services.indexing import AssetIndexBuilder, IndexPage
from asset_catalog.services.lineage import LineageResolver, build_graph
from asset_catalog.storage.base import BlobStore

if TYPE_CHECKING:
    from asset_catalog.export.orchestrator import ExportOrchestrator


@dataclass
class Services:
    """Everything a request handler or the CLI needs, built once per process."""

    store: BlobStore
    source: BaseAssetSource
    index_builder: AssetIndexBuilder
    lineage: LineageResolver
    field_metadata: FieldMetadataService
    catalog: DataCatalogBuilder
    orchestrator: ExportOrchestrator


def build_services(
    settings: Settings,
    *,
    store: Optional[BlobStore] = None,
    source: Optional[BaseAssetSource] = None,
) -> Services:
    # Imported here: the export package depends on this one.
    from asset_catalog.connectors import create_asset_source
    from asset_catalog.export.orchestrator import ExportOrchestrator
    from asset_catalog.storage import create_blob_store

    store = store or create_blob_store(settings)
    source = source or create_asset_source(settings)
    index_builder = AssetIndexBuilder(
        store,
        load_concurrency=settings.INDEX_LOAD_CONCURRENCY,
        large_type_concurrency=settings.INDEX_LARGE_TYPE_CONCURRENCY,
        large_type_threshold=settings.INDEX_LARGE_TYPE_THRESHOLD,
    )
    field_metadata = FieldMetadataService(store)
    catalog = DataCatalogBuilder(store, index_builder, field_metadata)
    orchestrator = ExportOrchestrator.from_settings(
        settings,
        source,
        store,
        index_builder=index_builder,
        catalog_builder=catalog,
    )
    return Services(
        store=store,
        source=source,
        index_builder=index_builder,
        lineage=LineageResolver(index_builder),
        field_metadata=field_metadata,
        catalog=catalog,
        orchestrator=orchestrator,
    )


__all__ = [
    "AssetIndexBuilder",
    "IndexPage",
    "LineageResolver",
    "build_graph",
    "DataCatalogBuilder",
    "merge_fields",
    "FieldMetadataService",
    "Services",
    "build_services",
]
