"""Field catalog: every physical and calculated field across all assets.

Fields are first collected per owning asset (datasets, then analyses, then
dashboards) under type-qualified keys::

    {field}::{dataset_id}                       plain field
    {field}::{dataset_id}::calculated           dataset calculated field
    {field}::{analysis|dashboard}::{id}::calculated

and then merged purely by field name, so a physical column and a
same-named calculated field collapse into one entry.  Distinct expressions
of a merged calculated field are kept as variants ranked by source count.

The built catalog is cached in the blob store and only rebuilt on request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import ValidationError

from asset_catalog.connectors.quicksight.parser import DefinitionParser
from asset_catalog.models.assets import (
    AnalysisAsset,
    CalculatedFieldDefinition,
    DashboardAsset,
    DatasetAsset,
    DatasetReference,
)
from asset_catalog.models.catalog import (
    CatalogField,
    CatalogSummary,
    DataCatalog,
    ExpressionVariant,
    FieldLineage,
    FieldSource,
)
from asset_catalog.models.schema import AssetRecord, AssetType
from asset_catalog.services.field_metadata import FieldMetadataService
from asset_catalog.services.indexing import AssetIndexBuilder
from asset_catalog.services.lineage import DatasetResolver
from asset_catalog.storage.base import BlobStore
from asset_catalog.storage.keys import DATA_CATALOG_KEY

logger = logging.getLogger(__name__)

CALCULATED = "Calculated"
_PLACEHOLDER_TYPES = (None, "", "Unknown", CALCULATED)
_CONSUMER_TYPES = (AssetType.ANALYSIS, AssetType.DASHBOARD)


@dataclass
class DatasetInfo:
    """What later passes need to know about a dataset an asset points at."""

    dataset_id: str
    name: str
    datasource_type: Optional[str] = None
    import_mode: Optional[str] = None


class DataCatalogBuilder:
    def __init__(
        self,
        store: BlobStore,
        index_builder: AssetIndexBuilder,
        field_metadata: Optional[FieldMetadataService] = None,
        parser: Optional[DefinitionParser] = None,
    ) -> None:
        self.store = store
        self.index_builder = index_builder
        self.field_metadata = field_metadata or FieldMetadataService(store)
        self.parser = parser or DefinitionParser()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_catalog(self) -> DataCatalog:
        """Return the cached catalog, building it when there is none."""
        data = await self.store.get(DATA_CATALOG_KEY)
        if data is not None:
            try:
                cached = DataCatalog.model_validate(data)
            except ValidationError as exc:
                logger.warning("Ignoring unreadable cached catalog: %s", exc)
            else:
                if not cached.is_empty:
                    return cached
        return await self.build_catalog()

    async def rebuild_catalog(self) -> DataCatalog:
        await self.store.delete(DATA_CATALOG_KEY)
        return await self.build_catalog()

    async def build_catalog(self) -> DataCatalog:
        index = await self.index_builder.get_index()
        if index.is_empty:
            logger.info("Asset index is empty; returning an empty catalog")
            return DataCatalog()

        records = {t: await self.index_builder.load_records(t, index) for t in AssetType}
        datasets = [(r, self.parser.parse_dataset(r)) for r in records[AssetType.DATASET]]
        analyses = [(r, self.parser.parse_analysis(r)) for r in records[AssetType.ANALYSIS]]
        dashboards = [(r, self.parser.parse_dashboard(r)) for r in records[AssetType.DASHBOARD]]

        collector = _FieldCollector([parsed for _, parsed in datasets])
        for record, dataset in datasets:
            collector.add_dataset(record, dataset)
        for record, visual in [*analyses, *dashboards]:
            collector.add_visual_asset(record, visual)

        merged = merge_fields(list(collector.fields.values()))
        await self._attach_custom_metadata(merged)

        catalog = DataCatalog(
            fields=[f for f in merged if not f.is_calculated],
            calculated_fields=[f for f in merged if f.is_calculated],
        )
        catalog.summary = CatalogSummary(
            total_fields=len(catalog.fields),
            total_calculated_fields=len(catalog.calculated_fields),
            fields_with_variants=sum(1 for f in merged if f.has_variants),
            datasets_scanned=len(datasets),
            analyses_scanned=len(analyses),
            dashboards_scanned=len(dashboards),
            last_updated=datetime.now(timezone.utc),
        )
        await self.store.put(DATA_CATALOG_KEY, catalog.model_dump(mode="json"))
        logger.info(
            "Data catalog built: %d fields, %d calculated fields, %d with variants",
            catalog.summary.total_fields,
            catalog.summary.total_calculated_fields,
            catalog.summary.fields_with_variants,
        )
        return catalog

    async def _attach_custom_metadata(self, fields: list[CatalogField]) -> None:
        for field in fields:
            source = next((s for s in field.sources if s.asset_type == AssetType.DATASET), None)
            if source is None:
                continue
            try:
                metadata = await self.field_metadata.get(
                    AssetType.DATASET.value, source.asset_id, field.field_name
                )
            except Exception as exc:
                logger.warning("Could not load metadata for field %s: %s", field.field_name, exc)
                continue
            if metadata is not None:
                field.custom_metadata = metadata.custom()


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


class _FieldCollector:
    """Accumulate field occurrences under type-qualified keys."""

    def __init__(self, datasets: list[DatasetAsset]) -> None:
        self.fields: dict[str, CatalogField] = {}
        self.resolver = DatasetResolver(datasets)
        self.datasets = {
            d.asset_id: DatasetInfo(
                dataset_id=d.asset_id,
                name=d.name,
                datasource_type=d.datasource_type,
                import_mode=d.import_mode,
            )
            for d in datasets
        }

    def add_dataset(self, record: AssetRecord, dataset: DatasetAsset) -> None:
        info = self.datasets[dataset.asset_id]
        for column in dataset.fields:
            field = self._entry(
                f"{column.field_name}::{dataset.asset_id}",
                field_id=column.field_id,
                field_name=column.field_name,
                data_type=column.data_type,
                info=info,
            )
            field.sources.append(self._source(record, info))

        for calc in dataset.calculated_fields:
            field = self._entry(
                f"{calc.name}::{dataset.asset_id}::calculated",
                field_id=calc.name,
                field_name=calc.name,
                data_type=CALCULATED,
                info=info,
                expression=calc.expression,
            )
            field.sources.append(self._source(record, info))
            self._mark_references(calc, info)

    def add_visual_asset(self, record: AssetRecord, asset: Union[AnalysisAsset, DashboardAsset]) -> None:
        aliases = {ref.identifier: self._resolve(ref) for ref in asset.datasets}

        for column in asset.fields:
            info = self._dataset_for(column.dataset_identifier, aliases)
            key = f"{column.field_name}::{info.dataset_id if info else 'unknown'}"
            if info is not None and f"{key}::calculated" in self.fields:
                key = f"{key}::calculated"
            field = self._entry(
                key,
                field_id=column.field_id,
                field_name=column.field_name,
                data_type=column.data_type,
                info=info,
            )
            field.sources.append(self._source(record, info, used_in_visuals=True))
            self._add_consumer(field.lineage, record)

        for calc in asset.calculated_fields:
            info = self._dataset_for(calc.dataset_identifier, aliases)
            field = self._entry(
                f"{calc.name}::{record.asset_type.value}::{record.asset_id}::calculated",
                field_id=calc.name,
                field_name=calc.name,
                data_type=CALCULATED,
                info=info,
                expression=calc.expression,
            )
            field.sources.append(self._source(record, info))
            self._add_consumer(field.lineage, record)
            self._mark_references(calc, info)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve(self, ref: DatasetReference) -> DatasetInfo:
        dataset = self.resolver.resolve(ref)
        if dataset is not None:
            return self.datasets[dataset.asset_id]
        logger.debug("Dataset %s (%s) is not in the catalog", ref.identifier, ref.arn)
        return DatasetInfo(dataset_id=ref.dataset_id, name=ref.identifier)

    def _dataset_for(
        self, identifier: Optional[str], aliases: dict[str, DatasetInfo]
    ) -> Optional[DatasetInfo]:
        if not identifier:
            return None
        if identifier in aliases:
            return aliases[identifier]
        return self._resolve(DatasetReference(identifier=identifier))

    def _entry(
        self,
        key: str,
        *,
        field_id: str,
        field_name: str,
        data_type: Optional[str],
        info: Optional[DatasetInfo],
        expression: Optional[str] = None,
    ) -> CatalogField:
        field = self.fields.get(key)
        if field is None:
            field = CatalogField(
                field_id=field_id,
                field_name=field_name,
                data_type=data_type,
                is_calculated=expression is not None,
                expression=expression,
                lineage=FieldLineage(
                    dataset_id=info.dataset_id if info else None,
                    dataset_name=info.name if info else None,
                    datasource_type=info.datasource_type if info else None,
                ),
            )
            self.fields[key] = field
        return field

    @staticmethod
    def _source(
        record: AssetRecord,
        info: Optional[DatasetInfo],
        used_in_visuals: bool = False,
    ) -> FieldSource:
        return FieldSource(
            asset_type=record.asset_type,
            asset_id=record.asset_id,
            asset_name=record.name,
            dataset_id=info.dataset_id if info else None,
            dataset_name=info.name if info else None,
            datasource_type=info.datasource_type if info else None,
            import_mode=info.import_mode if info else None,
            last_modified=record.last_modified,
            used_in_visuals=used_in_visuals,
        )

    @staticmethod
    def _add_consumer(lineage: FieldLineage, record: AssetRecord) -> None:
        ids = lineage.analysis_ids if record.asset_type == AssetType.ANALYSIS else lineage.dashboard_ids
        if record.asset_id not in ids:
            ids.append(record.asset_id)

    def _mark_references(self, calc: CalculatedFieldDefinition, info: Optional[DatasetInfo]) -> None:
        """Flag the sources of every field the expression refers to."""
        referenced = set(calc.references)
        for field in self.fields.values():
            if field.field_name not in referenced:
                continue
            if info is not None and field.lineage.dataset_id not in (None, info.dataset_id):
                continue
            for source in field.sources:
                source.used_in_calculated_fields = True


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def merge_fields(collected: list[CatalogField]) -> list[CatalogField]:
    """Merge collected entries by exact field name, in first-seen order."""
    groups: dict[str, list[CatalogField]] = {}
    for field in collected:
        groups.setdefault(field.field_name, []).append(field)
    return [_merge_group(group) for group in groups.values()]


def _merge_group(group: list[CatalogField]) -> CatalogField:
    first = group[0]
    sources: dict[tuple[AssetType, str], FieldSource] = {}
    expressions: dict[str, dict[tuple[AssetType, str], FieldSource]] = {}
    lineage = FieldLineage()
    data_type = first.data_type

    for field in group:
        for source in field.sources:
            sources[(source.asset_type, source.asset_id)] = source
        if field.is_calculated and field.expression:
            by_pair = expressions.setdefault(field.expression, {})
            for source in field.sources:
                by_pair[(source.asset_type, source.asset_id)] = source
        if data_type in _PLACEHOLDER_TYPES and field.data_type not in _PLACEHOLDER_TYPES:
            data_type = field.data_type
        if lineage.dataset_id is None and field.lineage.dataset_id is not None:
            lineage.dataset_id = field.lineage.dataset_id
            lineage.dataset_name = field.lineage.dataset_name
            lineage.datasource_type = field.lineage.datasource_type
        for asset_id in field.lineage.analysis_ids:
            if asset_id not in lineage.analysis_ids:
                lineage.analysis_ids.append(asset_id)
        for asset_id in field.lineage.dashboard_ids:
            if asset_id not in lineage.dashboard_ids:
                lineage.dashboard_ids.append(asset_id)

    is_calculated = any(f.is_calculated for f in group)
    if data_type is None and is_calculated:
        data_type = CALCULATED

    # sorted() is stable: equal counts keep first-seen order.
    variants = sorted(
        (ExpressionVariant(expression=expr, sources=list(by_pair.values())) for expr, by_pair in expressions.items()),
        key=lambda v: len(v.sources),
        reverse=True,
    )
    merged_sources = list(sources.values())
    return CatalogField(
        field_id=first.field_id,
        field_name=first.field_name,
        data_type=data_type,
        is_calculated=is_calculated,
        expression=variants[0].expression if variants else None,
        expression_variants=variants if len(variants) > 1 else [],
        has_variants=len(variants) > 1,
        sources=merged_sources,
        lineage=lineage,
        usage_count=sum(1 for s in merged_sources if s.asset_type in _CONSUMER_TYPES),
    )
