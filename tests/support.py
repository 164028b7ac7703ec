"""Shared builders and an in-process asset source for the test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from asset_catalog.connectors.base import AssetLister, AuthMode, BaseAssetSource, ListPage
from asset_catalog.core.retry import RetryPolicy
from asset_catalog.export.orchestrator import ExportOrchestrator
from asset_catalog.export.pagination import PaginationPolicy
from asset_catalog.models.schema import AssetRecord, AssetSummary, AssetType
from asset_catalog.services.catalog import DataCatalogBuilder
from asset_catalog.services.field_metadata import FieldMetadataService
from asset_catalog.services.indexing import AssetIndexBuilder
from asset_catalog.storage.base import BlobStore
from asset_catalog.storage.keys import asset_key

ACCOUNT = "123456789012"
REGION = "us-east-1"

_ARN_SEGMENTS = {
    AssetType.DASHBOARD: "dashboard",
    AssetType.ANALYSIS: "analysis",
    AssetType.DATASET: "dataset",
    AssetType.DATASOURCE: "datasource",
}

FAST_RETRY = RetryPolicy(max_attempts=5, base_delay_s=0.0, max_delay_s=0.0)


def fast_pagination(page_size: int = 100, **kwargs: Any) -> PaginationPolicy:
    return PaginationPolicy(page_size=page_size, page_delay_s=0.0, large_page_delay_s=0.0, **kwargs)


def arn(asset_type: AssetType, asset_id: str) -> str:
    return f"arn:aws:quicksight:{REGION}:{ACCOUNT}:{_ARN_SEGMENTS[asset_type]}/{asset_id}"


# ---------------------------------------------------------------------------
# Provider payload builders
# ---------------------------------------------------------------------------


def datasource_detail(ds_id: str, name: str, ds_type: str = "POSTGRESQL") -> dict[str, Any]:
    return {
        "DataSource": {
            "DataSourceId": ds_id,
            "Arn": arn(AssetType.DATASOURCE, ds_id),
            "Name": name,
            "Type": ds_type,
            "Status": "CREATION_SUCCESSFUL",
        }
    }


def dataset_detail(
    dataset_id: str,
    name: str,
    *,
    datasource_id: Optional[str] = None,
    columns: tuple[str, ...] = ("Sales", "Tax", "Region"),
    calculated: Optional[dict[str, str]] = None,
    import_mode: str = "SPICE",
    custom_sql: Optional[str] = None,
) -> dict[str, Any]:
    input_columns = [{"Name": c, "Type": "DECIMAL" if c != "Region" else "STRING"} for c in columns]
    physical: dict[str, Any] = {}
    if datasource_id is not None:
        ds_arn = arn(AssetType.DATASOURCE, datasource_id)
        if custom_sql:
            physical["t1"] = {
                "CustomSql": {
                    "DataSourceArn": ds_arn,
                    "Name": f"{name} query",
                    "SqlQuery": custom_sql,
                    "Columns": input_columns,
                }
            }
        else:
            physical["t1"] = {
                "RelationalTable": {
                    "DataSourceArn": ds_arn,
                    "Schema": "public",
                    "Name": name.lower(),
                    "InputColumns": input_columns,
                }
            }
    transforms = [
        {"CreateColumnsOperation": {"Columns": [{"ColumnName": k, "ColumnId": k.lower(), "Expression": v}]}}
        for k, v in (calculated or {}).items()
    ]
    return {
        "DataSet": {
            "DataSetId": dataset_id,
            "Arn": arn(AssetType.DATASET, dataset_id),
            "Name": name,
            "ImportMode": import_mode,
            "PhysicalTableMap": physical,
            "LogicalTableMap": {"l1": {"Alias": name, "DataTransforms": transforms, "Source": {"PhysicalTableId": "t1"}}},
            "OutputColumns": [{"Name": c, "Type": "DECIMAL"} for c in columns],
        }
    }


def _bar_chart(alias: str, *columns: str) -> dict[str, Any]:
    return {
        "BarChartVisual": {
            "VisualId": f"bar-{alias}",
            "ChartConfiguration": {
                "FieldWells": {
                    "BarChartAggregatedFieldWells": {
                        "Category": [
                            {
                                "CategoricalDimensionField": {
                                    "FieldId": f"{alias}.{c}",
                                    "Column": {"DataSetIdentifier": alias, "ColumnName": c},
                                }
                            }
                            for c in columns
                        ]
                    }
                }
            },
        }
    }


def visual_definition(
    datasets: dict[str, str],
    *,
    visual_columns: Optional[dict[str, tuple[str, ...]]] = None,
    calculated: Optional[list[tuple[str, str, str]]] = None,
) -> dict[str, Any]:
    """Definition body; *datasets* maps alias -> dataset id, *calculated* holds (alias, name, expression)."""
    return {
        "DataSetIdentifierDeclarations": [
            {"Identifier": alias, "DataSetArn": arn(AssetType.DATASET, ds_id)} for alias, ds_id in datasets.items()
        ],
        "CalculatedFields": [
            {"DataSetIdentifier": alias, "Name": name, "Expression": expr} for alias, name, expr in (calculated or [])
        ],
        "Sheets": [
            {
                "SheetId": "sheet-1",
                "Name": "Overview",
                "Visuals": [_bar_chart(alias, *cols) for alias, cols in (visual_columns or {}).items()],
            }
        ],
    }


def analysis_detail(analysis_id: str, name: str, definition: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    return {
        "Analysis": {
            "AnalysisId": analysis_id,
            "Arn": arn(AssetType.ANALYSIS, analysis_id),
            "Name": name,
            "Status": "CREATION_SUCCESSFUL",
        },
        "Definition": definition or {},
    }


def dashboard_detail(
    dashboard_id: str,
    name: str,
    *,
    source_analysis_id: Optional[str] = None,
    dataset_ids: tuple[str, ...] = (),
    definition: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    version: dict[str, Any] = {
        "VersionNumber": 1,
        "DataSetArns": [arn(AssetType.DATASET, d) for d in dataset_ids],
    }
    if source_analysis_id:
        version["SourceEntityArn"] = arn(AssetType.ANALYSIS, source_analysis_id)
    return {
        "Dashboard": {
            "DashboardId": dashboard_id,
            "Arn": arn(AssetType.DASHBOARD, dashboard_id),
            "Name": name,
            "Version": version,
        },
        "Definition": definition or {},
    }


def make_record(asset_type: AssetType, asset_id: str, name: str, detail: dict[str, Any]) -> AssetRecord:
    return AssetRecord(
        asset_id=asset_id,
        asset_type=asset_type,
        name=name,
        arn=arn(asset_type, asset_id),
        definition=detail,
        last_modified=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


async def seed_records(store: BlobStore, *records: AssetRecord) -> None:
    for record in records:
        await store.put(asset_key(record.asset_type, record.asset_id), record.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Fake asset source
# ---------------------------------------------------------------------------


class FakeLister(AssetLister):
    def __init__(self, source: "FakeAssetSource", asset_type: AssetType) -> None:
        self.source = source
        self.asset_type = asset_type

    async def list_page(self, continuation_token: Optional[str], page_size: int) -> ListPage:
        offset = int(continuation_token) if continuation_token else 0
        self.source.list_calls.append((self.asset_type, offset))
        queued = self.source.list_failures.get((self.asset_type, offset))
        if queued:
            raise queued.pop(0)
        ids = sorted(self.source.assets[self.asset_type])
        page_ids = ids[offset: offset + page_size]
        items = [self.source.assets[self.asset_type][i]["summary"] for i in page_ids]
        next_offset = offset + len(page_ids)
        return ListPage(items=items, next_token=str(next_offset) if next_offset < len(ids) else None)


class FakeAssetSource(BaseAssetSource):
    """Assets held in memory, with queued failures per call site."""

    def __init__(self) -> None:
        super().__init__({}, AuthMode.OFFLINE)
        self.assets: dict[AssetType, dict[str, dict[str, Any]]] = {t: {} for t in AssetType}
        # (asset_type, offset) -> errors raised by successive list calls
        self.list_failures: dict[tuple[AssetType, int], list[Exception]] = {}
        self.detail_failures: dict[str, list[Exception]] = {}
        self.permission_failures: set[str] = set()
        self.list_calls: list[tuple[AssetType, int]] = []
        self.detail_calls: list[str] = []

    def add(
        self,
        asset_type: AssetType,
        asset_id: str,
        name: str,
        detail: dict[str, Any],
        *,
        last_updated: Optional[datetime] = None,
        permissions: Optional[list[dict[str, Any]]] = None,
        tags: Optional[dict[str, str]] = None,
    ) -> None:
        summary = AssetSummary(
            asset_id=asset_id,
            name=name,
            arn=arn(asset_type, asset_id),
            created_time=datetime(2023, 6, 1, tzinfo=timezone.utc),
            last_updated=last_updated or datetime.now(timezone.utc) - timedelta(days=1),
            raw={"Name": name, "Arn": arn(asset_type, asset_id)},
        )
        self.assets[asset_type][asset_id] = {
            "summary": summary,
            "detail": detail,
            "permissions": permissions
            if permissions is not None
            else [{"Principal": f"arn:aws:quicksight:{REGION}:{ACCOUNT}:user/default/analyst", "Actions": ["quicksight:DescribeDashboard"]}],
            "tags": tags if tags is not None else {"team": "bi"},
        }

    def add_many(self, asset_type: AssetType, count: int, prefix: str = "asset") -> list[str]:
        ids = [f"{prefix}-{i:04d}" for i in range(count)]
        for asset_id in ids:
            if asset_type == AssetType.DATASOURCE:
                detail = datasource_detail(asset_id, asset_id)
            elif asset_type == AssetType.DATASET:
                detail = dataset_detail(asset_id, asset_id)
            elif asset_type == AssetType.ANALYSIS:
                detail = analysis_detail(asset_id, asset_id)
            else:
                detail = dashboard_detail(asset_id, asset_id)
            self.add(asset_type, asset_id, asset_id, detail)
        return ids

    def lister(self, asset_type: AssetType) -> AssetLister:
        return FakeLister(self, asset_type)

    async def get_detail(self, asset_type: AssetType, asset_id: str) -> dict[str, Any]:
        self.detail_calls.append(asset_id)
        queued = self.detail_failures.get(asset_id)
        if queued:
            raise queued.pop(0)
        return self.assets[asset_type][asset_id]["detail"]

    async def get_permissions(self, asset_type: AssetType, asset_id: str) -> list[dict[str, Any]]:
        if asset_id in self.permission_failures:
            raise RuntimeError("permissions unavailable")
        return self.assets[asset_type][asset_id]["permissions"]

    async def get_tags(self, asset_type: AssetType, asset_id: str) -> dict[str, str]:
        return self.assets[asset_type][asset_id]["tags"]

    async def test_connection(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def make_orchestrator(
    store: BlobStore,
    source: BaseAssetSource,
    *,
    page_size: int = 100,
    **kwargs: Any,
) -> ExportOrchestrator:
    index_builder = AssetIndexBuilder(store)
    catalog = DataCatalogBuilder(store, index_builder, FieldMetadataService(store))
    kwargs.setdefault("cancel_grace_s", 0.0)
    return ExportOrchestrator(
        source,
        store,
        index_builder=index_builder,
        catalog_builder=catalog,
        pagination=fast_pagination(page_size),
        retry=FAST_RETRY,
        **kwargs,
    )
