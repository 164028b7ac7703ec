"""Per-type asset processors.

A processor turns listed summaries of one asset type into persisted
``AssetRecord`` blobs: it skips assets whose cached blob is still current,
fetches detail, permissions and tags for the rest, and writes the enriched
record.  Assets are processed concurrently up to a fixed pool size; a failure
on one asset is recorded in the returned stats and never stops its siblings.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from abc import ABC
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import ValidationError

from asset_catalog.connectors.base import BaseAssetSource, SourceError
from asset_catalog.connectors.quicksight.parser import DefinitionParser
from asset_catalog.core.retry import RetryPolicy, retry_with_classification
from asset_catalog.models.schema import (
    AssetRecord,
    AssetStats,
    AssetSummary,
    AssetType,
    ExportErrorRecord,
    Permission,
)
from asset_catalog.storage.base import BlobStore
from asset_catalog.storage.keys import asset_key

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    UPDATED = "updated"
    CACHED = "cached"


@dataclass
class ProcessingContext:
    session_id: Optional[str] = None
    force_refresh: bool = False


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _permissions(raw: list[dict[str, Any]]) -> list[Permission]:
    grants = []
    for grant in raw:
        principal = grant.get("Principal")
        if not principal:
            continue
        principal_type = "GROUP" if ":group/" in principal else "USER" if ":user/" in principal else "UNKNOWN"
        grants.append(
            Permission(
                principal=principal,
                principal_type=principal_type,
                actions=list(grant.get("Actions") or []),
            )
        )
    return grants


class BaseAssetProcessor(ABC):
    """Fetch, diff and persist assets of one type."""

    asset_type: AssetType
    # Permanent detail failures are turned into a minimal placeholder record
    # instead of an error when this is set.
    fallback_on_detail_error: bool = False

    def __init__(
        self,
        source: BaseAssetSource,
        store: BlobStore,
        *,
        retry: Optional[RetryPolicy] = None,
        concurrency: int = 3,
        cache_ttl: Optional[timedelta] = timedelta(hours=1),
        parser: Optional[DefinitionParser] = None,
    ) -> None:
        self.source = source
        self.store = store
        self.retry = retry or RetryPolicy()
        self.concurrency = concurrency
        self.cache_ttl = cache_ttl
        self.parser = parser or DefinitionParser()

    # ------------------------------------------------------------------
    # Batch processing
    # ------------------------------------------------------------------

    async def process_batch(
        self,
        summaries: list[AssetSummary],
        context: ProcessingContext,
        is_active: Callable[[], bool] = lambda: True,
    ) -> AssetStats:
        """Process one page of summaries with at most ``concurrency`` in flight."""
        stats = AssetStats()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _worker(summary: AssetSummary) -> None:
            async with semaphore:
                if not is_active():
                    return
                stats.total += 1
                try:
                    outcome = await self.process_asset(summary, context)
                except Exception as exc:
                    stats.errors += 1
                    stats.error_details.append(
                        ExportErrorRecord(
                            asset_id=summary.asset_id,
                            asset_name=summary.name or None,
                            error=str(exc),
                            error_type=type(exc).__name__,
                        )
                    )
                    logger.warning(
                        "Failed to export %s %s (%s): %s",
                        self.asset_type.value,
                        summary.asset_id,
                        summary.name,
                        exc,
                    )
                    return
                if outcome == Outcome.UPDATED:
                    stats.updated += 1
                elif outcome == Outcome.CACHED:
                    stats.cached += 1

        await asyncio.gather(*(_worker(s) for s in summaries))
        return stats

    async def process_asset(self, summary: AssetSummary, context: ProcessingContext) -> Outcome:
        key = asset_key(self.asset_type, summary.asset_id)
        if not context.force_refresh:
            cached = await self._load_cached(key)
            if cached is not None and not self.needs_update(summary, cached):
                return Outcome.CACHED

        fallback_reason: Optional[str] = None
        try:
            detail = await self._retry(
                f"Describe {self.asset_type.value} {summary.asset_id}",
                functools.partial(self.source.get_detail, self.asset_type, summary.asset_id),
            )
        except SourceError as exc:
            if not self.fallback_on_detail_error or exc.retryable:
                raise
            logger.info(
                "Using fallback metadata for %s %s: %s",
                self.asset_type.value,
                summary.asset_id,
                exc,
            )
            detail = self.fallback_detail(summary)
            fallback_reason = str(exc)

        permissions, tags = await asyncio.gather(
            self._fetch_permissions(summary), self._fetch_tags(summary)
        )
        record = self.build_record(summary, detail, permissions, tags)
        if fallback_reason is not None:
            record.extra_metadata["is_uploaded_file"] = True
            record.extra_metadata["fallback_reason"] = fallback_reason
        await self.store.put(key, record.model_dump(mode="json"))
        return Outcome.UPDATED

    # ------------------------------------------------------------------
    # Change detection
    # ------------------------------------------------------------------

    async def _load_cached(self, key: str) -> Optional[AssetRecord]:
        data = await self.store.get(key)
        if data is None:
            return None
        try:
            return AssetRecord.model_validate(data)
        except ValidationError:
            logger.warning("Cached blob %s is unreadable; re-exporting", key)
            return None

    def needs_update(
        self,
        summary: AssetSummary,
        cached: AssetRecord,
        now: Optional[datetime] = None,
    ) -> bool:
        now = now or datetime.now(timezone.utc)
        if self.cache_ttl is not None and now - _aware(cached.exported_at) > self.cache_ttl:
            return True
        remote = _aware(summary.last_updated)
        if remote is None:
            return False
        local = _aware(cached.last_modified)
        return local is None or remote > local

    # ------------------------------------------------------------------
    # Remote calls
    # ------------------------------------------------------------------

    async def _retry(self, description: str, operation):
        return await retry_with_classification(operation, policy=self.retry, description=description)

    async def _fetch_permissions(self, summary: AssetSummary) -> list[Permission]:
        try:
            raw = await self._retry(
                f"Permissions of {self.asset_type.value} {summary.asset_id}",
                functools.partial(self.source.get_permissions, self.asset_type, summary.asset_id),
            )
        except Exception as exc:
            logger.warning(
                "Could not fetch permissions for %s %s: %s", self.asset_type.value, summary.asset_id, exc
            )
            return []
        return _permissions(raw)

    async def _fetch_tags(self, summary: AssetSummary) -> dict[str, str]:
        try:
            return await self._retry(
                f"Tags of {self.asset_type.value} {summary.asset_id}",
                functools.partial(self.source.get_tags, self.asset_type, summary.asset_id),
            )
        except Exception as exc:
            logger.warning(
                "Could not fetch tags for %s %s: %s", self.asset_type.value, summary.asset_id, exc
            )
            return {}

    # ------------------------------------------------------------------
    # Record construction (per type)
    # ------------------------------------------------------------------

    detail_root: str = ""

    def fallback_detail(self, summary: AssetSummary) -> dict[str, Any]:
        return {self.detail_root: dict(summary.raw)}

    def build_record(
        self,
        summary: AssetSummary,
        detail: dict[str, Any],
        permissions: list[Permission],
        tags: dict[str, str],
    ) -> AssetRecord:
        root = detail.get(self.detail_root) or {}
        record = AssetRecord(
            asset_id=summary.asset_id,
            asset_type=self.asset_type,
            name=summary.name or root.get("Name") or summary.asset_id,
            arn=summary.arn or root.get("Arn"),
            definition=detail,
            permissions=permissions,
            tags=tags,
            created_time=summary.created_time,
            last_modified=summary.last_updated,
        )
        record.extra_metadata = self.extra_metadata(record)
        return record

    def extra_metadata(self, record: AssetRecord) -> dict[str, Any]:
        return {}


# ---------------------------------------------------------------------------
# Concrete processors
# ---------------------------------------------------------------------------


class DashboardProcessor(BaseAssetProcessor):
    asset_type = AssetType.DASHBOARD
    detail_root = "Dashboard"

    def extra_metadata(self, record: AssetRecord) -> dict[str, Any]:
        parsed = self.parser.parse_dashboard(record)
        return {
            "source_analysis_id": parsed.source_analysis_id,
            "version_number": parsed.version_number,
            "dataset_count": len(parsed.datasets),
            "sheet_count": len(parsed.sheets),
            "visual_count": parsed.visual_count,
        }


class AnalysisProcessor(BaseAssetProcessor):
    asset_type = AssetType.ANALYSIS
    detail_root = "Analysis"

    def extra_metadata(self, record: AssetRecord) -> dict[str, Any]:
        parsed = self.parser.parse_analysis(record)
        return {
            "status": (record.definition.get("Analysis") or {}).get("Status"),
            "dataset_count": len(parsed.datasets),
            "sheet_count": len(parsed.sheets),
            "visual_count": parsed.visual_count,
        }


class DatasetProcessor(BaseAssetProcessor):
    asset_type = AssetType.DATASET
    detail_root = "DataSet"
    fallback_on_detail_error = True

    def extra_metadata(self, record: AssetRecord) -> dict[str, Any]:
        parsed = self.parser.parse_dataset(record)
        return {
            "import_mode": parsed.import_mode or record.definition.get("DataSet", {}).get("ImportMode"),
            "datasource_type": parsed.datasource_type,
            "field_count": len(parsed.fields),
            "calculated_field_count": len(parsed.calculated_fields),
        }


class DatasourceProcessor(BaseAssetProcessor):
    asset_type = AssetType.DATASOURCE
    detail_root = "DataSource"
    fallback_on_detail_error = True

    def extra_metadata(self, record: AssetRecord) -> dict[str, Any]:
        datasource = record.definition.get("DataSource") or {}
        return {
            "datasource_type": datasource.get("Type") or "Unknown",
            "connection_status": datasource.get("Status"),
        }


PROCESSOR_CLASSES: dict[AssetType, type[BaseAssetProcessor]] = {
    AssetType.DASHBOARD: DashboardProcessor,
    AssetType.ANALYSIS: AnalysisProcessor,
    AssetType.DATASET: DatasetProcessor,
    AssetType.DATASOURCE: DatasourceProcessor,
}


def create_processors(
    source: BaseAssetSource,
    store: BlobStore,
    **kwargs: Any,
) -> dict[AssetType, BaseAssetProcessor]:
    return {t: cls(source, store, **kwargs) for t, cls in PROCESSOR_CLASSES.items()}
