"""Master asset index: a denormalized summary of every persisted asset.

The index is always rebuilt in full from the asset blobs.  Blobs that fail
schema validation are skipped with a warning so one corrupt file never
blocks the rebuild.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError

from asset_catalog.core.errors import NotFoundError, UnprocessableError
from asset_catalog.models.catalog import AssetIndex, AssetIndexEntry, IndexSummary
from asset_catalog.models.schema import AssetRecord, AssetType
from asset_catalog.models.validators import validate_asset_blob
from asset_catalog.storage.base import BlobInfo, BlobStore
from asset_catalog.storage.keys import MASTER_INDEX_KEY, asset_key, asset_prefix

logger = logging.getLogger(__name__)

SORT_FIELDS = ("name", "last_modified", "last_exported", "file_size")


@dataclass
class IndexPage:
    items: list[AssetIndexEntry]
    total: int
    page: int
    page_size: int


class AssetIndexBuilder:
    def __init__(
        self,
        store: BlobStore,
        *,
        load_concurrency: int = 5,
        large_type_concurrency: int = 3,
        large_type_threshold: int = 500,
    ) -> None:
        self.store = store
        self.load_concurrency = load_concurrency
        self.large_type_concurrency = large_type_concurrency
        self.large_type_threshold = large_type_threshold

    # ------------------------------------------------------------------
    # Rebuild
    # ------------------------------------------------------------------

    async def rebuild_index(self) -> AssetIndex:
        """Scan every asset blob, rebuild the index and persist it."""
        assets: dict[str, list[AssetIndexEntry]] = {}
        total_size = 0
        for asset_type in AssetType:
            infos = await self.store.list_by_prefix(asset_prefix(asset_type))
            entries = await self._load_entries(asset_type, infos)
            assets[asset_type.collection] = entries
            total_size += sum(e.file_size for e in entries)

        index = AssetIndex(
            assets=assets,
            summary=IndexSummary(
                total_assets=sum(len(v) for v in assets.values()),
                assets_by_type={k: len(v) for k, v in assets.items()},
                total_size=total_size,
            ),
        )
        await self.store.put(MASTER_INDEX_KEY, index.model_dump(mode="json"))
        logger.info(
            "Rebuilt asset index: %d assets (%s)",
            index.summary.total_assets,
            ", ".join(f"{k}={v}" for k, v in index.summary.assets_by_type.items()),
        )
        return index

    def concurrency_for(self, count: int) -> int:
        return self.large_type_concurrency if count > self.large_type_threshold else self.load_concurrency

    async def _load_entries(self, asset_type: AssetType, infos: list[BlobInfo]) -> list[AssetIndexEntry]:
        semaphore = asyncio.Semaphore(self.concurrency_for(len(infos)))

        async def _load(info: BlobInfo) -> Optional[AssetIndexEntry]:
            async with semaphore:
                blob = await self.store.get(info.key)
            if blob is None:
                return None
            errors = validate_asset_blob(blob, asset_type)
            if errors:
                logger.warning("Skipping invalid asset blob %s: %s", info.key, "; ".join(errors))
                return None
            try:
                record = AssetRecord.model_validate(blob)
            except ValidationError as exc:
                logger.warning("Skipping unreadable asset blob %s: %s", info.key, exc)
                return None
            return AssetIndexEntry(
                id=record.asset_id,
                name=record.name,
                type=asset_type,
                arn=record.arn,
                file_size=info.size,
                last_modified=record.last_modified,
                last_exported=record.exported_at,
                tags=record.tags,
                permissions=record.permissions,
                metadata=record.extra_metadata,
            )

        loaded = await asyncio.gather(*(_load(info) for info in infos))
        return [entry for entry in loaded if entry is not None]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_index(self) -> AssetIndex:
        """Return the persisted index, or an empty one (not persisted) when absent."""
        data = await self.store.get(MASTER_INDEX_KEY)
        if data is None:
            return AssetIndex()
        try:
            return AssetIndex.model_validate(data)
        except ValidationError as exc:
            logger.warning("Ignoring unreadable asset index: %s", exc)
            return AssetIndex()

    async def get_asset(self, asset_type: AssetType, asset_id: str) -> AssetRecord:
        data = await self.store.get(asset_key(asset_type, asset_id))
        if data is None:
            raise NotFoundError(asset_type.value.capitalize(), asset_id)
        return AssetRecord.model_validate(data)

    async def load_records(self, asset_type: AssetType, index: Optional[AssetIndex] = None) -> list[AssetRecord]:
        """Load the blobs of every indexed asset of *asset_type*, skipping missing ones."""
        index = index or await self.get_index()
        entries = index.entries(asset_type)
        semaphore = asyncio.Semaphore(self.concurrency_for(len(entries)))

        async def _load(entry: AssetIndexEntry) -> Optional[AssetRecord]:
            async with semaphore:
                data = await self.store.get(asset_key(asset_type, entry.id))
            if data is None:
                logger.warning("Indexed %s %s has no blob", asset_type.value, entry.id)
                return None
            try:
                return AssetRecord.model_validate(data)
            except ValidationError as exc:
                logger.warning("Skipping unreadable %s %s: %s", asset_type.value, entry.id, exc)
                return None

        loaded = await asyncio.gather(*(_load(e) for e in entries))
        return [r for r in loaded if r is not None]

    async def list_assets(
        self,
        asset_type: AssetType,
        *,
        search: Optional[str] = None,
        sort_by: str = "name",
        descending: bool = False,
        page: int = 1,
        page_size: int = 50,
    ) -> IndexPage:
        if sort_by not in SORT_FIELDS:
            raise UnprocessableError(f"Cannot sort by {sort_by!r}; expected one of {', '.join(SORT_FIELDS)}")
        index = await self.get_index()
        entries = index.entries(asset_type)
        if search:
            needle = search.lower()
            entries = [e for e in entries if needle in e.name.lower() or needle in e.id.lower()]

        # Entries without a value for the sort field go last either way.
        present = [e for e in entries if getattr(e, sort_by) is not None]
        missing = [e for e in entries if getattr(e, sort_by) is None]
        key = (lambda e: e.name.lower()) if sort_by == "name" else (lambda e: getattr(e, sort_by))
        ordered = sorted(present, key=key, reverse=descending) + missing

        start = (page - 1) * page_size
        return IndexPage(
            items=ordered[start : start + page_size],
            total=len(ordered),
            page=page,
            page_size=page_size,
        )
