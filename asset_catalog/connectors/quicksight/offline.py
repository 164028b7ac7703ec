"""Offline asset source: serve assets from a folder of exported JSON files.

Layout::

  {folder_path}/
    dashboards/{asset_id}.json
    analyses/{asset_id}.json
    datasets/{asset_id}.json
    datasources/{asset_id}.json

Each file holds ``{"summary": {...}, "detail": {...}, "permissions": [...],
"tags": {...}}`` where ``summary`` is a provider list item and ``detail`` the
matching describe payload.  ``summary`` may be omitted; it is then derived
from the detail's top-level object.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Optional

from asset_catalog.connectors.base import (
    AssetLister,
    AssetNotFoundError,
    AuthMode,
    BaseAssetSource,
    ListPage,
    MalformedResponseError,
)
from asset_catalog.connectors.quicksight.extractor import summary_from_item
from asset_catalog.models.schema import AssetType

logger = logging.getLogger(__name__)

_DETAIL_ROOTS: dict[AssetType, str] = {
    AssetType.DASHBOARD: "Dashboard",
    AssetType.ANALYSIS: "Analysis",
    AssetType.DATASET: "DataSet",
    AssetType.DATASOURCE: "DataSource",
}


class OfflineLister(AssetLister):
    """Pages over the sorted file names; the continuation token is an offset."""

    def __init__(self, source: "OfflineAssetSource", asset_type: AssetType) -> None:
        self.source = source
        self.asset_type = asset_type

    async def list_page(self, continuation_token: Optional[str], page_size: int) -> ListPage:
        asset_ids = await asyncio.to_thread(self.source.asset_ids, self.asset_type)
        try:
            offset = int(continuation_token) if continuation_token else 0
        except ValueError as exc:
            raise MalformedResponseError(f"Invalid continuation token {continuation_token!r}") from exc

        page_ids = asset_ids[offset: offset + page_size]
        items = []
        for asset_id in page_ids:
            doc = await asyncio.to_thread(self.source.load, self.asset_type, asset_id)
            items.append(summary_from_item(self.asset_type, self.source.summary_item(self.asset_type, doc)))

        next_offset = offset + len(page_ids)
        next_token = str(next_offset) if next_offset < len(asset_ids) else None
        return ListPage(items=items, next_token=next_token)


class OfflineAssetSource(BaseAssetSource):
    """Config keys: folder_path — directory laid out as described above."""

    def __init__(self, config: dict[str, Any], auth_mode: AuthMode = AuthMode.OFFLINE):
        super().__init__(config, auth_mode)
        self.folder_path: str = config.get("folder_path", "")

    def _type_dir(self, asset_type: AssetType) -> str:
        return os.path.join(self.folder_path, asset_type.collection)

    def asset_ids(self, asset_type: AssetType) -> list[str]:
        folder = self._type_dir(asset_type)
        if not os.path.isdir(folder):
            return []
        return sorted(f[: -len(".json")] for f in os.listdir(folder) if f.endswith(".json"))

    def load(self, asset_type: AssetType, asset_id: str) -> dict[str, Any]:
        path = os.path.join(self._type_dir(asset_type), f"{asset_id}.json")
        try:
            with open(path, encoding="utf-8") as fh:
                doc = json.load(fh)
        except FileNotFoundError as exc:
            raise AssetNotFoundError(f"{asset_type.value} {asset_id} not found in {self.folder_path}") from exc
        except json.JSONDecodeError as exc:
            raise MalformedResponseError(f"{path}: {exc}") from exc
        if not isinstance(doc, dict):
            raise MalformedResponseError(f"{path}: expected a JSON object")
        return doc

    def summary_item(self, asset_type: AssetType, doc: dict[str, Any]) -> dict[str, Any]:
        if isinstance(doc.get("summary"), dict):
            return doc["summary"]
        root = (doc.get("detail") or {}).get(_DETAIL_ROOTS[asset_type]) or {}
        return root

    # ------------------------------------------------------------------
    # BaseAssetSource interface
    # ------------------------------------------------------------------

    def lister(self, asset_type: AssetType) -> AssetLister:
        return OfflineLister(self, asset_type)

    async def get_detail(self, asset_type: AssetType, asset_id: str) -> dict[str, Any]:
        doc = await asyncio.to_thread(self.load, asset_type, asset_id)
        return doc.get("detail") or {}

    async def get_permissions(self, asset_type: AssetType, asset_id: str) -> list[dict[str, Any]]:
        doc = await asyncio.to_thread(self.load, asset_type, asset_id)
        return list(doc.get("permissions") or [])

    async def get_tags(self, asset_type: AssetType, asset_id: str) -> dict[str, str]:
        doc = await asyncio.to_thread(self.load, asset_type, asset_id)
        return dict(doc.get("tags") or {})

    async def test_connection(self) -> bool:
        return os.path.isdir(self.folder_path)
