"""Tests for the master asset index."""

from datetime import datetime, timezone

import pytest

from asset_catalog.core.errors import NotFoundError, UnprocessableError
from asset_catalog.models.schema import AssetType
from asset_catalog.services.indexing import AssetIndexBuilder
from asset_catalog.storage.filesystem import FilesystemBlobStore
from asset_catalog.storage.keys import MASTER_INDEX_KEY, asset_key
from tests.support import dashboard_detail, dataset_detail, datasource_detail, make_record, seed_records


@pytest.fixture
def store(tmp_path):
    return FilesystemBlobStore(tmp_path)


@pytest.fixture
async def builder(store):
    records = [
        make_record(AssetType.DATASET, "d1", "Orders", dataset_detail("d1", "Orders")),
        make_record(AssetType.DATASET, "d2", "customers", dataset_detail("d2", "customers")),
        make_record(AssetType.DATASET, "d3", "Budget", dataset_detail("d3", "Budget")),
        make_record(AssetType.DASHBOARD, "dash1", "Exec", dashboard_detail("dash1", "Exec")),
        make_record(AssetType.DATASOURCE, "src1", "Warehouse", datasource_detail("src1", "Warehouse")),
    ]
    records[0].last_modified = datetime(2024, 3, 1, tzinfo=timezone.utc)
    records[1].last_modified = None
    records[0].extra_metadata = {"import_mode": "SPICE"}
    await seed_records(store, *records)
    builder = AssetIndexBuilder(store)
    await builder.rebuild_index()
    return builder


class TestRebuild:
    async def test_groups_by_type(self, builder, store):
        index = await builder.get_index()
        assert index.summary.total_assets == 5
        assert index.summary.assets_by_type == {
            "dashboards": 1,
            "analyses": 0,
            "datasets": 3,
            "datasources": 1,
        }
        assert index.summary.total_size > 0
        assert await store.exists(MASTER_INDEX_KEY)

    async def test_entry_carries_type_specific_metadata(self, builder):
        entry = (await builder.get_index()).find("d1")
        assert entry.type == AssetType.DATASET
        assert entry.metadata == {"import_mode": "SPICE"}
        assert entry.file_size > 0
        assert entry.last_exported is not None

    async def test_invalid_blob_is_skipped(self, builder, store):
        await store.put(asset_key(AssetType.DATASET, "bad"), {"asset_id": "bad", "name": 3})
        await store.put(asset_key(AssetType.DATASET, "wrong-type"), {
            "asset_id": "wrong-type", "asset_type": "dashboard", "name": "x", "definition": {}
        })
        index = await builder.rebuild_index()
        assert index.summary.assets_by_type["datasets"] == 3
        assert index.find("bad") is None

    async def test_concurrency_for_large_types(self, store):
        builder = AssetIndexBuilder(store, load_concurrency=5, large_type_concurrency=3, large_type_threshold=500)
        assert builder.concurrency_for(10) == 5
        assert builder.concurrency_for(501) == 3


class TestReads:
    async def test_missing_index_is_empty(self, store):
        index = await AssetIndexBuilder(store).get_index()
        assert index.is_empty
        assert not await store.exists(MASTER_INDEX_KEY)

    async def test_get_asset(self, builder):
        record = await builder.get_asset(AssetType.DATASET, "d1")
        assert record.name == "Orders"

    async def test_get_missing_asset(self, builder):
        with pytest.raises(NotFoundError, match="Dataset nope not found"):
            await builder.get_asset(AssetType.DATASET, "nope")

    async def test_load_records_skips_missing_blobs(self, builder, store):
        await store.delete(asset_key(AssetType.DATASET, "d3"))
        records = await builder.load_records(AssetType.DATASET)
        assert sorted(r.asset_id for r in records) == ["d1", "d2"]


class TestListAssets:
    async def test_sorted_by_name_case_insensitive(self, builder):
        page = await builder.list_assets(AssetType.DATASET)
        assert [e.name for e in page.items] == ["Budget", "customers", "Orders"]
        assert page.total == 3

    async def test_descending(self, builder):
        page = await builder.list_assets(AssetType.DATASET, descending=True)
        assert [e.name for e in page.items] == ["Orders", "customers", "Budget"]

    async def test_search(self, builder):
        page = await builder.list_assets(AssetType.DATASET, search="CUST")
        assert [e.id for e in page.items] == ["d2"]

    async def test_paging(self, builder):
        page = await builder.list_assets(AssetType.DATASET, page=2, page_size=2)
        assert [e.name for e in page.items] == ["Orders"]
        assert page.total == 3

    async def test_missing_values_sort_last(self, builder):
        page = await builder.list_assets(AssetType.DATASET, sort_by="last_modified", descending=True)
        assert [e.id for e in page.items][-1] == "d2"
        assert page.items[0].id == "d1"

    async def test_unknown_sort_field(self, builder):
        with pytest.raises(UnprocessableError):
            await builder.list_assets(AssetType.DATASET, sort_by="color")
