"""Integration tests for the REST API.

Uses httpx.AsyncClient with ASGITransport to exercise the full FastAPI
application (routing, validation, error handlers, export pipeline) against
a filesystem blob store and an in-memory asset source.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from asset_catalog.core.config import Settings
from asset_catalog.main import app
from asset_catalog.models.schema import AssetType
from asset_catalog.services import build_services
from asset_catalog.storage.filesystem import FilesystemBlobStore
from tests.support import (
    FakeAssetSource,
    analysis_detail,
    dashboard_detail,
    dataset_detail,
    datasource_detail,
    visual_definition,
)

BASE = "/api/v1"


def _seeded_source() -> FakeAssetSource:
    source = FakeAssetSource()
    source.add(AssetType.DATASOURCE, "src1", "Warehouse", datasource_detail("src1", "Warehouse"))
    source.add(
        AssetType.DATASET,
        "d1",
        "Orders",
        dataset_detail("d1", "Orders", datasource_id="src1", calculated={"Revenue": "{Sales}+{Tax}"}),
    )
    source.add(
        AssetType.ANALYSIS,
        "an1",
        "Sales analysis",
        analysis_detail("an1", "Sales analysis", visual_definition({"orders": "d1"}, visual_columns={"orders": ("Sales",)})),
    )
    source.add(
        AssetType.DASHBOARD,
        "dash1",
        "Sales dashboard",
        dashboard_detail("dash1", "Sales dashboard", source_analysis_id="an1"),
    )
    return source


@pytest.fixture()
async def services(tmp_path):
    settings = Settings(
        EXPORT_PAGE_DELAY_S=0.0,
        EXPORT_LARGE_PAGE_DELAY_S=0.0,
        EXPORT_RETRY_BASE_DELAY_S=0.0,
        EXPORT_RETRY_MAX_DELAY_S=0.0,
        SESSION_CANCEL_GRACE_S=0.0,
    )
    services = build_services(settings, store=FilesystemBlobStore(tmp_path), source=_seeded_source())
    await services.orchestrator.startup()
    app.state.services = services
    yield services
    await services.orchestrator.shutdown()
    del app.state.services


@pytest.fixture()
async def client(services):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture()
async def exported(client: AsyncClient, services):
    """Run a full export through the API and wait for it to finish."""
    resp = await client.post(f"{BASE}/exports/run")
    assert resp.status_code == 202
    await services.orchestrator.wait_for_background()
    return resp.json()["session_id"]


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class TestHealth:
    async def test_health_ok(self, client: AsyncClient):
        resp = await client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["services"]["blob_store"]["backend"] == "filesystem"
        assert body["export_session"] is None

    async def test_openapi_docs_available(self, client: AsyncClient):
        resp = await client.get(f"{BASE}/openapi.json")
        assert resp.status_code == 200
        assert f"{BASE}/exports/run" in resp.json()["paths"]


# ---------------------------------------------------------------------------
# Export sessions
# ---------------------------------------------------------------------------


class TestSessionEndpoints:
    async def test_start_session(self, client: AsyncClient):
        resp = await client.post(f"{BASE}/exports/sessions", json={"asset_types": ["datasets", "dashboard"]})
        assert resp.status_code == 201
        session_id = resp.json()["session_id"]

        progress = (await client.get(f"{BASE}/exports/progress")).json()
        assert progress["active"] is True
        assert progress["session"]["session_id"] == session_id
        assert set(progress["session"]["progress"]) == {"datasets", "dashboards"}

    async def test_start_session_unknown_type(self, client: AsyncClient):
        resp = await client.post(f"{BASE}/exports/sessions", json={"asset_types": ["workbooks"]})
        assert resp.status_code == 422

    async def test_get_session(self, client: AsyncClient):
        session_id = (await client.post(f"{BASE}/exports/sessions")).json()["session_id"]
        resp = await client.get(f"{BASE}/exports/sessions/{session_id}")
        assert resp.status_code == 200
        assert resp.json()["status"] == "running"

    async def test_get_missing_session(self, client: AsyncClient):
        resp = await client.get(f"{BASE}/exports/sessions/nope")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Export session nope not found"

    async def test_list_sessions(self, client: AsyncClient):
        first = (await client.post(f"{BASE}/exports/sessions")).json()["session_id"]
        second = (await client.post(f"{BASE}/exports/sessions")).json()["session_id"]
        body = (await client.get(f"{BASE}/exports/sessions")).json()
        statuses = {s["session_id"]: s["status"] for s in body["items"]}
        assert statuses == {first: "cancelled", second: "running"}
        assert body["count"] == 2

    async def test_list_sessions_limit_validated(self, client: AsyncClient):
        resp = await client.get(f"{BASE}/exports/sessions", params={"limit": 0})
        assert resp.status_code == 422

    async def test_cancel(self, client: AsyncClient):
        session_id = (await client.post(f"{BASE}/exports/sessions")).json()["session_id"]
        resp = await client.post(f"{BASE}/exports/cancel")
        assert resp.status_code == 200
        assert resp.json()["session_id"] == session_id
        assert resp.json()["status"] == "cancelled"

        progress = (await client.get(f"{BASE}/exports/progress")).json()
        assert progress == {"active": False, "session": None}

    async def test_cancel_without_session(self, client: AsyncClient):
        resp = await client.post(f"{BASE}/exports/cancel")
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Export runs
# ---------------------------------------------------------------------------


class TestExportRuns:
    async def test_summary_missing_before_export(self, client: AsyncClient):
        resp = await client.get(f"{BASE}/exports/summary")
        assert resp.status_code == 404

    async def test_full_export(self, client: AsyncClient, exported):
        session = (await client.get(f"{BASE}/exports/sessions/{exported}")).json()
        assert session["status"] == "completed"
        assert all(session["progress"][t]["status"] == "completed" for t in ("datasets", "dashboards"))

        summary = (await client.get(f"{BASE}/exports/summary")).json()
        assert summary["total_assets"] == 4
        assert summary["total_errors"] == 0
        assert summary["incomplete_types"] == []

    async def test_export_single_type(self, client: AsyncClient):
        resp = await client.post(f"{BASE}/exports/types/datasets", json={"force_refresh": True})
        assert resp.status_code == 200
        body = resp.json()
        assert body["asset_type"] == "dataset"
        assert body["stats"]["total"] == 1
        assert body["stats"]["updated"] == 1
        assert body["session_completed"] is True

    async def test_export_unknown_type(self, client: AsyncClient):
        resp = await client.post(f"{BASE}/exports/types/workbooks")
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Assets and index
# ---------------------------------------------------------------------------


class TestAssetEndpoints:
    async def test_index(self, client: AsyncClient, exported):
        body = (await client.get(f"{BASE}/assets/index")).json()
        assert body["summary"]["total_assets"] == 4
        assert [e["id"] for e in body["assets"]["datasets"]] == ["d1"]

    async def test_rebuild_index(self, client: AsyncClient, exported):
        resp = await client.post(f"{BASE}/assets/index/rebuild")
        assert resp.status_code == 200
        assert resp.json()["assets_by_type"]["dashboards"] == 1

    async def test_list_assets(self, client: AsyncClient, exported):
        body = (await client.get(f"{BASE}/assets/dataset", params={"search": "ord"})).json()
        assert body["total"] == 1
        assert body["items"][0]["name"] == "Orders"
        assert body["page"] == 1

    async def test_list_assets_bad_sort(self, client: AsyncClient, exported):
        resp = await client.get(f"{BASE}/assets/datasets", params={"sort_by": "color"})
        assert resp.status_code == 422

    async def test_get_asset(self, client: AsyncClient, exported):
        body = (await client.get(f"{BASE}/assets/datasets/d1")).json()
        assert body["asset_id"] == "d1"
        assert body["definition"]["DataSet"]["Name"] == "Orders"

    async def test_get_missing_asset(self, client: AsyncClient, exported):
        resp = await client.get(f"{BASE}/assets/datasets/nope")
        assert resp.status_code == 404

    async def test_asset_fields(self, client: AsyncClient, exported):
        body = (await client.get(f"{BASE}/assets/datasets/d1/fields")).json()
        assert body["kind"] == "dataset"
        assert [c["name"] for c in body["calculated_fields"]] == ["Revenue"]

    async def test_invalid_asset_type(self, client: AsyncClient):
        resp = await client.get(f"{BASE}/assets/workbooks")
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Lineage and catalog
# ---------------------------------------------------------------------------


class TestLineageEndpoints:
    async def test_list(self, client: AsyncClient, exported):
        body = (await client.get(f"{BASE}/lineage/")).json()
        assert body["count"] == 4

    async def test_transitive_consumers(self, client: AsyncClient, exported):
        body = (await client.get(f"{BASE}/lineage/src1")).json()
        used_by = {r["target_asset_id"] for r in body["relationships"] if r["relationship_type"] == "used_by"}
        assert used_by == {"d1", "an1", "dash1"}

    async def test_type_filter(self, client: AsyncClient, exported):
        resp = await client.get(f"{BASE}/lineage/dash1", params={"asset_type": "analysis"})
        assert resp.status_code == 404

    async def test_missing_asset(self, client: AsyncClient, exported):
        resp = await client.get(f"{BASE}/lineage/nope")
        assert resp.status_code == 404


class TestCatalogEndpoints:
    async def test_catalog(self, client: AsyncClient, exported):
        body = (await client.get(f"{BASE}/catalog/")).json()
        assert body["summary"]["datasets_scanned"] == 1
        assert "Revenue" in [f["field_name"] for f in body["calculated_fields"]]

    async def test_field(self, client: AsyncClient, exported):
        body = (await client.get(f"{BASE}/catalog/fields/Sales")).json()
        assert body["usage_count"] == 1
        assert body["lineage"]["dataset_id"] == "d1"

    async def test_missing_field(self, client: AsyncClient, exported):
        resp = await client.get(f"{BASE}/catalog/fields/Nope")
        assert resp.status_code == 404

    async def test_empty_catalog_before_export(self, client: AsyncClient):
        body = (await client.get(f"{BASE}/catalog/")).json()
        assert body["fields"] == []
        assert body["calculated_fields"] == []


class TestFieldMetadataEndpoints:
    async def test_missing(self, client: AsyncClient):
        resp = await client.get(f"{BASE}/field-metadata/dataset/d1/Sales")
        assert resp.status_code == 404

    async def test_update_then_get(self, client: AsyncClient):
        resp = await client.put(
            f"{BASE}/field-metadata/dataset/d1/Sales",
            json={"description": "Gross sales", "tags": [{"key": "pii", "value": "no"}]},
        )
        assert resp.status_code == 200
        assert resp.json()["field_name"] == "Sales"

        body = (await client.get(f"{BASE}/field-metadata/dataset/d1/Sales")).json()
        assert body["description"] == "Gross sales"
        assert body["tags"] == [{"key": "pii", "value": "no"}]

    async def test_metadata_shows_in_rebuilt_catalog(self, client: AsyncClient, exported):
        await client.put(f"{BASE}/field-metadata/dataset/d1/Sales", json={"classification": "internal"})
        await client.post(f"{BASE}/catalog/rebuild")
        body = (await client.get(f"{BASE}/catalog/fields/Sales")).json()
        assert body["custom_metadata"]["classification"] == "internal"
