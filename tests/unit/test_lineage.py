"""Tests for lineage resolution across dashboards, analyses, datasets and datasources."""

from types import SimpleNamespace

import pytest

from asset_catalog.core.errors import NotFoundError
from asset_catalog.models.assets import AnalysisAsset, DatasetReference, DatasetAsset
from asset_catalog.models.catalog import RelationshipType
from asset_catalog.models.schema import AssetType
from asset_catalog.services.indexing import AssetIndexBuilder
from asset_catalog.services.lineage import DatasetResolver, LineageResolver, build_graph
from asset_catalog.storage.filesystem import FilesystemBlobStore
from tests.support import (
    analysis_detail,
    arn,
    dashboard_detail,
    dataset_detail,
    datasource_detail,
    make_record,
    seed_records,
    visual_definition,
)

USES = RelationshipType.USES
USED_BY = RelationshipType.USED_BY


@pytest.fixture
async def resolver(tmp_path):
    store = FilesystemBlobStore(tmp_path)
    await seed_records(
        store,
        make_record(AssetType.DATASOURCE, "src1", "Warehouse", datasource_detail("src1", "Warehouse")),
        make_record(AssetType.DATASET, "ds1", "Orders", dataset_detail("ds1", "Orders", datasource_id="src1")),
        make_record(
            AssetType.ANALYSIS,
            "an1",
            "Sales analysis",
            analysis_detail("an1", "Sales analysis", visual_definition({"orders": "ds1"})),
        ),
        # Publishes an1 without declaring datasets of its own.
        make_record(
            AssetType.DASHBOARD, "dash1", "Sales dashboard", dashboard_detail("dash1", "Sales dashboard", source_analysis_id="an1")
        ),
    )
    index_builder = AssetIndexBuilder(store)
    await index_builder.rebuild_index()
    return LineageResolver(index_builder)


class TestLineageResolver:
    async def test_direct_edges(self, resolver):
        lineage = await resolver.build_lineage_map()
        assert lineage[(AssetType.DASHBOARD, "dash1")].has_relationship("an1", AssetType.ANALYSIS, USES)
        assert lineage[(AssetType.ANALYSIS, "an1")].has_relationship("ds1", AssetType.DATASET, USES)
        assert lineage[(AssetType.DATASET, "ds1")].has_relationship("src1", AssetType.DATASOURCE, USES)

    async def test_dashboard_reaches_dataset_through_analysis(self, resolver):
        dashboard = await resolver.get_asset_lineage("dash1", AssetType.DASHBOARD)
        assert dashboard.has_relationship("ds1", AssetType.DATASET, USES)

    async def test_datasource_sees_transitive_consumers(self, resolver):
        datasource = await resolver.get_asset_lineage("src1")
        used_by = {(r.target_asset_type, r.target_asset_id) for r in datasource.targets(USED_BY)}
        assert used_by == {
            (AssetType.DATASET, "ds1"),
            (AssetType.ANALYSIS, "an1"),
            (AssetType.DASHBOARD, "dash1"),
        }

    async def test_every_edge_is_mirrored(self, resolver):
        lineage = await resolver.build_lineage_map()
        for node in lineage.values():
            for rel in node.relationships:
                mirror = USED_BY if rel.relationship_type == USES else USES
                target = lineage[(rel.target_asset_type, rel.target_asset_id)]
                assert target.has_relationship(node.asset_id, node.asset_type, mirror)

    async def test_no_duplicate_relationships(self, resolver):
        for node in await resolver.get_all_lineage():
            keys = [(r.target_asset_type, r.target_asset_id, r.relationship_type) for r in node.relationships]
            assert len(keys) == len(set(keys))

    async def test_unknown_asset(self, resolver):
        with pytest.raises(NotFoundError):
            await resolver.get_asset_lineage("missing")

    async def test_type_filter(self, resolver):
        with pytest.raises(NotFoundError):
            await resolver.get_asset_lineage("dash1", AssetType.ANALYSIS)


class TestBuildGraph:
    def test_missing_targets_are_skipped(self):
        analysis = AnalysisAsset(
            asset_id="an1",
            name="A",
            datasets=[DatasetReference(identifier="gone", arn=arn(AssetType.DATASET, "gone"))],
        )
        graph = build_graph([analysis])
        assert graph.nodes[(AssetType.ANALYSIS, "an1")].relationships == []

    def test_unknown_variant_is_rejected(self):
        with pytest.raises(TypeError):
            build_graph([SimpleNamespace(asset_type=AssetType.DATASET, asset_id="x", name="x")])  # type: ignore[list-item]


class TestDatasetResolver:
    def _resolver(self):
        return DatasetResolver(
            [
                DatasetAsset(asset_id="ds1", name="Orders", arn=arn(AssetType.DATASET, "ds1")),
                DatasetAsset(asset_id="ds2", name="Customers"),
            ]
        )

    def test_by_arn(self):
        ref = DatasetReference(identifier="alias", arn=arn(AssetType.DATASET, "ds1"))
        assert self._resolver().resolve(ref).asset_id == "ds1"

    def test_by_identifier(self):
        assert self._resolver().resolve(DatasetReference(identifier="ds2")).asset_id == "ds2"

    def test_by_name(self):
        assert self._resolver().resolve(DatasetReference(identifier="Customers")).asset_id == "ds2"

    def test_unresolved(self):
        assert self._resolver().resolve(DatasetReference(identifier="nope")) is None
