"""Asset lineage: which assets use which, directly and through datasets.

Built in two passes over every indexed asset:

1. **Direct edges** parsed from the definitions:
   dashboard -> analysis (source entity of the published version),
   dashboard / analysis -> dataset (dataset declarations),
   dataset -> datasource (physical table datasource references).
2. **Transitive closure** so the ends of a chain see each other without a
   traversal at query time:
   dashboard / analysis -> datasource through their datasets, and
   dashboard -> dataset through its source analysis.

Every ``uses`` edge has a mirrored ``used_by`` edge.  References to assets
that are not in the index (deleted, or not readable by the exporter) are
skipped.
"""

from __future__ import annotations

import logging
from typing import Optional

from asset_catalog.connectors.quicksight.parser import DefinitionParser
from asset_catalog.core.errors import NotFoundError
from asset_catalog.models.assets import (
    AnalysisAsset,
    DashboardAsset,
    DatasetAsset,
    DatasetReference,
    DatasourceAsset,
    ParsedAsset,
)
from asset_catalog.models.catalog import AssetLineage, LineageRelationship, RelationshipType
from asset_catalog.models.schema import AssetType
from asset_catalog.services.indexing import AssetIndexBuilder

logger = logging.getLogger(__name__)

NodeKey = tuple[AssetType, str]


class LineageGraph:
    """Deduplicated uses / used_by adjacency keyed by ``(asset_type, asset_id)``."""

    def __init__(self, assets: list[ParsedAsset]) -> None:
        self.nodes: dict[NodeKey, AssetLineage] = {
            (a.asset_type, a.asset_id): AssetLineage(
                asset_id=a.asset_id, asset_type=a.asset_type, asset_name=a.name
            )
            for a in assets
        }
        self._seen: dict[NodeKey, set[tuple[str, AssetType, RelationshipType]]] = {
            key: set() for key in self.nodes
        }

    def link(self, user: NodeKey, used: NodeKey) -> None:
        """Record that *user* uses *used* (and the mirrored used_by edge)."""
        if user == used or user not in self.nodes or used not in self.nodes:
            return
        self._add(user, used, RelationshipType.USES)
        self._add(used, user, RelationshipType.USED_BY)

    def _add(self, source: NodeKey, target: NodeKey, relationship: RelationshipType) -> None:
        marker = (target[1], target[0], relationship)
        if marker in self._seen[source]:
            return
        self._seen[source].add(marker)
        src, tgt = self.nodes[source], self.nodes[target]
        src.relationships.append(
            LineageRelationship(
                source_asset_id=src.asset_id,
                source_asset_type=src.asset_type,
                source_asset_name=src.asset_name,
                target_asset_id=tgt.asset_id,
                target_asset_type=tgt.asset_type,
                target_asset_name=tgt.asset_name,
                relationship_type=relationship,
            )
        )

    def related(self, key: NodeKey, relationship: RelationshipType, asset_type: AssetType) -> list[NodeKey]:
        return [
            (r.target_asset_type, r.target_asset_id)
            for r in self.nodes[key].targets(relationship, asset_type)
        ]


class DatasetResolver:
    """Resolve dataset references (ARN, id or alias) to indexed dataset ids."""

    def __init__(self, datasets: list[DatasetAsset]) -> None:
        self.by_id = {d.asset_id: d for d in datasets}
        self.by_arn = {d.arn: d for d in datasets if d.arn}
        self.by_name: dict[str, DatasetAsset] = {}
        for d in datasets:
            self.by_name.setdefault(d.name, d)

    def resolve(self, ref: DatasetReference) -> Optional[DatasetAsset]:
        if ref.arn and ref.arn in self.by_arn:
            return self.by_arn[ref.arn]
        for candidate in (ref.dataset_id, ref.identifier):
            if candidate in self.by_id:
                return self.by_id[candidate]
        return self.by_name.get(ref.identifier)


class LineageResolver:
    def __init__(self, index_builder: AssetIndexBuilder, parser: Optional[DefinitionParser] = None) -> None:
        self.index_builder = index_builder
        self.parser = parser or DefinitionParser()

    async def load_parsed_assets(self) -> list[ParsedAsset]:
        index = await self.index_builder.get_index()
        parsed: list[ParsedAsset] = []
        for asset_type in AssetType:
            for record in await self.index_builder.load_records(asset_type, index):
                parsed.append(self.parser.parse(record))
        return parsed

    async def build_lineage_map(self) -> dict[NodeKey, AssetLineage]:
        assets = await self.load_parsed_assets()
        graph = build_graph(assets)
        edges = sum(len(n.relationships) for n in graph.nodes.values())
        logger.info("Built lineage for %d assets (%d relationships)", len(graph.nodes), edges)
        return graph.nodes

    async def get_all_lineage(self) -> list[AssetLineage]:
        return list((await self.build_lineage_map()).values())

    async def get_asset_lineage(self, asset_id: str, asset_type: Optional[AssetType] = None) -> AssetLineage:
        lineage = await self.build_lineage_map()
        if asset_type is not None:
            found = lineage.get((asset_type, asset_id))
            if found is not None:
                return found
        else:
            for key, node in lineage.items():
                if key[1] == asset_id:
                    return node
        raise NotFoundError("Asset", asset_id)


def build_graph(assets: list[ParsedAsset]) -> LineageGraph:
    graph = LineageGraph(assets)
    datasets = DatasetResolver([a for a in assets if isinstance(a, DatasetAsset)])

    # Pass 1: direct edges
    for asset in assets:
        key = (asset.asset_type, asset.asset_id)
        if isinstance(asset, DashboardAsset):
            if asset.source_analysis_id:
                graph.link(key, (AssetType.ANALYSIS, asset.source_analysis_id))
            _link_datasets(graph, key, asset.datasets, datasets)
        elif isinstance(asset, AnalysisAsset):
            _link_datasets(graph, key, asset.datasets, datasets)
        elif isinstance(asset, DatasetAsset):
            for datasource_id in asset.datasource_ids:
                graph.link(key, (AssetType.DATASOURCE, datasource_id))
        elif isinstance(asset, DatasourceAsset):
            pass
        else:
            raise TypeError(f"Unhandled asset variant: {type(asset).__name__}")

    # Pass 2: dashboards reach the datasets of their source analysis
    for key in [k for k in graph.nodes if k[0] == AssetType.DASHBOARD]:
        for analysis in graph.related(key, RelationshipType.USES, AssetType.ANALYSIS):
            for dataset in graph.related(analysis, RelationshipType.USES, AssetType.DATASET):
                graph.link(key, dataset)

    # Pass 3: dashboards / analyses reach datasources through datasets
    consumers = [k for k in graph.nodes if k[0] in (AssetType.DASHBOARD, AssetType.ANALYSIS)]
    for key in consumers:
        for dataset in graph.related(key, RelationshipType.USES, AssetType.DATASET):
            for datasource in graph.related(dataset, RelationshipType.USES, AssetType.DATASOURCE):
                graph.link(key, datasource)
    return graph


def _link_datasets(
    graph: LineageGraph,
    key: NodeKey,
    refs: list[DatasetReference],
    datasets: DatasetResolver,
) -> None:
    for ref in refs:
        dataset = datasets.resolve(ref)
        if dataset is None:
            logger.debug("%s %s references unknown dataset %s", key[0].value, key[1], ref.identifier)
            continue
        graph.link(key, (AssetType.DATASET, dataset.asset_id))
