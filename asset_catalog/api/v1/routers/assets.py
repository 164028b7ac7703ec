"""REST endpoints for exported assets and the master index — /api/v1/assets."""

from typing import Annotated, Optional

from fastapi import APIRouter, Query

from asset_catalog.api.v1.dependencies import (
    AssetTypeDep,
    IndexBuilderDep,
    OrchestratorDep,
    PaginationDep,
)
from asset_catalog.api.v1.models.assets import AssetListResponse
from asset_catalog.connectors.quicksight.parser import parse_asset
from asset_catalog.models.assets import ParsedAsset
from asset_catalog.models.catalog import AssetIndex, IndexSummary
from asset_catalog.models.schema import AssetRecord

router = APIRouter(prefix="/assets", tags=["assets"])


@router.get("/index", response_model=AssetIndex)
async def get_index(index_builder: IndexBuilderDep) -> AssetIndex:
    return await index_builder.get_index()


@router.post("/index/rebuild", response_model=IndexSummary)
async def rebuild_index(orchestrator: OrchestratorDep) -> IndexSummary:
    index = await orchestrator.rebuild_index()
    return index.summary


@router.get("/{asset_type}", response_model=AssetListResponse)
async def list_assets(
    asset_type: AssetTypeDep,
    index_builder: IndexBuilderDep,
    pagination: PaginationDep,
    search: Annotated[Optional[str], Query(description="Case-insensitive match on name or id")] = None,
    sort_by: Annotated[str, Query(description="name, last_modified, last_exported or file_size")] = "name",
    descending: bool = False,
) -> AssetListResponse:
    page = await index_builder.list_assets(
        asset_type,
        search=search,
        sort_by=sort_by,
        descending=descending,
        page=pagination.page,
        page_size=pagination.page_size,
    )
    return AssetListResponse(items=page.items, total=page.total, page=page.page, page_size=page.page_size)


@router.get("/{asset_type}/{asset_id}", response_model=AssetRecord)
async def get_asset(asset_type: AssetTypeDep, asset_id: str, index_builder: IndexBuilderDep) -> AssetRecord:
    return await index_builder.get_asset(asset_type, asset_id)


@router.get("/{asset_type}/{asset_id}/fields", response_model=ParsedAsset)
async def get_asset_fields(asset_type: AssetTypeDep, asset_id: str, index_builder: IndexBuilderDep) -> ParsedAsset:
    """Parsed view of one asset: datasets, fields, calculated fields, sheets."""
    record = await index_builder.get_asset(asset_type, asset_id)
    return parse_asset(record)
