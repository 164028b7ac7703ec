"""REST endpoints for asset lineage — /api/v1/lineage."""

from typing import Annotated, Optional

from fastapi import APIRouter, Query

from asset_catalog.api.v1.dependencies import LineageDep, asset_type_param
from asset_catalog.api.v1.models.assets import LineageListResponse
from asset_catalog.models.catalog import AssetLineage

router = APIRouter(prefix="/lineage", tags=["lineage"])


@router.get("/", response_model=LineageListResponse)
async def list_lineage(lineage: LineageDep) -> LineageListResponse:
    items = await lineage.get_all_lineage()
    return LineageListResponse(items=items, count=len(items))


@router.get("/{asset_id}", response_model=AssetLineage)
async def get_asset_lineage(
    asset_id: str,
    lineage: LineageDep,
    asset_type: Annotated[
        Optional[str], Query(description="Disambiguate ids shared across asset types")
    ] = None,
) -> AssetLineage:
    parsed_type = asset_type_param(asset_type) if asset_type else None
    return await lineage.get_asset_lineage(asset_id, parsed_type)
