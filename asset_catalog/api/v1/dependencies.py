"""FastAPI dependencies shared across all v1 routers."""

from typing import Annotated

from fastapi import Depends, Query, Request

from asset_catalog.core.errors import UnprocessableError
from asset_catalog.export.orchestrator import ExportOrchestrator
from asset_catalog.models.schema import AssetType
from asset_catalog.services import (
    AssetIndexBuilder,
    DataCatalogBuilder,
    FieldMetadataService,
    LineageResolver,
    Services,
)

# ---------------------------------------------------------------------------
# Service container
# ---------------------------------------------------------------------------


def get_services(request: Request) -> Services:
    """Return the container built by the application lifespan."""
    return request.app.state.services


ServicesDep = Annotated[Services, Depends(get_services)]


def get_orchestrator(services: ServicesDep) -> ExportOrchestrator:
    return services.orchestrator


def get_index_builder(services: ServicesDep) -> AssetIndexBuilder:
    return services.index_builder


def get_lineage(services: ServicesDep) -> LineageResolver:
    return services.lineage


def get_catalog(services: ServicesDep) -> DataCatalogBuilder:
    return services.catalog


def get_field_metadata(services: ServicesDep) -> FieldMetadataService:
    return services.field_metadata


OrchestratorDep = Annotated[ExportOrchestrator, Depends(get_orchestrator)]
IndexBuilderDep = Annotated[AssetIndexBuilder, Depends(get_index_builder)]
LineageDep = Annotated[LineageResolver, Depends(get_lineage)]
CatalogDep = Annotated[DataCatalogBuilder, Depends(get_catalog)]
FieldMetadataDep = Annotated[FieldMetadataService, Depends(get_field_metadata)]


# ---------------------------------------------------------------------------
# Path / query parameters
# ---------------------------------------------------------------------------


def asset_type_param(asset_type: str) -> AssetType:
    """Accept ``dataset`` as well as ``datasets`` in the path."""
    try:
        return AssetType.parse(asset_type)
    except ValueError as exc:
        raise UnprocessableError(str(exc)) from exc


AssetTypeDep = Annotated[AssetType, Depends(asset_type_param)]


class Pagination:
    def __init__(
        self,
        page: int = Query(1, ge=1, description="1-based page number"),
        page_size: int = Query(50, ge=1, le=500, description="Maximum records per page"),
    ) -> None:
        self.page = page
        self.page_size = page_size


PaginationDep = Annotated[Pagination, Depends(Pagination)]
