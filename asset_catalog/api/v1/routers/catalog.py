"""REST endpoints for the field catalog — /api/v1/catalog."""

from fastapi import APIRouter

from asset_catalog.api.v1.dependencies import CatalogDep
from asset_catalog.core.errors import NotFoundError
from asset_catalog.models.catalog import CatalogField, DataCatalog

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.get("/", response_model=DataCatalog)
async def get_catalog(catalog: CatalogDep) -> DataCatalog:
    return await catalog.get_catalog()


@router.post("/rebuild", response_model=DataCatalog)
async def rebuild_catalog(catalog: CatalogDep) -> DataCatalog:
    return await catalog.rebuild_catalog()


@router.get("/fields/{field_name}", response_model=CatalogField)
async def get_field(field_name: str, catalog: CatalogDep) -> CatalogField:
    built = await catalog.get_catalog()
    for field in [*built.fields, *built.calculated_fields]:
        if field.field_name == field_name:
            return field
    raise NotFoundError("Field", field_name)
