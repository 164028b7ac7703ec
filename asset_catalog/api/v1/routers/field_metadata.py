"""REST endpoints for user-maintained field metadata — /api/v1/field-metadata."""

from fastapi import APIRouter

from asset_catalog.api.v1.dependencies import FieldMetadataDep
from asset_catalog.api.v1.models.assets import FieldMetadataUpdate
from asset_catalog.core.errors import NotFoundError
from asset_catalog.models.catalog import FieldMetadata

router = APIRouter(prefix="/field-metadata", tags=["field-metadata"])


@router.get("/{source_type}/{source_id}/{field_name}", response_model=FieldMetadata)
async def get_field_metadata(
    source_type: str, source_id: str, field_name: str, field_metadata: FieldMetadataDep
) -> FieldMetadata:
    metadata = await field_metadata.get(source_type, source_id, field_name)
    if metadata is None:
        raise NotFoundError("Field metadata", f"{source_type}/{source_id}/{field_name}")
    return metadata


@router.put("/{source_type}/{source_id}/{field_name}", response_model=FieldMetadata)
async def update_field_metadata(
    source_type: str,
    source_id: str,
    field_name: str,
    body: FieldMetadataUpdate,
    field_metadata: FieldMetadataDep,
) -> FieldMetadata:
    return await field_metadata.update(source_type, source_id, field_name, body)
