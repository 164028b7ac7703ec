"""API response models for assets, lineage and the field catalog."""

from typing import Optional

from pydantic import BaseModel, Field

from asset_catalog.models.catalog import AssetIndexEntry, AssetLineage, FieldCustomMetadata, FieldTag


class AssetListResponse(BaseModel):
    items: list[AssetIndexEntry]
    total: int
    page: int
    page_size: int


class LineageListResponse(BaseModel):
    items: list[AssetLineage]
    count: int


class FieldMetadataUpdate(FieldCustomMetadata):
    """Body of a field-metadata update; every attribute is replaced."""

    description: Optional[str] = Field(default=None, max_length=4000)
    classification: Optional[str] = Field(default=None, max_length=255)
    tags: list[FieldTag] = Field(default_factory=list)
