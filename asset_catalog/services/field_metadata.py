"""User-maintained field metadata (description, classification, tags)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError

from asset_catalog.models.catalog import FieldCustomMetadata, FieldMetadata
from asset_catalog.storage.base import BlobStore
from asset_catalog.storage.keys import field_metadata_key

logger = logging.getLogger(__name__)


class FieldMetadataService:
    def __init__(self, store: BlobStore) -> None:
        self.store = store

    async def get(self, source_type: str, source_id: str, field_name: str) -> Optional[FieldMetadata]:
        data = await self.store.get(field_metadata_key(source_type, source_id, field_name))
        if data is None:
            return None
        try:
            return FieldMetadata.model_validate(data)
        except ValidationError as exc:
            logger.warning(
                "Ignoring unreadable metadata for %s/%s/%s: %s", source_type, source_id, field_name, exc
            )
            return None

    async def update(
        self,
        source_type: str,
        source_id: str,
        field_name: str,
        changes: FieldCustomMetadata,
    ) -> FieldMetadata:
        """Overwrite the custom metadata of one field and return the stored record."""
        metadata = FieldMetadata(
            source_type=source_type,
            source_id=source_id,
            field_name=field_name,
            description=changes.description,
            classification=changes.classification,
            tags=changes.tags,
            updated_at=datetime.now(timezone.utc),
        )
        await self.store.put(
            field_metadata_key(source_type, source_id, field_name),
            metadata.model_dump(mode="json"),
        )
        return metadata
