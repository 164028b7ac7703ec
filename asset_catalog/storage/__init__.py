"""Blob storage package.

Public surface area — import from here rather than sub-modules.
"""

from asset_catalog.core.config import Settings
from asset_catalog.storage.base import BlobInfo, BlobStore
from asset_catalog.storage.filesystem import FilesystemBlobStore


def create_blob_store(settings: Settings) -> BlobStore:
    """Build the backend named by ``BLOB_STORE_BACKEND``."""
    backend = settings.BLOB_STORE_BACKEND.lower()
    if backend == "filesystem":
        return FilesystemBlobStore(settings.BLOB_STORE_PATH)
    if backend == "redis":
        from asset_catalog.storage.redis_store import RedisBlobStore

        return RedisBlobStore(settings.REDIS_URL, key_prefix=settings.REDIS_KEY_PREFIX)
    if backend == "s3":
        from asset_catalog.storage.s3 import S3BlobStore

        return S3BlobStore(
            settings.S3_BUCKET,
            prefix=settings.S3_PREFIX,
            region=settings.AWS_REGION,
            endpoint_url=settings.S3_ENDPOINT_URL or None,
        )
    raise ValueError(f"Unknown BLOB_STORE_BACKEND: {settings.BLOB_STORE_BACKEND!r}")


__all__ = ["BlobInfo", "BlobStore", "FilesystemBlobStore", "create_blob_store"]
