"""Blob store contract shared by the filesystem, Redis and S3 backends.

Objects are JSON documents addressed by hierarchical string keys.  Every
write replaces the whole object; there are no partial updates.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional


@dataclass
class BlobInfo:
    key: str
    size: int
    last_modified: datetime


class BlobStore(ABC):
    """Abstract base class for durable JSON object storage."""

    backend: str = "unknown"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the decoded object stored at *key*, or None when absent."""

    @abstractmethod
    async def put(self, key: str, obj: Any) -> None:
        """Serialise *obj* as JSON and overwrite *key* with it."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return True if an object is stored at *key*."""

    @abstractmethod
    async def list_by_prefix(self, prefix: str) -> list[BlobInfo]:
        """Return every object whose key starts with *prefix*, sorted by key."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove *key*; return False if nothing was stored there."""

    async def health(self) -> dict[str, Any]:
        return {"connected": True, "backend": self.backend, "error": None}

    async def close(self) -> None:
        return None
