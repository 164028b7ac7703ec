"""Blob store backed by a local directory tree (one JSON file per key)."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from asset_catalog.storage.base import BlobInfo, BlobStore

logger = logging.getLogger(__name__)


class FilesystemBlobStore(BlobStore):
    """Store each key as a file below *root*.

    Writes go to a temporary file in the target directory followed by
    ``os.replace`` so readers never observe a half-written object.
    """

    backend = "filesystem"

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        key = key.lstrip("/")
        if not key or ".." in Path(key).parts:
            raise ValueError(f"Invalid blob key: {key!r}")
        return self.root / key

    # ------------------------------------------------------------------
    # Synchronous helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _read(self, key: str) -> Optional[Any]:
        path = self._path(key)
        try:
            with open(path, encoding="utf-8") as fh:
                return json.load(fh)
        except FileNotFoundError:
            return None

    def _write(self, key: str, obj: Any) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(obj, fh, default=str, ensure_ascii=False)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _list(self, prefix: str) -> list[BlobInfo]:
        prefix = prefix.lstrip("/")
        # Walk from the deepest directory fully contained in the prefix.
        base_dir = self.root / prefix.rsplit("/", 1)[0] if "/" in prefix else self.root
        if not base_dir.is_dir():
            return []

        infos: list[BlobInfo] = []
        for dirpath, _dirnames, filenames in os.walk(base_dir):
            for filename in filenames:
                if filename.startswith(".tmp-"):
                    continue
                full = Path(dirpath) / filename
                key = full.relative_to(self.root).as_posix()
                if not key.startswith(prefix):
                    continue
                stat = full.stat()
                infos.append(
                    BlobInfo(
                        key=key,
                        size=stat.st_size,
                        last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    )
                )
        infos.sort(key=lambda i: i.key)
        return infos

    def _delete(self, key: str) -> bool:
        try:
            self._path(key).unlink()
            return True
        except FileNotFoundError:
            return False

    # ------------------------------------------------------------------
    # BlobStore interface
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self._read, key)

    async def put(self, key: str, obj: Any) -> None:
        await asyncio.to_thread(self._write, key, obj)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path(key).is_file)

    async def list_by_prefix(self, prefix: str) -> list[BlobInfo]:
        return await asyncio.to_thread(self._list, prefix)

    async def delete(self, key: str) -> bool:
        return await asyncio.to_thread(self._delete, key)

    async def health(self) -> dict[str, Any]:
        status: dict[str, Any] = {"connected": False, "backend": self.backend, "error": None}
        try:
            status["connected"] = await asyncio.to_thread(os.access, self.root, os.W_OK)
        except OSError as exc:
            status["error"] = str(exc)
        return status
