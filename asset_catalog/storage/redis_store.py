"""Blob store backed by Redis strings.

Each object lives at ``{key_prefix}{key}``; write timestamps are kept in one
hash so ``list_by_prefix`` can report them without touching the payloads.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import redis.asyncio as aioredis

from asset_catalog.storage.base import BlobInfo, BlobStore

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = "*?[]\\"


def _escape_glob(value: str) -> str:
    return "".join(f"\\{c}" if c in _GLOB_SPECIAL else c for c in value)


class RedisBlobStore(BlobStore):
    backend = "redis"

    def __init__(
        self,
        url: str,
        key_prefix: str = "asset-catalog:",
        client: Optional[aioredis.Redis] = None,
    ) -> None:
        self.url = url
        self.key_prefix = key_prefix
        self._client = client or aioredis.from_url(url, decode_responses=True)
        self._meta_key = f"{key_prefix}__meta__"

    def _redis_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> Optional[Any]:
        raw = await self._client.get(self._redis_key(key))
        if raw is None:
            return None
        return json.loads(raw)

    async def put(self, key: str, obj: Any) -> None:
        payload = json.dumps(obj, default=str, ensure_ascii=False)
        now = datetime.now(timezone.utc).isoformat()
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.set(self._redis_key(key), payload)
            pipe.hset(self._meta_key, key, now)
            await pipe.execute()

    async def exists(self, key: str) -> bool:
        return await self._client.exists(self._redis_key(key)) > 0

    async def list_by_prefix(self, prefix: str) -> list[BlobInfo]:
        pattern = f"{_escape_glob(self._redis_key(prefix))}*"
        redis_keys = [
            k async for k in self._client.scan_iter(match=pattern, count=500)
            if k != self._meta_key
        ]
        if not redis_keys:
            return []

        keys = [k[len(self.key_prefix):] for k in redis_keys]
        async with self._client.pipeline(transaction=False) as pipe:
            for redis_key, key in zip(redis_keys, keys):
                pipe.strlen(redis_key)
                pipe.hget(self._meta_key, key)
            results = await pipe.execute()

        infos: list[BlobInfo] = []
        for i, key in enumerate(keys):
            size, written_at = results[2 * i], results[2 * i + 1]
            last_modified = (
                datetime.fromisoformat(written_at)
                if written_at
                else datetime.fromtimestamp(0, tz=timezone.utc)
            )
            infos.append(BlobInfo(key=key, size=int(size or 0), last_modified=last_modified))
        infos.sort(key=lambda i: i.key)
        return infos

    async def delete(self, key: str) -> bool:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.delete(self._redis_key(key))
            pipe.hdel(self._meta_key, key)
            removed, _ = await pipe.execute()
        return removed > 0

    async def health(self) -> dict[str, Any]:
        status: dict[str, Any] = {
            "connected": False,
            "backend": self.backend,
            "url": self.url,
            "error": None,
        }
        try:
            await self._client.ping()
            status["connected"] = True
        except Exception as exc:
            status["error"] = str(exc)
        return status

    async def close(self) -> None:
        await self._client.aclose()
