"""Blob store backed by an S3 bucket (AWS S3, MinIO, LocalStack, …)."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from asset_catalog.storage.base import BlobInfo, BlobStore

logger = logging.getLogger(__name__)

_MISSING_CODES = frozenset({"NoSuchKey", "404", "NotFound"})


class S3BlobStore(BlobStore):
    backend = "s3"

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/") + "/" if prefix.strip("/") else ""

        if client is None:
            client_kwargs: dict[str, Any] = {
                "service_name": "s3",
                "region_name": region,
                "config": Config(signature_version="s3v4", retries={"mode": "standard"}),
            }
            if endpoint_url:
                client_kwargs["endpoint_url"] = endpoint_url
            client = boto3.client(**client_kwargs)
        self.client = client

        logger.info("S3 blob store initialised (bucket=%s, prefix=%r)", bucket, self.prefix)

    def _s3_key(self, key: str) -> str:
        return f"{self.prefix}{key.lstrip('/')}"

    # ------------------------------------------------------------------
    # Synchronous helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _get(self, key: str) -> Optional[Any]:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=self._s3_key(key))
        except ClientError as exc:
            if exc.response["Error"]["Code"] in _MISSING_CODES:
                return None
            raise
        return json.loads(response["Body"].read())

    def _put(self, key: str, obj: Any) -> None:
        body = json.dumps(obj, default=str, ensure_ascii=False).encode("utf-8")
        self.client.put_object(
            Bucket=self.bucket,
            Key=self._s3_key(key),
            Body=body,
            ContentType="application/json",
        )

    def _exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=self._s3_key(key))
            return True
        except ClientError as exc:
            if exc.response["Error"]["Code"] in _MISSING_CODES:
                return False
            raise

    def _list(self, prefix: str) -> list[BlobInfo]:
        paginator = self.client.get_paginator("list_objects_v2")
        infos: list[BlobInfo] = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=self._s3_key(prefix)):
            for obj in page.get("Contents", []):
                infos.append(
                    BlobInfo(
                        key=obj["Key"][len(self.prefix):],
                        size=obj["Size"],
                        last_modified=obj["LastModified"],
                    )
                )
        infos.sort(key=lambda i: i.key)
        return infos

    def _delete(self, key: str) -> bool:
        if not self._exists(key):
            return False
        self.client.delete_object(Bucket=self.bucket, Key=self._s3_key(key))
        return True

    # ------------------------------------------------------------------
    # BlobStore interface
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self._get, key)

    async def put(self, key: str, obj: Any) -> None:
        await asyncio.to_thread(self._put, key, obj)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._exists, key)

    async def list_by_prefix(self, prefix: str) -> list[BlobInfo]:
        return await asyncio.to_thread(self._list, prefix)

    async def delete(self, key: str) -> bool:
        return await asyncio.to_thread(self._delete, key)

    async def health(self) -> dict[str, Any]:
        status: dict[str, Any] = {
            "connected": False,
            "backend": self.backend,
            "bucket": self.bucket,
            "error": None,
        }
        try:
            await asyncio.to_thread(self.client.head_bucket, Bucket=self.bucket)
            status["connected"] = True
        except Exception as exc:
            status["error"] = str(exc)
        return status
