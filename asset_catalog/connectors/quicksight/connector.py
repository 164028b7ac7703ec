"""QuickSight asset source.

Supports:
  AuthMode.DEFAULT_CHAIN — boto3's default credential chain
  AuthMode.PROFILE       — a named profile from the shared config files
  AuthMode.ACCESS_KEY    — explicit access key / secret (+ optional session token)

Offline folders are served by ``OfflineAssetSource`` instead.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, TypeVar

import boto3
from botocore.config import Config

from asset_catalog.connectors.base import (
    AssetLister,
    AuthMode,
    BaseAssetSource,
    ListPage,
)
from asset_catalog.connectors.quicksight.extractor import (
    build_arn,
    classify_error,
    describe_asset,
    describe_permissions,
    list_assets_page,
    list_tags,
    summary_from_item,
)
from asset_catalog.models.schema import AssetType

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Retries are driven by the export pipeline, not by botocore.
_CLIENT_CONFIG = Config(retries={"mode": "standard", "max_attempts": 1})

_PARAMETER_UNION_KEYS = ("DataSourceParameters", "AlternateDataSourceParameters")


# ---------------------------------------------------------------------------
# Listers
# ---------------------------------------------------------------------------


class QuickSightLister(AssetLister):
    """Default lister: one ``List*`` call per page."""

    def __init__(self, source: "QuickSightAssetSource", asset_type: AssetType) -> None:
        self.source = source
        self.asset_type = asset_type

    async def list_page(self, continuation_token: Optional[str], page_size: int) -> ListPage:
        account_id = await self.source.account_id()
        items, next_token = await self.source.call(
            f"list {self.asset_type.collection}",
            list_assets_page,
            account_id,
            self.asset_type,
            continuation_token,
            page_size,
        )
        return ListPage(
            items=[summary_from_item(self.asset_type, self._normalise(i)) for i in items],
            next_token=next_token,
        )

    def _normalise(self, item: dict[str, Any]) -> dict[str, Any]:
        return item


class LegacyDataSourceLister(QuickSightLister):
    """Datasource lister tolerant of degenerate parameter unions.

    Some datasources come back with an empty ``DataSourceParameters`` union
    (``{}``) or alternate-parameter lists holding empty unions.  Those are
    valid provider answers that strict consumers reject, so they are dropped
    here and entries missing an id are skipped with a warning.
    """

    def __init__(self, source: "QuickSightAssetSource") -> None:
        super().__init__(source, AssetType.DATASOURCE)

    async def list_page(self, continuation_token: Optional[str], page_size: int) -> ListPage:
        page = await super().list_page(continuation_token, page_size)
        kept = [s for s in page.items if s.asset_id]
        skipped = len(page.items) - len(kept)
        if skipped:
            logger.warning("Skipped %d datasource summaries without an id", skipped)
        return ListPage(items=kept, next_token=page.next_token)

    def _normalise(self, item: dict[str, Any]) -> dict[str, Any]:
        cleaned = dict(item)
        for key in _PARAMETER_UNION_KEYS:
            value = cleaned.get(key)
            if isinstance(value, list):
                value = [v for v in value if v]
            if not value:
                cleaned.pop(key, None)
            else:
                cleaned[key] = value
        return cleaned


# ---------------------------------------------------------------------------
# Source
# ---------------------------------------------------------------------------


class QuickSightAssetSource(BaseAssetSource):
    """Read dashboards, analyses, datasets and datasources from QuickSight.

    Config keys:
      account_id         — AWS account id (resolved through STS when empty)
      region             — QuickSight region (default us-east-1)
      profile            — profile name for AuthMode.PROFILE
      access_key_id / secret_access_key / session_token — AuthMode.ACCESS_KEY
    """

    def __init__(
        self,
        config: dict[str, Any],
        auth_mode: AuthMode = AuthMode.DEFAULT_CHAIN,
        client: Any = None,
    ) -> None:
        super().__init__(config, auth_mode)
        self.region: str = config.get("region") or "us-east-1"
        self._client = client
        self._account_id: Optional[str] = config.get("account_id") or None
        self._listers: dict[AssetType, AssetLister] = {}

    # ------------------------------------------------------------------
    # Client management
    # ------------------------------------------------------------------

    def _session(self) -> boto3.session.Session:
        if self.auth_mode == AuthMode.PROFILE:
            return boto3.session.Session(
                profile_name=self.config.get("profile"), region_name=self.region
            )
        if self.auth_mode == AuthMode.ACCESS_KEY:
            return boto3.session.Session(
                aws_access_key_id=self.config.get("access_key_id"),
                aws_secret_access_key=self.config.get("secret_access_key"),
                aws_session_token=self.config.get("session_token"),
                region_name=self.region,
            )
        return boto3.session.Session(region_name=self.region)

    def _get_client(self):
        if self._client is None:
            self._client = self._session().client("quicksight", config=_CLIENT_CONFIG)
        return self._client

    async def call(self, operation: str, fn: Callable[..., T], *args: Any) -> T:
        """Run a synchronous extractor call off the event loop, classifying failures."""
        try:
            return await asyncio.to_thread(fn, self._get_client(), *args)
        except Exception as exc:
            raise classify_error(exc, operation) from exc

    async def account_id(self) -> str:
        if self._account_id is None:
            def _resolve() -> str:
                return self._session().client("sts").get_caller_identity()["Account"]

            try:
                self._account_id = await asyncio.to_thread(_resolve)
            except Exception as exc:
                raise classify_error(exc, "resolve account id") from exc
        return self._account_id

    # ------------------------------------------------------------------
    # BaseAssetSource interface
    # ------------------------------------------------------------------

    def lister(self, asset_type: AssetType) -> AssetLister:
        if asset_type not in self._listers:
            if asset_type == AssetType.DATASOURCE:
                self._listers[asset_type] = LegacyDataSourceLister(self)
            else:
                self._listers[asset_type] = QuickSightLister(self, asset_type)
        return self._listers[asset_type]

    async def get_detail(self, asset_type: AssetType, asset_id: str) -> dict[str, Any]:
        account_id = await self.account_id()
        return await self.call(
            f"describe {asset_type.value} {asset_id}",
            describe_asset,
            account_id,
            asset_type,
            asset_id,
        )

    async def get_permissions(self, asset_type: AssetType, asset_id: str) -> list[dict[str, Any]]:
        account_id = await self.account_id()
        return await self.call(
            f"describe {asset_type.value} permissions {asset_id}",
            describe_permissions,
            account_id,
            asset_type,
            asset_id,
        )

    async def get_tags(self, asset_type: AssetType, asset_id: str) -> dict[str, str]:
        account_id = await self.account_id()
        arn = build_arn(self.region, account_id, asset_type, asset_id)
        return await self.call(f"list tags {arn}", list_tags, arn)

    async def test_connection(self) -> bool:
        try:
            account_id = await self.account_id()
            await self.call(
                "describe account settings",
                lambda client: client.describe_account_settings(AwsAccountId=account_id),
            )
            return True
        except Exception as exc:
            logger.error("QuickSight connection test failed: %s", exc)
            return False
