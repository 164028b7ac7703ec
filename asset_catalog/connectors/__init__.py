"""Asset source connectors.

Public surface area — import from here rather than sub-modules.
"""

from asset_catalog.connectors.base import (
    AccessDeniedError,
    AssetLister,
    AssetNotFoundError,
    AuthMode,
    BaseAssetSource,
    ListPage,
    MalformedResponseError,
    RateLimitedError,
    ServiceUnavailableError,
    SourceError,
)
from asset_catalog.core.config import Settings


def create_asset_source(settings: Settings) -> BaseAssetSource:
    """Build the source named by ``ASSET_SOURCE_MODE``."""
    mode = settings.ASSET_SOURCE_MODE.lower()
    if mode == "offline":
        from asset_catalog.connectors.quicksight.offline import OfflineAssetSource

        return OfflineAssetSource({"folder_path": settings.OFFLINE_SOURCE_PATH})
    if mode == "quicksight":
        from asset_catalog.connectors.quicksight.connector import QuickSightAssetSource

        config = {
            "account_id": settings.AWS_ACCOUNT_ID,
            "region": settings.AWS_REGION,
            "profile": settings.AWS_PROFILE or None,
        }
        auth_mode = AuthMode.PROFILE if settings.AWS_PROFILE else AuthMode.DEFAULT_CHAIN
        return QuickSightAssetSource(config, auth_mode)
    raise ValueError(f"Unknown ASSET_SOURCE_MODE: {settings.ASSET_SOURCE_MODE!r}")


__all__ = [
    "AuthMode",
    "BaseAssetSource",
    "AssetLister",
    "ListPage",
    "SourceError",
    "RateLimitedError",
    "ServiceUnavailableError",
    "AssetNotFoundError",
    "AccessDeniedError",
    "MalformedResponseError",
    "create_asset_source",
]
