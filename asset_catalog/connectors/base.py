"""Asset source contract and its error taxonomy.

An asset source exposes, per asset type, a small ``AssetLister`` (one page at
a time, continuation-token driven) plus detail / permission / tag fetches.
Provider quirks stay behind the lister for the affected type.

Errors raised by a source are ``SourceError`` subclasses whose ``retryable``
flag tells the caller whether backing off and trying again can help.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from asset_catalog.models.schema import AssetSummary, AssetType


class AuthMode(str, Enum):
    OFFLINE = "offline"
    DEFAULT_CHAIN = "default_chain"
    PROFILE = "profile"
    ACCESS_KEY = "access_key"


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------


class SourceError(Exception):
    """Base class for failures reported by an asset source."""

    retryable: bool = False

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        self.code = code
        super().__init__(message)


class RateLimitedError(SourceError):
    """Throttling / rate limit (HTTP 429)."""

    retryable = True


class ServiceUnavailableError(SourceError):
    """Temporary provider outage (HTTP 502 / 503)."""

    retryable = True


class AssetNotFoundError(SourceError):
    """The asset does not exist (any more)."""


class AccessDeniedError(SourceError):
    """The caller may not read the asset."""


class MalformedResponseError(SourceError):
    """The provider answered with something that cannot be interpreted."""


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


@dataclass
class ListPage:
    items: list[AssetSummary] = field(default_factory=list)
    next_token: Optional[str] = None


class AssetLister(ABC):
    """Lists one asset type page by page."""

    @abstractmethod
    async def list_page(self, continuation_token: Optional[str], page_size: int) -> ListPage:
        """Return one page of summaries and the token of the next page, if any."""


# ---------------------------------------------------------------------------
# Source
# ---------------------------------------------------------------------------


class BaseAssetSource(ABC):
    """Abstract base class for every BI asset provider."""

    def __init__(self, config: dict[str, Any], auth_mode: AuthMode = AuthMode.DEFAULT_CHAIN):
        self.config = config
        self.auth_mode = auth_mode

    @abstractmethod
    def lister(self, asset_type: AssetType) -> AssetLister:
        """Return the lister used for *asset_type*."""

    @abstractmethod
    async def get_detail(self, asset_type: AssetType, asset_id: str) -> dict[str, Any]:
        """Return the full provider definition of one asset."""

    @abstractmethod
    async def get_permissions(self, asset_type: AssetType, asset_id: str) -> list[dict[str, Any]]:
        """Return raw permission grants ``{Principal, Actions}``."""

    @abstractmethod
    async def get_tags(self, asset_type: AssetType, asset_id: str) -> dict[str, str]:
        """Return the asset's tags as a flat key -> value mapping."""

    @abstractmethod
    async def test_connection(self) -> bool:
        """Verify connectivity to the provider."""
