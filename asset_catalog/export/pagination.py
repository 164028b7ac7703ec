"""Sequential, self-throttled listing of one asset type.

Pages are requested one at a time; each request goes through
``retry_with_classification``.  Between pages the loop sleeps for a short
delay, longer once a listing has grown large, to stay under the provider's
rate limit.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from asset_catalog.connectors.base import AssetLister
from asset_catalog.core.retry import RetryPolicy, retry_with_classification
from asset_catalog.models.schema import AssetSummary, AssetType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaginationPolicy:
    page_size: int = 100
    page_delay_s: float = 0.2
    large_page_delay_s: float = 0.5
    large_listing_threshold: int = 1000
    checkpoint_every_pages: int = 5
    checkpoint_every_items: int = 500

    def delay_after(self, items_listed: int) -> float:
        if items_listed > self.large_listing_threshold:
            return self.large_page_delay_s
        return self.page_delay_s

    def should_checkpoint(self, page_number: int, items_since_checkpoint: int) -> bool:
        return (
            page_number % self.checkpoint_every_pages == 0
            or items_since_checkpoint >= self.checkpoint_every_items
        )


@dataclass
class Page:
    number: int
    items: list[AssetSummary]
    next_token: Optional[str]
    items_listed: int


async def iter_pages(
    lister: AssetLister,
    asset_type: AssetType,
    *,
    pagination: PaginationPolicy,
    retry: RetryPolicy,
    start_token: Optional[str] = None,
    items_listed: int = 0,
) -> AsyncIterator[Page]:
    """Yield pages until the continuation token runs out.

    The next page is only requested once the consumer has finished with the
    current one.  ``items_listed`` seeds the running total when resuming.

    Raises:
        RetryExhaustedError: a page kept failing with retryable errors.
        SourceError: a page failed with a permanent error.
    """
    token = start_token
    number = 0
    while True:
        number += 1
        page = await retry_with_classification(
            functools.partial(lister.list_page, token, pagination.page_size),
            policy=retry,
            description=f"List {asset_type.collection} page {number}",
        )
        items_listed += len(page.items)
        logger.debug(
            "Listed %s page %d: %d items (%d total)",
            asset_type.collection,
            number,
            len(page.items),
            items_listed,
        )
        yield Page(number=number, items=page.items, next_token=page.next_token, items_listed=items_listed)

        if not page.next_token:
            return
        token = page.next_token
        await asyncio.sleep(pagination.delay_after(items_listed))
