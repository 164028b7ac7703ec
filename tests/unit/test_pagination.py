"""Tests for sequential page iteration and its throttling policy."""

import pytest

from asset_catalog.connectors.base import AccessDeniedError, RateLimitedError
from asset_catalog.core.errors import RetryExhaustedError
from asset_catalog.export.pagination import PaginationPolicy, iter_pages
from asset_catalog.models.schema import AssetType
from tests.support import FAST_RETRY, FakeAssetSource, fast_pagination


async def _collect(source, asset_type=AssetType.DATASET, **kwargs):
    kwargs.setdefault("pagination", fast_pagination(100))
    kwargs.setdefault("retry", FAST_RETRY)
    return [page async for page in iter_pages(source.lister(asset_type), asset_type, **kwargs)]


class TestPaginationPolicy:
    def test_short_delay_until_listing_grows(self):
        policy = PaginationPolicy()
        assert policy.delay_after(100) == 0.2
        assert policy.delay_after(1000) == 0.2
        assert policy.delay_after(1001) == 0.5

    def test_checkpoint_every_fifth_page(self):
        policy = PaginationPolicy()
        assert not policy.should_checkpoint(4, 400)
        assert policy.should_checkpoint(5, 100)
        assert policy.should_checkpoint(10, 0)

    def test_checkpoint_after_enough_items(self):
        policy = PaginationPolicy()
        assert policy.should_checkpoint(3, 500)


class TestIterPages:
    async def test_walks_every_page(self):
        source = FakeAssetSource()
        source.add_many(AssetType.DATASET, 250, "ds")
        pages = await _collect(source)
        assert [len(p.items) for p in pages] == [100, 100, 50]
        assert [p.number for p in pages] == [1, 2, 3]
        assert pages[-1].next_token is None
        assert pages[-1].items_listed == 250

    async def test_empty_listing_yields_one_empty_page(self):
        pages = await _collect(FakeAssetSource())
        assert len(pages) == 1
        assert pages[0].items == []

    async def test_rate_limited_page_is_retried(self):
        clean = FakeAssetSource()
        clean.add_many(AssetType.DATASET, 250, "ds")
        baseline = await _collect(clean)

        source = FakeAssetSource()
        source.add_many(AssetType.DATASET, 250, "ds")
        source.list_failures[(AssetType.DATASET, 100)] = [
            RateLimitedError("429"),
            RateLimitedError("429"),
        ]
        pages = await _collect(source)

        assert sum(len(p.items) for p in pages) == sum(len(p.items) for p in baseline)
        # Page two was requested three times before it succeeded.
        assert source.list_calls.count((AssetType.DATASET, 100)) == 3

    async def test_permanent_error_propagates(self):
        source = FakeAssetSource()
        source.add_many(AssetType.DATASET, 150, "ds")
        source.list_failures[(AssetType.DATASET, 100)] = [AccessDeniedError("denied")]
        with pytest.raises(AccessDeniedError):
            await _collect(source)

    async def test_exhausted_retries_raise(self):
        source = FakeAssetSource()
        source.add_many(AssetType.DATASET, 10, "ds")
        source.list_failures[(AssetType.DATASET, 0)] = [RateLimitedError("429") for _ in range(5)]
        with pytest.raises(RetryExhaustedError):
            await _collect(source)

    async def test_resumes_from_token(self):
        source = FakeAssetSource()
        source.add_many(AssetType.DATASET, 250, "ds")
        pages = await _collect(source, start_token="200", items_listed=200)
        assert len(pages) == 1
        assert len(pages[0].items) == 50
        assert pages[0].items_listed == 250
        assert source.list_calls == [(AssetType.DATASET, 200)]

    async def test_next_page_waits_for_consumer(self):
        source = FakeAssetSource()
        source.add_many(AssetType.DATASET, 250, "ds")
        pages = iter_pages(
            source.lister(AssetType.DATASET),
            AssetType.DATASET,
            pagination=fast_pagination(100),
            retry=FAST_RETRY,
        )
        first = await pages.__anext__()
        assert first.number == 1
        assert source.list_calls == [(AssetType.DATASET, 0)]
        await pages.aclose()
