import pytest
from unittest.mock import AsyncMock, MagicMock

from lexindex.ingestion.progress_cache import ProgressCache
from lexindex.ingestion.progress_sync import ensure_synced, sync_from_store


def make_writer(durable_count, pages=()):
    writer = MagicMock()
    writer.count_by_source_type = AsyncMock(return_value=durable_count)

    async def iter_resource_keys(source_type=None, page_size=10_000):
        for page in pages:
            yield page

    writer.iter_resource_keys = MagicMock(side_effect=iter_resource_keys)
    return writer


@pytest.fixture
def cache():
    c = ProgressCache(":memory:")
    yield c
    c.close()


@pytest.mark.asyncio
async def test_sync_from_store_marks_every_page(cache):
    writer = make_writer(0, pages=[["bill:1:en:0", "bill:2:en:0"], ["bill:3:en:0"]])
    synced = await sync_from_store(cache, writer, "bill")
    assert synced == 3
    assert cache.count_by_prefix("bill") == 3


@pytest.mark.asyncio
async def test_ensure_synced_skips_empty_store(cache):
    writer = make_writer(0)
    assert await ensure_synced(cache, writer, "bill") is False
    writer.iter_resource_keys.assert_not_called()


@pytest.mark.asyncio
async def test_ensure_synced_tolerates_small_gap(cache):
    cache.mark_many([f"bill:{i}:en:0" for i in range(95)])
    writer = make_writer(100)
    # floor(100 * 0.95) = 95: within threshold
    assert await ensure_synced(cache, writer, "bill", threshold=0.95) is False
    writer.iter_resource_keys.assert_not_called()


@pytest.mark.asyncio
async def test_ensure_synced_rebuilds_when_far_behind(cache):
    cache.mark_many([f"bill:{i}:en:0" for i in range(94)])
    keys = [f"bill:{i}:en:0" for i in range(100)]
    writer = make_writer(100, pages=[keys])
    assert await ensure_synced(cache, writer, "bill", threshold=0.95) is True
    assert cache.count_by_prefix("bill") == 100
