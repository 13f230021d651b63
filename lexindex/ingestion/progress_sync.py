"""
Rebuild the local progress cache from the durable store.
"""
import math
from typing import Optional

from lexindex.ingestion.progress_cache import ProgressCache
from lexindex.ingestion.storage import ResourceWriter
from lexindex.logging_config import get_logger

log = get_logger(__name__)

DEFAULT_SYNC_THRESHOLD = 0.95
DEFAULT_SYNC_BATCH_SIZE = 10_000


async def sync_from_store(
    cache: ProgressCache,
    writer: ResourceWriter,
    source_type: Optional[str] = None,
    page_size: int = DEFAULT_SYNC_BATCH_SIZE,
) -> int:
    """Page every resource key (optionally of one source type) into the cache."""
    synced = 0
    async for keys in writer.iter_resource_keys(source_type, page_size=page_size):
        cache.mark_many(keys)
        synced += len(keys)
        log.info("progress_sync_page", source_type=source_type, synced=synced)
    log.info("progress_sync_complete", source_type=source_type, synced=synced, cache_total=cache.total_count())
    return synced


async def ensure_synced(
    cache: ProgressCache,
    writer: ResourceWriter,
    source_type: str,
    threshold: float = DEFAULT_SYNC_THRESHOLD,
    page_size: int = DEFAULT_SYNC_BATCH_SIZE,
) -> bool:
    """
    Resync one source type when the cache has fallen well behind.

    Small gaps (an insert racing the count, a mark lost to a crash) are
    tolerated; only a local count below ``threshold`` of the durable
    count triggers a rescan. Returns True if a resync ran.
    """
    durable = await writer.count_by_source_type(source_type)
    if durable == 0:
        return False
    local = cache.count_by_prefix(source_type)
    if local >= math.floor(durable * threshold):
        log.debug("progress_cache_in_sync", source_type=source_type, local=local, durable=durable)
        return False

    log.info("progress_cache_resync", source_type=source_type, local=local, durable=durable)
    await sync_from_store(cache, writer, source_type, page_size=page_size)
    return True
