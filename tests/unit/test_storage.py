import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.exc import IntegrityError

from lexindex.exceptions import InvalidEmbeddingError, ResourceWriteError, StorageException
from lexindex.ingestion.progress_cache import ProgressCache
from lexindex.ingestion.storage import ResourceWriter
from lexindex.schemas.chunks import ChunkData
from lexindex.schemas.metadata import LegislationMetadata

DIM = 3


def make_chunk(i, text="In this Act,\n\npeace officer includes"):
    return ChunkData(
        resource_key=f"act_section:s{i}:en:0",
        content=text,
        metadata=LegislationMetadata(source_type="act_section", source_id=f"s{i}", language="en"),
    )


def make_db(mock_session):
    db = MagicMock()
    db.get_session.return_value.__aenter__.return_value = mock_session
    return db


def keys_result(keys):
    result = MagicMock()
    result.scalars.return_value.all.return_value = keys
    return result


@pytest.fixture
def cache():
    c = ProgressCache(":memory:")
    yield c
    c.close()


class TestExistingKeys:
    @pytest.mark.asyncio
    async def test_queries_in_groups(self, cache):
        mock_session = AsyncMock()
        mock_session.execute.return_value = keys_result([])
        writer = ResourceWriter(make_db(mock_session), cache, "embed-multilingual-v3.0", DIM)

        await writer.existing_keys(f"bill:{i}:en:0" for i in range(1200))

        assert mock_session.execute.await_count == 3

    @pytest.mark.asyncio
    async def test_database_error(self, cache):
        mock_session = AsyncMock()
        mock_session.execute.side_effect = IntegrityError("SELECT", {}, Exception("boom"))
        writer = ResourceWriter(make_db(mock_session), cache, "m", DIM)

        with pytest.raises(StorageException):
            await writer.existing_keys(["bill:1:en:0"])


class TestPrecheck:
    @pytest.mark.asyncio
    async def test_existing_keys_are_marked_in_cache(self, cache):
        chunks = [make_chunk(i) for i in range(10)]
        mock_session = AsyncMock()
        mock_session.execute.return_value = keys_result([c.resource_key for c in chunks])
        writer = ResourceWriter(make_db(mock_session), cache, "m", DIM)

        existing = await writer.precheck(chunks)

        assert existing == {c.resource_key for c in chunks}
        assert cache.count_by_prefix("act_section") == 10


class TestWriteBatch:
    @pytest.mark.asyncio
    async def test_upserts_then_replaces_embeddings(self, cache):
        chunks = [make_chunk(1), make_chunk(2)]
        upsert_result = [
            # RETURNING rows may come back in any order
            SimpleNamespace(id=20, resource_key="act_section:s2:en:0"),
            SimpleNamespace(id=10, resource_key="act_section:s1:en:0"),
        ]
        mock_session = AsyncMock()
        mock_session.execute.side_effect = [upsert_result, MagicMock(), MagicMock()]
        writer = ResourceWriter(make_db(mock_session), cache, "embed-multilingual-v3.0", DIM)

        written = await writer.write_batch(chunks, [[0.1, 0.2, 0.3], [0.4, 0.5, 0.6]])

        assert written == 2
        # upsert, delete old embeddings, insert new embeddings
        assert mock_session.execute.await_count == 3
        insert_stmt = mock_session.execute.await_args_list[2].args[0]
        params = insert_stmt.compile().params
        resource_ids = [v for k, v in params.items() if k.startswith("resource_id")]
        assert sorted(resource_ids) == [10, 20]
        # Stored content is the flattened text
        contents = {v for k, v in params.items() if k.startswith("content")}
        assert contents == {"In this Act, peace officer includes"}
        assert cache.has("act_section:s1:en:0") and cache.has("act_section:s2:en:0")

    @pytest.mark.asyncio
    async def test_invalid_vector_writes_nothing(self, cache):
        db = MagicMock()
        writer = ResourceWriter(db, cache, "m", DIM)

        with pytest.raises(InvalidEmbeddingError):
            await writer.write_batch([make_chunk(1), make_chunk(2)], [[0.1, 0.2, 0.3], [0.1, float("nan"), 0.3]])

        db.get_session.assert_not_called()
        assert cache.total_count() == 0

    @pytest.mark.asyncio
    async def test_database_error_leaves_cache_untouched(self, cache):
        mock_session = AsyncMock()
        mock_session.execute.side_effect = IntegrityError("INSERT", {}, Exception("duplicate"))
        writer = ResourceWriter(make_db(mock_session), cache, "m", DIM)

        with pytest.raises(ResourceWriteError):
            await writer.write_batch([make_chunk(1)], [[0.1, 0.2, 0.3]])

        assert cache.total_count() == 0

    @pytest.mark.asyncio
    async def test_missing_returning_row_fails(self, cache):
        mock_session = AsyncMock()
        mock_session.execute.side_effect = [[SimpleNamespace(id=10, resource_key="act_section:s1:en:0")]]
        writer = ResourceWriter(make_db(mock_session), cache, "m", DIM)

        with pytest.raises(ResourceWriteError, match="no id"):
            await writer.write_batch([make_chunk(1), make_chunk(2)], [[0.1, 0.2, 0.3]] * 2)

        assert cache.total_count() == 0

    @pytest.mark.asyncio
    async def test_length_mismatch(self, cache):
        writer = ResourceWriter(MagicMock(), cache, "m", DIM)
        with pytest.raises(ResourceWriteError):
            await writer.write_batch([make_chunk(1)], [])


@pytest.mark.asyncio
async def test_iter_resource_keys_pages_by_id(cache):
    page1 = MagicMock()
    page1.all.return_value = [SimpleNamespace(id=1, resource_key="bill:1:en:0"), SimpleNamespace(id=2, resource_key="bill:1:fr:0")]
    page2 = MagicMock()
    page2.all.return_value = [SimpleNamespace(id=5, resource_key="bill:2:en:0")]
    mock_session = AsyncMock()
    mock_session.execute.side_effect = [page1, page2]
    writer = ResourceWriter(make_db(mock_session), cache, "m", DIM)

    pages = [keys async for keys in writer.iter_resource_keys("bill", page_size=2)]

    assert pages == [["bill:1:en:0", "bill:1:fr:0"], ["bill:2:en:0"]]
