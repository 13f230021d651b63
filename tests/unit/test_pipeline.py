import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from lexindex.config import EmbeddingSettings, Settings
from lexindex.exceptions import ConfigurationError, EmbeddingError, InvalidEmbeddingError
from lexindex.ingestion.embedder import BatchOutcome
from lexindex.ingestion.pipeline import IngestOptions, IngestionPipeline
from lexindex.ingestion.progress_cache import ProgressCache
from lexindex.ingestion.source_iterator import Page


def make_session_row(i):
    return SimpleNamespace(
        id=f"4{i}-1", name_en=f"Session {i}", name_fr=f"Session {i} (fr)",
        parliament_num=40 + i, start_date=None, end_date=None,
    )


class FakeIterator:
    """Stands in for SourceIterator: serves fixed pages."""

    def __init__(self, pages):
        self._pages = pages

    async def count(self, cursor=None, inclusive=False):
        return sum(len(p) for p in self._pages)

    async def pages(self, start_cursor=None, inclusive=False):
        for rows in self._pages:
            yield Page(rows=rows, cursor=rows[-1].id)


def succeed(batches, label=""):
    return [BatchOutcome(batch=b, vectors=[[0.0, 0.0]] * len(b)) for b in batches]


def make_writer():
    writer = MagicMock()
    writer.precheck = AsyncMock(return_value=set())
    writer.write_batch = AsyncMock(side_effect=lambda chunks, vectors: len(chunks))
    writer.count_by_source_type = AsyncMock(return_value=0)
    return writer


@pytest.fixture
def settings():
    # batch_size 2, flush at 4 pending chunks
    return Settings(
        database_url="postgresql://postgres@localhost/lexindex",
        embedding=EmbeddingSettings(batch_size=2, dimension=2, api_key="test"),
    )


@pytest.fixture
def cache():
    c = ProgressCache(":memory:")
    yield c
    c.close()


def make_pipeline(settings, cache, writer, batcher=None, shutdown=None):
    return IngestionPipeline(settings, MagicMock(), cache, writer, batcher, shutdown)


def serve(*pages):
    return patch("lexindex.ingestion.pipeline.SourceIterator", return_value=FakeIterator(list(pages)))


class TestDryRun:
    @pytest.mark.asyncio
    async def test_counts_without_embedding_or_writing(self, settings, cache):
        writer = make_writer()
        rows = [make_session_row(i) for i in range(5)]

        with serve(rows):
            summary = await make_pipeline(settings, cache, writer).run(["session"], IngestOptions(dry_run=True))

        assert summary.dry_run is True
        assert summary.chunks_inserted == 10  # would embed: 5 sessions x 2 languages
        assert summary.items_processed == 5
        writer.precheck.assert_not_called()
        writer.write_batch.assert_not_called()

    @pytest.mark.asyncio
    async def test_real_run_needs_batcher(self, settings, cache):
        with pytest.raises(ConfigurationError):
            await make_pipeline(settings, cache, make_writer()).run(["session"], IngestOptions())


class TestSkipping:
    @pytest.mark.asyncio
    async def test_all_existing_makes_no_embedding_calls(self, settings, cache):
        rows = [make_session_row(i) for i in range(5)]
        writer = make_writer()
        writer.precheck = AsyncMock(side_effect=lambda chunks: {c.resource_key for c in chunks})
        batcher = MagicMock()
        batcher.embed_batches = AsyncMock(side_effect=succeed)

        with serve(rows):
            summary = await make_pipeline(settings, cache, writer, batcher).run(["session"], IngestOptions())

        batcher.embed_batches.assert_not_called()
        writer.write_batch.assert_not_called()
        assert summary.chunks_skipped == 10
        assert summary.chunks_inserted == 0

    @pytest.mark.asyncio
    async def test_cached_keys_are_filtered_before_precheck(self, settings, cache):
        cache.mark_many(["session:40-1:en:0", "session:40-1:fr:0"])
        writer = make_writer()
        batcher = MagicMock()
        batcher.embed_batches = AsyncMock(side_effect=succeed)

        with serve([make_session_row(0), make_session_row(1)]):
            summary = await make_pipeline(settings, cache, writer, batcher).run(
                ["session"], IngestOptions(skip_existing=True)
            )

        checked = [c.resource_key for c in writer.precheck.await_args.args[0]]
        assert checked == ["session:41-1:en:0", "session:41-1:fr:0"]
        assert summary.chunks_skipped == 2
        assert summary.chunks_inserted == 2

    @pytest.mark.asyncio
    async def test_fresh_run_ignores_cache(self, settings, cache):
        cache.mark_many(["session:40-1:en:0", "session:40-1:fr:0"])
        writer = make_writer()
        batcher = MagicMock()
        batcher.embed_batches = AsyncMock(side_effect=succeed)

        with serve([make_session_row(0)]):
            await make_pipeline(settings, cache, writer, batcher).run(["session"], IngestOptions())

        # Not skipped by the cache; the durable pre-check still runs
        assert len(writer.precheck.await_args.args[0]) == 2

    @pytest.mark.asyncio
    async def test_reembed_skips_cache_and_precheck(self, settings, cache):
        cache.mark_many(["session:40-1:en:0", "session:40-1:fr:0"])
        writer = make_writer()
        batcher = MagicMock()
        batcher.embed_batches = AsyncMock(side_effect=succeed)

        with serve([make_session_row(0)]):
            summary = await make_pipeline(settings, cache, writer, batcher).run(
                ["session"], IngestOptions(skip_existing=True, reembed=True)
            )

        writer.precheck.assert_not_called()
        assert summary.chunks_inserted == 2

    @pytest.mark.asyncio
    async def test_duplicate_keys_sent_once(self, settings, cache):
        row = make_session_row(0)
        writer = make_writer()
        batcher = MagicMock()
        batcher.embed_batches = AsyncMock(side_effect=succeed)

        with serve([row, row]):
            summary = await make_pipeline(settings, cache, writer, batcher).run(["session"], IngestOptions())

        assert summary.chunks_inserted == 2


class TestFailures:
    @pytest.mark.asyncio
    async def test_failed_batch_keeps_earlier_batches_and_raises(self, settings, cache):
        rows = [make_session_row(i) for i in range(5)]
        writer = make_writer()

        def second_fails(batches, label=""):
            outcomes = succeed(batches)
            outcomes[1] = BatchOutcome(batch=batches[1], error=EmbeddingError("503 after 3 attempts"))
            return outcomes

        batcher = MagicMock()
        batcher.embed_batches = AsyncMock(side_effect=second_fails)

        with serve(rows):
            with pytest.raises(EmbeddingError):
                await make_pipeline(settings, cache, writer, batcher).run(["session"], IngestOptions())

        # Only the batch before the failure was written, even though later ones succeeded
        assert writer.write_batch.await_count == 1

    @pytest.mark.asyncio
    async def test_invalid_embedding_is_recorded_and_stops_the_source(self, settings, cache):
        rows = [make_session_row(i) for i in range(2)]
        writer = make_writer()
        writer.write_batch = AsyncMock(side_effect=[InvalidEmbeddingError("Expected 2-dimensional vector, got 3"), 2])
        batcher = MagicMock()
        batcher.embed_batches = AsyncMock(side_effect=succeed)

        with serve(rows):
            summary = await make_pipeline(settings, cache, writer, batcher).run(["session"], IngestOptions())

        # The batch after the rejected one is not written
        assert writer.write_batch.await_count == 1
        assert summary.chunks_inserted == 0
        assert summary.results[0].halted is True
        assert summary.interrupted is False
        [error] = summary.errors.errors
        assert error.item_type == "session"
        assert error.item_id == "session:40-1:en:0"
        assert error.retryable is True

    @pytest.mark.asyncio
    async def test_oversized_chunks_are_counted(self, settings, cache):
        settings.embedding.max_tokens = 5  # 20 chars
        writer = make_writer()
        batcher = MagicMock()
        batcher.embed_batches = AsyncMock(side_effect=succeed)

        with serve([make_session_row(0)]):
            summary = await make_pipeline(settings, cache, writer, batcher).run(["session"], IngestOptions())

        assert summary.chunks_oversized == 2
        assert len(summary.errors) == 2
        batcher.embed_batches.assert_not_called()

    @pytest.mark.asyncio
    async def test_session_filter_rejected_for_legislation(self, settings, cache):
        with pytest.raises(ConfigurationError, match="--session"):
            await make_pipeline(settings, cache, make_writer(), MagicMock()).run(
                ["act", "bill"], IngestOptions(session="45-1")
            )


@pytest.mark.asyncio
async def test_shutdown_stops_between_pages(settings, cache):
    shutdown = SimpleNamespace(requested=False)
    writer = make_writer()

    def embed_then_signal(batches, label=""):
        shutdown.requested = True
        return succeed(batches)

    batcher = MagicMock()
    batcher.embed_batches = AsyncMock(side_effect=embed_then_signal)
    first_page = [make_session_row(0), make_session_row(1)]
    second_page = [make_session_row(2), make_session_row(3)]

    with serve(first_page, second_page):
        summary = await make_pipeline(settings, cache, writer, batcher, shutdown).run(
            ["session", "bill"], IngestOptions()
        )

    assert summary.interrupted is True
    # The in-flight flush finished; nothing after it ran
    assert summary.chunks_inserted == 4
    assert summary.items_processed == 2
    assert [r.source_type for r in summary.results] == ["session"]


def make_bill_row(bill_id):
    return SimpleNamespace(
        id=bill_id, number=f"C-{bill_id}", name_en=f"Bill {bill_id}", name_fr=f"Projet de loi {bill_id}",
        session_id="45-1", status_code=None, introduced=None, text_en=None, text_fr=None,
    )


class CursorIterator:
    """Serves one row per page from an id-ordered table, honouring the start cursor."""

    def __init__(self, rows):
        self.rows = rows
        self.starts = []

    def _remaining(self, start_cursor, inclusive):
        if start_cursor is None:
            return self.rows
        if inclusive:
            return [r for r in self.rows if r.id >= start_cursor]
        return [r for r in self.rows if r.id > start_cursor]

    async def count(self, cursor=None, inclusive=False):
        return len(self._remaining(cursor, inclusive))

    async def pages(self, start_cursor=None, inclusive=False):
        self.starts.append((start_cursor, inclusive))
        for row in self._remaining(start_cursor, inclusive):
            yield Page(rows=[row], cursor=row.id)


def make_marking_writer(cache, reject_first_key=None):
    """Writes like ResourceWriter: keys are marked in the cache once the batch lands."""
    writer = make_writer()
    writer.written = []

    async def write(chunks, vectors):
        if chunks[0].resource_key == reject_first_key:
            raise InvalidEmbeddingError("Vector contains a non-finite or non-numeric value: nan")
        keys = [c.resource_key for c in chunks]
        writer.written.extend(keys)
        cache.mark_many(keys)
        return len(chunks)

    writer.write_batch = AsyncMock(side_effect=write)
    return writer


def all_bill_keys(ids):
    return {f"bill:{i}:{lang}:0" for i in ids for lang in ("en", "fr")}


class TestResume:
    @pytest.mark.asyncio
    async def test_interrupted_run_resumes_without_gaps_or_duplicates(self, settings, cache):
        table = CursorIterator([make_bill_row(i) for i in range(1, 7)])
        shutdown = SimpleNamespace(requested=False)
        batcher = MagicMock()

        def embed_then_signal(batches, label=""):
            shutdown.requested = True
            return succeed(batches)

        batcher.embed_batches = AsyncMock(side_effect=embed_then_signal)
        first_writer = make_marking_writer(cache)

        with patch("lexindex.ingestion.pipeline.SourceIterator", return_value=table):
            first = await make_pipeline(settings, cache, first_writer, batcher, shutdown).run(
                ["bill"], IngestOptions(skip_existing=True)
            )
            assert first.interrupted is True
            assert set(first_writer.written) == all_bill_keys([1, 2])

            batcher.embed_batches = AsyncMock(side_effect=succeed)
            second_writer = make_marking_writer(cache)
            second = await make_pipeline(settings, cache, second_writer, batcher).run(
                ["bill"], IngestOptions(skip_existing=True)
            )

        # Resumes at the last cached id, inclusive; its cached chunks are not sent again
        assert table.starts[-1] == (2, True)
        assert second.chunks_skipped == 2
        assert not set(first_writer.written) & set(second_writer.written)
        assert set(first_writer.written) | set(second_writer.written) == all_bill_keys(range(1, 7))
        assert set(cache.sample_keys("bill", limit=100)) == all_bill_keys(range(1, 7))

    @pytest.mark.asyncio
    async def test_rejected_batch_is_retried_on_resume(self, settings, cache):
        table = CursorIterator([make_bill_row(i) for i in range(1, 5)])
        batcher = MagicMock()
        batcher.embed_batches = AsyncMock(side_effect=succeed)
        failing_writer = make_marking_writer(cache, reject_first_key="bill:1:en:0")

        with patch("lexindex.ingestion.pipeline.SourceIterator", return_value=table):
            first = await make_pipeline(settings, cache, failing_writer, batcher).run(
                ["bill"], IngestOptions(skip_existing=True)
            )
            # Nothing past the rejected bill reached the cache, so the cursor cannot skip it
            assert failing_writer.written == []
            assert cache.max_numeric_source_id("bill") is None
            assert first.results[0].halted is True

            writer = make_marking_writer(cache)
            await make_pipeline(settings, cache, writer, batcher).run(["bill"], IngestOptions(skip_existing=True))

        assert table.starts[-1] == (None, False)
        assert set(writer.written) == all_bill_keys(range(1, 5))


@pytest.mark.asyncio
async def test_dry_run_does_not_resync_the_cache(settings, cache):
    writer = make_writer()
    writer.count_by_source_type = AsyncMock(return_value=1000)

    with serve([make_session_row(0)]), \
            patch("lexindex.ingestion.pipeline.ensure_synced", new=AsyncMock()) as ensure_synced:
        await make_pipeline(settings, cache, writer).run(
            ["session"], IngestOptions(dry_run=True, skip_existing=True)
        )

    ensure_synced.assert_not_called()
    assert cache.total_count() == 0
