"""
Source-to-vector ingestion pipeline.

For each source type: page rows out of Postgres, turn them into chunks,
drop what is already done (progress cache, then a durable pre-check),
drop what is too large to embed, embed under bounded concurrency and
write each batch transactionally.
"""
import math
from dataclasses import dataclass
from typing import Dict, List, Optional

from lexindex.config import Settings
from lexindex.db.db_manager import DatabaseManager
from lexindex.exceptions import ConfigurationError, InvalidEmbeddingError
from lexindex.ingestion.embedder import EmbeddingBatcher, filter_oversized, make_batches
from lexindex.ingestion.progress_cache import ProgressCache
from lexindex.ingestion.progress_sync import ensure_synced
from lexindex.ingestion.reporting import log_progress
from lexindex.ingestion.shutdown import ShutdownController
from lexindex.ingestion.source_iterator import (
    ResumeMode,
    SourceIterator,
    choose_resume_mode,
    starting_cursor,
)
from lexindex.ingestion.sources import SourceSpec, get_source
from lexindex.ingestion.storage import ResourceWriter
from lexindex.ingestion.text_normalizer import normalize_for_embedding
from lexindex.logging_config import bind_contextvars, get_logger, unbind_contextvars
from lexindex.observability import Phase, set_trace_metadata, track
from lexindex.schemas.chunks import ChunkData
from lexindex.schemas.reports import ProcessError, RunSummary, SourceResult

log = get_logger(__name__)


@dataclass
class IngestOptions:
    skip_existing: bool = False
    dry_run: bool = False
    # Ignore the cache and the durable pre-check; every chunk is embedded again
    reembed: bool = False
    limit: Optional[int] = None  # max source rows per type
    session: Optional[str] = None  # e.g. "45-1"


class IngestionPipeline:
    def __init__(
        self,
        settings: Settings,
        db: DatabaseManager,
        cache: ProgressCache,
        writer: ResourceWriter,
        batcher: Optional[EmbeddingBatcher] = None,
        shutdown: Optional[ShutdownController] = None,
    ):
        self.settings = settings
        self.db = db
        self.cache = cache
        self.writer = writer
        self.batcher = batcher
        self.shutdown = shutdown

    @property
    def stopping(self) -> bool:
        return self.shutdown is not None and self.shutdown.requested

    @track(name="ingestion_run", phase=Phase.INGESTION)
    async def run(self, source_types: List[str], options: IngestOptions) -> RunSummary:
        """
        Process each source type in order.

        Raises:
            ConfigurationError: If a session filter is given for a type that has no session
            EmbeddingError: If a batch still fails after its retries (earlier batches are kept)
        """
        specs = [get_source(t) for t in source_types]
        if options.session is not None:
            unsupported = [s.source_type for s in specs if not s.filter_column]
            if unsupported:
                raise ConfigurationError(
                    f"--session only applies to bill and hansard, not: {', '.join(unsupported)}"
                )
        if not options.dry_run and self.batcher is None:
            raise ConfigurationError("An embedding batcher is required unless this is a dry run")

        set_trace_metadata({
            "source_types": source_types,
            "dry_run": options.dry_run,
            "skip_existing": options.skip_existing,
            "session": options.session,
        })
        summary = RunSummary(dry_run=options.dry_run)
        for spec in specs:
            if self.stopping:
                break
            bind_contextvars(source_type=spec.source_type)
            try:
                summary.results.append(await self.process_source(spec, options))
            finally:
                unbind_contextvars("source_type")

        summary.interrupted = self.stopping
        log.info(
            "ingestion_complete",
            chunks_inserted=summary.chunks_inserted,
            chunks_skipped=summary.chunks_skipped,
            chunks_oversized=summary.chunks_oversized,
            errors=len(summary.errors),
            interrupted=summary.interrupted,
            dry_run=options.dry_run,
        )
        return summary

    async def process_source(self, spec: SourceSpec, options: IngestOptions) -> SourceResult:
        result = SourceResult(source_type=spec.source_type)
        ingest = self.settings.ingest

        mode = choose_resume_mode(options.skip_existing, options.session, spec.id_kind)
        consult_cache = mode != ResumeMode.NONE and not options.reembed
        # A dry run reads the cache but never rewrites it
        if consult_cache and not options.dry_run:
            await ensure_synced(
                self.cache,
                self.writer,
                spec.source_type,
                threshold=self.settings.progress.sync_threshold,
                page_size=self.settings.progress.sync_batch_size,
            )
        start = starting_cursor(mode, spec, self.cache) if consult_cache else None
        # The row at the cached max id may have been only partly written
        inclusive = start is not None

        iterator = SourceIterator(
            self.db, spec, filter_value=options.session, page_size=ingest.fetch_batch_size, limit=options.limit
        )
        total = await iterator.count(start, inclusive)
        log.info(
            "source_started",
            label=spec.label,
            total=total,
            resume_mode=mode.value,
            start_cursor=start,
            session=options.session,
        )

        flush_at = self.settings.embedding.batch_size * ingest.flush_multiplier
        pending: Dict[str, ChunkData] = {}
        rows_seen = 0
        async for page in iterator.pages(start, inclusive):
            if self.stopping:
                break
            for row in page.rows:
                rows_seen += 1
                log_progress(rows_seen, total, spec.label, ingest.progress_log_interval)
                built = spec.row_to_chunks(row, page.context)
                result.items_processed += built.items
                result.errors.extend(built.errors)
                for chunk in built.chunks:
                    # The upsert cannot touch the same key twice in one statement
                    pending.setdefault(chunk.resource_key, chunk)

            if len(pending) >= flush_at:
                await self._flush(list(pending.values()), spec, options, consult_cache, result)
                pending = {}
                if result.halted:
                    break

        if pending and not self.stopping and not result.halted:
            await self._flush(list(pending.values()), spec, options, consult_cache, result)

        log.info(
            "source_complete",
            label=spec.label,
            items=result.items_processed,
            chunks_inserted=result.chunks_inserted,
            chunks_skipped=result.chunks_skipped,
            chunks_oversized=result.chunks_oversized,
            errors=len(result.errors),
            halted=result.halted,
        )
        return result

    async def _flush(
        self,
        chunks: List[ChunkData],
        spec: SourceSpec,
        options: IngestOptions,
        consult_cache: bool,
        result: SourceResult,
    ) -> None:
        if consult_cache:
            cached = self.cache.has_many(c.resource_key for c in chunks)
            if cached:
                result.chunks_skipped += len(cached)
                chunks = [c for c in chunks if c.resource_key not in cached]

        if chunks and not options.reembed and not options.dry_run:
            existing = await self.writer.precheck(chunks)
            if existing:
                result.chunks_skipped += len(existing)
                chunks = [c for c in chunks if c.resource_key not in existing]

        sized = filter_oversized(chunks, self.settings.embedding.max_chars, self.settings.embedding.chars_per_token)
        result.chunks_oversized += len(sized.oversized)
        result.errors.extend(sized.errors)
        if not sized.valid:
            return

        if options.dry_run:
            log_dry_run_batch(sized.valid, self.settings.embedding.batch_size)
            result.chunks_inserted += len(sized.valid)
            return

        batches = make_batches(sized.valid, self.settings.embedding.batch_size)
        outcomes = await self.batcher.embed_batches(batches, label=spec.label)
        for outcome in outcomes:
            if not outcome.ok:
                # Keep what came before the failure; the rerun picks up from here
                log.error(
                    "embedding_batch_failed",
                    first_key=outcome.batch[0].resource_key,
                    batch_size=len(outcome.batch),
                    error=str(outcome.error),
                )
                raise outcome.error
            try:
                result.chunks_inserted += await self.writer.write_batch(outcome.batch, outcome.vectors)
            except InvalidEmbeddingError as e:
                # Writing later batches would move the cached max id past these rows
                # and a cursor resume would never revisit them. Stop this source here.
                log.error(
                    "invalid_embedding_source_halted",
                    first_key=outcome.batch[0].resource_key,
                    batch_size=len(outcome.batch),
                    error=str(e),
                )
                result.errors.append(ProcessError(
                    item_type=spec.source_type,
                    item_id=outcome.batch[0].resource_key,
                    message=f"Invalid embedding, batch of {len(outcome.batch)} and the rest of the source skipped: {e}",
                    retryable=True,
                ))
                result.halted = True
                return


def log_dry_run_batch(chunks: List[ChunkData], batch_size: int) -> None:
    lengths = [len(normalize_for_embedding(c.content)) for c in chunks]
    total_chars = sum(lengths)
    log.info(
        "dry_run_batch",
        chunks=len(chunks),
        source_types=sorted({c.source_type for c in chunks}),
        total_chars=total_chars,
        avg_chars=round(total_chars / len(chunks)) if chunks else 0,
        batches_needed=math.ceil(len(chunks) / batch_size),
    )
