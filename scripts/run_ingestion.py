"""
Generate embeddings for legislation and parliament sources.

Usage:
    python scripts/run_ingestion.py
    python scripts/run_ingestion.py --types legislation --limit 100 --dry-run
    python scripts/run_ingestion.py --types bill hansard --session 45-1 --skip-existing
    python scripts/run_ingestion.py --sync-progress
    python scripts/run_ingestion.py --clear-progress
    python scripts/run_ingestion.py --link-terms
"""
import argparse
import asyncio
import sys
import uuid
from pathlib import Path

# Setup path so we can import lexindex
project_root = Path(__file__).parent.parent
sys.path.append(str(project_root))

from lexindex.config import get_settings, validate_environment
from lexindex.db.db_manager import db_manager
from lexindex.exceptions import ConfigurationError, IngestionException, StorageException, TermLinkingError
from lexindex.ingestion.embedder import EmbeddingBatcher, get_embedder
from lexindex.ingestion.pipeline import IngestOptions, IngestionPipeline
from lexindex.ingestion.progress_cache import ProgressCache
from lexindex.ingestion.progress_sync import sync_from_store
from lexindex.ingestion.reporting import render_link_report, render_run_summary
from lexindex.ingestion.retry import RetryPolicy
from lexindex.ingestion.shutdown import ShutdownController
from lexindex.ingestion.sources import SOURCES, resolve_source_types
from lexindex.ingestion.storage import ResourceWriter
from lexindex.linking.store import TermStore, link_defined_terms
from lexindex.linking.typos import validate_corrections
from lexindex.logging_config import configure_logging, get_logger, bind_contextvars, clear_contextvars
from lexindex.observability import configure_observability, set_trace_metadata

log = get_logger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate embeddings for legislation and parliament sources")
    parser.add_argument(
        "--types", nargs="+", metavar="TYPE",
        help=f"Source types to process: {', '.join(SOURCES)}, or legislation / parliament / all",
    )
    parser.add_argument("--session", help='Only bills and Hansard of one parliamentary session, e.g. "45-1"')
    parser.add_argument("--limit", type=int, help="Process at most N rows per source type")
    parser.add_argument("--skip-existing", action="store_true", help="Resume: skip resources already embedded")
    parser.add_argument("--dry-run", action="store_true", help="Count chunks without calling the API or writing")
    parser.add_argument("--reembed", action="store_true", help="Embed everything again, ignoring existing resources")
    parser.add_argument("--sync-progress", action="store_true", help="Rebuild the local progress cache from Postgres")
    parser.add_argument("--clear-progress", action="store_true", help="Clear the local progress cache")
    parser.add_argument("--truncate", action="store_true", help="Delete all resources and embeddings first")
    parser.add_argument("--yes", "-y", action="store_true", help="Do not ask before --truncate / --clear-progress")
    parser.add_argument("--link-terms", action="store_true", help="Only link EN/FR defined term pairs")
    parser.add_argument(
        "--skip-link-terms", action="store_true",
        help="Do not link term pairs after processing defined terms",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    return parser.parse_args(argv)


def confirm(prompt: str, assume_yes: bool) -> bool:
    if assume_yes:
        return True
    return input(f"{prompt} Type Y to continue: ").strip().lower() == "y"


async def run(args: argparse.Namespace, run_id: str) -> int:
    settings = get_settings()
    validate_environment(settings, dry_run=args.dry_run or args.link_terms or args.clear_progress)

    for warning in validate_corrections():
        log.warning("typo_correction_suspicious", detail=warning)

    cache = ProgressCache(settings.progress.db_path, lookup_batch_size=settings.progress.lookup_batch_size)
    try:
        if args.clear_progress:
            if confirm(f"Clear {cache.total_count():,} cached keys from {settings.progress.db_path}?", args.yes):
                cache.clear()
                print("✅ Progress cleared")
            else:
                print("❌ Cancelled")
            return 0

        await db_manager.check_connection()
        writer = ResourceWriter(db_manager, cache, settings.embedding.model, settings.embedding.dimension)

        if args.sync_progress:
            print("Syncing progress cache from Postgres...")
            await sync_from_store(cache, writer, page_size=settings.progress.sync_batch_size)
            print(f"✅ Progress synced: {cache.total_count():,} keys cached")
            return 0

        if args.link_terms:
            result = await link_defined_terms(TermStore(db_manager), dry_run=args.dry_run, limit=args.limit)
            print("\n".join(render_link_report(result, dry_run=args.dry_run)))
            return 0

        if args.truncate and not args.dry_run:
            if not confirm("This deletes every resource and embedding and cannot be undone.", args.yes):
                print("❌ Cancelled")
                return 0
            await db_manager.truncate_resources()
            cache.clear()
            print("✅ Tables truncated")

        requested = args.types
        if args.session and not requested:
            requested = [name for name, spec in SOURCES.items() if spec.filter_column]
        source_types = resolve_source_types(requested)

        batcher = None
        if not args.dry_run:
            batcher = EmbeddingBatcher(get_embedder(), settings.embedding, RetryPolicy.from_settings(settings.retry))

        shutdown = ShutdownController(timeout=settings.timeout.shutdown_seconds)
        shutdown.install()
        try:
            pipeline = IngestionPipeline(settings, db_manager, cache, writer, batcher, shutdown)
            summary = await pipeline.run(
                source_types,
                IngestOptions(
                    skip_existing=args.skip_existing,
                    dry_run=args.dry_run,
                    reembed=args.reembed,
                    limit=args.limit,
                    session=args.session,
                ),
            )
        finally:
            shutdown.uninstall()

        set_trace_metadata({"ingestion_run_id": run_id, "chunks_inserted": summary.chunks_inserted})
        print("\n".join(render_run_summary(summary)))

        linked_types = "defined_term" in source_types
        if linked_types and not args.skip_link_terms and not args.dry_run and not summary.interrupted:
            result = await link_defined_terms(TermStore(db_manager))
            print(f"Linked {result.stats.pairs_linked} term pairs ({result.stats.no_match_found} no match)")
        return 0
    finally:
        cache.close()
        await db_manager.dispose()


async def main(argv=None) -> int:
    args = parse_args(argv)
    settings = get_settings()

    configure_observability()
    configure_logging(
        log_level="DEBUG" if args.debug else settings.log_level,
        json_format=settings.json_logs,
        log_file="ingestion.log",
    )

    # Generate a unique run ID for correlation
    run_id = str(uuid.uuid4())[:8]
    bind_contextvars(ingestion_run_id=run_id)
    try:
        return await run(args, run_id)
    except ConfigurationError as e:
        log.error("configuration_error", error=str(e))
        print(f"❌ Configuration error: {e}")
        return 1
    except (IngestionException, StorageException, TermLinkingError) as e:
        log.error("ingestion_failed", error=str(e), error_type=type(e).__name__)
        print(f"❌ Failed: {e}")
        return 1
    except asyncio.CancelledError:
        log.error("ingestion_cancelled")
        print("❌ Cancelled: in-flight work did not finish within the shutdown grace period")
        return 1
    finally:
        clear_contextvars()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
