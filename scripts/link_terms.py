"""
Link EN/FR defined term pairs without generating embeddings.

Usage:
    python scripts/link_terms.py
    python scripts/link_terms.py --dry-run --limit 500
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
from lexindex.exceptions import ConfigurationError, StorageException, TermLinkingError
from lexindex.ingestion.reporting import render_link_report
from lexindex.linking.store import TermStore, link_defined_terms
from lexindex.linking.typos import total_correction_count, total_term_correction_count, validate_corrections
from lexindex.logging_config import configure_logging, get_logger, bind_contextvars, clear_contextvars
from lexindex.observability import configure_observability

log = get_logger(__name__)


async def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Link EN/FR defined term pairs")
    parser.add_argument("--dry-run", action="store_true", help="Report planned links without writing")
    parser.add_argument("--limit", type=int, help="Only try to link the first N terms with paired text")
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_observability()
    configure_logging(log_level=settings.log_level, json_format=settings.json_logs, log_file="linking.log")
    bind_contextvars(linking_run_id=str(uuid.uuid4())[:8])

    try:
        validate_environment(settings, dry_run=True)
        for warning in validate_corrections():
            log.warning("typo_correction_suspicious", detail=warning)
        log.info("typo_corrections_loaded", paired_term=total_correction_count(), term=total_term_correction_count())

        await db_manager.check_connection()
        store = TermStore(db_manager)
        before = await store.count_linked()
        result = await link_defined_terms(store, dry_run=args.dry_run, limit=args.limit)
        print("\n".join(render_link_report(result, dry_run=args.dry_run)))
        if not args.dry_run:
            print(f"Linked terms in database: {before} -> {await store.count_linked()}")
        return 0
    except (ConfigurationError, StorageException, TermLinkingError) as e:
        log.error("term_linking_failed", error=str(e), error_type=type(e).__name__)
        print(f"❌ Failed: {e}")
        return 1
    finally:
        await db_manager.dispose()
        clear_contextvars()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
