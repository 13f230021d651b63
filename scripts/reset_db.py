import argparse
import asyncio
import sys
from pathlib import Path

# Setup path
project_root = Path(__file__).parent.parent
sys.path.append(str(project_root))

from lexindex.config import get_settings
from lexindex.db.db_manager import db_manager
from lexindex.ingestion.progress_cache import ProgressCache
from lexindex.models.base import Base


async def cleanup(keep_sources: bool) -> None:
    if keep_sources:
        print("Truncating resources and embeddings...")
        await db_manager.truncate_resources()
    else:
        print("Dropping all tables...")
        async with db_manager.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        print("Tables dropped.")

    # The cache must never claim keys the store no longer has
    cache = ProgressCache(get_settings().progress.db_path)
    cache.clear()
    cache.close()
    print("Progress cache cleared.")

    print("Re-initializing DB...")
    await db_manager.init_db()
    await db_manager.dispose()
    print("DB Reset Complete.")

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Reset the database")
    parser.add_argument(
        "--keep-sources", action="store_true",
        help="Only empty resources/embeddings, keep legislation and parliament tables",
    )
    asyncio.run(cleanup(parser.parse_args().keep_sources))
