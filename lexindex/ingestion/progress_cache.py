"""
Local progress cache: a fast membership store of resource keys that are
known to exist in the durable store.

The cache is advisory. Presence means "committed as of the last sync";
absence means nothing. It is safe to delete the file at any time, the
next run resyncs it from Postgres.
"""
from typing import Iterable, List, Optional, Set

from sqlalchemy import (
    Column, Integer, MetaData, Table, Text, cast, create_engine, delete, event, func, select, text,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.pool import StaticPool

from lexindex.ingestion.keys import source_prefix
from lexindex.logging_config import get_logger

log = get_logger(__name__)

MEMORY = ":memory:"
DEFAULT_LOOKUP_BATCH_SIZE = 500  # SQLite caps bound parameters at 999

metadata = MetaData()

processed = Table(
    "processed",
    metadata,
    Column("key", Text, primary_key=True),
    Column("created_at", Integer, nullable=False, server_default=text("(strftime('%s','now'))")),
    sqlite_with_rowid=False,
)


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


class ProgressCache:
    """
    Membership store backed by an embedded SQLite file.

    Pass ``":memory:"`` for a throwaway cache (tests, dry runs).
    """

    def __init__(self, path: str = ".embedding-progress.db", lookup_batch_size: int = DEFAULT_LOOKUP_BATCH_SIZE):
        self.path = path
        self.lookup_batch_size = lookup_batch_size
        if path == MEMORY:
            # One shared connection, otherwise every checkout gets a fresh empty database
            self.engine = create_engine(
                "sqlite://",
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(f"sqlite:///{path}")
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        metadata.create_all(self.engine)
        log.debug("progress_cache_opened", path=path)

    def has(self, key: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(processed.c.key).where(processed.c.key == key)).first()
        return row is not None

    def has_many(self, keys: Iterable[str]) -> Set[str]:
        """Return the subset of ``keys`` already present, querying in bounded groups."""
        keys = list(dict.fromkeys(keys))
        found: Set[str] = set()
        if not keys:
            return found
        with self.engine.connect() as conn:
            for start in range(0, len(keys), self.lookup_batch_size):
                group = keys[start:start + self.lookup_batch_size]
                rows = conn.execute(select(processed.c.key).where(processed.c.key.in_(group)))
                found.update(row.key for row in rows)
        return found

    def mark(self, key: str) -> None:
        self.mark_many([key])

    def mark_many(self, keys: Iterable[str]) -> int:
        """Insert keys in a single transaction; existing keys are left alone."""
        rows = [{"key": k} for k in dict.fromkeys(keys)]
        if not rows:
            return 0
        stmt = sqlite_insert(processed).on_conflict_do_nothing(index_elements=["key"])
        with self.engine.begin() as conn:
            conn.execute(stmt, rows)
        return len(rows)

    def count_by_prefix(self, source_type: str) -> int:
        # startswith + autoescape: '_' in "act_section" is a LIKE wildcard
        stmt = select(func.count()).select_from(processed).where(
            processed.c.key.startswith(source_prefix(source_type), autoescape=True)
        )
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar_one()

    def total_count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(processed)).scalar_one()

    def clear(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(processed))
        log.info("progress_cache_cleared", path=self.path)

    def clear_by_prefix(self, source_type: str) -> int:
        stmt = delete(processed).where(
            processed.c.key.startswith(source_prefix(source_type), autoescape=True)
        )
        with self.engine.begin() as conn:
            result = conn.execute(stmt)
        log.info("progress_cache_cleared", path=self.path, source_type=source_type, removed=result.rowcount)
        return result.rowcount

    def sample_keys(self, source_type: Optional[str] = None, limit: int = 5) -> List[str]:
        stmt = select(processed.c.key).order_by(processed.c.key).limit(limit)
        if source_type:
            stmt = stmt.where(processed.c.key.startswith(source_prefix(source_type), autoescape=True))
        with self.engine.connect() as conn:
            return [row.key for row in conn.execute(stmt)]

    def max_numeric_source_id(self, source_type: str) -> Optional[int]:
        """
        Highest numeric source id cached for a source type, or None.

        Only meaningful for numeric-id sources; string ids (e.g. "45-1")
        must never be resumed through this path.
        """
        prefix = source_prefix(source_type)
        rest = func.substr(processed.c.key, len(prefix) + 1)
        source_id = func.substr(rest, 1, func.instr(rest, ":") - 1)
        stmt = select(func.max(cast(source_id, Integer))).where(
            processed.c.key.startswith(prefix, autoescape=True)
        )
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar_one_or_none()

    def close(self) -> None:
        self.engine.dispose()
