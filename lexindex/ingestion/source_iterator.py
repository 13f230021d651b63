"""
Keyset-paginated reads over source tables, and the resume policy.

Pages are fetched with ``WHERE id > cursor ORDER BY id LIMIT n`` so each
page costs the same regardless of how far into the table the scan is.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from lexindex.db.db_manager import DatabaseManager
from lexindex.exceptions import SourceIterationError
from lexindex.ingestion.progress_cache import ProgressCache
from lexindex.ingestion.sources import IdKind, SourceSpec
from lexindex.logging_config import get_logger

log = get_logger(__name__)

Cursor = Optional[Union[int, str]]


class ResumeMode(str, Enum):
    NONE = "none"                                  # fresh scan, cache not consulted
    FULL_CURSOR = "full_cursor"                    # start from the max id in the cache
    PER_ITEM_CACHE_CHECK = "per_item_cache_check"  # full scan, skip cached chunks


def choose_resume_mode(skip_existing: bool, filter_value: Optional[str], id_kind: IdKind) -> ResumeMode:
    """
    Pick how a run resumes.

    A filtered run never trusts the global cursor: id ranges of different
    filter values overlap, so resuming from the highest cached id could
    skip lower-id rows of this filter value.
    """
    if filter_value is not None:
        return ResumeMode.PER_ITEM_CACHE_CHECK
    if not skip_existing:
        return ResumeMode.NONE
    if id_kind == IdKind.NUMERIC:
        return ResumeMode.FULL_CURSOR
    return ResumeMode.PER_ITEM_CACHE_CHECK


def starting_cursor(mode: ResumeMode, spec: SourceSpec, cache: ProgressCache) -> Cursor:
    """
    The cursor a run starts from. Only the numeric fast path reads it from
    the cache; string ids (e.g. "45-1") are never coerced to numbers.
    """
    if mode != ResumeMode.FULL_CURSOR or spec.id_kind != IdKind.NUMERIC:
        return None
    return cache.max_numeric_source_id(spec.source_type)


@dataclass
class Page:
    rows: List[Any]
    cursor: Cursor
    context: Dict = field(default_factory=dict)


class SourceIterator:
    """Pages over one source table in primary key order."""

    def __init__(
        self,
        db: DatabaseManager,
        spec: SourceSpec,
        filter_value: Optional[str] = None,
        page_size: int = 1000,
        limit: Optional[int] = None,
    ):
        self.db = db
        self.spec = spec
        self.filter_value = filter_value
        self.page_size = page_size
        self.limit = limit

    def _where(self, cursor: Cursor, inclusive: bool = False) -> list:
        clauses = []
        if self.spec.where is not None:
            clauses.append(self.spec.where())
        if self.filter_value is not None:
            clauses.append(self.spec.filter_clause(self.filter_value))
        if cursor is not None:
            id_column = self.spec.id_column
            clauses.append(id_column >= cursor if inclusive else id_column > cursor)
        return clauses

    async def count(self, cursor: Cursor = None, inclusive: bool = False) -> int:
        query = select(func.count()).select_from(self.spec.model).where(*self._where(cursor, inclusive))
        try:
            async with self.db.get_session() as session:
                total = (await session.execute(query)).scalar_one()
        except SQLAlchemyError as e:
            raise SourceIterationError(f"Failed to count {self.spec.source_type}: {e}") from e
        return min(total, self.limit) if self.limit is not None else total

    async def fetch_page(self, cursor: Cursor, limit: int, inclusive: bool = False) -> Page:
        query = (
            select(self.spec.model)
            .where(*self._where(cursor, inclusive))
            .order_by(self.spec.id_column)
            .limit(limit)
        )
        try:
            async with self.db.get_session() as session:
                rows = list((await session.execute(query)).scalars().all())
                context = {}
                if rows and self.spec.load_context is not None:
                    context = await self.spec.load_context(session, rows)
        except SQLAlchemyError as e:
            log.error("source_page_fetch_failed", source_type=self.spec.source_type, cursor=cursor, error=str(e))
            raise SourceIterationError(f"Failed to fetch {self.spec.source_type} page: {e}") from e
        new_cursor = rows[-1].id if rows else cursor
        return Page(rows=rows, cursor=new_cursor, context=context)

    async def pages(self, start_cursor: Cursor = None, inclusive: bool = False) -> AsyncIterator[Page]:
        """
        Yield pages until the table (or the row limit) is exhausted.

        ``inclusive`` makes the first page include ``start_cursor`` itself,
        used when that row may only have been partially committed.
        """
        cursor = start_cursor
        remaining = self.limit
        first = True
        while remaining is None or remaining > 0:
            size = self.page_size if remaining is None else min(self.page_size, remaining)
            page = await self.fetch_page(cursor, size, inclusive=inclusive and first)
            first = False
            if not page.rows:
                return
            yield page
            cursor = page.cursor
            if remaining is not None:
                remaining -= len(page.rows)
            if len(page.rows) < size:
                return
