"""
Registry of ingestible source types.

Each SourceSpec says which table to page over, whether its primary key is
numeric or a string, which column (if any) accepts the session filter,
and how a row becomes chunks.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import select, tuple_

from lexindex.exceptions import ConfigurationError
from lexindex.ingestion import content
from lexindex.models.defined_term import DefinedTerm
from lexindex.models.legislation import Act, Regulation, Section
from lexindex.models.parliament import Bill, HansardStatement, ParliamentSession


class IdKind(str, Enum):
    NUMERIC = "numeric"
    STRING = "string"


@dataclass(frozen=True)
class SourceSpec:
    source_type: str
    label: str
    model: Any
    id_kind: IdKind
    row_to_chunks: Callable[..., content.BuildResult]
    filter_column: Optional[str] = None
    # Extra WHERE clause restricting the table to this source type
    where: Optional[Callable[[], Any]] = None
    # Per-page lookups (e.g. document titles) passed to row_to_chunks
    load_context: Optional[Callable[[Any, List[Any]], Awaitable[Dict]]] = None

    @property
    def id_column(self):
        return self.model.id

    def filter_clause(self, value: str):
        if not self.filter_column:
            raise ConfigurationError(f"{self.source_type} does not support a session filter")
        return getattr(self.model, self.filter_column) == value


async def _load_document_titles(session, rows) -> Dict:
    """Titles for the acts/regulations referenced by a page, keyed by (document id, language)."""
    act_keys = {(r.act_id, r.language) for r in rows if r.act_id}
    regulation_keys = {(r.regulation_id, r.language) for r in rows if not r.act_id and r.regulation_id}
    titles = {}
    if act_keys:
        result = await session.execute(
            select(Act.act_id, Act.language, Act.title).where(tuple_(Act.act_id, Act.language).in_(act_keys))
        )
        titles.update({(row.act_id, row.language): row.title for row in result})
    if regulation_keys:
        result = await session.execute(
            select(Regulation.regulation_id, Regulation.language, Regulation.title).where(
                tuple_(Regulation.regulation_id, Regulation.language).in_(regulation_keys)
            )
        )
        titles.update({(row.regulation_id, row.language): row.title for row in result})
    return {"titles": titles}


SOURCES: Dict[str, SourceSpec] = {
    spec.source_type: spec
    for spec in (
        SourceSpec("act", "Acts", Act, IdKind.STRING, content.build_act_chunks),
        SourceSpec("regulation", "Regulations", Regulation, IdKind.STRING, content.build_regulation_chunks),
        SourceSpec(
            "act_section", "Act sections", Section, IdKind.STRING, content.build_section_chunks,
            where=lambda: Section.act_id.is_not(None),
            load_context=_load_document_titles,
        ),
        SourceSpec(
            "regulation_section", "Regulation sections", Section, IdKind.STRING, content.build_section_chunks,
            where=lambda: Section.act_id.is_(None) & Section.regulation_id.is_not(None),
            load_context=_load_document_titles,
        ),
        SourceSpec(
            "defined_term", "Defined terms", DefinedTerm, IdKind.STRING, content.build_term_chunks,
            load_context=_load_document_titles,
        ),
        SourceSpec("session", "Sessions", ParliamentSession, IdKind.STRING, content.build_session_chunks),
        SourceSpec("bill", "Bills", Bill, IdKind.NUMERIC, content.build_bill_chunks, filter_column="session_id"),
        SourceSpec(
            "hansard", "Hansard statements", HansardStatement, IdKind.NUMERIC, content.build_hansard_chunks,
            filter_column="session_id",
        ),
    )
}

LEGISLATION_TYPES = ("act", "regulation", "act_section", "regulation_section", "defined_term")
PARLIAMENT_TYPES = ("session", "bill", "hansard")


def get_source(source_type: str) -> SourceSpec:
    try:
        return SOURCES[source_type]
    except KeyError:
        raise ConfigurationError(
            f"Unknown source type {source_type!r}; expected one of: {', '.join(SOURCES)}"
        ) from None


def resolve_source_types(requested: Optional[List[str]]) -> List[str]:
    """Expand "legislation"/"parliament"/"all" groups and validate names, keeping order."""
    if not requested:
        return list(SOURCES)
    resolved: List[str] = []
    for name in requested:
        if name == "all":
            names = list(SOURCES)
        elif name == "legislation":
            names = list(LEGISLATION_TYPES)
        elif name == "parliament":
            names = list(PARLIAMENT_TYPES)
        else:
            names = [get_source(name).source_type]
        resolved.extend(n for n in names if n not in resolved)
    return resolved
