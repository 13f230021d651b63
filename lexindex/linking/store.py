from typing import List, Optional

from sqlalchemy import bindparam, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from lexindex.db.db_manager import DatabaseManager
from lexindex.exceptions import TermLinkingError
from lexindex.linking.term_linker import LinkResult, TermLinker
from lexindex.logging_config import get_logger
from lexindex.models.defined_term import DefinedTerm
from lexindex.observability import Phase, track
from lexindex.schemas.terms import LinkUpdate, TermRecord

log = get_logger(__name__)

UPDATE_BATCH_SIZE = 1000

_terms = DefinedTerm.__table__

# Write-once: a link already present is never overwritten
_SET_PAIRED_TERM = (
    update(_terms)
    .where(_terms.c.id == bindparam("b_id"), _terms.c.paired_term_id.is_(None))
    .values(paired_term_id=bindparam("b_paired_id"))
)


class TermStore:
    """Loads defined terms and persists link updates."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def load_terms(self) -> List[TermRecord]:
        query = select(
            DefinedTerm.id,
            DefinedTerm.language,
            DefinedTerm.term,
            DefinedTerm.term_normalized,
            DefinedTerm.paired_term,
            DefinedTerm.paired_term_id,
            DefinedTerm.act_id,
            DefinedTerm.regulation_id,
            DefinedTerm.section_label,
        ).order_by(DefinedTerm.id)
        async with self.db.get_session() as session:
            result = await session.execute(query)
            return [TermRecord.model_validate(row._mapping) for row in result]

    async def count_linked(self) -> int:
        query = select(func.count()).select_from(_terms).where(_terms.c.paired_term_id.is_not(None))
        async with self.db.get_session() as session:
            return (await session.execute(query)).scalar_one()

    async def apply_updates(self, updates: List[LinkUpdate], batch_size: int = UPDATE_BATCH_SIZE) -> int:
        """
        Set paired_term_id on both sides of every update, one transaction per batch.

        Returns the number of links (pairs) submitted.
        """
        applied = 0
        for start in range(0, len(updates), batch_size):
            batch = updates[start:start + batch_size]
            params = []
            for u in batch:
                params.append({"b_id": u.source_id, "b_paired_id": u.target_id})
                params.append({"b_id": u.target_id, "b_paired_id": u.source_id})
            try:
                async with self.db.get_session() as session:
                    await session.execute(_SET_PAIRED_TERM, params)
            except SQLAlchemyError as e:
                log.error("term_link_batch_failed", batch_start=start, batch_size=len(batch), error=str(e))
                raise TermLinkingError(f"Failed to apply term links: {e}") from e
            applied += len(batch)
            log.info("term_link_batch_applied", applied=applied, total=len(updates))
        return applied


@track(name="link_defined_terms", phase=Phase.TERM_LINKING)
async def link_defined_terms(store: TermStore, dry_run: bool = False, limit: Optional[int] = None) -> LinkResult:
    """Load every term, compute links, and apply them unless this is a dry run."""
    terms = await store.load_terms()
    result = TermLinker().link(terms, limit=limit)

    if dry_run:
        log.info("term_linking_dry_run", planned_links=len(result.updates))
        return result

    if result.updates:
        await store.apply_updates(result.updates)
    log.info("term_linking_complete", pairs_linked=result.stats.pairs_linked,
             potential_typos=len(result.potential_typos), errors=result.stats.errors)
    return result
