"""Schemas for defined term linking."""
from dataclasses import dataclass
from typing import Optional
from pydantic import BaseModel, ConfigDict


class TermRecord(BaseModel):
    """A defined term as loaded for linking."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    language: str
    term: str
    term_normalized: str
    paired_term: Optional[str] = None
    paired_term_id: Optional[str] = None
    act_id: Optional[str] = None
    regulation_id: Optional[str] = None
    section_label: Optional[str] = None

    @property
    def document_id(self) -> Optional[str]:
        return self.act_id or self.regulation_id

    @property
    def is_regulation(self) -> bool:
        return not self.act_id and bool(self.regulation_id)


class LinkUpdate(BaseModel):
    """Set paired_term_id on both sides of a match."""
    source_id: str
    target_id: str
    pass_name: str  # "exact", "fallback" or "section"


class PotentialTypo(BaseModel):
    """An unmatched hint that is a few edits away from a real term in the target document."""
    term_id: str
    language: str
    term: str
    paired_term: str
    expected: str  # normalized hint
    similar_term: str
    similar_normalized: str
    distance: int
    document_id: str
    section_label: Optional[str] = None


class LanguageOnlyTerm(BaseModel):
    term_id: str
    language: str
    term: str
    marker: str
    document_id: Optional[str] = None


class UnmatchedTerm(BaseModel):
    term_id: str
    language: str
    term: str
    paired_term: Optional[str] = None
    document_id: Optional[str] = None
    reason: str


@dataclass
class LinkStats:
    total_terms: int = 0
    terms_with_paired_text: int = 0
    linked_exact: int = 0
    linked_fallback: int = 0
    linked_section_based: int = 0
    pairs_linked: int = 0
    already_linked: int = 0
    language_only_skipped: int = 0
    typos_corrected: int = 0
    no_match_found: int = 0
    no_paired_term_no_match: int = 0
    ambiguous_groups: int = 0
    errors: int = 0
