"""
Three-pass bilingual matching of defined terms.

Pass 1 matches a term's paired-term hint against the same section of the
counterpart document. Pass 2 drops the section constraint, but only when
the term is unique in its own document and the match is unique in the
target document. Pass 3 pairs hint-less terms that are the only EN and
the only FR term in a section. Anything else stays unlinked.

All lookups are built once over the whole corpus and are read-only
during matching.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from lexindex.ingestion.keys import OTHER_LANGUAGE, validate_language
from lexindex.linking.normalization import (
    counterpart_document_id,
    get_match_candidates,
    is_language_only_marker,
    normalize_term_for_matching,
)
from lexindex.linking.typos import correct_actual_term, correct_paired_term, is_potential_typo, levenshtein
from lexindex.logging_config import get_logger
from lexindex.schemas.reports import ProcessError
from lexindex.schemas.terms import (
    LanguageOnlyTerm,
    LinkStats,
    LinkUpdate,
    PotentialTypo,
    TermRecord,
    UnmatchedTerm,
)

log = get_logger(__name__)

PASS_EXACT = "exact"
PASS_FALLBACK = "fallback"
PASS_SECTION = "section"


@dataclass
class LinkResult:
    updates: List[LinkUpdate] = field(default_factory=list)
    stats: LinkStats = field(default_factory=LinkStats)
    potential_typos: List[PotentialTypo] = field(default_factory=list)
    language_only: List[LanguageOnlyTerm] = field(default_factory=list)
    unmatched: List[UnmatchedTerm] = field(default_factory=list)
    errors: List[ProcessError] = field(default_factory=list)


class TermIndex:
    """Full-corpus lookups keyed on normalized (and typo-corrected) term text."""

    def __init__(self, terms: Iterable[TermRecord]):
        # lang:doc:section:norm -> id
        self.exact: Dict[Tuple, str] = {}
        # lang:doc:norm -> id (last seen wins; only trusted when count == 1)
        self.by_document: Dict[Tuple, str] = {}
        # lang:doc:norm -> occurrences
        self.counts: Dict[Tuple, int] = defaultdict(int)
        # lang:doc -> [(term, norm)] for typo diagnostics
        self.terms_by_document: Dict[Tuple, List[Tuple[str, str]]] = defaultdict(list)
        # id -> norm used for the term itself
        self.normalized: Dict[str, str] = {}

        for t in terms:
            self.add(t)

    def add(self, t: TermRecord) -> None:
        document_id = t.document_id or ""
        corrected = correct_actual_term(document_id, t.term)
        norm = normalize_term_for_matching(corrected)
        self.normalized[t.id] = norm

        self.exact[(t.language, document_id, t.section_label, norm)] = t.id
        self.by_document[(t.language, document_id, norm)] = t.id
        # Corrected terms stay reachable under their original spelling too
        original = t.term_normalized or normalize_term_for_matching(t.term)
        if original != norm:
            self.exact[(t.language, document_id, t.section_label, original)] = t.id
            self.by_document[(t.language, document_id, original)] = t.id

        self.counts[(t.language, document_id, norm)] += 1
        self.terms_by_document[(t.language, document_id)].append((corrected, norm))


class TermLinker:
    """Computes link updates; never touches the database."""

    def link(self, terms: List[TermRecord], limit: Optional[int] = None) -> LinkResult:
        result = LinkResult()
        stats = result.stats

        valid: List[TermRecord] = []
        for t in terms:
            if validate_language(t.language):
                valid.append(t)
            else:
                stats.errors += 1
                result.errors.append(ProcessError(
                    item_type="defined_term",
                    item_id=t.id,
                    message=f'Invalid language "{t.language}"',
                    retryable=False,
                ))
        stats.total_terms = len(valid)

        index = TermIndex(valid)
        # id -> partner id; pre-existing links are never overwritten.
        # A stored link may be one-sided, so its target is taken as well.
        stored = [t for t in valid if t.paired_term_id]
        self._partner: Dict[str, str] = {t.id: t.paired_term_id for t in stored}
        for t in stored:
            self._partner.setdefault(t.paired_term_id, t.id)
        stats.already_linked = len(stored)

        to_link = [t for t in valid if t.paired_term and not t.paired_term_id]
        if limit is not None:
            to_link = to_link[:limit]
        stats.terms_with_paired_text = len(to_link)
        log.info(
            "term_linking_started",
            total_terms=stats.total_terms,
            with_paired_text=len(to_link),
            already_linked=stats.already_linked,
        )

        unmatched = self._pass_exact(to_link, index, result)
        log.info("term_linking_pass_complete", pass_name=PASS_EXACT, linked=stats.linked_exact,
                 language_only=stats.language_only_skipped, unmatched=len(unmatched))

        still_unmatched = self._pass_fallback(unmatched, index, result)
        log.info("term_linking_pass_complete", pass_name=PASS_FALLBACK, linked=stats.linked_fallback,
                 unmatched=len(still_unmatched))

        untagged = [t for t in valid if not t.paired_term and t.id not in self._partner]
        self._pass_section(untagged, result)
        log.info("term_linking_pass_complete", pass_name=PASS_SECTION, linked=stats.linked_section_based,
                 ambiguous_groups=stats.ambiguous_groups, unmatched=stats.no_paired_term_no_match)

        self._detect_typos(still_unmatched, index, result)

        stats.pairs_linked = stats.linked_exact + stats.linked_fallback + stats.linked_section_based
        return result

    def _connect(self, source: TermRecord, target_id: str, pass_name: str, result: LinkResult) -> None:
        self._partner[source.id] = target_id
        self._partner[target_id] = source.id
        result.updates.append(LinkUpdate(source_id=source.id, target_id=target_id, pass_name=pass_name))

    def _available(self, source: TermRecord, target_id: Optional[str]) -> bool:
        return bool(target_id) and target_id != source.id and target_id not in self._partner

    def _pass_exact(self, terms: List[TermRecord], index: TermIndex, result: LinkResult) -> List[TermRecord]:
        stats = result.stats
        unmatched = []
        for term in terms:
            if term.id in self._partner:
                # Linked from the other side earlier in this pass
                continue

            if is_language_only_marker(term.paired_term):
                stats.language_only_skipped += 1
                result.language_only.append(LanguageOnlyTerm(
                    term_id=term.id,
                    language=term.language,
                    term=term.term,
                    marker=term.paired_term,
                    document_id=term.document_id,
                ))
                continue

            target_lang = OTHER_LANGUAGE[term.language]
            target_doc = counterpart_document_id(term.act_id, term.regulation_id, term.language, target_lang)
            hint = correct_paired_term(term.document_id or "", term.paired_term)
            if hint != term.paired_term:
                stats.typos_corrected += 1
                log.debug("paired_term_corrected", term_id=term.id, original=term.paired_term, corrected=hint)

            matched_id = None
            for candidate in get_match_candidates(hint):
                key = (target_lang, target_doc, term.section_label, normalize_term_for_matching(candidate))
                found = index.exact.get(key)
                if self._available(term, found):
                    matched_id = found
                    break

            if matched_id:
                self._connect(term, matched_id, PASS_EXACT, result)
                stats.linked_exact += 1
            else:
                unmatched.append(term)
        return unmatched

    def _pass_fallback(self, terms: List[TermRecord], index: TermIndex, result: LinkResult) -> List[TermRecord]:
        stats = result.stats
        unmatched = []
        for term in terms:
            if term.id in self._partner:
                continue

            source_doc = term.document_id or ""
            target_lang = OTHER_LANGUAGE[term.language]
            target_doc = counterpart_document_id(term.act_id, term.regulation_id, term.language, target_lang)

            source_count = index.counts.get((term.language, source_doc, index.normalized[term.id]), 0)
            if source_count != 1:
                self._record_unmatched(term, target_doc, f"source_not_unique (count: {source_count})", result)
                unmatched.append(term)
                continue

            hint = correct_paired_term(source_doc, term.paired_term)
            matched_id = None
            target_counts = []
            for candidate in get_match_candidates(hint):
                key = (target_lang, target_doc, normalize_term_for_matching(candidate))
                target_count = index.counts.get(key, 0)
                target_counts.append(target_count)
                if target_count == 1:
                    found = index.by_document.get(key)
                    if self._available(term, found):
                        matched_id = found
                        break

            if matched_id:
                self._connect(term, matched_id, PASS_FALLBACK, result)
                stats.linked_fallback += 1
                continue

            if any(c > 1 for c in target_counts):
                reason = f"target_not_unique (counts: {', '.join(str(c) for c in target_counts if c > 1)})"
            elif any(c == 1 for c in target_counts):
                reason = "target_already_linked"
            else:
                reason = "target_not_found"
            self._record_unmatched(term, target_doc, reason, result)
            unmatched.append(term)
        return unmatched

    def _record_unmatched(self, term: TermRecord, target_doc: str, reason: str, result: LinkResult) -> None:
        result.stats.no_match_found += 1
        result.unmatched.append(UnmatchedTerm(
            term_id=term.id,
            language=term.language,
            term=term.term,
            paired_term=term.paired_term,
            document_id=target_doc,
            reason=reason,
        ))

    def _pass_section(self, terms: List[TermRecord], result: LinkResult) -> None:
        stats = result.stats
        # Group on the English document id so SOR-/DORS- regulations share a group
        groups: Dict[Tuple[str, str], Dict[str, List[TermRecord]]] = defaultdict(lambda: {"en": [], "fr": []})
        for t in terms:
            document = counterpart_document_id(t.act_id, t.regulation_id, t.language, "en")
            groups[(document, t.section_label or "")][t.language].append(t)

        for (document, section), group in groups.items():
            en, fr = group["en"], group["fr"]
            if len(en) == 1 and len(fr) == 1:
                self._connect(en[0], fr[0].id, PASS_SECTION, result)
                stats.linked_section_based += 1
                continue

            stats.no_paired_term_no_match += len(en) + len(fr)
            if en and fr:
                # Several candidates per language: never guess
                stats.ambiguous_groups += 1
                log.debug("section_group_ambiguous", document_id=document, section_label=section,
                          en_terms=[t.term for t in en], fr_terms=[t.term for t in fr])
                reason = f"ambiguous_section ({len(en)} en, {len(fr)} fr)"
            else:
                reason = "no_counterpart_in_section"
            for t in en + fr:
                result.unmatched.append(UnmatchedTerm(
                    term_id=t.id, language=t.language, term=t.term, document_id=document, reason=reason,
                ))

    def _detect_typos(self, terms: List[TermRecord], index: TermIndex, result: LinkResult) -> None:
        """Report near-misses for manual review. Never links anything."""
        for term in terms:
            if term.id in self._partner:
                continue
            target_lang = OTHER_LANGUAGE[term.language]
            target_doc = counterpart_document_id(term.act_id, term.regulation_id, term.language, target_lang)
            expected = normalize_term_for_matching(correct_paired_term(term.document_id or "", term.paired_term))
            for similar_term, similar_norm in index.terms_by_document.get((target_lang, target_doc), []):
                if is_potential_typo(expected, similar_norm):
                    result.potential_typos.append(PotentialTypo(
                        term_id=term.id,
                        language=term.language,
                        term=term.term,
                        paired_term=term.paired_term,
                        expected=expected,
                        similar_term=similar_term,
                        similar_normalized=similar_norm,
                        distance=levenshtein(expected.lower(), similar_norm.lower()),
                        document_id=target_doc,
                        section_label=term.section_label,
                    ))
