"""
Curated corrections for known typos and wording mismatches in the source
XML, plus edit-distance diagnostics for spotting new ones.

Corrections are scoped per document id (the document where the text
appears) and are applied to text before normalization and lookup. They
are an input transform only; fuzzy matches are reported, never linked.
"""
import re
from typing import Dict, List, NamedTuple

import Levenshtein


class TypoCorrection(NamedTuple):
    typo: str
    correction: str


# Typos in the actual term text, applied when indexing the corpus.
TERM_TYPOS: Dict[str, List[TypoCorrection]] = {
    # EN "mutiple-serving prepackaged product"
    "C.R.C._c. 870": [TypoCorrection("mutiple", "multiple")],
}

# Typos in the paired-term hint, keyed by the document carrying the hint.
LEGISLATION_TYPOS: Dict[str, List[TypoCorrection]] = {
    # Spelling errors
    "C.R.C._c. 870": [
        TypoCorrection("reconnaisance", "reconnaissance"),
        TypoCorrection("projection de flamme", "projection de la flamme"),
    ],
    "DORS-2011-10": [TypoCorrection("vehicule", "vehicle")],
    "DORS-2014-304": [TypoCorrection("practioner", "practitioner")],
    "SI-2004-134": [TypoCorrection("Chartre", "Charte")],
    "SOR-2023-257": [
        TypoCorrection("longeur", "longueur"),
        TypoCorrection("voyage en eaux internes", "voyages en eaux internes"),
    ],
    "SOR-86-304": [TypoCorrection("chaudièreà", "chaudière à")],
    "TR-2009-3": [TypoCorrection("Chief of Justice", "Chief Justice")],
    "SOR-2010-120": [TypoCorrection("matérial", "matériel")],
    "SOR-2018-66": [TypoCorrection("équipment", "équipement")],
    "SOR-2018-144": [TypoCorrection("professionelles", "professionnelles")],

    # Wording differs between the two language versions
    "C.R.C._c. 869": [TypoCorrection("projection de flamme", "projection de la flamme")],
    "DORS-2005-248": [
        TypoCorrection(
            "Canadian Biosafety Standard and Guidelines",
            "Canadian Biosafety Standards and Guidelines",
        ),
    ],
    "DORS-2009-264": [TypoCorrection("excluded compound", "excluded compounds")],
    "DORS-2020-258": [TypoCorrection("smoke emission", "smoke emissions")],
    "DORS-2010-120": [TypoCorrection("containment", "containment system")],
    "SOR-2011-87": [TypoCorrection("confinement", "système de confinement")],
    # U+2019 apostrophes
    "SOR-2016-151": [
        TypoCorrection("méthode A de l’EC", "méthode A d’EC"),
        TypoCorrection("méthode B de l’EC", "méthode B d’EC"),
        TypoCorrection("méthode D de l’EC", "méthode D d’EC"),
    ],
    "SOR-2021-268": [
        TypoCorrection("COV à faible pression de vapeur", "COV à pression de vapeur faible"),
    ],
    "SOR-91-37": [
        TypoCorrection("montant fédéral admissible", "montant admissible fédéral"),
    ],
    "SOR-2025-88": [
        TypoCorrection(
            "rampe de chargement de liquide à haute concentration en benzène",
            "rampe de chargement de liquide à haute concentration de benzène",
        ),
        TypoCorrection(
            "réservoir de liquide à haute concentration en benzène",
            "réservoir de liquide à haute concentration de benzène",
        ),
    ],
}


def _apply_corrections(text: str, corrections: List[TypoCorrection]) -> str:
    """Case-insensitive replace that keeps the matched text's casing pattern."""
    for typo, correction in corrections:
        def replace(match: re.Match, correction=correction) -> str:
            found = match.group(0)
            if found == found.upper():
                return correction.upper()
            if found[0] == found[0].upper():
                return correction[0].upper() + correction[1:]
            return correction

        text = re.sub(re.escape(typo), replace, text, flags=re.IGNORECASE)
    return text


def correct_paired_term(document_id: str, paired_term: str) -> str:
    corrections = LEGISLATION_TYPOS.get(document_id)
    if not corrections or not paired_term:
        return paired_term
    return _apply_corrections(paired_term, corrections)


def correct_actual_term(document_id: str, term: str) -> str:
    corrections = TERM_TYPOS.get(document_id)
    if not corrections or not term:
        return term
    return _apply_corrections(term, corrections)


def total_correction_count() -> int:
    return sum(len(entries) for entries in LEGISLATION_TYPOS.values())


def total_term_correction_count() -> int:
    return sum(len(entries) for entries in TERM_TYPOS.values())


def _validate_set(corrections: Dict[str, List[TypoCorrection]], prefix: str) -> List[str]:
    warnings = []
    for document_id, entries in corrections.items():
        for typo, correction in entries:
            if not typo.strip():
                warnings.append(f"{prefix}{document_id}: Empty typo value")
            if not correction.strip():
                warnings.append(f"{prefix}{document_id}: Empty correction value")
            if typo == correction:
                warnings.append(f'{prefix}{document_id}: Typo and correction are identical: "{typo}"')
            if len(typo) < 3:
                # Short patterns match inside unrelated words
                warnings.append(f'{prefix}{document_id}: Very short typo "{typo}" may cause false positives')
    return warnings


def validate_corrections() -> List[str]:
    """Sanity-check both correction tables; returns warnings (empty if fine)."""
    return _validate_set(LEGISLATION_TYPOS, "") + _validate_set(TERM_TYPOS, "[TERM] ")


def levenshtein(a: str, b: str) -> int:
    return Levenshtein.distance(a, b)


MIN_TYPO_TERM_LENGTH = 5
MAX_LENGTH_DIFFERENCE = 3


def is_potential_typo(expected: str, actual: str) -> bool:
    """
    True when two terms differ by a small, length-scaled number of edits.

    Very short terms are excluded: at that length a couple of edits is a
    different word, not a typo.
    """
    t1 = expected.lower()
    t2 = actual.lower()
    if abs(len(t1) - len(t2)) > MAX_LENGTH_DIFFERENCE:
        return False
    if len(t1) < MIN_TYPO_TERM_LENGTH or len(t2) < MIN_TYPO_TERM_LENGTH:
        return False
    threshold = max(min(3, len(t1) // 4), 2)
    distance = levenshtein(t1, t2)
    return 0 < distance <= threshold
