"""
Term and document id normalization for bilingual matching.
"""
import re
from typing import List, Optional

_DASHES = re.compile(r"[–—\-]")
# ASCII word characters only: accented letters are stripped on both sides alike
_NON_WORD = re.compile(r"[^A-Za-z0-9_\s]")
_WHITESPACE = re.compile(r"\s+")

# "or"/"ou" alternatives, or a comma-separated list
_HAS_ALTERNATIVES = re.compile(r"(?:,| (?:or|ou) )", re.IGNORECASE)
_ALTERNATIVE_SPLIT = re.compile(r"\s+(?:or|ou)\s+|,\s*", re.IGNORECASE)

# Paired-term text meaning "no translation exists", not a failed match
LANGUAGE_ONLY_MARKER = re.compile(
    r"^(?:Version (?:anglaise|française) seulement|(?:English|French) version only)$",
    re.IGNORECASE,
)


def normalize_term_for_matching(term: str) -> str:
    """Dashes to spaces, lowercase, drop punctuation, collapse whitespace."""
    if not term:
        return ""
    term = _DASHES.sub(" ", term).lower()
    term = _NON_WORD.sub("", term)
    return _WHITESPACE.sub(" ", term).strip()


def is_language_only_marker(paired_term: Optional[str]) -> bool:
    return bool(paired_term) and LANGUAGE_ONLY_MARKER.match(paired_term.strip()) is not None


def get_match_candidates(paired_term: str) -> List[str]:
    """
    Texts to try when matching a paired-term hint.

    The whole text always comes first; split alternatives are only added
    as fallbacks when the hint actually lists alternatives.
    """
    candidates = [paired_term]
    if _HAS_ALTERNATIVES.search(paired_term):
        for part in _ALTERNATIVE_SPLIT.split(paired_term):
            part = part.strip()
            if part and part != paired_term and part not in candidates:
                candidates.append(part)
    return candidates


# (english prefix/infix, french prefix/infix)
_REGULATION_PREFIXES = (
    ("C.R.C._c. ", "C.R.C._ch. "),  # Consolidated Regulations of Canada
    ("SOR-", "DORS-"),              # Statutory Orders and Regulations
    ("SI-", "TR-"),                 # Statutory Instruments
)


def translate_regulation_id(regulation_id: str, from_lang: str, to_lang: str) -> str:
    """
    Translate a regulation id across languages, e.g. "SOR-2000-1" -> "DORS-2000-1".

    Annual statutes map "2018_c. 12_s. 187" <-> "2018_ch. 12_art. 187".
    Unknown formats are returned unchanged.
    """
    if from_lang == to_lang or not regulation_id:
        return regulation_id

    to_french = from_lang == "en"
    for en_prefix, fr_prefix in _REGULATION_PREFIXES:
        source, target = (en_prefix, fr_prefix) if to_french else (fr_prefix, en_prefix)
        if regulation_id.startswith(source):
            return target + regulation_id[len(source):]

    if to_french:
        if "_c. " in regulation_id and "_s. " in regulation_id:
            return regulation_id.replace("_c. ", "_ch. ", 1).replace("_s. ", "_art. ", 1)
    elif "_ch. " in regulation_id and "_art. " in regulation_id:
        return regulation_id.replace("_ch. ", "_c. ", 1).replace("_art. ", "_s. ", 1)
    return regulation_id


def counterpart_document_id(act_id: Optional[str], regulation_id: Optional[str], from_lang: str, to_lang: str) -> str:
    """Acts share one id across languages; regulation ids are translated."""
    if act_id:
        return act_id
    if regulation_id:
        return translate_regulation_id(regulation_id, from_lang, to_lang)
    return ""
