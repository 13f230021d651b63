import pytest

from lexindex.linking.typos import (
    LEGISLATION_TYPOS,
    TypoCorrection,
    _validate_set,
    correct_actual_term,
    correct_paired_term,
    is_potential_typo,
    levenshtein,
    total_correction_count,
    validate_corrections,
)


class TestCorrections:
    def test_scoped_to_document(self):
        assert correct_paired_term("DORS-2014-304", "health practioner") == "health practitioner"
        assert correct_paired_term("SOR-2000-1", "health practioner") == "health practioner"

    def test_case_preserved(self):
        assert correct_paired_term("SI-2004-134", "Chartre") == "Charte"
        assert correct_paired_term("SI-2004-134", "CHARTRE") == "CHARTE"
        assert correct_paired_term("DORS-2011-10", "Amphibious Vehicule") == "Amphibious Vehicle"

    def test_missing_space_and_plural_fixes(self):
        assert correct_paired_term("SOR-86-304", "chaudièreà haute pression") == "chaudière à haute pression"
        assert correct_paired_term("DORS-2020-258", "smoke emission") == "smoke emissions"

    def test_actual_term_table(self):
        assert correct_actual_term("C.R.C._c. 870", "mutiple-serving prepackaged product") == (
            "multiple-serving prepackaged product"
        )

    def test_empty_hint_passthrough(self):
        assert correct_paired_term("DORS-2014-304", None) is None

    def test_shipped_tables_are_clean(self):
        assert validate_corrections() == []
        assert total_correction_count() == sum(len(v) for v in LEGISLATION_TYPOS.values())

    def test_validation_flags_bad_entries(self):
        warnings = _validate_set({"SOR-1": [TypoCorrection("ab", "ab"), TypoCorrection(" ", "x")]}, "[TERM] ")
        assert any("identical" in w for w in warnings)
        assert any("Very short" in w for w in warnings)
        assert any("Empty typo" in w for w in warnings)
        assert all(w.startswith("[TERM] SOR-1") for w in warnings)


class TestLevenshtein:
    def test_distances(self):
        assert levenshtein("kitten", "sitting") == 3
        assert levenshtein("same", "same") == 0
        assert levenshtein("", "abc") == 3


class TestPotentialTypo:
    def test_small_edit_is_flagged(self):
        assert is_potential_typo("permis de conduir", "permis de conduire")

    def test_identical_is_not_a_typo(self):
        assert not is_potential_typo("vessel", "Vessel")

    def test_short_terms_excluded(self):
        assert not is_potential_typo("ship", "shop")

    def test_length_gap_excluded(self):
        assert not is_potential_typo("licence", "licence holder")

    def test_threshold_scales_with_length(self):
        # len 8 -> threshold 2
        assert is_potential_typo("abcdefgh", "abcdefxy")
        assert not is_potential_typo("abcdefgh", "abcdexyz")
