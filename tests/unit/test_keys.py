import pytest

from lexindex.exceptions import IngestionException
from lexindex.ingestion.keys import (
    build_paired_resource_key,
    build_resource_key,
    parse_resource_key,
    source_prefix,
    validate_language,
)


def test_build_resource_key():
    assert build_resource_key("act", "A-1", "en", 0) == "act:A-1:en:0"
    assert build_resource_key("bill", 1234, "fr", 3) == "bill:1234:fr:3"


def test_paired_key_flips_language_only():
    assert build_paired_resource_key("hansard", 42, "en", 2) == "hansard:42:fr:2"
    assert build_paired_resource_key("session", "45-1", "fr", 0) == "session:45-1:en:0"


def test_validate_language():
    assert validate_language("en") == "en"
    assert validate_language("fr") == "fr"
    assert validate_language("de") is None
    assert validate_language("EN") is None
    assert validate_language(None) is None


def test_parse_resource_key_round_trip():
    assert parse_resource_key("regulation_section:SOR-2000-1_s1:fr:2") == (
        "regulation_section", "SOR-2000-1_s1", "fr", 2
    )


def test_parse_resource_key_with_colon_in_id():
    assert parse_resource_key("act_section:A-1:2:en:0") == ("act_section", "A-1:2", "en", 0)


@pytest.mark.parametrize("key", ["act:A-1:en", "act:A-1:en:first", ":A-1:en:0"])
def test_parse_resource_key_malformed(key):
    with pytest.raises(IngestionException):
        parse_resource_key(key)


def test_source_prefix_includes_separator():
    # "act:" must not match "act_section:..." keys
    assert source_prefix("act") == "act:"
    assert not "act_section:x:en:0".startswith(source_prefix("act"))
