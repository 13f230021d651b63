import pytest
from pydantic import ValidationError

from lexindex.schemas.metadata import LegislationMetadata, ParliamentMetadata, TermMetadata, parse_metadata


def test_to_json_flattens_extra():
    metadata = ParliamentMetadata(
        source_type="hansard", source_id="77", language="en", session_id="45-1",
        extra={"speaker": "Hon. Member", "document_id": 5},
    )
    data = metadata.to_json()
    assert data["speaker"] == "Hon. Member"
    assert data["document_id"] == 5
    assert "extra" not in data
    assert "bill_number" not in data  # None fields dropped


def test_extra_never_overrides_typed_fields():
    metadata = LegislationMetadata(
        source_type="act", source_id="A-1", language="en", status="in-force", extra={"status": "bogus"},
    )
    assert metadata.to_json()["status"] == "in-force"


def test_parse_metadata_selects_variant():
    parsed = parse_metadata({
        "source_type": "defined_term", "source_id": "t1", "language": "fr",
        "term_id": "t1", "term": "droit d'auteur", "scope_sections": ["2"],
    })
    assert isinstance(parsed, TermMetadata)
    assert parsed.extra == {"scope_sections": ["2"]}


def test_parse_metadata_round_trips_stored_json():
    original = LegislationMetadata(
        source_type="act_section", source_id="s1", language="en", section_label="2",
        extra={"section_type": "section"},
    )
    assert parse_metadata(original.to_json()) == original


def test_language_is_restricted():
    with pytest.raises(ValidationError):
        ParliamentMetadata(source_type="bill", source_id="1", language="de")


def test_unknown_source_type_rejected():
    with pytest.raises(ValidationError):
        parse_metadata({"source_type": "treaty", "source_id": "x", "language": "en"})
