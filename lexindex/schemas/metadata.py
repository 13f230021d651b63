"""
Resource metadata, as a closed set of variants tagged by source_type.

Fields that need type-specific handling live on the variant; anything
opaque rides along in ``extra`` and is flattened into the stored JSON.
"""
from typing import Annotated, Any, Dict, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter

Language = Literal["en", "fr"]


class MetadataBase(BaseModel):
    source_id: str
    language: Language
    chunk_index: int = 0
    total_chunks: int = 1
    paired_resource_key: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> Dict[str, Any]:
        """Flatten into the JSONB shape stored on resources.metadata."""
        data = self.model_dump(exclude={"extra"}, exclude_none=True, mode="json")
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data


class LegislationMetadata(MetadataBase):
    source_type: Literal["act", "regulation", "act_section", "regulation_section"]
    act_id: Optional[str] = None
    regulation_id: Optional[str] = None
    document_title: Optional[str] = None
    section_id: Optional[str] = None
    section_label: Optional[str] = None
    marginal_note: Optional[str] = None
    status: Optional[str] = None
    hierarchy_path: Optional[Any] = None


class TermMetadata(MetadataBase):
    source_type: Literal["defined_term"]
    term_id: str
    term: str
    term_paired: Optional[str] = None
    act_id: Optional[str] = None
    regulation_id: Optional[str] = None
    document_title: Optional[str] = None
    section_label: Optional[str] = None
    scope_type: Optional[str] = None


class ParliamentMetadata(MetadataBase):
    source_type: Literal["session", "bill", "hansard"]
    session_id: Optional[str] = None
    bill_number: Optional[str] = None
    date: Optional[str] = None
    title: Optional[str] = None


ResourceMetadata = Annotated[
    Union[LegislationMetadata, TermMetadata, ParliamentMetadata],
    Field(discriminator="source_type"),
]

_metadata_adapter = TypeAdapter(ResourceMetadata)


def parse_metadata(data: Dict[str, Any]) -> Union[LegislationMetadata, TermMetadata, ParliamentMetadata]:
    """Rebuild a typed variant from stored JSON; unknown keys land in ``extra``."""
    data = dict(data)
    variant = _metadata_adapter.validate_python(
        {k: v for k, v in data.items() if k in _known_fields(data.get("source_type"))}
    )
    variant.extra = {k: v for k, v in data.items() if k not in _known_fields(variant.source_type)}
    return variant


def _known_fields(source_type: Optional[str]) -> set:
    for model in (LegislationMetadata, TermMetadata, ParliamentMetadata):
        literal = model.model_fields["source_type"].annotation
        if source_type in getattr(literal, "__args__", ()):
            return set(model.model_fields) - {"extra"}
    return {"source_type"}
