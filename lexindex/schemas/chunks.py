from typing import Union
from pydantic import BaseModel

from lexindex.schemas.metadata import LegislationMetadata, TermMetadata, ParliamentMetadata


class ChunkData(BaseModel):
    """One unit of text to embed, with its natural key and typed metadata."""
    resource_key: str
    content: str
    chunk_index: int = 0
    total_chunks: int = 1
    metadata: Union[LegislationMetadata, TermMetadata, ParliamentMetadata]

    @property
    def source_type(self) -> str:
        return self.metadata.source_type

    @property
    def language(self) -> str:
        return self.metadata.language

    @property
    def paired_resource_key(self):
        return self.metadata.paired_resource_key
