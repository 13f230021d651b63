from datetime import datetime
from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Identity, Index, Integer, Text, String, text
from sqlalchemy.dialects.postgresql import JSONB, TSVECTOR
from sqlalchemy.orm import relationship
from pgvector.sqlalchemy import Vector
from lexindex.models.base import Base
from lexindex.config import get_settings

# Get dimension from config at module level
# This means the table schema depends on what env vars are loaded
# when you first run "create tables"
EMBEDDING_DIM = get_settings().embedding.dimension


class Resource(Base):
    """
    One embeddable chunk, identified by its natural resource_key
    ("{source_type}:{source_id}:{language}:{chunk_index}").
    Re-ingesting the same key only refreshes updated_at.
    """
    __tablename__ = "resources"

    id = Column(BigInteger, Identity(always=False), primary_key=True)
    resource_key = Column(Text, unique=True, nullable=False, index=True)
    content = Column(Text, nullable=False)

    metadata_ = Column("metadata", JSONB, nullable=False, server_default=text("'{}'::jsonb"))
    # Denormalized from metadata for fast filtering
    language = Column(String(2), nullable=False)
    source_type = Column(String(40), nullable=False)
    paired_resource_key = Column(Text, nullable=True)

    embedding_model_version = Column(String, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, server_default=text("now()"), nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, server_default=text("now()"), nullable=False)

    embedding = relationship("Embedding", back_populates="resource", uselist=False, cascade="all, delete-orphan")

    __table_args__ = (
        Index("resources_source_type_lang_idx", "source_type", "language"),
        Index("resources_paired_resource_key_idx", "paired_resource_key"),
    )


class Embedding(Base):
    """Exactly one row per Resource; deleted and reinserted on every re-ingest."""
    __tablename__ = "embeddings"

    id = Column(BigInteger, Identity(always=False), primary_key=True)
    resource_id = Column(
        BigInteger, ForeignKey("resources.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    content = Column(Text, nullable=False)
    embedding = Column(Vector(EMBEDDING_DIM), nullable=False)
    tsv = Column(TSVECTOR)

    chunk_index = Column(Integer, nullable=False, default=0)
    total_chunks = Column(Integer, nullable=False, default=1)
    embedding_model = Column(String, nullable=False)

    resource = relationship("Resource", back_populates="embedding")

    __table_args__ = (
        Index("embeddings_tsv_idx", "tsv", postgresql_using="gin"),
    )
