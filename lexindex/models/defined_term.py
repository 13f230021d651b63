from datetime import datetime
from sqlalchemy import Column, DateTime, Index, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from lexindex.models.base import Base


class DefinedTerm(Base):
    """
    One language version of a defined term.
    paired_term_id is the only column the linker writes, and only while it is NULL.
    """
    __tablename__ = "defined_terms"

    id = Column(String(191), primary_key=True)
    language = Column(String(2), nullable=False)
    term = Column(String(255), nullable=False)
    term_normalized = Column(String(255), nullable=False)
    # Equivalent term text in the other language, extracted at load time
    paired_term = Column(String(255), nullable=True)
    paired_term_id = Column(String(191), nullable=True)
    definition = Column(Text, nullable=False)

    act_id = Column(String(50), nullable=True)
    regulation_id = Column(String(100), nullable=True)
    section_label = Column(String(50), nullable=True)

    scope_type = Column(String(20), nullable=False, server_default=text("'act'"))
    scope_sections = Column(JSONB, nullable=True)
    scope_raw_text = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("defined_terms_term_normalized_lang_idx", "term_normalized", "language"),
        Index("defined_terms_act_id_lang_idx", "act_id", "language"),
        Index("defined_terms_regulation_id_lang_idx", "regulation_id", "language"),
        Index("defined_terms_paired_term_id_idx", "paired_term_id"),
    )
