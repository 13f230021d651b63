from datetime import datetime
from sqlalchemy import Column, Date, DateTime, Integer, String, Text, UniqueConstraint, Index
from sqlalchemy.dialects.postgresql import JSONB
from lexindex.models.base import Base


class Act(Base):
    """One language version of a federal act (EN and FR are separate rows)."""
    __tablename__ = "acts"

    id = Column(String(191), primary_key=True)
    act_id = Column(String(50), nullable=False)  # e.g. "A-1", shared across languages
    language = Column(String(2), nullable=False)
    title = Column(Text, nullable=False)
    long_title = Column(Text)
    status = Column(String(20), nullable=False, default="in-force")
    in_force_date = Column(Date)
    consolidation_date = Column(Date)
    enacted_date = Column(Date)
    bill_origin = Column(String(20))  # "commons" or "senate"
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (UniqueConstraint("act_id", "language", name="acts_act_id_lang_uq"),)


class Regulation(Base):
    """
    One language version of a regulation. Ids differ by language
    ("SOR-2000-1" vs "DORS-2000-1").
    """
    __tablename__ = "regulations"

    id = Column(String(191), primary_key=True)
    regulation_id = Column(String(100), nullable=False)
    language = Column(String(2), nullable=False)
    title = Column(Text, nullable=False)
    long_title = Column(Text)
    status = Column(String(20), nullable=False, default="in-force")
    enabling_act_id = Column(String(50))
    registration_date = Column(Date)
    consolidation_date = Column(Date)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (UniqueConstraint("regulation_id", "language", name="regulations_reg_id_lang_uq"),)


class Section(Base):
    """A section of an act or a regulation, in one language."""
    __tablename__ = "sections"

    id = Column(String(191), primary_key=True)
    act_id = Column(String(50), nullable=True)
    regulation_id = Column(String(100), nullable=True)
    language = Column(String(2), nullable=False)
    section_label = Column(String(50), nullable=False)
    section_order = Column(Integer, nullable=False, default=0)
    marginal_note = Column(Text)
    content = Column(Text)
    status = Column(String(20), default="in-force")
    section_type = Column(String(30))
    hierarchy_path = Column(JSONB)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("sections_act_id_lang_idx", "act_id", "language"),
        Index("sections_regulation_id_lang_idx", "regulation_id", "language"),
    )
