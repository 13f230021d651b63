from sqlalchemy import BigInteger, Column, Date, ForeignKey, Index, Integer, String, Text
from lexindex.models.base import Base


class ParliamentSession(Base):
    """A parliamentary session; natural string id such as "45-1"."""
    __tablename__ = "sessions"

    id = Column(String(10), primary_key=True)
    name_en = Column(Text, nullable=False)
    name_fr = Column(Text)
    parliament_num = Column(Integer)
    session_num = Column(Integer)
    start_date = Column(Date)
    end_date = Column(Date)


class Bill(Base):
    __tablename__ = "bills"

    id = Column(BigInteger, primary_key=True)
    session_id = Column(String(10), ForeignKey("sessions.id"), nullable=False)
    number = Column(String(10), nullable=False)  # e.g. "C-11"
    name_en = Column(Text)
    name_fr = Column(Text)
    status_code = Column(String(50))
    introduced = Column(Date)
    text_en = Column(Text)
    text_fr = Column(Text)

    __table_args__ = (Index("bills_session_id_idx", "session_id"),)


class HansardStatement(Base):
    __tablename__ = "hansard_statements"

    id = Column(BigInteger, primary_key=True)
    session_id = Column(String(10), ForeignKey("sessions.id"), nullable=False)
    document_id = Column(BigInteger)
    time = Column(Date)
    speaker_name_en = Column(Text)
    speaker_name_fr = Column(Text)
    h1_en = Column(Text)
    h1_fr = Column(Text)
    content_en = Column(Text)
    content_fr = Column(Text)

    __table_args__ = (Index("hansard_statements_session_id_idx", "session_id"),)
