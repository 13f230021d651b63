"""
Turn source rows into embeddable chunks.

Each builder returns a BuildResult: the chunks for the row plus any
per-item errors. Metadata text is localized (EN/FR labels) because the
language of the labels affects retrieval quality in that language.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from langchain_text_splitters import RecursiveCharacterTextSplitter

from lexindex.ingestion.keys import build_paired_resource_key, build_resource_key, validate_language, OTHER_LANGUAGE
from lexindex.ingestion.text_normalizer import normalize_text
from lexindex.linking.normalization import translate_regulation_id
from lexindex.schemas.chunks import ChunkData
from lexindex.schemas.metadata import LegislationMetadata, ParliamentMetadata, TermMetadata
from lexindex.schemas.reports import ProcessError

# ~1200 tokens at 4 chars/token, leaving headroom under the embedding ceiling
TARGET_CHUNK_CHARS = 4800
OVERLAP_CHARS = 800


@dataclass
class BuildResult:
    chunks: List[ChunkData] = field(default_factory=list)
    errors: List[ProcessError] = field(default_factory=list)
    items: int = 0  # source rows that produced (or legitimately skipped) chunks


def split_text(text: str, chunk_size: int = TARGET_CHUNK_CHARS, chunk_overlap: int = OVERLAP_CHARS) -> List[str]:
    """Split long text on paragraph, line, then word boundaries."""
    text = normalize_text(text)
    if not text:
        return []
    if len(text) <= chunk_size:
        return [text]
    splitter = RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        length_function=len,
        separators=["\n\n", "\n", " ", ""]  # Hierarchy of splits
    )
    return splitter.split_text(text)


def invalid_language(item_type: str, item_id, language) -> ProcessError:
    return ProcessError(
        item_type=item_type,
        item_id=item_id,
        message=f'Invalid language "{language}"',
        retryable=False,
    )


# --- Legislation ---------------------------------------------------------

def build_act_metadata_text(act, lang: str) -> str:
    parts = []
    if lang == "fr":
        parts.append(f"Loi: {act.title}")
        if act.long_title:
            parts.append(f"Titre complet: {act.long_title}")
        parts.append(f"Identifiant: {act.act_id}")
        parts.append(f"Statut: {act.status}")
        if act.in_force_date:
            parts.append(f"En vigueur: {act.in_force_date}")
        if act.enacted_date:
            parts.append(f"Adoptée: {act.enacted_date}")
        if act.consolidation_date:
            parts.append(f"Consolidation: {act.consolidation_date}")
        if act.bill_origin:
            origin = "Chambre des communes" if act.bill_origin == "commons" else "Sénat"
            parts.append(f"Origine: {origin}")
    else:
        parts.append(f"Act: {act.title}")
        if act.long_title:
            parts.append(f"Long Title: {act.long_title}")
        parts.append(f"ID: {act.act_id}")
        parts.append(f"Status: {act.status}")
        if act.in_force_date:
            parts.append(f"In Force: {act.in_force_date}")
        if act.enacted_date:
            parts.append(f"Enacted: {act.enacted_date}")
        if act.consolidation_date:
            parts.append(f"Consolidation: {act.consolidation_date}")
        if act.bill_origin:
            origin = "House of Commons" if act.bill_origin == "commons" else "Senate"
            parts.append(f"Origin: {origin}")
    return "\n".join(parts)


def build_act_chunks(act, context: Optional[Dict] = None) -> BuildResult:
    lang = validate_language(act.language)
    if not lang:
        return BuildResult(errors=[invalid_language("act", act.act_id, act.language)])

    metadata = LegislationMetadata(
        source_type="act",
        source_id=act.act_id,
        language=lang,
        act_id=act.act_id,
        document_title=act.title,
        status=act.status,
        paired_resource_key=build_paired_resource_key("act", act.act_id, lang, 0),
        extra={"long_title": act.long_title} if act.long_title else {},
    )
    chunk = ChunkData(
        resource_key=build_resource_key("act", act.act_id, lang, 0),
        content=build_act_metadata_text(act, lang),
        metadata=metadata,
    )
    return BuildResult(chunks=[chunk], items=1)


def build_regulation_metadata_text(regulation, lang: str) -> str:
    parts = []
    if lang == "fr":
        parts.append(f"Règlement: {regulation.title}")
        if regulation.long_title:
            parts.append(f"Titre complet: {regulation.long_title}")
        parts.append(f"Identifiant: {regulation.regulation_id}")
        parts.append(f"Statut: {regulation.status}")
        if regulation.enabling_act_id:
            parts.append(f"Loi habilitante: {regulation.enabling_act_id}")
        if regulation.registration_date:
            parts.append(f"Enregistrement: {regulation.registration_date}")
        if regulation.consolidation_date:
            parts.append(f"Consolidation: {regulation.consolidation_date}")
    else:
        parts.append(f"Regulation: {regulation.title}")
        if regulation.long_title:
            parts.append(f"Long Title: {regulation.long_title}")
        parts.append(f"ID: {regulation.regulation_id}")
        parts.append(f"Status: {regulation.status}")
        if regulation.enabling_act_id:
            parts.append(f"Enabling Act: {regulation.enabling_act_id}")
        if regulation.registration_date:
            parts.append(f"Registered: {regulation.registration_date}")
        if regulation.consolidation_date:
            parts.append(f"Consolidation: {regulation.consolidation_date}")
    return "\n".join(parts)


def build_regulation_chunks(regulation, context: Optional[Dict] = None) -> BuildResult:
    lang = validate_language(regulation.language)
    if not lang:
        return BuildResult(errors=[invalid_language("regulation", regulation.regulation_id, regulation.language)])

    # Regulation ids differ by language (SOR-... / DORS-...)
    paired_id = translate_regulation_id(regulation.regulation_id, lang, OTHER_LANGUAGE[lang])
    metadata = LegislationMetadata(
        source_type="regulation",
        source_id=regulation.regulation_id,
        language=lang,
        regulation_id=regulation.regulation_id,
        act_id=regulation.enabling_act_id,
        document_title=regulation.title,
        status=regulation.status,
        paired_resource_key=build_resource_key("regulation", paired_id, OTHER_LANGUAGE[lang], 0),
    )
    chunk = ChunkData(
        resource_key=build_resource_key("regulation", regulation.regulation_id, lang, 0),
        content=build_regulation_metadata_text(regulation, lang),
        metadata=metadata,
    )
    return BuildResult(chunks=[chunk], items=1)


def should_skip_section(section) -> bool:
    """Only empty sections are skipped; repealed sections are part of the legal record."""
    return not (section.content or "").strip()


def build_section_chunks(section, context: Optional[Dict] = None) -> BuildResult:
    source_type = "act_section" if section.act_id else "regulation_section"
    lang = validate_language(section.language)
    if not lang:
        return BuildResult(errors=[invalid_language(source_type, section.id, section.language)])
    if should_skip_section(section):
        return BuildResult(items=1)

    document_id = section.act_id or section.regulation_id
    document_title = (context or {}).get("titles", {}).get((document_id, lang), document_id)

    label = "Article" if lang == "fr" else "Section"
    prefix = f"{document_title}\n{label} {section.section_label}"
    if section.marginal_note:
        prefix += f": {section.marginal_note}"

    # Leave room for the prefix on every piece
    pieces = split_text(section.content, chunk_size=TARGET_CHUNK_CHARS - len(prefix) - 50)
    chunks = []
    for index, piece in enumerate(pieces):
        metadata = LegislationMetadata(
            source_type=source_type,
            source_id=section.id,
            language=lang,
            chunk_index=index,
            total_chunks=len(pieces),
            act_id=section.act_id,
            regulation_id=section.regulation_id,
            document_title=document_title,
            section_id=section.id,
            section_label=section.section_label,
            marginal_note=section.marginal_note,
            status=section.status,
            hierarchy_path=section.hierarchy_path,
            extra={"section_type": section.section_type} if section.section_type else {},
        )
        chunks.append(ChunkData(
            resource_key=build_resource_key(source_type, section.id, lang, index),
            content=f"{prefix}\n\n{piece}",
            chunk_index=index,
            total_chunks=len(pieces),
            metadata=metadata,
        ))
    return BuildResult(chunks=chunks, items=1)


def format_scope_info(term, lang: str) -> Optional[str]:
    """Scope text for terms that only apply to part of a document."""
    if not term.scope_type or term.scope_type in ("act", "regulation"):
        return None

    parts = []
    if lang == "fr":
        labels = {"part": "partie", "section": "article(s)"}
        parts.append(f"Portée: {labels.get(term.scope_type, term.scope_type)}")
        if term.scope_sections:
            parts.append(f"S'applique aux articles: {', '.join(term.scope_sections)}")
        if term.scope_raw_text:
            parts.append(f"Déclaration de portée: {term.scope_raw_text}")
    else:
        labels = {"part": "part", "section": "section(s)"}
        parts.append(f"Scope: {labels.get(term.scope_type, term.scope_type)}")
        if term.scope_sections:
            parts.append(f"Applicable to sections: {', '.join(term.scope_sections)}")
        if term.scope_raw_text:
            parts.append(f"Scope declaration: {term.scope_raw_text}")
    return "\n".join(parts)


def build_term_content(term, document_title: str, lang: str) -> str:
    parts = []
    if lang == "fr":
        parts.append(f"Terme défini: {term.term}")
        if term.paired_term:
            parts.append(f"Terme anglais: {term.paired_term}")
        parts.append(f"Source: {document_title}")
        if term.section_label:
            parts.append(f"Article: {term.section_label}")
        heading = "Définition"
    else:
        parts.append(f"Defined Term: {term.term}")
        if term.paired_term:
            parts.append(f"French term: {term.paired_term}")
        parts.append(f"Source: {document_title}")
        if term.section_label:
            parts.append(f"Section: {term.section_label}")
        heading = "Definition"

    scope_info = format_scope_info(term, lang)
    if scope_info:
        parts.append(scope_info)
    parts.append(f"\n{heading}:\n{term.definition}")
    return "\n".join(parts)


def build_term_chunks(term, context: Optional[Dict] = None) -> BuildResult:
    lang = validate_language(term.language)
    if not lang:
        return BuildResult(errors=[invalid_language("defined_term", term.id, term.language)])

    document_id = term.act_id or term.regulation_id
    document_title = (context or {}).get("titles", {}).get((document_id, lang), document_id or "")
    # Term rows are per language, so the counterpart is only known once linked
    paired_key = (
        build_resource_key("defined_term", term.paired_term_id, OTHER_LANGUAGE[lang], 0)
        if term.paired_term_id else None
    )
    metadata = TermMetadata(
        source_type="defined_term",
        source_id=term.id,
        language=lang,
        term_id=term.id,
        term=term.term,
        term_paired=term.paired_term,
        act_id=term.act_id,
        regulation_id=term.regulation_id,
        document_title=document_title,
        section_label=term.section_label,
        scope_type=term.scope_type,
        paired_resource_key=paired_key,
        extra={"scope_sections": term.scope_sections} if term.scope_sections else {},
    )
    chunk = ChunkData(
        resource_key=build_resource_key("defined_term", term.id, lang, 0),
        content=build_term_content(term, document_title, lang),
        metadata=metadata,
    )
    return BuildResult(chunks=[chunk], items=1)


# --- Parliament ------------------------------------------------------------
# Parliament rows are bilingual: one row yields EN and FR chunks.

def build_session_chunks(session, context: Optional[Dict] = None) -> BuildResult:
    chunks = []
    for lang in ("en", "fr"):
        name = (session.name_fr if lang == "fr" else session.name_en) or session.name_en
        if lang == "fr":
            lines = [f"Session parlementaire: {name}", f"Identifiant: {session.id}"]
            if session.parliament_num:
                lines.append(f"Législature: {session.parliament_num}")
            if session.start_date:
                lines.append(f"Début: {session.start_date}")
            if session.end_date:
                lines.append(f"Fin: {session.end_date}")
        else:
            lines = [f"Parliamentary Session: {name}", f"ID: {session.id}"]
            if session.parliament_num:
                lines.append(f"Parliament: {session.parliament_num}")
            if session.start_date:
                lines.append(f"Start: {session.start_date}")
            if session.end_date:
                lines.append(f"End: {session.end_date}")
        metadata = ParliamentMetadata(
            source_type="session",
            source_id=session.id,
            language=lang,
            session_id=session.id,
            title=name,
            date=str(session.start_date) if session.start_date else None,
            paired_resource_key=build_paired_resource_key("session", session.id, lang, 0),
        )
        chunks.append(ChunkData(
            resource_key=build_resource_key("session", session.id, lang, 0),
            content="\n".join(lines),
            metadata=metadata,
        ))
    return BuildResult(chunks=chunks, items=1)


def build_bill_chunks(bill, context: Optional[Dict] = None) -> BuildResult:
    """Chunk 0 is the bill metadata; bill text follows from chunk 1."""
    chunks = []
    for lang in ("en", "fr"):
        title = (bill.name_fr if lang == "fr" else bill.name_en) or bill.name_en or bill.number
        text = bill.text_fr if lang == "fr" else bill.text_en
        pieces = split_text(text or "")
        total = 1 + len(pieces)

        if lang == "fr":
            lines = [f"Projet de loi {bill.number}: {title}", f"Session: {bill.session_id}"]
            if bill.status_code:
                lines.append(f"Statut: {bill.status_code}")
            if bill.introduced:
                lines.append(f"Déposé: {bill.introduced}")
        else:
            lines = [f"Bill {bill.number}: {title}", f"Session: {bill.session_id}"]
            if bill.status_code:
                lines.append(f"Status: {bill.status_code}")
            if bill.introduced:
                lines.append(f"Introduced: {bill.introduced}")

        contents = ["\n".join(lines)] + [f"{bill.number}: {title}\n\n{piece}" for piece in pieces]
        for index, content in enumerate(contents):
            metadata = ParliamentMetadata(
                source_type="bill",
                source_id=str(bill.id),
                language=lang,
                chunk_index=index,
                total_chunks=total,
                session_id=bill.session_id,
                bill_number=bill.number,
                title=title,
                date=str(bill.introduced) if bill.introduced else None,
                paired_resource_key=build_paired_resource_key("bill", bill.id, lang, index),
            )
            chunks.append(ChunkData(
                resource_key=build_resource_key("bill", bill.id, lang, index),
                content=content,
                chunk_index=index,
                total_chunks=total,
                metadata=metadata,
            ))
    return BuildResult(chunks=chunks, items=1)


def build_hansard_chunks(statement, context: Optional[Dict] = None) -> BuildResult:
    chunks = []
    for lang in ("en", "fr"):
        text = statement.content_fr if lang == "fr" else statement.content_en
        pieces = split_text(text or "")
        if not pieces:
            continue
        speaker = (statement.speaker_name_fr if lang == "fr" else statement.speaker_name_en) or ""
        heading = (statement.h1_fr if lang == "fr" else statement.h1_en) or ""
        prefix = " - ".join(p for p in (heading, speaker) if p)

        for index, piece in enumerate(pieces):
            metadata = ParliamentMetadata(
                source_type="hansard",
                source_id=str(statement.id),
                language=lang,
                chunk_index=index,
                total_chunks=len(pieces),
                session_id=statement.session_id,
                date=str(statement.time) if statement.time else None,
                title=heading or None,
                paired_resource_key=build_paired_resource_key("hansard", statement.id, lang, index),
                extra={"document_id": statement.document_id, "speaker": speaker} if speaker else {"document_id": statement.document_id},
            )
            chunks.append(ChunkData(
                resource_key=build_resource_key("hansard", statement.id, lang, index),
                content=f"{prefix}\n\n{piece}" if prefix else piece,
                chunk_index=index,
                total_chunks=len(pieces),
                metadata=metadata,
            ))
    return BuildResult(chunks=chunks, items=1)
