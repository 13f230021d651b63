"""Progress logging and end-of-run summaries."""
from typing import List

from lexindex.linking.term_linker import LinkResult
from lexindex.logging_config import get_logger
from lexindex.schemas.reports import RunSummary

log = get_logger(__name__)

MAX_TYPO_LINES = 20


def should_log_progress(current: int, total: int, interval: int = 10) -> bool:
    """First item, last item, and every ``interval`` items in between."""
    return current == 1 or current == total or (interval > 0 and current % interval == 0)


def log_progress(current: int, total: int, label: str, interval: int = 10) -> None:
    if should_log_progress(current, total, interval):
        percent = round(current * 100 / total) if total else 100
        log.info("progress", label=label, current=current, total=total, percent=percent)


def render_run_summary(summary: RunSummary) -> List[str]:
    title = "Dry run summary" if summary.dry_run else "Ingestion summary"
    embedded = "would embed" if summary.dry_run else "embedded"
    lines = [title]
    for r in summary.results:
        lines.append(
            f"  {r.source_type}: {r.items_processed} items, {r.chunks_inserted} chunks {embedded}, "
            f"{r.chunks_skipped} skipped, {r.chunks_oversized} oversized"
        )
        if r.halted:
            lines.append(f"  {r.source_type}: stopped at a rejected batch, rerun with --skip-existing")
    lines.append(
        f"  Total: {summary.chunks_inserted} chunks {embedded}, {summary.chunks_skipped} skipped, "
        f"{summary.chunks_oversized} oversized"
    )
    if summary.interrupted:
        lines.append("  Interrupted: resume with --skip-existing")
    lines.extend(summary.errors.render())
    return lines


def render_link_report(result: LinkResult, dry_run: bool = False) -> List[str]:
    s = result.stats
    lines = [
        "Defined term linking" + (" (dry run, nothing written)" if dry_run else ""),
        f"  Terms loaded: {s.total_terms} ({s.terms_with_paired_text} with paired text, {s.already_linked} already linked)",
        f"  Pass 1 exact section: {s.linked_exact}",
        f"  Pass 2 unique in document: {s.linked_fallback}",
        f"  Pass 3 section co-occurrence: {s.linked_section_based} ({s.ambiguous_groups} ambiguous sections)",
        f"  Pairs linked: {s.pairs_linked}",
        f"  Language-only markers skipped: {s.language_only_skipped}",
        f"  Typo corrections applied: {s.typos_corrected}",
        f"  Unmatched: {s.no_match_found} with paired text, {s.no_paired_term_no_match} without",
    ]
    if result.potential_typos:
        lines.append(f"  Potential data typos for manual review: {len(result.potential_typos)}")
        for typo in result.potential_typos[:MAX_TYPO_LINES]:
            lines.append(
                f'    - {typo.document_id} [{typo.language}] "{typo.paired_term}" ~ "{typo.similar_term}" '
                f"(distance {typo.distance})"
            )
        if len(result.potential_typos) > MAX_TYPO_LINES:
            lines.append(f"    ... and {len(result.potential_typos) - MAX_TYPO_LINES} more")
    if result.errors:
        lines.append(f"  Errors: {len(result.errors)}")
        for error in result.errors[:3]:
            lines.append(f"    - {error.item_id}: {error.message}")
        if len(result.errors) > 3:
            lines.append(f"    ... and {len(result.errors) - 3} more")
    return lines
