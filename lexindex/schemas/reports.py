"""Per-item error records and run summaries."""
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Union

MAX_EXAMPLES_PER_TYPE = 3


@dataclass
class ProcessError:
    """A per-item data-quality problem. Recorded and skipped, never fatal."""
    item_type: str
    item_id: Union[str, int]
    message: str
    retryable: bool = False


@dataclass
class ErrorReport:
    errors: List[ProcessError] = field(default_factory=list)

    def add(self, error: ProcessError) -> None:
        self.errors.append(error)

    def extend(self, errors: List[ProcessError]) -> None:
        self.errors.extend(errors)

    def __len__(self) -> int:
        return len(self.errors)

    def grouped(self) -> Dict[str, List[ProcessError]]:
        groups: Dict[str, List[ProcessError]] = OrderedDict()
        for error in self.errors:
            groups.setdefault(error.item_type, []).append(error)
        return groups

    def render(self) -> List[str]:
        """Human-readable lines, capped at a few examples per item type."""
        if not self.errors:
            return []
        lines = [f"{len(self.errors)} errors during processing:"]
        for item_type, errors in self.grouped().items():
            lines.append(f"  {item_type}: {len(errors)} errors")
            for error in errors[:MAX_EXAMPLES_PER_TYPE]:
                lines.append(f"    - {error.item_id}: {error.message}")
            if len(errors) > MAX_EXAMPLES_PER_TYPE:
                lines.append(f"    ... and {len(errors) - MAX_EXAMPLES_PER_TYPE} more")
        return lines


@dataclass
class SourceResult:
    """Outcome of processing one source type."""
    source_type: str
    chunks_inserted: int = 0
    chunks_skipped: int = 0
    chunks_oversized: int = 0
    items_processed: int = 0
    errors: List[ProcessError] = field(default_factory=list)
    # Stopped early after a rejected batch; rows past it were not read
    halted: bool = False


@dataclass
class RunSummary:
    results: List[SourceResult] = field(default_factory=list)
    interrupted: bool = False
    dry_run: bool = False

    @property
    def chunks_inserted(self) -> int:
        return sum(r.chunks_inserted for r in self.results)

    @property
    def chunks_skipped(self) -> int:
        return sum(r.chunks_skipped for r in self.results)

    @property
    def chunks_oversized(self) -> int:
        return sum(r.chunks_oversized for r in self.results)

    @property
    def items_processed(self) -> int:
        return sum(r.items_processed for r in self.results)

    @property
    def errors(self) -> ErrorReport:
        report = ErrorReport()
        for r in self.results:
            report.extend(r.errors)
        return report
