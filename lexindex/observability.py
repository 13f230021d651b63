from enum import Enum
from typing import Optional, List, Any
import functools
import inspect
import os

from lexindex.logging_config import get_logger
import opik

log = get_logger(__name__)


class Phase(Enum):
    """
    Standardized phases for observability tagging.
    Using an Enum prevents string typos like 'ingest' or 'linking_phase'.
    """
    INGESTION = "ingestion"
    EMBEDDING = "embedding"
    STORAGE = "storage"
    TERM_LINKING = "term_linking"


def configure_observability():
    """
    Central entry point for observability configuration.
    Called from scripts only; library code just decorates with @track.
    """
    from lexindex.config import get_settings
    settings = get_settings()

    os.environ["OPIK_PROJECT_NAME"] = settings.opik.project_name
    if settings.opik.api_key:
        os.environ["OPIK_API_KEY"] = settings.opik.api_key
    if settings.opik.workspace:
        os.environ["OPIK_WORKSPACE"] = settings.opik.workspace
    opik.configure(use_local=not settings.opik.api_key)
    log.info("observability_configured", provider="opik", project=settings.opik.project_name)


def track(name: Optional[str] = None, phase: Optional[Phase] = None, tags: Optional[List[str]] = None):
    """
    Vendor-agnostic tracking decorator.

    Args:
        name: The name of the trace/span. Defaults to function name.
        phase: High-level phase enum (mapped to phase:X tag).
        tags: Additional list of string tags.
    """
    def decorator(func):
        static_tags = tags.copy() if tags else []
        if phase:
            static_tags.append(f"phase:{phase.value}")

        # capture_input/output off: batches carry full chunk text and vectors
        traced = opik.track(name=name, tags=static_tags, capture_input=False, capture_output=False)

        if inspect.iscoroutinefunction(func):
            @traced
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                return await func(*args, **kwargs)
            return async_wrapper

        @traced
        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            return func(*args, **kwargs)
        return sync_wrapper
    return decorator


def set_trace_metadata(metadata: dict[str, Any]) -> None:
    """
    Set metadata for the current trace (vendor-agnostic).
    No-op when there is no active trace (tracking disabled).
    """
    if opik.opik_context.get_current_trace_data() is None:
        return
    opik.opik_context.update_current_trace(metadata=metadata)
