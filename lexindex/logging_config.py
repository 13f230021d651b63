"""
Structured logging for ingestion and term-linking runs.

Usage:
    from lexindex.logging_config import get_logger

    log = get_logger(__name__)
    log.info("batch_embedded", completed=3, total=10)

Run-scoped fields (``ingestion_run_id``, ``source_type``) are bound with
``bind_contextvars`` and appear on every line until unbound.
"""
import logging
import logging.handlers
import sys
import structlog
from typing import Optional

# Event fields that carry a resource key ("bill:1234:en:0")
RESOURCE_KEY_FIELDS = ("resource_key", "first_key")

# One line per HTTP request or SQL statement drowns a run of thousands of batches
NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "sqlalchemy.engine", "opik")


def add_source_type(logger, method_name: str, event_dict: dict) -> dict:
    """
    Tag events that name a resource key with its source type, so lines
    logged outside the pipeline's bound context still filter by source.
    """
    if "source_type" in event_dict:
        return event_dict
    for field in RESOURCE_KEY_FIELDS:
        key = event_dict.get(field)
        if isinstance(key, str) and ":" in key:
            event_dict["source_type"] = key.split(":", 1)[0]
            break
    return event_dict


def _formatter(shared_processors: list, renderer) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure structlog over stdlib logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: JSON lines on stdout; False gives colored console output
        log_file: Optional JSON log file, rotated nightly and kept for a week.
            Long backfills outlive a terminal scrollback.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
        add_source_type,
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, log_level.upper())
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)

    if json_format:
        console_renderer = structlog.processors.JSONRenderer()
    else:
        console_renderer = structlog.dev.ConsoleRenderer(colors=True)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(_formatter(shared_processors, console_renderer))
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.handlers.TimedRotatingFileHandler(
            log_file,
            when="midnight",
            interval=1,
            backupCount=7
        )
        # Always JSON, for grepping by ingestion_run_id afterwards
        file_handler.setFormatter(_formatter(shared_processors, structlog.processors.JSONRenderer()))
        root_logger.addHandler(file_handler)

    # --debug shows everything, including per-request client logs
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_contextvars(**kwargs) -> None:
    """
    Bind key-value pairs to every following log line.

    Example:
        bind_contextvars(ingestion_run_id="3f9c2a1b")
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_contextvars(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_contextvars() -> None:
    """Clear all bound fields (end of a run)."""
    structlog.contextvars.clear_contextvars()
