"""
Natural keys for embeddable chunks.

A resource key is "{source_type}:{source_id}:{language}:{chunk_index}" and is
used both as the idempotency key in the durable store and as the progress
cache key.
"""
from typing import Optional, Tuple, Union

from lexindex.exceptions import IngestionException

LANGUAGES = ("en", "fr")
OTHER_LANGUAGE = {"en": "fr", "fr": "en"}


def validate_language(language: Optional[str]) -> Optional[str]:
    """Return the language if it is "en" or "fr", otherwise None."""
    if language in LANGUAGES:
        return language
    return None


def build_resource_key(source_type: str, source_id: Union[str, int], language: str, chunk_index: int) -> str:
    return f"{source_type}:{source_id}:{language}:{chunk_index}"


def build_paired_resource_key(source_type: str, source_id: Union[str, int], language: str, chunk_index: int) -> str:
    """Key of the same chunk in the other language (same source id)."""
    return build_resource_key(source_type, source_id, OTHER_LANGUAGE[language], chunk_index)


def parse_resource_key(key: str) -> Tuple[str, str, str, int]:
    """
    Split a resource key back into its parts.

    Source ids may themselves contain ':' so the key is split from both ends.
    """
    parts = key.split(":")
    if len(parts) < 4 or not parts[0]:
        raise IngestionException(f"Malformed resource key: {key!r}")
    try:
        return parts[0], ":".join(parts[1:-2]), parts[-2], int(parts[-1])
    except ValueError as e:
        raise IngestionException(f"Malformed resource key: {key!r}") from e


def source_prefix(source_type: str) -> str:
    return f"{source_type}:"
