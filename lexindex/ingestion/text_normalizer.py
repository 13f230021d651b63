import re

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """
    Clean and normalize source text before chunking.
    """
    if not text:
        return ""

    # Remove null bytes
    text = text.replace("\x00", "")

    # Replace customized/weird whitespace characters with standard space
    # (keeps newlines intact for now)
    text = re.sub(r'[^\S\n]+', ' ', text)

    # Collapse explicit multiple newlines to max 2 (paragraph separation)
    text = re.sub(r'\n{3,}', '\n\n', text)

    return text.strip()


def normalize_for_embedding(text: str) -> str:
    """
    Flatten a chunk for the embedding call and the fulltext projection:
    newlines become spaces, runs of whitespace collapse, ends are trimmed.
    """
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text.replace("\n", " ")).strip()
