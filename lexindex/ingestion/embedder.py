import asyncio
import math
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional, Sequence

from langchain_core.embeddings import Embeddings

from lexindex.config import EmbeddingProvider, EmbeddingSettings, get_settings
from lexindex.exceptions import EmbeddingError, InvalidEmbeddingError
from lexindex.ingestion.retry import RetryPolicy, with_retry
from lexindex.ingestion.text_normalizer import normalize_for_embedding
from lexindex.logging_config import get_logger
from lexindex.observability import Phase, track
from lexindex.schemas.chunks import ChunkData
from lexindex.schemas.reports import ProcessError

log = get_logger(__name__)

OVERSIZE_LOG_LIMIT = 3
PROGRESS_LOG_EVERY = 5


@lru_cache
def get_embedder() -> Embeddings:
    """
    Factory to return the configured embedding model.
    Cached to avoid re-initializing heavy models.
    """
    full_settings = get_settings()
    settings = full_settings.embedding
    timeout = full_settings.timeout.embedding_seconds

    try:
        if settings.provider == EmbeddingProvider.COHERE:
            # Lazy imports to avoid hard dependencies on unused providers
            from langchain_cohere import CohereEmbeddings
            log.info("embedder_initialized", provider=settings.provider.value, model=settings.model)
            return CohereEmbeddings(
                model=settings.model,
                cohere_api_key=settings.api_key,
                request_timeout=timeout,
            )

        elif settings.provider == EmbeddingProvider.OPENAI:
            from langchain_openai import OpenAIEmbeddings
            log.info("embedder_initialized", provider=settings.provider.value, model=settings.model)
            return OpenAIEmbeddings(
                model=settings.model,
                api_key=settings.api_key,
                dimensions=settings.dimension,
                request_timeout=timeout
            )

        elif settings.provider == EmbeddingProvider.HUGGINGFACE:
            from langchain_huggingface import HuggingFaceEmbeddings
            log.info("embedder_initialized", provider=settings.provider.value, model=settings.model)
            return HuggingFaceEmbeddings(model_name=settings.model)

        else:
            raise EmbeddingError(f"Unsupported embedding provider: {settings.provider.value}")

    except ImportError as e:
        log.error("embedder_import_failed", provider=settings.provider.value, error=str(e))
        raise EmbeddingError(f"Missing dependency for {settings.provider.value}: {e}")
    except EmbeddingError:
        raise
    except Exception as e:
        log.error("embedder_init_failed", provider=settings.provider.value, error=str(e))
        raise EmbeddingError(f"Failed to initialize embedder: {e}")


@dataclass
class SizeFilterResult:
    valid: List[ChunkData] = field(default_factory=list)
    oversized: List[ChunkData] = field(default_factory=list)
    max_length: int = 0
    errors: List[ProcessError] = field(default_factory=list)


def filter_oversized(chunks: Sequence[ChunkData], max_chars: int, chars_per_token: int = 4) -> SizeFilterResult:
    """
    Drop chunks longer than the character budget before any API call.

    The backend would silently truncate them and embed a degraded vector,
    so they are logged by identity instead. A chunk exactly at the budget
    is kept.
    """
    result = SizeFilterResult()
    for chunk in chunks:
        length = len(normalize_for_embedding(chunk.content))
        result.max_length = max(result.max_length, length)
        if length <= max_chars:
            result.valid.append(chunk)
            continue

        result.oversized.append(chunk)
        result.errors.append(ProcessError(
            item_type=chunk.source_type,
            item_id=chunk.resource_key,
            message=f"Oversized chunk: {length} chars (max {max_chars})",
            retryable=False,
        ))
        if len(result.oversized) <= OVERSIZE_LOG_LIMIT:
            log.warning(
                "oversized_chunk_skipped",
                resource_key=chunk.resource_key,
                chars=length,
                estimated_tokens=math.ceil(length / chars_per_token),
            )

    if result.oversized:
        log.warning(
            "oversized_chunks_filtered",
            filtered=len(result.oversized),
            total=len(chunks),
            max_chars=max_chars,
            largest=result.max_length,
            not_shown=max(0, len(result.oversized) - OVERSIZE_LOG_LIMIT),
        )
    return result


def make_batches(chunks: Sequence[ChunkData], batch_size: int) -> List[List[ChunkData]]:
    return [list(chunks[i:i + batch_size]) for i in range(0, len(chunks), batch_size)]


def validate_vector(vector, dimension: int) -> None:
    """
    Raises:
        InvalidEmbeddingError: If the vector is not a list of ``dimension`` finite numbers
    """
    if not isinstance(vector, (list, tuple)):
        raise InvalidEmbeddingError(f"Expected a list, got {type(vector).__name__}")
    if len(vector) != dimension:
        raise InvalidEmbeddingError(f"Expected {dimension}-dimensional vector, got {len(vector)}")
    for value in vector:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise InvalidEmbeddingError(f"Vector contains a non-finite or non-numeric value: {value!r}")


@dataclass
class BatchOutcome:
    batch: List[ChunkData]
    vectors: Optional[List[List[float]]] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class EmbeddingBatcher:
    """
    Embeds batches under a fixed concurrency limit with per-batch retry.

    The work is network-bound, so a semaphore rather than a process pool.
    """

    def __init__(
        self,
        embedder: Embeddings,
        settings: EmbeddingSettings,
        policy: RetryPolicy,
        sleep=asyncio.sleep,
    ):
        self.embedder = embedder
        self.settings = settings
        self.policy = policy
        self.sleep = sleep

    @track(name="embed_documents", phase=Phase.EMBEDDING)
    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        vectors = await self.embedder.aembed_documents(texts)
        if len(vectors) != len(texts):
            raise EmbeddingError(f"Backend returned {len(vectors)} vectors for {len(texts)} texts")
        return vectors

    async def embed_batches(self, batches: List[List[ChunkData]], label: str = "") -> List[BatchOutcome]:
        """
        Embed every batch; results come back in submission order.

        A batch that exhausts its retries is returned with ``error`` set
        rather than raised, so the caller can persist the batches before it.
        """
        if not batches:
            return []

        semaphore = asyncio.Semaphore(self.settings.concurrency)
        total = len(batches)
        completed = 0

        async def run(index: int, batch: List[ChunkData]) -> BatchOutcome:
            nonlocal completed
            texts = [normalize_for_embedding(c.content) for c in batch]
            async with semaphore:
                try:
                    vectors = await with_retry(
                        lambda: self.embed_texts(texts),
                        self.policy,
                        sleep=self.sleep,
                        label=f"{label} batch {index + 1}/{total}",
                    )
                    outcome = BatchOutcome(batch=batch, vectors=vectors)
                except EmbeddingError as e:
                    outcome = BatchOutcome(batch=batch, error=e)
            # Batches finish out of order: report completions, not indices
            completed += 1
            if completed == 1 or completed == total or completed % PROGRESS_LOG_EVERY == 0:
                log.info("embedding_progress", label=label, completed=completed, total=total)
            return outcome

        log.info(
            "embedding_batches_started",
            label=label,
            chunks=sum(len(b) for b in batches),
            batches=total,
            concurrency=self.settings.concurrency,
        )
        return list(await asyncio.gather(*(run(i, b) for i, b in enumerate(batches))))
