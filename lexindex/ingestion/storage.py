from typing import AsyncIterator, Iterable, List, Optional, Sequence, Set

from sqlalchemy import delete, func, insert, literal_column, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError

from lexindex.db.db_manager import DatabaseManager
from lexindex.exceptions import ResourceWriteError, StorageException
from lexindex.ingestion.embedder import validate_vector
from lexindex.ingestion.progress_cache import ProgressCache
from lexindex.ingestion.text_normalizer import normalize_for_embedding
from lexindex.logging_config import get_logger
from lexindex.models.resource import Embedding, Resource
from lexindex.observability import Phase, track
from lexindex.schemas.chunks import ChunkData

log = get_logger(__name__)

KEY_LOOKUP_BATCH_SIZE = 500


class ResourceWriter:
    """
    Transactional, idempotent persistence of resources + embeddings.

    The progress cache is marked only after the transaction commits, and
    outside it: the cache may lag the durable store, never lead it.
    """

    def __init__(self, db: DatabaseManager, cache: ProgressCache, model_name: str, dimension: int):
        self.db = db
        self.cache = cache
        self.model_name = model_name
        self.dimension = dimension

    async def existing_keys(self, keys: Iterable[str], batch_size: int = KEY_LOOKUP_BATCH_SIZE) -> Set[str]:
        """Which of ``keys`` already have a resource row."""
        keys = list(dict.fromkeys(keys))
        found: Set[str] = set()
        if not keys:
            return found
        try:
            async with self.db.get_session() as session:
                for start in range(0, len(keys), batch_size):
                    group = keys[start:start + batch_size]
                    result = await session.execute(
                        select(Resource.resource_key).where(Resource.resource_key.in_(group))
                    )
                    found.update(result.scalars().all())
        except SQLAlchemyError as e:
            raise StorageException(f"Database error checking existing keys: {e}") from e
        return found

    async def precheck(self, chunks: Sequence[ChunkData]) -> Set[str]:
        """
        Keys in this batch that already exist durably.

        They are marked in the cache straight away so a re-run of completed
        work pays for neither the embedding call nor the lookup again.
        """
        existing = await self.existing_keys(c.resource_key for c in chunks)
        if existing:
            self.cache.mark_many(existing)
            log.info("precheck_existing_found", existing=len(existing), total=len(chunks))
        return existing

    @track(name="write_resources", phase=Phase.STORAGE)
    async def write_batch(self, chunks: Sequence[ChunkData], vectors: Sequence[List[float]]) -> int:
        """
        Upsert resources and replace their embeddings in one transaction.

        Raises:
            InvalidEmbeddingError: If any vector is malformed (nothing is written)
            ResourceWriteError: If the transaction fails
        """
        if len(chunks) != len(vectors):
            raise ResourceWriteError(f"{len(chunks)} chunks but {len(vectors)} vectors")
        if not chunks:
            return 0
        for vector in vectors:
            validate_vector(vector, self.dimension)

        contents = [normalize_for_embedding(c.content) for c in chunks]
        resource_rows = [
            {
                "resource_key": c.resource_key,
                "content": contents[i],
                "metadata": {**c.metadata.to_json(), "embedding_model_version": self.model_name},
                "language": c.language,
                "source_type": c.source_type,
                "paired_resource_key": c.paired_resource_key,
                "embedding_model_version": self.model_name,
            }
            for i, c in enumerate(chunks)
        ]

        upsert = pg_insert(Resource.__table__).values(resource_rows)
        upsert = upsert.on_conflict_do_update(
            index_elements=[Resource.__table__.c.resource_key],
            set_={"updated_at": func.now()},
        ).returning(Resource.__table__.c.id, Resource.__table__.c.resource_key)

        try:
            async with self.db.get_session() as session:
                result = await session.execute(upsert)
                # RETURNING order is not guaranteed: map ids by key
                ids_by_key = {row.resource_key: row.id for row in result}
                missing = [c.resource_key for c in chunks if c.resource_key not in ids_by_key]
                if missing:
                    raise ResourceWriteError(f"Upsert returned no id for {len(missing)} keys, e.g. {missing[0]}")

                # Never update embeddings in place: delete then reinsert
                await session.execute(
                    delete(Embedding).where(Embedding.resource_id.in_(list(ids_by_key.values())))
                )
                await session.execute(
                    insert(Embedding.__table__).values([
                        {
                            "resource_id": ids_by_key[c.resource_key],
                            "content": contents[i],
                            "embedding": vectors[i],
                            "tsv": func.to_tsvector(literal_column("'simple'::regconfig"), contents[i]),
                            "chunk_index": c.chunk_index,
                            "total_chunks": c.total_chunks,
                            "embedding_model": self.model_name,
                        }
                        for i, c in enumerate(chunks)
                    ])
                )
        except SQLAlchemyError as e:
            log.error("resource_batch_write_failed", chunks=len(chunks), error=str(e))
            raise ResourceWriteError(f"Database error: {e}") from e

        # Committed: now (and only now) the cache may claim these keys
        self.cache.mark_many(c.resource_key for c in chunks)
        return len(chunks)

    async def count_by_source_type(self, source_type: str) -> int:
        query = select(func.count()).select_from(Resource).where(Resource.source_type == source_type)
        async with self.db.get_session() as session:
            return (await session.execute(query)).scalar_one()

    async def iter_resource_keys(
        self, source_type: Optional[str] = None, page_size: int = 10_000
    ) -> AsyncIterator[List[str]]:
        """Yield pages of resource keys in id order, for rebuilding the cache."""
        cursor = 0
        while True:
            query = select(Resource.id, Resource.resource_key).where(Resource.id > cursor)
            if source_type:
                query = query.where(Resource.source_type == source_type)
            query = query.order_by(Resource.id).limit(page_size)
            async with self.db.get_session() as session:
                rows = (await session.execute(query)).all()
            if not rows:
                return
            yield [row.resource_key for row in rows]
            cursor = rows[-1].id
            if len(rows) < page_size:
                return
