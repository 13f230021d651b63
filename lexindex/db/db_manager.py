import contextlib
from typing import AsyncIterator
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.exc import OperationalError
from sqlalchemy.sql import text
from lexindex.config import get_settings
from lexindex.exceptions import DatabaseConnectionError
from lexindex.logging_config import get_logger
from lexindex.models.base import Base
# Import models so they are registered with Base metadata
from lexindex.models.resource import Resource, Embedding
from lexindex.models.defined_term import DefinedTerm
from lexindex.models.legislation import Act, Regulation, Section
from lexindex.models.parliament import ParliamentSession, Bill, HansardStatement

log = get_logger(__name__)


def to_async_url(url: str) -> str:
    """Ensure we use the async psycopg driver."""
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url.replace("postgresql://", "postgresql+psycopg://", 1)


class DatabaseManager:
    def __init__(self, database_url: str = None):
        self.settings = get_settings()
        url = to_async_url(database_url or self.settings.database_url)
        statement_timeout_ms = int(self.settings.timeout.db_seconds * 1000)

        self.engine = create_async_engine(
            url,
            echo=False,
            pool_size=5,
            max_overflow=10,
            connect_args={"options": f"-c statement_timeout={statement_timeout_ms}"},
        )
        self.session_factory = async_sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
            autoflush=False
        )

    async def init_db(self):
        """Initialize database: create extension and tables."""
        async with self.engine.begin() as conn:
            # 1. Enable pgvector extension
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            # 2. Create all tables defined in Base
            await conn.run_sync(Base.metadata.create_all)

    async def check_connection(self):
        """Fail fast before any work if the durable store is unreachable."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (OperationalError, OSError) as e:
            log.error("database_connection_failed", error=str(e))
            raise DatabaseConnectionError(f"Cannot connect to database: {e}") from e

    async def truncate_resources(self):
        """Bulk reset: drop every resource and embedding row."""
        async with self.engine.begin() as conn:
            await conn.execute(text(
                f"TRUNCATE TABLE {Embedding.__tablename__}, {Resource.__tablename__} RESTART IDENTITY"
            ))
        log.warning("resources_truncated")

    @contextlib.asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional scope around a series of operations."""
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def dispose(self):
        await self.engine.dispose()

# Global instance
db_manager = DatabaseManager()
