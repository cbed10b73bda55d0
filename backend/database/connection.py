from typing import Optional
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool
from dotenv import load_dotenv
from pathlib import Path
import logging

from config import get_settings

logger = logging.getLogger(__name__)

# Load environment variables
ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    PostgreSQL gets a pooled engine with SSL. SQLite (local tooling and tests)
    gets real BEGIN/SAVEPOINT handling so nested transactions behave like
    they do on PostgreSQL.
    """
    if database_url.startswith("sqlite"):
        in_memory = database_url.rstrip("/").endswith(("sqlite+aiosqlite:", ":memory:"))
        engine = create_async_engine(
            database_url,
            echo=echo,
            poolclass=StaticPool if in_memory else None,
            connect_args={"check_same_thread": False},
        )

        @event.listens_for(engine.sync_engine, "connect")
        def _disable_driver_transactions(dbapi_connection, connection_record):
            # let SQLAlchemy emit BEGIN itself
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN")

        return engine

    connect_args = {}
    settings = get_settings()
    if settings.POSTGRES_SSLMODE and "ssl=" not in database_url:
        connect_args["ssl"] = settings.POSTGRES_SSLMODE

    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        connect_args=connect_args,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def get_engine() -> AsyncEngine:
    """Lazily create the process-wide engine from settings."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(settings.get_database_url(), echo=settings.DATABASE_ECHO)
    return _engine


def get_session_factory() -> async_sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


async def get_db():
    """Dependency to get database session"""
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(create_tables: bool = False):
    """Verify the database connection and (optionally) create missing tables"""
    # Register every model with Base.metadata
    import identity.models  # noqa: F401
    import database.pipeline_models  # noqa: F401
    import database.source_models  # noqa: F401

    engine = get_engine()
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            logger.info("Database connection successful")

            if create_tables:
                await conn.run_sync(Base.metadata.create_all)
                logger.info(f"Ensured tables: {sorted(Base.metadata.tables)}")

            return True
    except Exception as e:
        logger.error(f"Database initialization error: {e}")
        raise


async def dispose_engine():
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
