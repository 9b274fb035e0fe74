"""
Async database access: SQLAlchemy 2.0 engine and sessions over aiosqlite.

One engine per process, created lazily from ``Settings.database_url``.
With ``sqlite+aiosqlite:///:memory:`` the StaticPool keeps the single
in-memory database alive until ``close_db`` disposes the engine, which is
what the test suite relies on for a fresh database per test.
"""

from collections.abc import AsyncGenerator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from schemaforge.core.config import get_settings
from schemaforge.utils.logging import get_logger

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None

# Anything usable as ``async with factory() as session`` (``get_session`` in the app)
SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def _redact(url: str) -> str:
    return url.split("///")[0] + "///***"


def get_engine() -> AsyncEngine:
    """
    Return the process-wide async engine, creating it on first use.

    SQLite gets a StaticPool (one shared connection) and per-connection
    pragmas: WAL journal, enforced foreign keys (autosave rows cascade
    with their project), NORMAL sync.
    """
    global _engine

    if _engine is not None:
        return _engine

    settings = get_settings()
    is_sqlite = settings.database_url.startswith("sqlite")

    if is_sqlite:
        _engine = create_async_engine(
            settings.database_url,
            echo=settings.debug,
            connect_args={"check_same_thread": False, "timeout": 30},
            poolclass=StaticPool,
        )

        @event.listens_for(_engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_conn, connection_record) -> None:  # noqa: ANN001
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

    else:
        _engine = create_async_engine(
            settings.database_url,
            echo=settings.debug,
            pool_pre_ping=True,
        )

    logger.info("Database engine created", url=_redact(settings.database_url))
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory

    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Unit of work: commit when the block succeeds, roll back when it raises.

    Example:
        >>> async with get_session() as session:
        ...     project = await ProjectRepository.get(session, project_id, owner_id)
    """
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db() -> None:
    """Create missing tables. Idempotent; called from the API lifespan and the CLI."""
    from schemaforge.database.models import Base

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database initialized", tables=sorted(Base.metadata.tables))


async def close_db() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _session_factory

    if _engine is None:
        return

    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("Database connections closed")
