import logging

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import event, text

from donor_dispatch.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# SQLite production optimizations
SQLITE_PRAGMAS = [
    ("journal_mode", "WAL"),          # Write-Ahead Logging - concurrent reads during writes
    ("synchronous", "NORMAL"),         # Balance of safety and speed (FULL for max safety)
    ("cache_size", "-64000"),          # 64MB cache (negative = KB)
    ("busy_timeout", "30000"),         # Wait 30s on lock (handles burst traffic)
    ("foreign_keys", "ON"),            # Enforce referential integrity
    ("temp_store", "MEMORY"),          # Store temp tables in memory
]


def set_sqlite_pragmas(dbapi_conn, connection_record):
    """Set SQLite pragmas for production performance"""
    cursor = dbapi_conn.cursor()
    for pragma, value in SQLITE_PRAGMAS:
        cursor.execute(f"PRAGMA {pragma}={value};")
    cursor.close()


# Note: Pool settings don't apply to SQLite in-memory databases
_is_sqlite_memory = ":memory:" in settings.database_url or "mode=memory" in settings.database_url

if _is_sqlite_memory:
    # In-memory SQLite (testing) - use StaticPool
    from sqlalchemy.pool import StaticPool
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
elif "sqlite" in settings.database_url:
    engine = create_async_engine(settings.database_url, echo=settings.debug)
else:
    # Server database - use connection pooling
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=20,
        max_overflow=30,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
    )

# Apply SQLite pragmas on every connection (skip for in-memory test databases)
if "sqlite" in settings.database_url and not _is_sqlite_memory:
    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        set_sqlite_pragmas(dbapi_conn, connection_record)


async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """Initialize database and create tables"""
    # Import models so their tables are registered on Base.metadata
    import donor_dispatch.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if "sqlite" in settings.database_url and not _is_sqlite_memory:
        async with async_session_maker() as session:
            result = await session.execute(text("PRAGMA journal_mode;"))
            logger.info(f"SQLite journal mode: {result.scalar()}")
