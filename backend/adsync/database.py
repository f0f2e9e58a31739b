import ssl

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from adsync.config import get_settings

settings = get_settings()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(db_url: str, pool_size: int = 10, max_overflow: int = 5, echo: bool = False,
                 use_ssl: bool = False) -> AsyncEngine:
    """Create the process-wide engine (one bounded pool per process)."""
    if db_url.startswith("sqlite"):
        engine = create_async_engine(db_url, echo=echo, connect_args={"check_same_thread": False})
        # SQLite only enforces ON DELETE CASCADE with this pragma
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    # Managed Postgres requires SSL; asyncpg needs an ssl.SSLContext
    connect_args = {}
    if use_ssl and "localhost" not in db_url and "127.0.0.1" not in db_url:
        ssl_ctx = ssl.create_default_context()
        ssl_ctx.check_hostname = False
        ssl_ctx.verify_mode = ssl.CERT_NONE
        connect_args["ssl"] = ssl_ctx

    return create_async_engine(
        db_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


engine = build_engine(
    settings.async_database_url,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    echo=settings.db_echo,
    use_ssl=settings.db_ssl,
)

async_session = build_session_factory(engine)


class Base(DeclarativeBase):
    pass


async def init_db(db_engine: AsyncEngine | None = None) -> None:
    """Create all tables if they do not exist. Safe to run on every startup."""
    import adsync.models  # noqa: F401  register models on Base.metadata

    async with (db_engine or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

