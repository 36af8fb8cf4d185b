from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import event, text
from procurement.config import settings
import structlog

logger = structlog.get_logger()


class Base(DeclarativeBase):
    pass


def _engine_options() -> dict:
    """Pool sizing only applies to server databases; SQLite uses its own pool."""
    if settings.is_sqlite:
        return {"echo": settings.DEBUG}
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": 30,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "pool_pre_ping": True,
        "echo": settings.DEBUG,
    }


def enable_sqlite_savepoints(async_engine: AsyncEngine) -> None:
    """Let pysqlite emit BEGIN itself so SAVEPOINT/ROLLBACK TO behave."""

    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


engine: AsyncEngine = create_async_engine(settings.DATABASE_URL, **_engine_options())
if settings.is_sqlite:
    enable_sqlite_savepoints(engine)

AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
        if settings.is_sqlite:
            # Local development: no migrations, build the schema directly
            import procurement.models  # noqa: F401

            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_connected", url=engine.url.render_as_string())


async def close_db():
    await engine.dispose()
    logger.info("database_disconnected")
