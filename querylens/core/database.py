from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from querylens.core.config import settings


def enable_sqlite_foreign_keys(target: AsyncEngine) -> None:
    # SQLite ignores ON DELETE CASCADE unless every connection turns foreign keys on
    if target.dialect.name != "sqlite":
        return

    @event.listens_for(target.sync_engine, "connect")
    def set_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)
enable_sqlite_foreign_keys(engine)

# Keep loaded attributes usable after commit, the repositories hand records back to the routers
AsyncSessionLocal = async_sessionmaker(
    bind=engine, class_=AsyncSession, expire_on_commit=False
)


# Session per request for the repositories
async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


# Connection profiles and schema descriptors are registered on this Base
class Base(DeclarativeBase):
    pass
