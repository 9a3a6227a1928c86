from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from core.environment import get_database_url


DATABASE_URL = get_database_url()

engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    future=True,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)
Base = declarative_base()


def utcnow() -> datetime:
    """Timestamp default for every created_at/updated_at column (always UTC)."""
    return datetime.now(timezone.utc)


async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def unit_of_work(db: AsyncSession):
    """
    Commits the session when the block exits cleanly, rolls back otherwise.

    Every multi-row business write (finalize a trip, create a reservation,
    confirm a revision) runs inside one of these so a failure never leaves
    partial state behind.

    Note: a rollback expires every instance loaded by the session. Callers
    that keep using ORM objects after a failed unit must reload them.
    """
    try:
        yield db
        await db.commit()
    except BaseException:
        await db.rollback()
        raise
