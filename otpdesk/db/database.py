from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from otpdesk.config import settings
from otpdesk.db.outbox import discard_pending, send_pending


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


engine = create_async_engine(settings.database_url, echo=settings.debug)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db():
    """Create tables that do not exist yet (migrations handle the rest)."""
    # Import models so they register with the metadata
    import otpdesk.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db():
    """Request-scoped session: commit on success, roll back on error.

    Ledger pushes queued during the request go out only after the commit.
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            discard_pending(session)
            await session.rollback()
            raise
        await send_pending(session)
