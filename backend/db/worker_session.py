"""Worker-safe database session factory for Celery tasks.

Creates a fresh async engine per scheduler run to avoid the 'Future
attached to a different loop' error when asyncpg connections are shared
across event loops in forked Celery workers.
"""

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import get_settings


@asynccontextmanager
async def worker_session_factory():
    """Yield a session factory bound to a short-lived engine.

    The scheduler loop opens one session per unit of work (claim, job,
    campaign), so it needs the factory rather than a single session.

    Usage:
        async with worker_session_factory() as session_factory:
            await run_scheduler_once(session_factory)
    """
    settings = get_settings()
    kwargs = dict(echo=False)
    if not settings.DATABASE_URL.startswith("sqlite"):
        kwargs.update(pool_size=5, max_overflow=5, pool_recycle=300)
    engine = create_async_engine(settings.DATABASE_URL, **kwargs)
    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False,
    )
    try:
        yield session_factory
    finally:
        await engine.dispose()
