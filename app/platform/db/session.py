from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import sessionmaker

from app.platform.config import settings


def _pool_options(url: str) -> dict:
    # SQLite picks its own pool class; sizing args are only valid for server databases
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_recycle": 1800,
        "pool_size": 20,
        "max_overflow": 30,  # (burst capacity)
        "pool_timeout": 30,
    }


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    future=True,
    pool_pre_ping=True,
    **_pool_options(settings.DATABASE_URL),
)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False, autocommit=False)


async def get_db():
    async with SessionLocal() as session:
        yield session


# Celery workers run blocking code, so they get their own sync engine.
# Created lazily so importing this module from the API never opens it.
_sync_engine = None
_sync_session_factory = None


def get_sync_engine():
    global _sync_engine, _sync_session_factory

    if _sync_engine is None:
        db_url = settings.SYNC_DATABASE_URL
        _sync_engine = create_engine(db_url, pool_pre_ping=True, **_pool_options(db_url))
        _sync_session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_sync_engine)

    return _sync_engine


def get_sync_db():
    """Get a database session for Celery tasks."""
    get_sync_engine()
    return _sync_session_factory()
