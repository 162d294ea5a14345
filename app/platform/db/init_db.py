from sqlalchemy.ext.asyncio import AsyncEngine

from app.platform.db.base import Base

# Register every model on Base.metadata before create_all runs
from app.features.auth.models.user import User  # noqa: F401
from app.features.scan.models.url_scan import UrlScan  # noqa: F401


async def init_models(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def init_models_sync(engine) -> None:
    Base.metadata.create_all(bind=engine)
