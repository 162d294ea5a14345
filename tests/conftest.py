"""
Test configuration and fixtures for the URL Scanner API.

Every test gets fresh SQLite databases under tmp_path: a sync one for the
worker/store side and an aiosqlite one for the API side.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Generator

from dotenv import load_dotenv

load_dotenv()

# Settings are read at import time, so the environment has to be ready first
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{tempfile.mktemp(suffix='.db')}"
os.environ["FORCE_IN_MEMORY_METRICS"] = "true"
os.environ["URLSCAN_API_KEY"] = "test-api-key"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool

from app.features.auth.models.user import User
from app.features.scan.models.url_scan import ScanStatus, UrlScan
from app.main import app
from app.platform.db.init_db import init_models, init_models_sync
from app.platform.db.session import get_db
from app.platform.metrics import ScanMetrics


def utc(minutes_ago: int = 0) -> datetime:
    return datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)


def make_scan(
    db,
    *,
    user_id: str,
    url: str = "https://example.com",
    status: ScanStatus = ScanStatus.submitted,
    minutes_ago: int = 0,
    external_scan_id: str = None,
    result: str = None,
) -> UrlScan:
    """Insert a scan row directly (bypasses the state machine, like a fixture loader would)."""
    created = utc(minutes_ago)
    if external_scan_id is None and status in (ScanStatus.processing, ScanStatus.done):
        external_scan_id = f"ext-{user_id}-{minutes_ago}"
    if result is None and status == ScanStatus.done:
        result = '{"verdicts": {"overall": {"malicious": false}}}'
    scan = UrlScan(
        url=url,
        user_id=user_id,
        status=status,
        external_scan_id=external_scan_id,
        result=result,
        created_at=created,
        updated_at=created,
    )
    db.add(scan)
    return scan


@pytest.fixture
def sync_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'worker.db'}")
    init_models_sync(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(sync_engine):
    return sessionmaker(bind=sync_engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
async def async_session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    await init_models(engine)
    yield async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest.fixture
async def async_db(async_session_factory):
    async with async_session_factory() as session:
        yield session


@pytest.fixture
def metrics() -> ScanMetrics:
    return ScanMetrics(in_memory=True)


@pytest.fixture
def alice() -> User:
    return User(id="user-alice", email="alice@example.com", username="alice", password_hash="x")


@pytest.fixture
def bob() -> User:
    return User(id="user-bob", email="bob@example.com", username="bob", password_hash="x")


@pytest.fixture
def scan_factory():
    """Gives tests the make_scan helper without importing conftest."""
    return make_scan


@pytest.fixture
def routes_db(tmp_path):
    """Schema-ready SQLite file shared by the API client and direct seeding."""
    db_path = tmp_path / "routes.db"
    engine = create_engine(f"sqlite:///{db_path}")
    init_models_sync(engine)
    engine.dispose()
    return db_path


@pytest.fixture
def seed_session(routes_db) -> Generator[Session, None, None]:
    engine = create_engine(f"sqlite:///{routes_db}")
    session = sessionmaker(bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def client(routes_db) -> Generator[TestClient, None, None]:
    """
    TestClient with get_db pointed at a per-test SQLite file.

    NullPool makes every request open its connection on the TestClient's own
    event loop instead of reusing one bound to another loop.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{routes_db}", poolclass=NullPool)
    factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)

    async def override_get_db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
