"""
Submission-time dedup and global cache behaviour.
"""
import pytest
from sqlalchemy import func, select

from app.features.scan.models.url_scan import ScanStatus, UrlScan
from app.features.scan.services.resolver.scan_resolver import ScanResolver
from app.features.scan.services.store.scan_store import AsyncScanStore

URL = "https://example.com"


@pytest.fixture
def resolver(async_db, metrics):
    return ScanResolver(AsyncScanStore(async_db), metrics=metrics, cache_ttl_hours=24)


async def _row_count(db) -> int:
    return (await db.execute(select(func.count()).select_from(UrlScan))).scalar_one()


async def test_new_url_creates_submitted_scan(resolver, async_db, metrics):
    scan = await resolver.create_scan(URL, "alice")

    assert scan.id
    assert scan.status == ScanStatus.submitted
    assert scan.user_id == "alice"
    assert await _row_count(async_db) == 1
    assert metrics.snapshot() == {"scans.submitted{type=new}": 1}


async def test_repeat_submission_returns_same_scan(resolver, async_db, metrics):
    first = await resolver.create_scan(URL, "alice")
    second = await resolver.create_scan(URL, "alice")

    assert second.id == first.id
    assert await _row_count(async_db) == 1
    assert metrics.snapshot()["scans.cache.hit{type=user}"] == 1


async def test_owner_dedup_includes_failed_scans(resolver, async_db, scan_factory):
    failed = scan_factory(async_db, user_id="alice", status=ScanStatus.failed, minutes_ago=30)
    await async_db.commit()

    scan = await resolver.create_scan(URL, "alice")

    assert scan.id == failed.id
    assert scan.status == ScanStatus.failed


async def test_owner_dedup_matches_url_exactly(resolver, async_db, scan_factory):
    scan_factory(async_db, user_id="alice", url="https://example.com/", minutes_ago=5)
    await async_db.commit()

    scan = await resolver.create_scan(URL, "alice")

    assert scan.url == URL
    assert await _row_count(async_db) == 2


async def test_global_cache_copies_done_result(resolver, async_db, scan_factory, metrics):
    source = scan_factory(
        async_db,
        user_id="bob",
        status=ScanStatus.done,
        external_scan_id="ext-bob",
        result='{"verdict": "clean"}',
        minutes_ago=60,
    )
    await async_db.commit()

    scan = await resolver.create_scan(URL, "alice")

    assert scan.id != source.id
    assert scan.user_id == "alice"
    assert scan.status == ScanStatus.done
    assert scan.result == '{"verdict": "clean"}'
    assert scan.external_scan_id == "ext-bob"
    assert metrics.snapshot() == {"scans.cache.hit{type=global}": 1}


async def test_unfinished_scan_of_another_owner_is_not_shared(resolver, async_db, scan_factory):
    scan_factory(async_db, user_id="bob", status=ScanStatus.processing, minutes_ago=10)
    scan_factory(async_db, user_id="carol", status=ScanStatus.failed, minutes_ago=10)
    await async_db.commit()

    scan = await resolver.create_scan(URL, "alice")

    assert scan.status == ScanStatus.submitted
    assert await _row_count(async_db) == 3


async def test_expired_scans_are_ignored(resolver, async_db, scan_factory, metrics):
    scan_factory(async_db, user_id="alice", minutes_ago=24 * 60 + 5)
    scan_factory(async_db, user_id="bob", status=ScanStatus.done, minutes_ago=24 * 60 + 5)
    await async_db.commit()

    scan = await resolver.create_scan(URL, "alice")

    assert scan.status == ScanStatus.submitted
    assert metrics.snapshot() == {"scans.submitted{type=new}": 1}


async def test_scans_inside_window_are_reused(resolver, async_db, scan_factory):
    old_but_fresh = scan_factory(async_db, user_id="alice", minutes_ago=24 * 60 - 5)
    await async_db.commit()

    scan = await resolver.create_scan(URL, "alice")

    assert scan.id == old_but_fresh.id
