"""
Scan Store: persistence and claim primitives for UrlScan rows.

Two front-ends share the same queries:
- ScanStore (sync Session) is used by the Celery worker passes and owns the
  claim operations.
- AsyncScanStore (AsyncSession) is used by the API for submission, listing
  and deletion.

Claims come in two flavours, picked from the bound database:
- skip_locked: SELECT ... FOR UPDATE SKIP LOCKED inside the pass
  transaction. Rows locked by another worker are left out, never waited on.
- lease: for engines without row locks (SQLite). A conditional UPDATE stamps
  a claim_token on rows that are unclaimed (or whose lease expired) and is
  committed straight away; only rows carrying our token are returned. The
  tokens are cleared again by release_claims() at the end of the pass.
  Writes to a leased row only land while the row still carries our token;
  save() raises ClaimLost otherwise, so an expired lease never overwrites
  the worker that reclaimed the row.
"""
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from app.features.scan.exceptions import ClaimLost
from app.features.scan.models.url_scan import ScanStatus, UrlScan
from app.platform.db.base import new_id, utcnow
from app.platform.logger import get_logger

logger = get_logger("scan_store")

SKIP_LOCKED_DIALECTS = {"postgresql", "mysql", "mariadb", "oracle"}


# ─────────────────────────────────────────────────────────────
# Shared statements
# ─────────────────────────────────────────────────────────────

def _owner_url_since_stmt(user_id: str, url: str, since: datetime):
    return (
        select(UrlScan)
        .where(
            UrlScan.user_id == user_id,
            UrlScan.url == url,
            UrlScan.created_at >= since,
        )
        .order_by(UrlScan.created_at.desc(), UrlScan.id.desc())
        .limit(1)
    )


def _global_cached_since_stmt(url: str, since: datetime):
    return (
        select(UrlScan)
        .where(
            UrlScan.url == url,
            UrlScan.status == ScanStatus.done,
            UrlScan.created_at >= since,
        )
        .order_by(UrlScan.created_at.desc(), UrlScan.id.desc())
        .limit(1)
    )


def _count_by_status_stmt(status: ScanStatus):
    return select(func.count(UrlScan.id)).where(UrlScan.status == status)


# ─────────────────────────────────────────────────────────────
# Worker side (sync)
# ─────────────────────────────────────────────────────────────

class ScanStore:
    def __init__(self, db: Session, claim_strategy: str = "auto", lease_seconds: int = 1200):
        self.db = db
        self.lease_seconds = lease_seconds
        self.claim_strategy = self._resolve_strategy(claim_strategy)
        self._claim_tokens: List[str] = []
        # scan id -> lease token, for rows claimed by this store
        self._leased: Dict[str, str] = {}

    def _resolve_strategy(self, claim_strategy: str) -> str:
        if claim_strategy != "auto":
            return claim_strategy
        dialect = self.db.get_bind().dialect.name
        return "skip_locked" if dialect in SKIP_LOCKED_DIALECTS else "lease"

    def save(self, scan: UrlScan) -> UrlScan:
        """Insert or update. id is assigned on first flush; updated_at is always bumped."""
        scan.updated_at = utcnow()

        token = self._leased.get(scan.id) if scan.id else None
        if token is None:
            self.db.add(scan)
            self.db.flush()
            return scan

        return self._save_leased(scan, token)

    def _save_leased(self, scan: UrlScan, token: str) -> UrlScan:
        scan_id = scan.id
        # no_autoflush: the dirty object must not reach the table ahead of the guarded UPDATE
        with self.db.no_autoflush:
            result = self.db.execute(
                update(UrlScan)
                .where(UrlScan.id == scan_id, UrlScan.claim_token == token)
                .values(
                    status=scan.status,
                    external_scan_id=scan.external_scan_id,
                    result=scan.result,
                    failure_reason=scan.failure_reason,
                    updated_at=scan.updated_at,
                )
                .execution_options(synchronize_session=False)
            )

        updated = result.rowcount
        # The row is either written or not ours; in both cases the in-memory
        # changes must not be flushed later.
        self.db.expire(scan)
        # Ownership is the token, not the transaction, so commit straight away
        self.db.commit()

        if updated == 0:
            self._leased.pop(scan_id, None)
            logger.warning(f"Lease on scan {scan_id} was lost; dropping this worker's update")
            raise ClaimLost(scan_id)
        return scan

    def find_by_owner_and_url_since(self, user_id: str, url: str, since: datetime) -> Optional[UrlScan]:
        return self.db.execute(_owner_url_since_stmt(user_id, url, since)).scalar_one_or_none()

    def find_global_cached_since(self, url: str, since: datetime) -> Optional[UrlScan]:
        return self.db.execute(_global_cached_since_stmt(url, since)).scalar_one_or_none()

    def find_by_external_scan_id(self, external_scan_id: str) -> Optional[UrlScan]:
        stmt = select(UrlScan).where(UrlScan.external_scan_id == external_scan_id).limit(1)
        return self.db.execute(stmt).scalar_one_or_none()

    def count_by_status(self, status: ScanStatus) -> int:
        return self.db.execute(_count_by_status_stmt(status)).scalar_one()

    def distinct_owners_with_status(self, status: ScanStatus) -> List[str]:
        """Owners with at least one scan in `status`, longest-waiting owner first."""
        stmt = (
            select(UrlScan.user_id)
            .where(UrlScan.status == status)
            .group_by(UrlScan.user_id)
            .order_by(func.min(UrlScan.created_at), UrlScan.user_id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def claim_batch_by_status(
        self,
        status: ScanStatus,
        limit: int,
        exclude_ids: Sequence[str] = (),
    ) -> List[UrlScan]:
        return self._claim([UrlScan.status == status], limit, exclude_ids)

    def claim_batch_by_owner_and_status(
        self,
        user_id: str,
        status: ScanStatus,
        limit: int,
        exclude_ids: Sequence[str] = (),
    ) -> List[UrlScan]:
        return self._claim([UrlScan.user_id == user_id, UrlScan.status == status], limit, exclude_ids)

    def _claim(self, filters: list, limit: int, exclude_ids: Sequence[str]) -> List[UrlScan]:
        if limit <= 0:
            return []

        if exclude_ids:
            filters = [*filters, UrlScan.id.notin_(list(exclude_ids))]

        if self.claim_strategy == "skip_locked":
            stmt = (
                select(UrlScan)
                .where(*filters)
                .order_by(UrlScan.created_at.asc(), UrlScan.id.asc())
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            return list(self.db.execute(stmt).scalars().all())

        return self._claim_with_lease(filters, limit)

    def _claim_with_lease(self, filters: list, limit: int) -> List[UrlScan]:
        now = utcnow()
        claimable = or_(
            UrlScan.claim_token.is_(None),
            UrlScan.claimed_at < now - timedelta(seconds=self.lease_seconds),
        )

        candidate_ids = list(
            self.db.execute(
                select(UrlScan.id)
                .where(*filters, claimable)
                .order_by(UrlScan.created_at.asc(), UrlScan.id.asc())
                .limit(limit)
            ).scalars().all()
        )
        if not candidate_ids:
            return []

        token = new_id()
        # Re-check the filters in the UPDATE: a row another worker stamped
        # since our SELECT simply isn't updated and isn't returned.
        result = self.db.execute(
            update(UrlScan)
            .where(UrlScan.id.in_(candidate_ids), *filters, claimable)
            .values(claim_token=token, claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        claimed = result.rowcount
        self.db.commit()

        if claimed == 0:
            return []

        self._claim_tokens.append(token)
        stmt = (
            select(UrlScan)
            .where(UrlScan.claim_token == token)
            .order_by(UrlScan.created_at.asc(), UrlScan.id.asc())
        )
        scans = list(self.db.execute(stmt).scalars().all())
        for scan in scans:
            self._leased[scan.id] = token
        return scans

    def release_claims(self) -> None:
        """Drop the leases taken by this store. Row locks go away with the transaction."""
        if not self._claim_tokens:
            return
        self.db.execute(
            update(UrlScan)
            .where(UrlScan.claim_token.in_(self._claim_tokens))
            .values(claim_token=None, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        self._claim_tokens = []
        self._leased = {}


# ─────────────────────────────────────────────────────────────
# API side (async)
# ─────────────────────────────────────────────────────────────

class AsyncScanStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def save(self, scan: UrlScan) -> UrlScan:
        scan.updated_at = utcnow()
        self.db.add(scan)
        await self.db.commit()
        await self.db.refresh(scan)
        return scan

    async def find_by_owner_and_url_since(self, user_id: str, url: str, since: datetime) -> Optional[UrlScan]:
        result = await self.db.execute(_owner_url_since_stmt(user_id, url, since))
        return result.scalar_one_or_none()

    async def find_global_cached_since(self, url: str, since: datetime) -> Optional[UrlScan]:
        result = await self.db.execute(_global_cached_since_stmt(url, since))
        return result.scalar_one_or_none()

    async def count_by_status(self, status: ScanStatus) -> int:
        result = await self.db.execute(_count_by_status_stmt(status))
        return result.scalar_one()

    async def list_for_owner(self, user_id: str, page: int = 1, size: int = 20) -> List[UrlScan]:
        stmt = (
            select(UrlScan)
            .where(UrlScan.user_id == user_id)
            .order_by(UrlScan.created_at.desc(), UrlScan.id.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_for_owner(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.count(UrlScan.id)).where(UrlScan.user_id == user_id)
        )
        return result.scalar_one()

    async def get_for_owner(self, scan_id: str, user_id: str) -> Optional[UrlScan]:
        result = await self.db.execute(
            select(UrlScan).where(UrlScan.id == scan_id, UrlScan.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def delete_for_owner(self, scan_id: str, user_id: str) -> bool:
        """Single DELETE scoped to the owner; False when nothing matched."""
        result = await self.db.execute(
            delete(UrlScan).where(UrlScan.id == scan_id, UrlScan.user_id == user_id)
        )
        deleted = result.rowcount
        await self.db.commit()
        return deleted > 0
