from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.auth.models.user import User
from app.features.auth.routes.auth import get_current_user
from app.features.scan.exceptions import ScanNotFound
from app.features.scan.models.url_scan import ScanStatus
from app.features.scan.schemas.scan import (
    CreateScanRequest,
    ScanMetricsResponse,
    ScanResponse,
)
from app.features.scan.services.resolver.scan_resolver import ScanResolver
from app.features.scan.services.store.scan_store import AsyncScanStore
from app.platform.db.session import get_db
from app.platform.logger import get_logger
from app.platform.metrics import get_metrics
from app.platform.response import api_response, page_meta

logger = get_logger("scan_routes")

router = APIRouter(prefix="/scans", tags=["Scans"])


def get_scan_store(db: AsyncSession = Depends(get_db)) -> AsyncScanStore:
    return AsyncScanStore(db)


def get_scan_resolver(store: AsyncScanStore = Depends(get_scan_store)) -> ScanResolver:
    return ScanResolver(store)


@router.post(
    "",
    response_model=dict,
    status_code=status.HTTP_200_OK,
    summary="Submit a URL for scanning",
    description="Queues a scan, or returns an existing/cached one when a recent scan of the same URL exists",
)
async def create_scan_route(
    request: CreateScanRequest,
    current_user: User = Depends(get_current_user),
    resolver: ScanResolver = Depends(get_scan_resolver),
):
    scan = await resolver.create_scan(request.url, current_user.id)

    return api_response(
        data=ScanResponse.model_validate(scan),
        message="Scan accepted",
        status_code=status.HTTP_200_OK,
    )


@router.get(
    "",
    response_model=dict,
    status_code=status.HTTP_200_OK,
    summary="List my scans",
    description="Paginated list of the authenticated user's scans, newest first",
)
async def list_scans_route(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    store: AsyncScanStore = Depends(get_scan_store),
):
    scans = await store.list_for_owner(current_user.id, page=page, size=size)
    total = await store.count_for_owner(current_user.id)

    return api_response(
        data=[ScanResponse.model_validate(s) for s in scans],
        message="Scans retrieved successfully",
        meta=page_meta(page=page, size=size, total=total),
    )


@router.get(
    "/metrics",
    response_model=dict,
    status_code=status.HTTP_200_OK,
    summary="Scan pipeline counters",
)
async def scan_metrics_route(
    current_user: User = Depends(get_current_user),
    store: AsyncScanStore = Depends(get_scan_store),
):
    pending = await store.count_by_status(ScanStatus.submitted)

    return api_response(
        data=ScanMetricsResponse(counters=get_metrics().snapshot(), pending=pending),
        message="Metrics retrieved successfully",
    )


@router.get(
    "/{scan_id}",
    response_model=dict,
    status_code=status.HTTP_200_OK,
    summary="Get a scan",
    description="Returns 404 when the scan doesn't exist or belongs to someone else",
)
async def get_scan_route(
    scan_id: str,
    current_user: User = Depends(get_current_user),
    store: AsyncScanStore = Depends(get_scan_store),
):
    scan = await store.get_for_owner(scan_id, current_user.id)
    if scan is None:
        raise ScanNotFound(scan_id)

    return api_response(
        data=ScanResponse.model_validate(scan),
        message="Scan retrieved successfully",
    )


@router.delete(
    "/{scan_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a scan",
    description="Returns 404 when the scan doesn't exist or belongs to someone else",
)
async def delete_scan_route(
    scan_id: str,
    current_user: User = Depends(get_current_user),
    store: AsyncScanStore = Depends(get_scan_store),
):
    deleted = await store.delete_for_owner(scan_id, current_user.id)
    if not deleted:
        logger.warning(f"Delete requested for scan {scan_id} not found or not owned by user {current_user.id}")
        raise ScanNotFound(scan_id)

    logger.info(f"Deleted scan {scan_id} for user {current_user.id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
