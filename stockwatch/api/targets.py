import logging

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from stockwatch.config import RECENT_CHECKS_LIMIT, settings
from stockwatch.core.dependencies import get_monitor, get_owner_id
from stockwatch.core.exceptions import (
    CheckInProgressError,
    DuplicateTargetError,
    OwnershipError,
    PersistenceError,
    StockWatchError,
    TargetInactiveError,
    TargetNotFoundError,
    TargetValidationError,
)
from stockwatch.database import get_db
from stockwatch.schemas.target import (
    BenchmarkRequest,
    BenchmarkResponse,
    CheckResponse,
    StatsResponse,
    TargetCreate,
    TargetResponse,
    TargetTestRequest,
    TargetWithCheck,
    TestCheckResponse,
)
from stockwatch.services import target_service
from stockwatch.services.monitor import Monitor
from stockwatch.services.repository import TargetRepository
from stockwatch.services.stock_checker import run_benchmark

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/targets", tags=["targets"])

_STATUS_BY_ERROR: list[tuple[type[StockWatchError], int]] = [
    (TargetValidationError, status.HTTP_400_BAD_REQUEST),
    (OwnershipError, status.HTTP_403_FORBIDDEN),
    (TargetNotFoundError, status.HTTP_404_NOT_FOUND),
    (DuplicateTargetError, status.HTTP_409_CONFLICT),
    (TargetInactiveError, status.HTTP_409_CONFLICT),
    (CheckInProgressError, status.HTTP_409_CONFLICT),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def _http_error(exc: StockWatchError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _with_check(target, result) -> TargetWithCheck:
    return TargetWithCheck(
        target=TargetResponse.model_validate(target),
        check=CheckResponse.model_validate(result, from_attributes=True),
    )


@router.post("", response_model=TargetWithCheck, status_code=status.HTTP_201_CREATED, summary="Add Target")
async def add_target(
    request: TargetCreate,
    owner_id: str = Depends(get_owner_id),
    monitor: Monitor = Depends(get_monitor),
    db: AsyncSession = Depends(get_db),
):
    """Start monitoring a product page and run one check immediately."""
    try:
        target, result = await target_service.add_target(
            db,
            monitor.runner,
            request.url,
            owner_id,
            name=request.name,
            allowed_host=settings.product_url_host,
        )
    except StockWatchError as e:
        raise _http_error(e) from e
    return _with_check(target, result)


@router.get("", response_model=list[TargetResponse], summary="List Targets")
async def list_targets(
    mine: bool = False,
    x_owner_id: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
):
    """List active targets, optionally only those added by the caller."""
    repo = TargetRepository(db)
    try:
        if mine:
            if not x_owner_id:
                raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Owner-Id header")
            return await repo.list_by_owner(x_owner_id.strip())
        return await repo.list_active_targets()
    except StockWatchError as e:
        raise _http_error(e) from e


@router.get("/stats", response_model=StatsResponse, summary="Monitoring Stats")
async def get_stats(
    monitor: Monitor = Depends(get_monitor),
    db: AsyncSession = Depends(get_db),
):
    """Totals, in-stock/out-of-stock counts and tier distribution."""
    try:
        stats = await target_service.build_stats(db, monitor.scheduler)
    except StockWatchError as e:
        raise _http_error(e) from e
    return StatsResponse(
        total_targets=stats.total_targets,
        in_stock=stats.in_stock,
        out_of_stock=stats.out_of_stock,
        tiers=stats.tiers,
    )


@router.post("/test", response_model=TestCheckResponse, summary="Test URL")
async def test_url(
    request: TargetTestRequest,
    monitor: Monitor = Depends(get_monitor),
):
    """Check an arbitrary product URL without saving anything."""
    try:
        url, product_id = target_service.validate_target_url(request.url, settings.product_url_host)
    except StockWatchError as e:
        raise _http_error(e) from e

    outcome = await monitor.checker.check(url)
    return TestCheckResponse(
        url=url,
        product_id=product_id,
        available=outcome.available,
        latency_ms=outcome.latency_ms,
        error=outcome.error,
        from_cache=outcome.from_cache,
    )


@router.post("/benchmark", response_model=BenchmarkResponse, summary="Benchmark URL")
async def benchmark_url(
    request: BenchmarkRequest,
    monitor: Monitor = Depends(get_monitor),
):
    """Run several sequential checks of one URL and report latency."""
    try:
        url, _ = target_service.validate_target_url(request.url, settings.product_url_host)
    except StockWatchError as e:
        raise _http_error(e) from e

    report = await run_benchmark(monitor.checker, url, request.iterations)
    return BenchmarkResponse(
        url=url,
        iterations=report.iterations,
        success_count=report.success_count,
        error_count=report.error_count,
        average_ms=report.average_ms,
        min_ms=report.min_ms,
        max_ms=report.max_ms,
        success_rate=report.success_rate,
    )


@router.get("/{identifier:path}/checks", response_model=list[CheckResponse], summary="Recent Checks")
async def list_checks(
    identifier: str,
    limit: int = RECENT_CHECKS_LIMIT,
    db: AsyncSession = Depends(get_db),
):
    """Latest check records for a target, newest first."""
    try:
        target = await target_service.find_target(db, identifier)
        return await TargetRepository(db).latest_checks(target.id, limit=max(1, min(limit, 100)))
    except StockWatchError as e:
        raise _http_error(e) from e


@router.post("/{identifier:path}/check", response_model=TargetWithCheck, summary="Check Target Now")
async def check_target(
    identifier: str,
    owner_id: str = Depends(get_owner_id),
    monitor: Monitor = Depends(get_monitor),
    db: AsyncSession = Depends(get_db),
):
    """Check one of the caller's targets right away, outside its schedule."""
    try:
        target, result = await target_service.check_target_now(db, monitor.runner, identifier, owner_id)
    except StockWatchError as e:
        raise _http_error(e) from e
    return _with_check(target, result)


@router.delete("/{identifier:path}", response_model=TargetResponse, summary="Remove Target")
async def remove_target(
    identifier: str,
    owner_id: str = Depends(get_owner_id),
    monitor: Monitor = Depends(get_monitor),
    db: AsyncSession = Depends(get_db),
):
    """Stop monitoring a target (product ID or URL). Only its owner may remove it."""
    try:
        return await target_service.remove_target(db, monitor.scheduler, identifier, owner_id)
    except StockWatchError as e:
        raise _http_error(e) from e
