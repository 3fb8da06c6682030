"""
Dashboard API Endpoints

Authenticated read endpoints over the reporting layer. Responses are cached in
the analytics namespace when Redis is enabled.
"""

from typing import Any, Awaitable, Callable, List

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from shopsync.database.connection import get_db_dependency
from shopsync.reporting import queries
from shopsync.reporting.schemas import (
    CategoryRevenue,
    DashboardMetrics,
    DistributionEntry,
    LastSync,
    MetricWithDelta,
    RecentOrder,
    RevenueInsight,
    TopProduct,
)
from shopsync.serving.api.auth import get_current_user
from shopsync.serving.cache import analytics_cache

router = APIRouter(dependencies=[Depends(get_current_user)])
logger = structlog.get_logger(__name__)


async def _cached(key: str, compute: Callable[[], Awaitable[Any]]) -> Any:
    async def factory() -> Any:
        return jsonable_encoder(await compute())

    return await analytics_cache.get_or_set(key, factory)


@router.get("/metrics", response_model=DashboardMetrics)
async def dashboard_metrics(db: AsyncSession = Depends(get_db_dependency)):
    return await _cached("metrics", lambda: queries.get_dashboard_metrics(db))


@router.get("/metrics/time-series", response_model=List[MetricWithDelta])
async def metrics_time_series(db: AsyncSession = Depends(get_db_dependency)):
    """Current 7 days against the previous 7, with daily chart points."""
    return await _cached("metrics:time-series", lambda: queries.get_metrics_with_time_series(db))


@router.get("/orders/status", response_model=List[DistributionEntry])
async def orders_by_status(db: AsyncSession = Depends(get_db_dependency)):
    return await _cached("orders:status", lambda: queries.get_orders_by_status(db))


@router.get("/products/categories", response_model=List[DistributionEntry])
async def products_by_category(db: AsyncSession = Depends(get_db_dependency)):
    return await _cached("products:categories", lambda: queries.get_products_by_category(db))


@router.get("/revenue/insight", response_model=RevenueInsight)
async def revenue_insight(
    days: int = Query(7, ge=1, le=90),
    limit: int = Query(10, ge=1, le=50),
    db: AsyncSession = Depends(get_db_dependency),
):
    """Trailing-window revenue split by category and by product."""
    return await _cached(
        f"revenue:insight:{days}:{limit}",
        lambda: queries.get_revenue_insight(db, days=days, limit=limit),
    )


@router.get("/revenue/by-category", response_model=List[CategoryRevenue])
async def revenue_by_category(db: AsyncSession = Depends(get_db_dependency)):
    return await _cached("revenue:by-category", lambda: queries.get_revenue_by_category(db))


@router.get("/products/top", response_model=List[TopProduct])
async def top_products(
    limit: int = Query(5, ge=1, le=50),
    db: AsyncSession = Depends(get_db_dependency),
):
    return await _cached(f"products:top:{limit}", lambda: queries.get_top_products(db, limit=limit))


@router.get("/orders/recent", response_model=List[RecentOrder])
async def recent_orders(
    limit: int = Query(5, ge=1, le=50),
    db: AsyncSession = Depends(get_db_dependency),
):
    return await _cached(f"orders:recent:{limit}", lambda: queries.get_recent_orders(db, limit=limit))


@router.get("/last-sync", response_model=LastSync)
async def last_sync(db: AsyncSession = Depends(get_db_dependency)):
    """Not cached; reflects the store as of this request."""
    return await queries.get_last_sync_time(db)
