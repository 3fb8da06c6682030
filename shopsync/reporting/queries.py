"""
Dashboard Queries

Read-only aggregations over products, orders and order items. Every function
takes an AsyncSession, runs its queries one after another on it and returns
plain response models. Readers may observe a run that is still in progress.
"""

from collections import Counter
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import polars as pl
import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shopsync.database.models import Order, OrderItem, OrderStatus, Product, utcnow
from shopsync.reporting.schemas import (
    CategoryRevenue,
    ChartDataPoint,
    DashboardMetrics,
    DistributionEntry,
    LastSync,
    MetricFormat,
    MetricWithDelta,
    RecentOrder,
    RevenueBreakdownItem,
    RevenueInsight,
    TopProduct,
)

logger = structlog.get_logger(__name__)

WINDOW_DAYS = 7
BREAKDOWN_LIMIT = 10
TOP_PRODUCTS_LIMIT = 5
RECENT_ORDERS_LIMIT = 5

# Assigned by rank, cycling when there are more entries than colors
PALETTE = [
    "#F6C95F",
    "#EDB85A",
    "#F8DE97",
    "#F8D978",
    "#82CA9D",
    "#8884D8",
    "#FF8042",
    "#0088FE",
    "#00C49F",
    "#A4DE6C",
]


def calc_delta(current: float, previous: float) -> float:
    """
    Percentage change from previous to current.

    A previous value of zero yields 100 when current is positive, else 0.
    """
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def color_for_rank(rank: int) -> str:
    return PALETTE[rank % len(PALETTE)]


def window_days(today: date, days: int) -> List[date]:
    """The ``days`` calendar days ending with today, oldest first."""
    return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min)


def _money(value) -> float:
    return round(float(value or 0), 2)


# =============================================================================
# HEADLINE METRICS
# =============================================================================

async def get_dashboard_metrics(db: AsyncSession) -> DashboardMetrics:
    """Lifetime revenue, order count, average order value and product rating."""
    totals = await db.execute(
        select(
            func.sum(Order.total_amount).label("revenue"),
            func.count(Order.id).label("orders"),
        )
    )
    row = totals.one()
    avg_rating = await db.scalar(select(func.avg(Product.rating)))

    revenue = _money(row.revenue)
    orders = row.orders or 0
    return DashboardMetrics(
        revenue=revenue,
        total_orders=orders,
        avg_order_value=round(revenue / orders, 2) if orders else 0.0,
        avg_rating=round(float(avg_rating or 0), 2),
    )


async def get_metrics_with_time_series(
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> List[MetricWithDelta]:
    """
    Headline metrics over the current 7 days against the 7 days before.

    Orders are bucketed per calendar day of their placement time.
    """
    today = (now or utcnow()).date()
    days = window_days(today, WINDOW_DAYS * 2)
    previous_days, current_days = days[:WINDOW_DAYS], days[WINDOW_DAYS:]

    result = await db.execute(
        select(Order.placed_at, Order.total_amount).where(
            Order.placed_at >= _day_start(days[0]),
            Order.placed_at < _day_start(today + timedelta(days=1)),
        )
    )

    revenue_by_day: Dict[date, float] = {d: 0.0 for d in days}
    orders_by_day: Dict[date, int] = {d: 0 for d in days}
    for placed_at, total_amount in result.all():
        day = placed_at.date()
        revenue_by_day[day] += float(total_amount or 0)
        orders_by_day[day] += 1

    def window_sum(series: Dict[date, float], window: Sequence[date]) -> float:
        return sum(series[d] for d in window)

    current_revenue = window_sum(revenue_by_day, current_days)
    previous_revenue = window_sum(revenue_by_day, previous_days)
    current_orders = window_sum(orders_by_day, current_days)
    previous_orders = window_sum(orders_by_day, previous_days)
    current_aov = current_revenue / current_orders if current_orders else 0.0
    previous_aov = previous_revenue / previous_orders if previous_orders else 0.0

    avg_rating = round(float(await db.scalar(select(func.avg(Product.rating))) or 0), 2)

    def chart(values: Dict[date, float]) -> List[ChartDataPoint]:
        return [ChartDataPoint(date=d.isoformat(), value=round(values[d], 2)) for d in current_days]

    aov_by_day = {
        d: (revenue_by_day[d] / orders_by_day[d] if orders_by_day[d] else 0.0) for d in days
    }

    return [
        MetricWithDelta(
            key="revenue",
            label="Revenue",
            value=round(current_revenue, 2),
            previous_value=round(previous_revenue, 2),
            delta=round(calc_delta(current_revenue, previous_revenue), 2),
            format=MetricFormat.CURRENCY,
            chart_data=chart(revenue_by_day),
        ),
        MetricWithDelta(
            key="orders",
            label="Orders",
            value=current_orders,
            previous_value=previous_orders,
            delta=round(calc_delta(current_orders, previous_orders), 2),
            format=MetricFormat.NUMBER,
            chart_data=chart(orders_by_day),
        ),
        MetricWithDelta(
            key="avgOrderValue",
            label="Avg. Order Value",
            value=round(current_aov, 2),
            previous_value=round(previous_aov, 2),
            delta=round(calc_delta(current_aov, previous_aov), 2),
            format=MetricFormat.CURRENCY,
            chart_data=chart(aov_by_day),
        ),
        # Ratings are not time-stamped, so both windows see the current average
        MetricWithDelta(
            key="avgRating",
            label="Avg. Product Rating",
            value=avg_rating,
            previous_value=avg_rating,
            delta=0.0,
            format=MetricFormat.RATING,
            chart_data=[ChartDataPoint(date=d.isoformat(), value=avg_rating) for d in current_days],
        ),
    ]


# =============================================================================
# DISTRIBUTIONS
# =============================================================================

async def get_orders_by_status(db: AsyncSession) -> List[DistributionEntry]:
    """Order count per status, cancelled orders included."""
    result = await db.execute(
        select(Order.status, func.count(Order.id)).group_by(Order.status)
    )
    return [
        DistributionEntry(name=status.value if isinstance(status, OrderStatus) else str(status), value=count)
        for status, count in result.all()
    ]


async def get_products_by_category(db: AsyncSession) -> List[DistributionEntry]:
    """Product count per category."""
    result = await db.execute(
        select(Product.category, func.count(Product.id)).group_by(Product.category)
    )
    return [DistributionEntry(name=category, value=count) for category, count in result.all()]


# =============================================================================
# REVENUE
# =============================================================================

async def get_revenue_by_category(db: AsyncSession) -> List[CategoryRevenue]:
    """All-time line revenue per category, cancelled orders excluded."""
    line_revenue = func.sum(OrderItem.unit_price * OrderItem.quantity)
    result = await db.execute(
        select(Product.category, line_revenue.label("revenue"))
        .join(OrderItem, OrderItem.product_id == Product.id)
        .join(Order, Order.id == OrderItem.order_id)
        .where(Order.status != OrderStatus.CANCELLED)
        .group_by(Product.category)
    )
    entries = [CategoryRevenue(name=category, value=_money(revenue)) for category, revenue in result.all()]
    return sorted(entries, key=lambda e: (-e.value, e.name))


def _breakdown(
    frame: pl.DataFrame,
    key: str,
    label: str,
    total: float,
    limit: int,
) -> Tuple[List[RevenueBreakdownItem], Dict[str, str]]:
    """
    Rank ``key`` groups by revenue and keep the top ``limit``.

    Returns the items and a map of group key to display name. Display names
    shared by several groups get the key appended so chart series stay apart.
    """
    aggregations = [pl.col("revenue").sum()]
    order_by = ["revenue", key]
    if label != key:
        aggregations.append(pl.col(label).first())
        order_by.insert(1, label)
    ranked = (
        frame.group_by(key)
        .agg(aggregations)
        .sort(order_by, descending=[True] + [False] * (len(order_by) - 1))
        .head(limit)
    )
    rows = list(ranked.iter_rows(named=True))
    seen = Counter(row[label] for row in rows)
    names = {
        row[key]: row[label] if seen[row[label]] == 1 else f"{row[label]} ({row[key]})"
        for row in rows
    }
    items = [
        RevenueBreakdownItem(
            id=row[key] if key != label else None,
            name=names[row[key]],
            value=round(row["revenue"], 2),
            percentage=round(row["revenue"] / total * 100, 2) if total else 0.0,
            color=color_for_rank(rank),
        )
        for rank, row in enumerate(rows)
    ]
    return items, names


def _daily(frame: pl.DataFrame, key: str, names: Dict[str, str], days: List[date]) -> List[Dict[str, object]]:
    """One row per day with a column per display name, zero-filled for stacked charts."""
    rows: Dict[str, Dict[str, object]] = {
        d.isoformat(): {"date": d.isoformat(), **{name: 0.0 for name in names.values()}} for d in days
    }
    if names:
        pivoted = (
            frame.filter(pl.col(key).is_in(list(names)))
            .pivot(on=key, index="date", values="revenue", aggregate_function="sum")
            .fill_null(0.0)
        )
        for record in pivoted.iter_rows(named=True):
            day = rows.get(record["date"])
            if day is None:
                continue
            for group, name in names.items():
                day[name] = round(float(record.get(group) or 0.0), 2)
    return list(rows.values())


async def get_revenue_insight(
    db: AsyncSession,
    now: Optional[datetime] = None,
    days: int = WINDOW_DAYS,
    limit: int = BREAKDOWN_LIMIT,
) -> RevenueInsight:
    """
    Trailing-window revenue by category and by product.

    Revenue is unit_price x quantity of each line; cancelled orders are
    excluded. Each breakdown keeps the top ``limit`` entries, colored by rank,
    with a per-day series for stacked display.
    """
    today = (now or utcnow()).date()
    window = window_days(today, days)

    result = await db.execute(
        select(
            Product.category,
            Product.external_id,
            Product.name,
            OrderItem.unit_price,
            OrderItem.quantity,
            Order.placed_at,
        )
        .join(OrderItem, OrderItem.product_id == Product.id)
        .join(Order, Order.id == OrderItem.order_id)
        .where(
            Order.status != OrderStatus.CANCELLED,
            Order.placed_at >= _day_start(window[0]),
            Order.placed_at < _day_start(today + timedelta(days=1)),
        )
    )
    frame = pl.DataFrame(
        [
            {
                "category": category,
                "product_id": product_id,
                "product": name,
                "revenue": float(unit_price) * quantity,
                "date": placed_at.date().isoformat(),
            }
            for category, product_id, name, unit_price, quantity, placed_at in result.all()
        ],
        schema={
            "category": pl.Utf8,
            "product_id": pl.Utf8,
            "product": pl.Utf8,
            "revenue": pl.Float64,
            "date": pl.Utf8,
        },
    )

    total = float(frame["revenue"].sum()) if frame.height else 0.0
    by_category, category_names = _breakdown(frame, "category", "category", total, limit)
    by_product, product_names = _breakdown(frame, "product_id", "product", total, limit)

    logger.debug("Revenue insight computed", lines=frame.height, total=round(total, 2))

    return RevenueInsight(
        total_revenue=round(total, 2),
        by_category=by_category,
        by_product=by_product,
        daily_by_category=_daily(frame, "category", category_names, window),
        daily_by_product=_daily(frame, "product_id", product_names, window),
        category_colors={item.name: item.color for item in by_category},
        product_colors={item.name: item.color for item in by_product},
    )


# =============================================================================
# TABLES
# =============================================================================

async def get_top_products(db: AsyncSession, limit: int = TOP_PRODUCTS_LIMIT) -> List[TopProduct]:
    """Highest priced products."""
    result = await db.execute(
        select(Product).order_by(Product.price.desc(), Product.id).limit(limit)
    )
    return [
        TopProduct(
            id=p.external_id,
            name=p.name,
            category=p.category,
            price=_money(p.price),
            rating=float(p.rating or 0),
            image=p.image,
        )
        for p in result.scalars().all()
    ]


async def get_recent_orders(db: AsyncSession, limit: int = RECENT_ORDERS_LIMIT) -> List[RecentOrder]:
    """Latest orders by placement time with their line counts."""
    item_count = func.count(OrderItem.id).label("items")
    result = await db.execute(
        select(Order, item_count)
        .outerjoin(OrderItem, OrderItem.order_id == Order.id)
        .group_by(Order.id)
        .order_by(Order.placed_at.desc(), Order.id.desc())
        .limit(limit)
    )
    return [
        RecentOrder(
            id=str(order.id),
            customer=order.customer_id or "Guest",
            status=order.status.value,
            amount=_money(order.total_amount),
            date=order.placed_at,
            items=items,
        )
        for order, items in result.all()
    ]


async def get_last_sync_time(db: AsyncSession) -> LastSync:
    """Latest update timestamp across products and orders, None when empty."""
    last_product = await db.scalar(select(func.max(Product.updated_at)))
    last_order = await db.scalar(select(func.max(Order.updated_at)))
    candidates = [t for t in (last_product, last_order) if t is not None]
    return LastSync(last_synced_at=max(candidates) if candidates else None)
