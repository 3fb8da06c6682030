"""Read-side dashboard aggregations"""

from shopsync.reporting.queries import (
    PALETTE,
    calc_delta,
    get_dashboard_metrics,
    get_last_sync_time,
    get_metrics_with_time_series,
    get_orders_by_status,
    get_products_by_category,
    get_recent_orders,
    get_revenue_by_category,
    get_revenue_insight,
    get_top_products,
)

__all__ = [
    "PALETTE",
    "calc_delta",
    "get_dashboard_metrics",
    "get_last_sync_time",
    "get_metrics_with_time_series",
    "get_orders_by_status",
    "get_products_by_category",
    "get_recent_orders",
    "get_revenue_by_category",
    "get_revenue_insight",
    "get_top_products",
]
