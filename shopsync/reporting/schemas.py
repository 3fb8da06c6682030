"""
Reporting response models

Plain data returned by the dashboard queries; safe to serialize from a
stateless request handler.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class MetricFormat(str, Enum):
    CURRENCY = "currency"
    NUMBER = "number"
    RATING = "rating"


class DashboardMetrics(BaseModel):
    """Lifetime headline numbers"""
    revenue: float
    total_orders: int
    avg_order_value: float
    avg_rating: float


class ChartDataPoint(BaseModel):
    date: str
    value: float


class MetricWithDelta(BaseModel):
    """Current 7-day value against the previous 7 days"""
    key: str
    label: str
    value: float
    previous_value: float
    delta: float
    format: MetricFormat
    chart_data: List[ChartDataPoint]


class DistributionEntry(BaseModel):
    name: str
    value: int


class CategoryRevenue(BaseModel):
    name: str
    value: float


class RevenueBreakdownItem(BaseModel):
    id: Optional[str] = None
    name: str
    value: float
    percentage: float
    color: str


class RevenueInsight(BaseModel):
    """Trailing-window revenue split by category and by product"""
    total_revenue: float
    by_category: List[RevenueBreakdownItem]
    by_product: List[RevenueBreakdownItem]
    daily_by_category: List[Dict[str, Any]]
    daily_by_product: List[Dict[str, Any]]
    category_colors: Dict[str, str]
    product_colors: Dict[str, str]


class TopProduct(BaseModel):
    id: str
    name: str
    category: str
    price: float
    rating: float
    image: Optional[str]


class RecentOrder(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    customer: str
    status: str
    amount: float
    date: datetime
    items: int


class LastSync(BaseModel):
    last_synced_at: Optional[datetime]
