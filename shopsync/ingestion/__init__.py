"""
Data Ingestion Module
"""
from .source_client import (
    FeedSnapshot,
    OrderFeedRecord,
    OrderLine,
    ProductFeedRecord,
    RejectedRecord,
    SourceClient,
    parse_feed,
)

__all__ = [
    "FeedSnapshot",
    "OrderFeedRecord",
    "OrderLine",
    "ProductFeedRecord",
    "RejectedRecord",
    "SourceClient",
    "parse_feed",
]
