"""
Sync job error taxonomy.

FetchError and StoreUnavailable fail a whole run. ReconcileError and
MaterializeError are scoped to one product or one materialized order and are
counted by the run instead of propagating.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for sync job errors"""


class FetchError(SyncError):
    """One of the feed endpoints did not answer with a 2xx response"""

    def __init__(
        self,
        message: str,
        products_status: Optional[int] = None,
        orders_status: Optional[int] = None,
    ):
        super().__init__(message)
        self.products_status = products_status
        self.orders_status = orders_status

    def __str__(self) -> str:
        return (
            f"{self.args[0]} (products={self.products_status}, orders={self.orders_status})"
        )


class ReconcileError(SyncError):
    """A single catalog record could not be upserted"""

    def __init__(self, external_id: str, reason: str):
        super().__init__(f"product {external_id}: {reason}")
        self.external_id = external_id
        self.reason = reason


class MaterializeError(SyncError):
    """A single materialized order could not be written"""

    def __init__(self, source_order_id: str, expansion_index: int, reason: str):
        super().__init__(f"order {source_order_id}#{expansion_index}: {reason}")
        self.source_order_id = source_order_id
        self.expansion_index = expansion_index
        self.reason = reason


class StoreUnavailable(SyncError):
    """The relational store cannot be reached"""
