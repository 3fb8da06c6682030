"""
Sync Module

Fetch -> catalog reconciliation -> order materialization. The components live
in their own submodules (catalog, materializer, orchestrator) and are imported
from there.
"""
from .errors import (
    FetchError,
    MaterializeError,
    ReconcileError,
    StoreUnavailable,
    SyncError,
)

__all__ = [
    "FetchError",
    "MaterializeError",
    "ReconcileError",
    "StoreUnavailable",
    "SyncError",
]
