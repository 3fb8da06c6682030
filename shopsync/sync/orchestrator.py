"""
Sync Orchestrator

Runs one end-to-end sync: fetch feeds, reconcile the catalog, materialize
orders. State moves Idle -> Fetching -> Reconciling -> Materializing -> Done,
or to Failed when the fetch fails or the store is unreachable. Per-product and
per-order failures are counted and do not fail the run.
"""

import random
import time
from datetime import datetime
from enum import Enum
from typing import Optional

import httpx
import structlog
from prometheus_client import Counter, Histogram
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shopsync.config import Settings, get_settings
from shopsync.ingestion.source_client import SourceClient
from shopsync.sync.catalog import CatalogReconciler, ReconcileResult
from shopsync.sync.errors import FetchError, StoreUnavailable
from shopsync.sync.materializer import CatalogSnapshot, OrderMaterializer, RunContext
from shopsync.sync.unit_of_work import UnitOfWork

logger = structlog.get_logger(__name__)


# =============================================================================
# METRICS
# =============================================================================

SYNC_RUNS = Counter(
    "shopsync_sync_runs_total",
    "Sync runs by outcome",
    ["outcome"],
)

SYNC_UNIT_FAILURES = Counter(
    "shopsync_sync_unit_failures_total",
    "Products or orders that failed inside an otherwise healthy run",
    ["unit"],
)

ORDERS_MATERIALIZED = Counter(
    "shopsync_orders_materialized_total",
    "Order rows written by the sync job",
)

SYNC_DURATION = Histogram(
    "shopsync_sync_duration_seconds",
    "Wall time of a sync run",
)


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    RECONCILING = "reconciling"
    MATERIALIZING = "materializing"
    DONE = "done"
    FAILED = "failed"


class SyncResult(BaseModel):
    """Structured summary of one run"""
    success: bool
    state: SyncState
    run_id: str
    synced_at: datetime
    products_synced: int = 0
    orders_synced: int = 0
    products_created: int = 0
    products_updated: int = 0
    products_failed: int = 0
    source_orders: int = 0
    orders_failed: int = 0
    duration_seconds: float = 0.0
    error: Optional[str] = None
    products_status: Optional[int] = None
    orders_status: Optional[int] = None


class SyncOrchestrator:
    """Sequences one sync run and aggregates its statistics."""

    def __init__(
        self,
        source: SourceClient,
        uow: UnitOfWork,
        materializer: OrderMaterializer,
        reconciler: Optional[CatalogReconciler] = None,
    ):
        self.source = source
        self.uow = uow
        self.materializer = materializer
        self.reconciler = reconciler or CatalogReconciler(uow)
        self.state = SyncState.IDLE

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rng: Optional[random.Random] = None,
    ) -> "SyncOrchestrator":
        settings = settings or get_settings()
        uow = UnitOfWork(session_factory)
        return cls(
            source=SourceClient.from_settings(settings, transport=transport),
            uow=uow,
            materializer=OrderMaterializer.from_settings(uow, settings.sync, rng=rng),
        )

    def _transition(self, state: SyncState) -> None:
        logger.info("Sync state changed", previous=self.state.value, state=state.value)
        self.state = state

    async def run(self) -> SyncResult:
        """Execute one full run. Never raises; failures end in SyncState.FAILED."""
        run = RunContext.new()
        structlog.contextvars.bind_contextvars(sync_run_id=run.run_id)
        started = time.perf_counter()
        self.state = SyncState.IDLE

        result = SyncResult(
            success=False,
            state=self.state,
            run_id=run.run_id,
            synced_at=run.started_at,
        )
        logger.info("Starting sync run", started_at=run.started_at.isoformat())

        try:
            self._transition(SyncState.FETCHING)
            snapshot = await self.source.fetch_catalog_and_orders()

            if not await self.uow.is_reachable():
                raise StoreUnavailable("store unreachable before reconciliation")

            self._transition(SyncState.RECONCILING)
            catalog_result: ReconcileResult = await self.reconciler.reconcile(snapshot.products)
            result.products_created = catalog_result.created
            result.products_updated = catalog_result.updated
            result.products_synced = catalog_result.synced
            result.products_failed = catalog_result.failed + len(snapshot.rejected_products)

            self._transition(SyncState.MATERIALIZING)
            catalog = CatalogSnapshot.from_feed(snapshot.products)
            result.source_orders = len(snapshot.orders)
            result.orders_failed = len(snapshot.rejected_orders)

            for source_order in snapshot.orders:
                outcome = await self.materializer.materialize(source_order, catalog, run)
                result.orders_synced += len(outcome.orders)
                result.orders_failed += len(outcome.errors)

            self._transition(SyncState.DONE)
            result.success = True

        except FetchError as e:
            self._transition(SyncState.FAILED)
            result.error = str(e)
            result.products_status = e.products_status
            result.orders_status = e.orders_status
            logger.error("Sync fetch failed", error=str(e))

        except StoreUnavailable as e:
            self._transition(SyncState.FAILED)
            result.error = f"store unavailable: {e}"
            logger.error("Sync aborted, store unavailable", error=str(e))

        except Exception as e:
            failed_in = self.state
            self._transition(SyncState.FAILED)
            result.error = f"{type(e).__name__}: {e}"
            logger.error("Sync aborted by unexpected error", stage=failed_in.value, exc_info=True)

        finally:
            result.state = self.state
            result.duration_seconds = round(time.perf_counter() - started, 3)
            self._record_metrics(result)
            structlog.contextvars.unbind_contextvars("sync_run_id")

        logger.info(
            "Sync run finished",
            success=result.success,
            products_synced=result.products_synced,
            orders_synced=result.orders_synced,
            products_failed=result.products_failed,
            orders_failed=result.orders_failed,
            duration_seconds=result.duration_seconds,
        )
        return result

    @staticmethod
    def _record_metrics(result: SyncResult) -> None:
        SYNC_RUNS.labels(outcome="success" if result.success else "failed").inc()
        SYNC_DURATION.observe(result.duration_seconds)
        ORDERS_MATERIALIZED.inc(result.orders_synced)
        if result.products_failed:
            SYNC_UNIT_FAILURES.labels(unit="product").inc(result.products_failed)
        if result.orders_failed:
            SYNC_UNIT_FAILURES.labels(unit="order").inc(result.orders_failed)
