"""
Prefect Workflow - Hourly Sync

Scheduled sync of the store feed into the database:
- One orchestrator run per flow run, on the configured cron
- A failed run fails the flow so Prefect retries and alerts on it
- The dashboard cache is cleared after a successful run

Usage:
    python workflows/hourly_sync.py          # serve on the configured cron
    python workflows/hourly_sync.py --once   # single run, no schedule
"""

import argparse
import asyncio

from prefect import flow, get_run_logger, task
from redis.exceptions import RedisError

from shopsync.config import get_settings
from shopsync.config.logging import configure_logging
from shopsync.database.connection import close_database, get_session_factory, init_database
from shopsync.serving.cache import analytics_cache, close_redis, init_redis
from shopsync.sync.orchestrator import SyncOrchestrator

settings = get_settings()


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="run_sync",
    description="Fetch feeds, reconcile the catalog and materialize orders",
)
async def run_sync() -> dict:
    """Run the orchestrator once against the configured database."""
    logger = get_run_logger()

    await init_database()
    try:
        orchestrator = SyncOrchestrator.from_settings(get_session_factory(), settings)
        result = await orchestrator.run()
    finally:
        await close_database()

    logger.info(
        f"Sync {result.state.value}: {result.products_synced} products, "
        f"{result.orders_synced} orders, {result.products_failed + result.orders_failed} failed units"
    )
    return result.model_dump(mode="json")


@task(
    name="invalidate_dashboard_cache",
    description="Drop cached dashboard responses",
    retries=2,
    retry_delay_seconds=10,
)
async def invalidate_dashboard_cache() -> int:
    logger = get_run_logger()

    try:
        if await init_redis() is None:
            return 0
        removed = await analytics_cache.invalidate_all()
    except (RedisError, OSError) as e:
        logger.warning(f"Cache invalidation skipped: {e}")
        return 0
    finally:
        await close_redis()

    logger.info(f"Invalidated {removed} cached dashboard responses")
    return removed


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="sync-orders",
    description="Hourly catalog and order sync from the store feed",
    retries=1,
    retry_delay_seconds=300,
)
async def sync_orders() -> dict:
    """
    Hourly sync pipeline.

    Steps:
    1. Run one sync
    2. Invalidate the dashboard cache on success

    Raises:
        RuntimeError: If the run ended failed, so the flow run is marked failed
    """
    logger = get_run_logger()
    result = await run_sync()

    if not result["success"]:
        logger.error(f"Sync run {result['run_id']} failed: {result['error']}")
        raise RuntimeError(f"Sync run failed: {result['error']}")

    result["cache_keys_invalidated"] = await invalidate_dashboard_cache()
    return result


# =============================================================================
# DEPLOYMENT CONFIGURATION
# =============================================================================

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Hourly store sync")
    parser.add_argument("--once", action="store_true", help="Run a single sync and exit")
    args = parser.parse_args()

    configure_logging()

    if args.once:
        asyncio.run(sync_orders())
    else:
        sync_orders.serve(name="hourly-sync", cron=settings.sync.cron)
