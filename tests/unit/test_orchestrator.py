"""
Unit Tests - Sync Orchestrator
"""
import random
from contextlib import asynccontextmanager

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from shopsync.config import IdentityMode
from shopsync.database.models import Order, Product
from shopsync.sync.errors import StoreUnavailable
from shopsync.sync.materializer import OrderMaterializer
from shopsync.sync.orchestrator import SyncOrchestrator, SyncState
from shopsync.sync.shaping import RecentJitterPlacement, SourceStatusStrategy, SyntheticShaper
from shopsync.sync.unit_of_work import UnitOfWork


class UnreachableUnitOfWork(UnitOfWork):
    """Store that never answers a ping"""

    async def is_reachable(self) -> bool:
        return False


class DroppingUnitOfWork(UnitOfWork):
    """Store that answers the first ping, then loses its connection"""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.pings = 0

    async def is_reachable(self) -> bool:
        self.pings += 1
        return self.pings == 1

    @asynccontextmanager
    async def transaction(self):
        raise StoreUnavailable("connection reset by peer")
        yield


class FailingUnitOfWork(UnitOfWork):
    """Fails the n-th transaction with an integrity error"""

    def __init__(self, session_factory, fail_on: int):
        super().__init__(session_factory)
        self.fail_on = fail_on
        self.calls = 0

    @asynccontextmanager
    async def transaction(self):
        self.calls += 1
        if self.calls == self.fail_on:
            raise IntegrityError("INSERT INTO orders", {}, Exception("constraint failed"))
        async with super().transaction() as session:
            yield session


class BrokenMaterializer(OrderMaterializer):
    """Materializer hitting a bug on the first order"""

    async def materialize(self, source_order, catalog, run):
        raise RuntimeError("unexpected materializer bug")


def _orchestrator(source, uow, multiplier=(1, 1)):
    rng = random.Random(5)
    materializer = OrderMaterializer(
        uow=uow,
        shaper=SyntheticShaper(rng, multiplier=multiplier),
        status_strategy=SourceStatusStrategy(),
        placement_strategy=RecentJitterPlacement(rng),
        identity_mode=IdentityMode.BOUNDED_UPSERT,
    )
    return SyncOrchestrator(source=source, uow=uow, materializer=materializer)


async def _counts(session_factory):
    async with session_factory() as db:
        return (
            await db.scalar(select(func.count(Product.id))),
            await db.scalar(select(func.count(Order.id))),
        )


class TestSyncOrchestrator:
    """Tests for SyncOrchestrator.run"""

    async def test_successful_run(self, make_source, uow, session_factory, feed):
        orchestrator = _orchestrator(make_source(feed["products"], feed["orders"]), uow)

        result = await orchestrator.run()

        assert result.success
        assert result.state == SyncState.DONE
        assert result.products_synced == 8
        assert result.products_created == 8
        assert result.source_orders == 4
        assert result.orders_synced == 4
        assert result.orders_failed == 0
        assert result.error is None
        assert await _counts(session_factory) == (8, 4)

    async def test_expansion_counts_materialized_orders(self, make_source, uow, feed):
        orchestrator = _orchestrator(make_source(feed["products"], feed["orders"]), uow, multiplier=(3, 3))

        result = await orchestrator.run()

        assert result.orders_synced == 12

    async def test_second_bounded_run_updates(self, make_source, uow, session_factory, feed):
        source = make_source(feed["products"], feed["orders"])

        await _orchestrator(source, uow).run()
        result = await _orchestrator(source, uow).run()

        assert result.products_created == 0
        assert result.products_updated == 8
        assert await _counts(session_factory) == (8, 4)

    async def test_fetch_failure_writes_nothing(self, make_source, uow, session_factory, feed):
        orchestrator = _orchestrator(make_source(feed["products"], feed["orders"], orders_status=500), uow)

        result = await orchestrator.run()

        assert not result.success
        assert result.state == SyncState.FAILED
        assert result.products_status == 200
        assert result.orders_status == 500
        assert "Failed to fetch data" in result.error
        assert await _counts(session_factory) == (0, 0)

    async def test_unreachable_store_fails_run(self, make_source, session_factory, feed):
        uow = UnreachableUnitOfWork(session_factory)
        orchestrator = _orchestrator(make_source(feed["products"], feed["orders"]), uow)

        result = await orchestrator.run()

        assert not result.success
        assert result.state == SyncState.FAILED
        assert "store unavailable" in result.error
        assert await _counts(session_factory) == (0, 0)

    async def test_store_lost_mid_run_fails(self, make_source, session_factory, feed):
        uow = DroppingUnitOfWork(session_factory)
        orchestrator = _orchestrator(make_source(feed["products"], feed["orders"]), uow)

        result = await orchestrator.run()

        assert not result.success
        assert result.state == SyncState.FAILED
        assert uow.pings == 2

    async def test_rejected_records_are_counted(self, make_source, uow, feed):
        products = feed["products"] + [{"product_id": 77}]
        orders = feed["orders"] + [{"status": "shipped"}]
        orchestrator = _orchestrator(make_source(products, orders), uow)

        result = await orchestrator.run()

        assert result.success
        assert result.products_failed == 1
        assert result.orders_failed == 1
        assert result.products_synced == 8

    async def test_run_ids_differ(self, make_source, uow, feed):
        source = make_source(feed["products"], feed["orders"])

        first = await _orchestrator(source, uow).run()
        second = await _orchestrator(source, uow).run()

        assert first.run_id != second.run_id
        assert second.synced_at >= first.synced_at


    async def test_one_failed_order_keeps_the_rest(self, make_source, session_factory, feed):
        # 8 catalog upserts come first, so the 10th transaction is the second order
        uow = FailingUnitOfWork(session_factory, fail_on=10)
        orchestrator = _orchestrator(make_source(feed["products"], feed["orders"]), uow)

        result = await orchestrator.run()

        assert result.success
        assert result.state == SyncState.DONE
        assert result.orders_synced == 3
        assert result.orders_failed == 1
        assert await _counts(session_factory) == (8, 3)

    async def test_oversized_price_is_rejected_not_fatal(self, make_source, uow, session_factory, feed):
        products = feed["products"] + [{"product_id": 999, "name": "Yacht", "price": 1e27}]
        orchestrator = _orchestrator(make_source(products, feed["orders"]), uow)

        result = await orchestrator.run()

        assert result.success
        assert result.state == SyncState.DONE
        assert result.products_failed == 1
        assert result.products_synced == 8
        assert result.orders_synced == 4
        assert await _counts(session_factory) == (8, 4)

    async def test_unexpected_error_fails_run(self, make_source, uow, feed):
        rng = random.Random(5)
        orchestrator = SyncOrchestrator(
            source=make_source(feed["products"], feed["orders"]),
            uow=uow,
            materializer=BrokenMaterializer(
                uow=uow,
                shaper=SyntheticShaper(rng),
                status_strategy=SourceStatusStrategy(),
                placement_strategy=RecentJitterPlacement(rng),
            ),
        )

        result = await orchestrator.run()

        assert not result.success
        assert result.state == SyncState.FAILED
        assert orchestrator.state == SyncState.FAILED
        assert result.error == "RuntimeError: unexpected materializer bug"
        assert result.products_synced == 8
