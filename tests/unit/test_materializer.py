"""
Unit Tests - Order Materializer
"""
import random
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from shopsync.config import IdentityMode
from shopsync.database.models import Order, OrderItem, OrderStatus, Product
from shopsync.ingestion.source_client import OrderFeedRecord, ProductFeedRecord
from shopsync.sync.catalog import CatalogReconciler
from shopsync.sync.materializer import (
    CatalogEntry,
    CatalogSnapshot,
    OrderMaterializer,
    RunContext,
)
from shopsync.sync.shaping import (
    HashedBackdatePlacement,
    RecentJitterPlacement,
    SourceStatusStrategy,
    SyntheticShaper,
)
from shopsync.sync.unit_of_work import UnitOfWork

RUN_AT = datetime(2026, 3, 10, 12, 0, 0)


class FailingUnitOfWork(UnitOfWork):
    """Runs the n-th transaction body, then fails it before commit"""

    def __init__(self, session_factory, fail_on: int):
        super().__init__(session_factory)
        self.fail_on = fail_on
        self.calls = 0

    @asynccontextmanager
    async def transaction(self):
        self.calls += 1
        async with super().transaction() as session:
            yield session
            await session.flush()
            if self.calls == self.fail_on:
                raise IntegrityError("INSERT INTO order_items", {}, Exception("constraint failed"))


def _materializer(uow, identity_mode=IdentityMode.UNBOUNDED_APPEND, seed=1, **ranges):
    rng = random.Random(seed)
    return OrderMaterializer(
        uow=uow,
        shaper=SyntheticShaper(rng, **ranges),
        status_strategy=SourceStatusStrategy(),
        placement_strategy=RecentJitterPlacement(rng, minutes=60),
        identity_mode=identity_mode,
    )


def _source_order(order_id=1, status="shipped"):
    return OrderFeedRecord(order_id=order_id, user_id=7, status=status)


async def _order_totals_match_items(db):
    """Every order total equals the sum of its lines"""
    line_sums = dict(
        (
            await db.execute(
                select(OrderItem.order_id, func.sum(OrderItem.unit_price * OrderItem.quantity))
                .group_by(OrderItem.order_id)
            )
        ).all()
    )
    orders = (await db.execute(select(Order.id, Order.total_amount))).all()
    for order_id, total in orders:
        assert Decimal(str(line_sums.get(order_id, 0))).quantize(Decimal("0.01")) == total


@pytest.fixture
async def catalog(uow, product_records) -> CatalogSnapshot:
    await CatalogReconciler(uow).reconcile(product_records)
    return CatalogSnapshot.from_feed(product_records)


class TestPlanning:
    """Tests for OrderMaterializer.plan"""

    def test_expansion_bounds(self, uow, catalog):
        materializer = _materializer(uow, multiplier=(1, 3))
        run = RunContext.new(RUN_AT)

        counts = [len(materializer.plan(_source_order(i), catalog, run)) for i in range(50)]

        assert min(counts) >= 1
        assert max(counts) <= 3

    def test_unbounded_ids_are_unique_per_run(self, uow, catalog):
        materializer = _materializer(uow, multiplier=(3, 3))
        first = RunContext.new(RUN_AT)
        second = RunContext.new(RUN_AT + timedelta(hours=1))

        ids_first = {p.external_id for p in materializer.plan(_source_order(), catalog, first)}
        ids_second = {p.external_id for p in materializer.plan(_source_order(), catalog, second)}

        assert len(ids_first) == 3
        assert ids_first.isdisjoint(ids_second)

    def test_bounded_ids_are_stable(self, uow, catalog):
        materializer = _materializer(uow, IdentityMode.BOUNDED_UPSERT, multiplier=(2, 2))

        plans = materializer.plan(_source_order(9), catalog, RunContext.new(RUN_AT))

        assert [p.external_id for p in plans] == ["9-0", "9-1"]

    def test_bounded_ids_do_not_collide_with_dashed_feed_ids(self, uow, catalog):
        materializer = _materializer(uow, IdentityMode.BOUNDED_UPSERT, multiplier=(2, 2))
        run = RunContext.new(RUN_AT)

        plain = {p.external_id for p in materializer.plan(_source_order(9), catalog, run)}
        dashed = {p.external_id for p in materializer.plan(_source_order("9-1"), catalog, run)}

        assert plain.isdisjoint(dashed)

    def test_only_available_products_are_picked(self, uow):
        snapshot = CatalogSnapshot(
            [
                CatalogEntry("1", Decimal("10.00"), available=False),
                CatalogEntry("2", Decimal("20.00")),
            ]
        )
        materializer = _materializer(uow, items=(2, 2))

        plans = materializer.plan(_source_order(), snapshot, RunContext.new(RUN_AT))

        assert [line.external_product_id for line in plans[0].lines] == ["2"]

    def test_catalog_prices_are_quantized(self):
        record = ProductFeedRecord(product_id=1, name="Mug", price=Decimal("4.005"))

        assert CatalogSnapshot.from_feed([record]).get("1").price == Decimal("4.01")


class TestMaterialize:
    """Tests for OrderMaterializer.materialize"""

    async def test_writes_orders_with_items(self, uow, session_factory, catalog):
        materializer = _materializer(uow, multiplier=(2, 2))

        outcome = await materializer.materialize(_source_order(), catalog, RunContext.new(RUN_AT))

        assert len(outcome.orders) == 2
        assert not outcome.errors
        async with session_factory() as db:
            assert await db.scalar(select(func.count(Order.id))) == 2
            order = await db.scalar(select(Order).limit(1))
            assert order.status == OrderStatus.SHIPPED
            assert order.customer_id == "7"
            assert order.source_order_id == "1"
            assert RUN_AT - timedelta(minutes=60) < order.placed_at <= RUN_AT
            await _order_totals_match_items(db)

    async def test_items_reference_existing_products(self, uow, session_factory, catalog):
        materializer = _materializer(uow, multiplier=(3, 3), items=(3, 3))

        for i in range(5):
            await materializer.materialize(_source_order(i), catalog, RunContext.new(RUN_AT))

        async with session_factory() as db:
            orphans = await db.scalar(
                select(func.count(OrderItem.id))
                .outerjoin(Product, Product.id == OrderItem.product_id)
                .where(Product.id.is_(None))
            )
            assert orphans == 0

    async def test_no_resolvable_products_gives_empty_order(self, uow, session_factory):
        snapshot = CatalogSnapshot([CatalogEntry("missing", Decimal("12.00"))])
        materializer = _materializer(uow)

        outcome = await materializer.materialize(_source_order(), snapshot, RunContext.new(RUN_AT))

        written = outcome.orders[0]
        assert written.item_count == 0
        assert written.dropped_items == 1
        assert written.total_amount == Decimal("0")
        async with session_factory() as db:
            assert await db.scalar(select(func.count(OrderItem.id))) == 0
            assert await db.scalar(select(Order.total_amount)) == Decimal("0")

    async def test_unknown_product_line_dropped(self, uow, session_factory, catalog, product_records):
        known = catalog.get(product_records[0].external_id)
        snapshot = CatalogSnapshot([known, CatalogEntry("ghost", Decimal("99.00"))])
        materializer = _materializer(uow, multiplier=(1, 1), items=(2, 2), quantity=(2, 2))

        outcome = await materializer.materialize(_source_order(), snapshot, RunContext.new(RUN_AT))

        written = outcome.orders[0]
        assert written.item_count == 1
        assert written.dropped_items == 1
        assert written.total_amount == known.price * 2

    async def test_empty_catalog_still_writes_order(self, uow, session_factory):
        materializer = _materializer(uow, multiplier=(1, 1))

        outcome = await materializer.materialize(_source_order(), CatalogSnapshot([]), RunContext.new(RUN_AT))

        assert outcome.orders[0].total_amount == Decimal("0")

    async def test_totals_survive_price_changes(self, uow, session_factory, catalog, product_records):
        materializer = _materializer(uow, multiplier=(2, 2), items=(3, 3))
        for i in range(3):
            await materializer.materialize(_source_order(i), catalog, RunContext.new(RUN_AT))
        async with session_factory() as db:
            totals_before = (await db.execute(select(Order.id, Order.total_amount))).all()

        repriced = [r.model_copy(update={"price": r.price * 3}) for r in product_records]
        await CatalogReconciler(uow).reconcile(repriced)

        async with session_factory() as db:
            assert (await db.execute(select(Order.id, Order.total_amount))).all() == totals_before
            await _order_totals_match_items(db)

    async def test_unbounded_runs_append(self, uow, session_factory, catalog):
        materializer = _materializer(uow, multiplier=(2, 2))

        await materializer.materialize(_source_order(), catalog, RunContext.new(RUN_AT))
        await materializer.materialize(_source_order(), catalog, RunContext.new(RUN_AT + timedelta(hours=1)))

        async with session_factory() as db:
            assert await db.scalar(select(func.count(Order.id))) == 4

    async def test_bounded_runs_replace_items(self, uow, session_factory, catalog):
        materializer = _materializer(uow, IdentityMode.BOUNDED_UPSERT, multiplier=(2, 2))

        first = await materializer.materialize(_source_order(), catalog, RunContext.new(RUN_AT))
        second = await materializer.materialize(_source_order(), catalog, RunContext.new(RUN_AT + timedelta(hours=1)))

        assert all(o.created for o in first.orders)
        assert not any(o.created for o in second.orders)
        assert [o.order_id for o in first.orders] == [o.order_id for o in second.orders]
        async with session_factory() as db:
            assert await db.scalar(select(func.count(Order.id))) == 2
            item_count = await db.scalar(select(func.count(OrderItem.id)))
            assert item_count == sum(o.item_count for o in second.orders)
            await _order_totals_match_items(db)

    async def test_hashed_placement_inside_backdate_window(self, uow, session_factory, catalog):
        rng = random.Random(3)
        materializer = OrderMaterializer(
            uow=uow,
            shaper=SyntheticShaper(rng),
            status_strategy=SourceStatusStrategy(),
            placement_strategy=HashedBackdatePlacement(days=14),
        )

        await materializer.materialize(_source_order(), catalog, RunContext.new(RUN_AT))

        async with session_factory() as db:
            for placed_at in (await db.scalars(select(Order.placed_at))).all():
                assert RUN_AT - timedelta(days=14) < placed_at <= RUN_AT


class TestUnitIsolation:
    """Tests for one transaction per materialized order"""

    async def test_failed_copy_does_not_roll_back_siblings(self, session_factory, catalog):
        uow = FailingUnitOfWork(session_factory, fail_on=2)
        materializer = _materializer(uow, multiplier=(3, 3))

        outcome = await materializer.materialize(_source_order(), catalog, RunContext.new(RUN_AT))

        assert [o.expansion_index for o in outcome.orders] == [0, 2]
        assert len(outcome.errors) == 1
        assert outcome.errors[0].source_order_id == "1"
        assert outcome.errors[0].expansion_index == 1
        async with session_factory() as db:
            external_ids = (await db.scalars(select(Order.external_id))).all()
            assert sorted(external_ids) == sorted(o.external_id for o in outcome.orders)
            item_count = await db.scalar(select(func.count(OrderItem.id)))
            assert item_count == sum(o.item_count for o in outcome.orders)
            await _order_totals_match_items(db)

    async def test_failed_bounded_rewrite_keeps_previous_items(self, session_factory, catalog, product_records):
        in_stock = CatalogSnapshot(
            CatalogEntry(r.external_id, catalog.get(r.external_id).price) for r in product_records
        )
        uow = FailingUnitOfWork(session_factory, fail_on=2)
        materializer = _materializer(uow, IdentityMode.BOUNDED_UPSERT, multiplier=(1, 1), items=(2, 2))

        first = await materializer.materialize(_source_order(), in_stock, RunContext.new(RUN_AT))
        async with session_factory() as db:
            items_before = (
                await db.execute(
                    select(OrderItem.product_id, OrderItem.quantity, OrderItem.unit_price)
                    .order_by(OrderItem.product_id)
                )
            ).all()
            total_before = await db.scalar(select(Order.total_amount))

        second = await materializer.materialize(_source_order(), in_stock, RunContext.new(RUN_AT + timedelta(hours=1)))

        assert first.orders[0].item_count == 2
        assert second.orders == []
        assert len(second.errors) == 1
        async with session_factory() as db:
            items_after = (
                await db.execute(
                    select(OrderItem.product_id, OrderItem.quantity, OrderItem.unit_price)
                    .order_by(OrderItem.product_id)
                )
            ).all()
            assert items_after == items_before
            assert await db.scalar(select(Order.total_amount)) == total_before
