"""
Order Materializer

Turns each feed order into one or more persisted orders with line items.

Per source order the materializer:
1. Draws an expansion count; each copy is an independent order
2. Assigns a status through the configured status strategy
3. Places the order in time through the configured placement strategy
4. Picks a basket of distinct available products with random quantities
5. Prices lines at the catalog price seen in this run's feed
6. Writes order + items in one transaction per copy

Lines whose product is not in the products table are dropped inside the
transaction and the total is the sum of the lines actually written, so an
order with nothing resolvable is still created with a zero total.
"""

import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from shopsync.config.settings import IdentityMode, SyncSettings
from shopsync.database.models import Order, OrderItem, OrderStatus, Product, utcnow
from shopsync.ingestion.source_client import OrderFeedRecord, ProductFeedRecord
from shopsync.sync.errors import MaterializeError, StoreUnavailable
from shopsync.sync.shaping import (
    PlacementStrategy,
    StatusStrategy,
    SyntheticShaper,
    build_placement_strategy,
    build_status_strategy,
)
from shopsync.sync.unit_of_work import UnitOfWork

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


# =============================================================================
# RUN INPUTS
# =============================================================================

@dataclass(frozen=True)
class CatalogEntry:
    """Product as seen by this run's feed"""
    external_id: str
    price: Decimal
    available: bool = True


class CatalogSnapshot:
    """Prices and availability captured at fetch time, in feed order."""

    def __init__(self, entries: Iterable[CatalogEntry]):
        self._entries: Dict[str, CatalogEntry] = {}
        for entry in entries:
            self._entries[entry.external_id] = entry

    @classmethod
    def from_feed(cls, products: Iterable[ProductFeedRecord]) -> "CatalogSnapshot":
        return cls(
            CatalogEntry(
                external_id=p.external_id,
                price=p.price.quantize(CENT, rounding=ROUND_HALF_UP),
                available=p.availability,
            )
            for p in products
        )

    def available(self) -> List[CatalogEntry]:
        return [e for e in self._entries.values() if e.available]

    def get(self, external_id: str) -> Optional[CatalogEntry]:
        return self._entries.get(external_id)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class RunContext:
    """Identity and clock of one sync run"""
    run_id: str
    started_at: datetime

    @classmethod
    def new(cls, started_at: Optional[datetime] = None) -> "RunContext":
        return cls(run_id=uuid.uuid4().hex[:12], started_at=started_at or utcnow())

    @property
    def stamp(self) -> str:
        return self.started_at.strftime("%Y%m%d%H%M%S%f")


# =============================================================================
# PLANS AND OUTCOMES
# =============================================================================

@dataclass
class PlannedLine:
    external_product_id: str
    quantity: int
    unit_price: Decimal


@dataclass
class OrderPlan:
    """Everything random about one materialized order, decided before writing"""
    source_order_id: str
    expansion_index: int
    external_id: str
    customer_id: Optional[str]
    status: OrderStatus
    placed_at: datetime
    lines: List[PlannedLine] = field(default_factory=list)


@dataclass
class MaterializedOrder:
    order_id: int
    external_id: str
    source_order_id: str
    expansion_index: int
    status: OrderStatus
    total_amount: Decimal
    item_count: int
    dropped_items: int
    created: bool


@dataclass
class MaterializeOutcome:
    """Result of materializing one source order"""
    source_order_id: str
    orders: List[MaterializedOrder] = field(default_factory=list)
    errors: List[MaterializeError] = field(default_factory=list)


# =============================================================================
# MATERIALIZER
# =============================================================================

class OrderMaterializer:
    """Writes shaped copies of feed orders, one unit of work per copy."""

    def __init__(
        self,
        uow: UnitOfWork,
        shaper: SyntheticShaper,
        status_strategy: StatusStrategy,
        placement_strategy: PlacementStrategy,
        identity_mode: IdentityMode = IdentityMode.UNBOUNDED_APPEND,
    ):
        self.uow = uow
        self.shaper = shaper
        self.status_strategy = status_strategy
        self.placement_strategy = placement_strategy
        self.identity_mode = identity_mode

    @classmethod
    def from_settings(
        cls,
        uow: UnitOfWork,
        sync: SyncSettings,
        rng: Optional[random.Random] = None,
    ) -> "OrderMaterializer":
        rng = rng or random.Random(sync.random_seed)
        return cls(
            uow=uow,
            shaper=SyntheticShaper.from_settings(sync, rng),
            status_strategy=build_status_strategy(sync.status_strategy, rng),
            placement_strategy=build_placement_strategy(sync, rng),
            identity_mode=sync.identity_mode,
        )

    def external_id_for(self, source_order_id: str, expansion_index: int, run: RunContext) -> str:
        """
        Order identity for one copy.

        The index is always the last dash-separated segment, so distinct
        (source id, index) pairs never share an id even when feed ids
        contain dashes themselves.
        """
        if self.identity_mode == IdentityMode.BOUNDED_UPSERT:
            return f"{source_order_id}-{expansion_index}"
        return f"{source_order_id}-{run.stamp}-{expansion_index}"

    def plan(
        self,
        source_order: OrderFeedRecord,
        catalog: CatalogSnapshot,
        run: RunContext,
    ) -> List[OrderPlan]:
        """Draw every random decision for one source order."""
        source_id = source_order.source_id
        candidates = catalog.available()
        plans = []

        for index in range(self.shaper.expansion_count()):
            lines = [
                PlannedLine(
                    external_product_id=entry.external_id,
                    quantity=self.shaper.quantity(),
                    unit_price=entry.price,
                )
                for entry in self.shaper.pick_products(candidates)
            ]
            plans.append(
                OrderPlan(
                    source_order_id=source_id,
                    expansion_index=index,
                    external_id=self.external_id_for(source_id, index, run),
                    customer_id=source_order.customer_id,
                    status=self.status_strategy.assign(source_order.status),
                    placed_at=self.placement_strategy.place(source_id, index, run.started_at),
                    lines=lines,
                )
            )

        return plans

    async def materialize(
        self,
        source_order: OrderFeedRecord,
        catalog: CatalogSnapshot,
        run: RunContext,
    ) -> MaterializeOutcome:
        """
        Materialize every copy of one source order.

        A copy that fails is rolled back alone and reported in the outcome.

        Raises:
            StoreUnavailable: If the store stops answering
        """
        outcome = MaterializeOutcome(source_order_id=source_order.source_id)

        for plan in self.plan(source_order, catalog, run):
            try:
                outcome.orders.append(await self.write(plan))
            except StoreUnavailable as e:
                if not await self.uow.is_reachable():
                    raise
                self._record_failure(outcome, plan, e)
            except (SQLAlchemyError, ValueError, TypeError) as e:
                self._record_failure(outcome, plan, e)

        return outcome

    async def write(self, plan: OrderPlan) -> MaterializedOrder:
        """Write one planned order and its items in a single transaction."""
        now = utcnow()

        async with self.uow.transaction() as session:
            order = None
            if self.identity_mode == IdentityMode.BOUNDED_UPSERT:
                order = await session.scalar(
                    select(Order).where(Order.external_id == plan.external_id)
                )

            created = order is None
            if created:
                order = Order(external_id=plan.external_id, created_at=now)
                session.add(order)
            else:
                await session.execute(delete(OrderItem).where(OrderItem.order_id == order.id))

            wanted = [line.external_product_id for line in plan.lines]
            resolved: Dict[str, int] = {}
            if wanted:
                rows = await session.execute(
                    select(Product.external_id, Product.id).where(Product.external_id.in_(wanted))
                )
                resolved = {external_id: pk for external_id, pk in rows.all()}

            items = []
            total = Decimal("0.00")
            for line in plan.lines:
                product_pk = resolved.get(line.external_product_id)
                if product_pk is None:
                    logger.debug(
                        "Dropping line for unknown product",
                        external_id=plan.external_id,
                        product=line.external_product_id,
                    )
                    continue
                items.append(
                    OrderItem(product_id=product_pk, quantity=line.quantity, unit_price=line.unit_price)
                )
                total += line.unit_price * line.quantity

            order.source_order_id = plan.source_order_id
            order.customer_id = plan.customer_id
            order.status = plan.status
            order.placed_at = plan.placed_at
            order.total_amount = total
            order.updated_at = now
            order.last_synced_at = now

            await session.flush()
            for item in items:
                item.order_id = order.id
            session.add_all(items)

            return MaterializedOrder(
                order_id=order.id,
                external_id=plan.external_id,
                source_order_id=plan.source_order_id,
                expansion_index=plan.expansion_index,
                status=plan.status,
                total_amount=total,
                item_count=len(items),
                dropped_items=len(plan.lines) - len(items),
                created=created,
            )

    @staticmethod
    def _record_failure(outcome: MaterializeOutcome, plan: OrderPlan, exc: Exception) -> None:
        error = MaterializeError(plan.source_order_id, plan.expansion_index, str(exc))
        logger.warning(
            "Order materialization failed",
            source_order_id=plan.source_order_id,
            expansion_index=plan.expansion_index,
            error=error.reason,
        )
        outcome.errors.append(error)
