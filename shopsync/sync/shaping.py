"""
Synthetic data shaping for materialized orders.

The upstream feed is small and static, so each run reshapes it: source orders
are copied a random number of times, get a fresh status, a placement time
inside a recent window and a random basket. Every random decision goes through
one injected ``random.Random`` so a seeded run is reproducible.
"""

import hashlib
import random
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple, TypeVar

from shopsync.config.settings import PlacementMode, StatusStrategyName, SyncSettings
from shopsync.database.models import OrderStatus

T = TypeVar("T")

ORDER_STATUSES: Tuple[OrderStatus, ...] = (
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
)


class SyntheticShaper:
    """Draws expansion counts, baskets and quantities from inclusive ranges."""

    def __init__(
        self,
        rng: random.Random,
        multiplier: Tuple[int, int] = (1, 3),
        items: Tuple[int, int] = (1, 3),
        quantity: Tuple[int, int] = (1, 5),
    ):
        for name, (low, high) in (("multiplier", multiplier), ("items", items), ("quantity", quantity)):
            if low < 1 or low > high:
                raise ValueError(f"invalid {name} range: {low}..{high}")
        self.rng = rng
        self.multiplier = multiplier
        self.items = items
        self.quantity_range = quantity

    @classmethod
    def from_settings(cls, sync: SyncSettings, rng: Optional[random.Random] = None) -> "SyntheticShaper":
        return cls(
            rng=rng or random.Random(sync.random_seed),
            multiplier=(sync.multiplier_min, sync.multiplier_max),
            items=(sync.items_min, sync.items_max),
            quantity=(sync.quantity_min, sync.quantity_max),
        )

    def expansion_count(self) -> int:
        return self.rng.randint(*self.multiplier)

    def pick_products(self, candidates: Sequence[T]) -> List[T]:
        """
        Pick distinct products for one basket.

        Returns an empty list only when there is nothing to pick from.
        """
        if not candidates:
            return []
        size = min(self.rng.randint(*self.items), len(candidates))
        return self.rng.sample(list(candidates), size)

    def quantity(self) -> int:
        return self.rng.randint(*self.quantity_range)


# =============================================================================
# STATUS STRATEGIES
# =============================================================================

class StatusStrategy(ABC):
    """Decides the status of a materialized order"""

    @abstractmethod
    def assign(self, source_status: Optional[str]) -> OrderStatus:
        pass


class RandomStatusStrategy(StatusStrategy):
    """Ignore the feed and draw uniformly from every status"""

    def __init__(self, rng: random.Random):
        self.rng = rng

    def assign(self, source_status: Optional[str]) -> OrderStatus:
        return self.rng.choice(ORDER_STATUSES)


class SourceStatusStrategy(StatusStrategy):
    """Trust the feed status; anything unrecognised becomes Processing"""

    _lookup = {status.value.lower(): status for status in ORDER_STATUSES}

    def assign(self, source_status: Optional[str]) -> OrderStatus:
        if not source_status:
            return OrderStatus.PROCESSING
        return self._lookup.get(source_status.strip().lower(), OrderStatus.PROCESSING)


# =============================================================================
# PLACEMENT STRATEGIES
# =============================================================================

class PlacementStrategy(ABC):
    """Decides when a materialized order was placed"""

    @abstractmethod
    def place(self, source_order_id: str, expansion_index: int, run_at: datetime) -> datetime:
        pass


class RecentJitterPlacement(PlacementStrategy):
    """Uniformly inside the last ``minutes`` before the run"""

    def __init__(self, rng: random.Random, minutes: int = 60):
        self.rng = rng
        self.window = timedelta(minutes=minutes)

    def place(self, source_order_id: str, expansion_index: int, run_at: datetime) -> datetime:
        offset = self.rng.randrange(int(self.window.total_seconds()))
        return run_at - timedelta(seconds=offset)


class HashedBackdatePlacement(PlacementStrategy):
    """
    Deterministic spread over the last ``days`` days.

    The offset is derived from a SHA-256 of the source id and expansion index,
    so the same source order always lands at the same distance from the run.
    """

    def __init__(self, days: int = 14):
        self.window_seconds = days * 86400

    def place(self, source_order_id: str, expansion_index: int, run_at: datetime) -> datetime:
        digest = hashlib.sha256(f"{source_order_id}:{expansion_index}".encode("utf-8")).digest()
        offset = int.from_bytes(digest[:8], "big") % self.window_seconds
        return run_at - timedelta(seconds=offset)


def build_status_strategy(name: StatusStrategyName, rng: random.Random) -> StatusStrategy:
    if name == StatusStrategyName.SOURCE:
        return SourceStatusStrategy()
    return RandomStatusStrategy(rng)


def build_placement_strategy(sync: SyncSettings, rng: random.Random) -> PlacementStrategy:
    if sync.placement_mode == PlacementMode.HASHED_BACKDATE:
        return HashedBackdatePlacement(days=sync.backdate_days)
    return RecentJitterPlacement(rng, minutes=sync.jitter_minutes)
