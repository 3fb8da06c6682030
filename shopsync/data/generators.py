"""
Synthetic Feed Generator

Produces product and order feeds shaped like the upstream store API, for
local development and tests:
- Products across categories with brands, prices, ratings and availability
- Orders referencing those products, with a status drawn from the store's set
- Optional JSON output that a local mock server can publish as-is
"""

import json
import random
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from faker import Faker

logger = structlog.get_logger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

CATEGORIES = {
    "Electronics": ["Headphones", "Speaker", "Charger", "Keyboard", "Monitor"],
    "Clothing": ["Jacket", "T-Shirt", "Sneakers", "Jeans", "Scarf"],
    "Home": ["Lamp", "Blender", "Pillow", "Kettle", "Rug"],
    "Sports": ["Yoga Mat", "Dumbbell", "Water Bottle", "Racket", "Helmet"],
    "Beauty": ["Serum", "Lipstick", "Shampoo", "Perfume", "Brush Set"],
}

UNITS = ["piece", "pack", "set", "pair"]

FEED_STATUSES = [
    ("processing", 0.25),
    ("shipped", 0.25),
    ("delivered", 0.40),
    ("cancelled", 0.10),
]


# =============================================================================
# GENERATORS
# =============================================================================

class FeedGenerator:
    """
    Generate feed payloads with a private Faker and RNG.

    Example:
        feed = FeedGenerator(seed=7)
        products = feed.products(20)
        orders = feed.orders(10, products)
    """

    def __init__(self, seed: Optional[int] = None, locale: str = "en_US"):
        self.fake = Faker(locale)
        self.rng = random.Random(seed)
        if seed is not None:
            self.fake.seed_instance(seed)

    def product(self, product_id: int) -> Dict[str, Any]:
        category = self.rng.choice(list(CATEGORIES))
        kind = self.rng.choice(CATEGORIES[category])
        brand = self.fake.company().split(",")[0].split(" ")[0]

        return {
            "product_id": product_id,
            "name": f"{brand} {kind}",
            "description": self.fake.sentence(nb_words=10),
            "price": round(self.rng.uniform(5, 500), 2),
            "unit": self.rng.choice(UNITS),
            "image": f"https://picsum.photos/seed/{product_id}/400/400",
            "discount": self.rng.choice([0, 0, 0, 5, 10, 15, 20]),
            "availability": self.rng.random() > 0.1,
            "brand": brand,
            "category": category,
            "rating": round(self.rng.uniform(3.0, 5.0), 1),
        }

    def products(self, n: int = 20) -> List[Dict[str, Any]]:
        """Generate n products with ids 1..n"""
        return [self.product(i) for i in range(1, n + 1)]

    def order(self, order_id: int, products: List[Dict[str, Any]]) -> Dict[str, Any]:
        count = self.rng.randint(1, min(3, len(products))) if products else 0
        picked = self.rng.sample(products, count)
        items = [
            {"product_id": p["product_id"], "quantity": self.rng.randint(1, 4)}
            for p in picked
        ]
        total = sum(p["price"] * item["quantity"] for p, item in zip(picked, items))
        statuses, weights = zip(*FEED_STATUSES)

        return {
            "order_id": order_id,
            "user_id": self.rng.randint(1, 50),
            "items": items,
            "total_price": round(total, 2),
            "status": self.rng.choices(statuses, weights=weights)[0],
        }

    def orders(self, n: int, products: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Generate n orders with ids 1..n over the given products"""
        return [self.order(i, products) for i in range(1, n + 1)]

    def generate(self, products: int = 20, orders: int = 10) -> Dict[str, List[Dict[str, Any]]]:
        product_feed = self.products(products)
        return {
            "products": product_feed,
            "orders": self.orders(orders, product_feed),
        }

    def write(self, output_dir: Path, products: int = 20, orders: int = 10) -> Dict[str, Path]:
        """Write products.json and orders.json under output_dir."""
        output_dir.mkdir(parents=True, exist_ok=True)
        paths = {}
        for name, payload in self.generate(products, orders).items():
            path = output_dir / f"{name}.json"
            path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            paths[name] = path
            logger.info("Feed written", feed=name, records=len(payload), path=str(path))
        return paths
