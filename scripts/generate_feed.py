"""
Synthetic Feed Generator CLI

Writes products.json and orders.json for a local mock of the store API.

Usage:
    python scripts/generate_feed.py --products 50 --orders 20 --seed 42
"""

import argparse
from pathlib import Path

from shopsync.config.logging import configure_logging
from shopsync.data import FeedGenerator

OUTPUT_DIR = Path(__file__).parent.parent / "data" / "feed"


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate a synthetic store feed")
    parser.add_argument("--products", type=int, default=20, help="Number of products (default: 20)")
    parser.add_argument("--orders", type=int, default=10, help="Number of orders (default: 10)")
    parser.add_argument("--seed", type=int, default=None, help="Seed for a reproducible feed")
    parser.add_argument("--output", type=Path, default=OUTPUT_DIR, help="Output directory")
    args = parser.parse_args()

    configure_logging()
    paths = FeedGenerator(seed=args.seed).write(args.output, products=args.products, orders=args.orders)

    for name, path in paths.items():
        print(f"{name}: {path}")


if __name__ == "__main__":
    main()
