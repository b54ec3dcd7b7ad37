#!/usr/bin/env python3
"""
Mock Catalog Generator
Writes a product CSV for exercising the streaming import at volume.

Usage:
    python -m catalog_loader.scripts.generate_mock_data data/mock_products.csv --rows 100000 --images 100
"""

import argparse
import csv
import logging
import random
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

HEADER = ["sku", "name", "price", "category", "stock", "description", "image"]
CATEGORIES = ["Electronics", "Clothing", "Home & Garden", "Sports", "Books", "Toys", "Food & Beverage"]
ADJECTIVES = ["Classic", "Compact", "Deluxe", "Eco", "Portable", "Smart", "Vintage"]
NOUNS = ["Lamp", "Chair", "Backpack", "Kettle", "Speaker", "Jacket", "Puzzle"]

# Each invalid row breaks exactly one rule
INVALID_VARIANTS = [
    lambda row: row.update(price=""),
    lambda row: row.update(price="-4.99"),
    lambda row: row.update(stock="many"),
    lambda row: row.update(name=""),
]


def image_name(index: int) -> str:
    return f"test_image_{index:04d}.jpg"


def generate_rows(
    count: int,
    images: int = 0,
    duplicate_every: int = 20,
    invalid_every: int = 50,
    seed: Optional[int] = None,
    stats: Optional[Dict[str, int]] = None,
) -> Iterator[List[str]]:
    """
    Yield `count` CSV rows.

    Every `duplicate_every`-th row repeats the SKU of an earlier valid row,
    every `invalid_every`-th row fails validation (invalid wins when both
    apply). The first `images` rows reference image files by name.
    Pass a dict as `stats` to receive the duplicate and invalid counts.
    """
    rng = random.Random(seed)
    valid_skus: List[str] = []
    counts = stats if stats is not None else {}
    counts.update(rows=0, duplicates=0, invalid=0)

    for i in range(1, count + 1):
        category = rng.choice(CATEGORIES)
        row = {
            "sku": f"SKU-{i:06d}",
            "name": f"{rng.choice(ADJECTIVES)} {rng.choice(NOUNS)} {category}",
            "price": f"{rng.uniform(5, 999):.2f}",
            "category": category,
            "stock": str(rng.randint(0, 1000)),
            "description": f"Mock product {i} for bulk import testing.",
            "image": image_name(i) if i <= images else "",
        }

        if invalid_every and i % invalid_every == 0:
            rng.choice(INVALID_VARIANTS)(row)
            counts["invalid"] += 1
        elif duplicate_every and i % duplicate_every == 0 and valid_skus:
            row["sku"] = rng.choice(valid_skus)
            counts["duplicates"] += 1
        else:
            valid_skus.append(row["sku"])

        counts["rows"] += 1
        yield [row[column] for column in HEADER]


def write_mock_csv(output_file: Union[str, Path], rows: int, images: int = 0, **options) -> Dict[str, int]:
    """Write the CSV row by row and return the generated counts."""
    output_path = Path(output_file)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    stats: Dict[str, int] = {}

    with open(output_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(HEADER)
        for n, row in enumerate(generate_rows(rows, images=images, stats=stats, **options), start=1):
            writer.writerow(row)
            if n % 10000 == 0:
                logger.info(f"Progress: {n} rows written")

    return stats


def main():
    """Generate a mock catalog CSV."""
    parser = argparse.ArgumentParser(description="Generate mock product CSV data")
    parser.add_argument("output", type=str, help="Path of the CSV file to write")
    parser.add_argument("--rows", type=int, default=10000, help="Number of CSV rows (default: 10000)")
    parser.add_argument(
        "--images", type=int, default=100, help="Rows that reference an image name (default: 100)"
    )
    parser.add_argument(
        "--duplicate-every", type=int, default=20, help="Repeat an earlier SKU every N rows (0 disables)"
    )
    parser.add_argument(
        "--invalid-every", type=int, default=50, help="Write an invalid row every N rows (0 disables)"
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed for reproducible output")

    args = parser.parse_args()

    logger.info(f"Generating {args.rows} CSV rows...")
    stats = write_mock_csv(
        args.output,
        args.rows,
        images=args.images,
        duplicate_every=args.duplicate_every,
        invalid_every=args.invalid_every,
        seed=args.seed,
    )

    output_path = Path(args.output)
    logger.info(f"CSV file created at: {output_path}")
    logger.info(f"File size: {output_path.stat().st_size / 1024 / 1024:.2f} MB")
    logger.info(f"Duplicates: {stats['duplicates']}, invalid rows: {stats['invalid']}")


if __name__ == "__main__":
    main()
