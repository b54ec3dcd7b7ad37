#!/usr/bin/env python3
"""
Product Import Script
Loads catalog CSV data into the database using the CSV import pipeline.

Usage:
    python -m catalog_loader.scripts.ingest_products data/products.csv
    catalog-ingest data/products.csv --dry-run --show-errors 20
"""

import argparse
import logging
import sys
from pathlib import Path

from catalog_loader.config.settings import get_settings
from catalog_loader.ingestion.csv_reader import CsvStreamReader
from catalog_loader.models.product import validate_row

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def dry_run(csv_path: Path, show_errors: int) -> int:
    """Validate every row without touching the database. Returns the invalid count."""
    total = invalid = 0
    shown = 0

    with open(csv_path, "rb") as f:
        reader = CsvStreamReader(f)
        for row in reader:
            total += 1
            errors = [row.error] if row.is_malformed else validate_row(row.data).errors
            if not errors:
                continue

            invalid += 1
            if shown < show_errors:
                logger.warning(f"  - Row {row.number}: {'; '.join(errors)}")
                shown += 1

        logger.info(f"Encoding: {reader.encoding}")
        logger.info(f"Columns: {reader.headers}")

    logger.info(f"Rows checked: {total}, invalid: {invalid}")
    if invalid > shown:
        logger.info(f"... and {invalid - shown} more errors")
    return invalid


def main():
    """Main function to run the CSV import."""
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Import product data from CSV")
    parser.add_argument("csv_path", type=str, help="Path to CSV file containing product data")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=settings.import_batch_size,
        help=f"Number of rows to process at once (default: {settings.import_batch_size})",
    )
    parser.add_argument(
        "--show-errors",
        type=int,
        default=settings.error_display_limit,
        help=f"Number of row errors to display (default: {settings.error_display_limit})",
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="Run validation only without database writes"
    )

    args = parser.parse_args()

    csv_path = Path(args.csv_path)
    if not csv_path.exists():
        logger.error(f"CSV file not found: {csv_path}")
        sys.exit(1)

    logger.info(f"Starting import of {csv_path}")

    if args.dry_run:
        logger.info("Running in DRY RUN mode - no database writes")
        try:
            invalid = dry_run(csv_path, args.show_errors)
        except Exception as e:
            logger.error(f"Validation failed: {e}")
            sys.exit(1)
        sys.exit(1 if invalid else 0)

    # Imported late so a dry run never opens the database
    from catalog_loader.dependencies import get_import_pipeline

    pipeline = get_import_pipeline()
    pipeline.batch_size = args.batch_size
    summary = pipeline.import_file(csv_path)

    logger.info("=" * 60)
    logger.info(f"IMPORT {summary.status.upper()} (run {summary.id})")
    logger.info("=" * 60)
    logger.info(f"Total rows processed: {summary.total_rows}")
    logger.info(f"Products imported: {summary.imported}")
    logger.info(f"Products updated: {summary.updated}")
    logger.info(f"Invalid rows: {summary.invalid}")
    logger.info(f"Duplicates skipped: {summary.duplicates}")

    display = summary.display_errors(args.show_errors)
    if display.shown:
        logger.warning(f"Errors encountered: {len(summary.row_errors)}")
        for error in display.shown:
            logger.warning(f"  - Row {error.row}: {'; '.join(error.errors)}")
        if display.remaining:
            logger.warning(f"... and {display.remaining} more errors")

    if not summary.success:
        logger.error(f"Import failed: {summary.error_message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
