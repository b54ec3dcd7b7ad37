#!/usr/bin/env python3
"""
Chunked Upload Script
Sends a local file through the resumable upload protocol.

Usage:
    python -m catalog_loader.scripts.upload_file images/lamp.jpg
    catalog-upload data/products.csv --import
    catalog-upload data/products.csv --resume 3f1c...  # continue an interrupted upload
"""

import argparse
import logging
import sys
from pathlib import Path

from catalog_loader.config.settings import get_settings
from catalog_loader.dependencies import get_import_pipeline, get_upload_engine
from catalog_loader.errors import CatalogLoaderError
from catalog_loader.uploads.client import ChunkedUploader

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def main():
    """Upload a file and optionally import it as a catalog CSV."""
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Upload a file in resumable chunks")
    parser.add_argument("path", type=str, help="File to upload")
    parser.add_argument("--resume", type=str, metavar="TOKEN", help="Resume an existing upload session")
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=settings.chunk_size,
        help=f"Chunk size in bytes (default: {settings.chunk_size})",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=settings.upload_workers,
        help=f"Parallel chunk uploads (default: {settings.upload_workers})",
    )
    parser.add_argument("--mime-type", type=str, default=None, help="Override the detected MIME type")
    parser.add_argument(
        "--import",
        dest="run_import",
        action="store_true",
        help="Import the uploaded file as a product CSV once complete",
    )

    args = parser.parse_args()

    path = Path(args.path)
    if not path.exists():
        logger.error(f"File not found: {path}")
        sys.exit(1)

    uploader = ChunkedUploader(
        engine=get_upload_engine(),
        chunk_size=args.chunk_size,
        max_workers=args.workers,
        retry_attempts=settings.chunk_retry_attempts,
        retry_delay=settings.chunk_retry_delay,
    )

    try:
        report = uploader.upload_file(path, mime_type=args.mime_type, session_token=args.resume)
    except (ValueError, CatalogLoaderError) as e:
        logger.error(f"Upload failed: {e}")
        sys.exit(1)

    logger.info(f"Session token: {report.token}")
    logger.info(f"Chunks delivered: {report.delivered_chunks}, skipped: {report.skipped_chunks}")

    if not report.success:
        if report.failed_chunks:
            logger.error(f"Failed chunks: {report.failed_chunks}")
        logger.error(f"Upload incomplete: {report.message}")
        logger.error(f"Resume with: --resume {report.token}")
        sys.exit(1)

    completion = report.completion
    logger.info(f"Upload complete: {completion.path}")
    if completion.linked_records:
        logger.info(f"Linked to {completion.linked_records} waiting products")

    if args.run_import:
        summary = get_import_pipeline().import_upload(report.token)
        logger.info(
            f"Import {summary.status}: {summary.imported} imported, {summary.updated} updated, "
            f"{summary.invalid} invalid, {summary.duplicates} duplicates"
        )
        display = summary.display_errors(settings.error_display_limit)
        for error in display.shown:
            logger.warning(f"  - Row {error.row}: {'; '.join(error.errors)}")
        if display.remaining:
            logger.warning(f"... and {display.remaining} more errors")
        if not summary.success:
            logger.error(f"Import failed: {summary.error_message}")
            sys.exit(1)


if __name__ == "__main__":
    main()
