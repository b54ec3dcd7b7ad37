"""
CSV Import Pipeline
Streams a catalog CSV in batches with validation, in-run deduplication
and per-row upserts, recording the outcome as an ImportRun.
"""

import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Set, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from catalog_loader.catalog.assets import AssetLinker
from catalog_loader.catalog.store import CatalogStore, SqlCatalogStore
from catalog_loader.db.models import ImportRun, UploadSession, utcnow
from catalog_loader.db.session import session_scope
from catalog_loader.errors import (
    CatalogLoaderError,
    ImportFailedError,
    ResourceNotFoundError,
    UploadConflictError,
)
from catalog_loader.ingestion.csv_reader import CsvRow, CsvStreamReader
from catalog_loader.models.import_run import ImportRunSummary, ImportStatus, RowError
from catalog_loader.models.product import REQUIRED_COLUMNS, validate_row
from catalog_loader.models.upload import UploadStatus
from catalog_loader.uploads.storage import ChunkStore

logger = logging.getLogger(__name__)


@dataclass
class ImportStats:
    """Counters and diagnostics owned by a single import run."""

    total_rows: int = 0
    imported: int = 0
    updated: int = 0
    invalid: int = 0
    duplicates: int = 0
    errors: List[RowError] = field(default_factory=list)
    seen_keys: Set[str] = field(default_factory=set)

    def add_error(self, row: int, messages: List[str]) -> None:
        self.invalid += 1
        self.errors.append(RowError(row=row, errors=messages))

    def counters(self) -> Dict[str, int]:
        return {
            "total_rows": self.total_rows,
            "imported": self.imported,
            "updated": self.updated,
            "invalid": self.invalid,
            "duplicates": self.duplicates,
        }


class CSVImportPipeline:
    """
    Main CSV import pipeline.
    Handles batched reading, validation, deduplication and catalog upserts.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        catalog: Optional[CatalogStore] = None,
        asset_linker: Optional[AssetLinker] = None,
        chunk_store: Optional[ChunkStore] = None,
        batch_size: int = 1000,
    ):
        """
        Initialize the import pipeline.

        Args:
            session_factory: SQLAlchemy session factory for import_runs
            catalog: Catalog to upsert into (SQL catalog on the same database by default)
            asset_linker: Resolves image names to completed uploads
            chunk_store: Store holding assembled uploads, needed by import_upload
            batch_size: Number of rows buffered between progress checkpoints
        """
        self.session_factory = session_factory
        self.catalog = catalog or SqlCatalogStore(session_factory)
        self.asset_linker = asset_linker
        self.chunk_store = chunk_store
        self.batch_size = batch_size

    # === ENTRY POINTS ===

    def import_csv(self, stream: BinaryIO, filename: str) -> ImportRunSummary:
        """
        Import a CSV stream.

        Args:
            stream: Binary stream positioned at the header row
            filename: Display name recorded on the run

        Returns:
            Summary of the finished run (completed or failed)
        """
        start_time = datetime.now()
        run_id = self._create_run(filename)
        stats = ImportStats()

        logger.info(f"Starting import run {run_id} for {filename}")

        try:
            self._process_stream(stream, stats)
        except Exception as e:
            logger.error(f"Import run {run_id} failed: {str(e)}")
            logger.error(traceback.format_exc())
            return self._finish_run(run_id, stats, ImportStatus.FAILED, error_message=str(e))

        processing_time = (datetime.now() - start_time).total_seconds()
        logger.info(f"Import run {run_id} completed in {processing_time:.1f} seconds")
        self._log_statistics(stats)

        return self._finish_run(run_id, stats, ImportStatus.COMPLETED)

    def import_file(self, file_path: Union[str, Path]) -> ImportRunSummary:
        """Import a CSV file from disk."""
        file_path = Path(file_path)
        try:
            stream = open(file_path, "rb")
        except OSError as e:
            run_id = self._create_run(file_path.name)
            message = "CSV file not found" if isinstance(e, FileNotFoundError) else f"Could not open CSV file: {e}"
            logger.error(f"Import of {file_path} failed: {message}")
            return self._finish_run(run_id, ImportStats(), ImportStatus.FAILED, error_message=message)

        with stream:
            return self.import_csv(stream, file_path.name)

    def import_upload(self, session_token: str) -> ImportRunSummary:
        """
        Import the assembled file of a completed upload session.

        Raises:
            ResourceNotFoundError: If the session does not exist
            UploadConflictError: If the upload is not completed
        """
        if self.chunk_store is None:
            raise ImportFailedError("No chunk store configured for upload imports")

        with session_scope(self.session_factory) as session:
            upload = session.query(UploadSession).filter(UploadSession.token == session_token).first()
            if upload is None:
                raise ResourceNotFoundError("Upload session", session_token)
            if upload.status != UploadStatus.COMPLETED.value or not upload.final_path:
                raise UploadConflictError(
                    "Upload is not complete", details={"status": upload.status}
                )
            final_path, original_name = upload.final_path, upload.original_name

        with self.chunk_store.open(final_path) as stream:
            return self.import_csv(stream, original_name)

    # === READS ===

    def get_run(self, run_id: int) -> ImportRunSummary:
        with session_scope(self.session_factory) as session:
            run = session.get(ImportRun, run_id)
            if run is None:
                raise ResourceNotFoundError("Import run", run_id)
            return ImportRunSummary.model_validate(run)

    def list_runs(self, limit: int = 20) -> List[ImportRunSummary]:
        with session_scope(self.session_factory) as session:
            runs = session.query(ImportRun).order_by(ImportRun.id.desc()).limit(limit).all()
            return [ImportRunSummary.model_validate(run) for run in runs]

    # === STREAMING ===

    def _process_stream(self, stream: BinaryIO, stats: ImportStats) -> None:
        reader = CsvStreamReader(stream)
        batch: List[CsvRow] = []

        for row in reader:
            if not batch and stats.total_rows == 0:
                self._check_headers(reader.headers)

            batch.append(row)
            if len(batch) >= self.batch_size:
                self._process_batch(batch, stats)
                # Release the buffered rows before reading on
                batch = []
                logger.info(f"Progress: {stats.total_rows} rows processed")

        if batch:
            self._process_batch(batch, stats)

    def _check_headers(self, headers: Optional[List[str]]) -> None:
        missing = [c for c in REQUIRED_COLUMNS if c not in (headers or [])]
        if missing:
            logger.warning(f"CSV header is missing required columns: {missing}")

    def _process_batch(self, rows: List[CsvRow], stats: ImportStats) -> None:
        for row in rows:
            self._process_row(row, stats)

    def _process_row(self, row: CsvRow, stats: ImportStats) -> None:
        stats.total_rows += 1

        if row.is_malformed:
            stats.add_error(row.number, [row.error])
            return

        result = validate_row(row.data)
        if not result.valid:
            stats.add_error(row.number, result.errors)
            return

        product = result.row
        key = product.sku

        # First occurrence in this run wins
        if key in stats.seen_keys:
            stats.duplicates += 1
            return
        stats.seen_keys.add(key)

        try:
            outcome = self.catalog.upsert(key, product.catalog_fields())
        except (SQLAlchemyError, CatalogLoaderError) as e:
            # Let a later row with the same key try again
            stats.seen_keys.discard(key)
            logger.warning(f"Failed to save product {key}: {str(e)[:200]}")
            stats.add_error(row.number, [f"Failed to save product {key}: {str(e)[:200]}"])
            return

        if outcome.created:
            stats.imported += 1
        else:
            stats.updated += 1

        if product.image:
            self._link_asset(key, product.image)

    def _link_asset(self, key: str, asset_name: str) -> None:
        """Link a completed upload now; otherwise the pending name waits for one."""
        if self.asset_linker is None:
            return

        try:
            upload = self.asset_linker.find_completed_upload_by_original_name(asset_name)
            if upload is None:
                logger.debug(f"Image {asset_name} for product {key} not uploaded yet")
                return
            self.asset_linker.link_asset_to_record(key, upload.id)
        except (SQLAlchemyError, CatalogLoaderError) as e:
            logger.warning(f"Failed to attach image {asset_name} to product {key}: {e}")

    # === RUN RECORD ===

    def _create_run(self, filename: str) -> int:
        with session_scope(self.session_factory) as session:
            run = ImportRun(filename=filename, status=ImportStatus.PROCESSING.value, row_errors=[])
            session.add(run)
            session.flush()
            return run.id

    def _finish_run(
        self,
        run_id: int,
        stats: ImportStats,
        status: ImportStatus,
        error_message: Optional[str] = None,
    ) -> ImportRunSummary:
        with session_scope(self.session_factory) as session:
            run = session.get(ImportRun, run_id)
            for name, value in stats.counters().items():
                setattr(run, name, value)
            run.row_errors = [e.model_dump() for e in stats.errors]
            run.status = status.value
            run.error_message = error_message
            run.completed_at = utcnow()
            session.flush()
            return ImportRunSummary.model_validate(run)

    def _log_statistics(self, stats: ImportStats) -> None:
        """Log current statistics."""
        logger.info("=== Import Statistics ===")
        logger.info(f"Total rows: {stats.total_rows}")
        logger.info(f"Imported: {stats.imported}")
        logger.info(f"Updated: {stats.updated}")
        logger.info(f"Invalid: {stats.invalid}")
        logger.info(f"Duplicates: {stats.duplicates}")

        if stats.errors:
            logger.warning(f"Sample errors: {[e.model_dump() for e in stats.errors[:3]]}")
