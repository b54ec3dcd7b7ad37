"""
Data Ingestion Tasks
Background tasks for CSV imports and upload housekeeping
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from catalog_loader.config.settings import get_settings
from catalog_loader.dependencies import get_import_pipeline, get_upload_engine
from catalog_loader.errors import CatalogLoaderError

from .celery_app import app

logger = logging.getLogger(__name__)


def _run_result(summary) -> Dict[str, Any]:
    display = summary.display_errors(get_settings().error_display_limit)
    return {
        "status": "success" if summary.success else "error",
        "import_run_id": summary.id,
        "run_status": summary.status,
        "statistics": {
            "total_rows": summary.total_rows,
            "imported": summary.imported,
            "updated": summary.updated,
            "invalid": summary.invalid,
            "duplicates": summary.duplicates,
        },
        "errors": [e.model_dump() for e in display.shown],
        "more_errors": display.remaining,
        "error": summary.error_message,
    }


@app.task(bind=True, name="tasks.import_csv_file")
def import_csv_file(self, file_path: str) -> Dict[str, Any]:
    """
    Import a CSV file containing product data.

    Args:
        file_path: Path to the CSV file

    Returns:
        Dictionary with run statistics and the first row errors
    """
    logger.info(f"Starting CSV import for {file_path}")
    summary = get_import_pipeline().import_file(file_path)
    logger.info(f"Completed CSV import {summary.id}: {summary.status}")
    return _run_result(summary)


@app.task(bind=True, name="tasks.import_uploaded_csv")
def import_uploaded_csv(self, session_token: str) -> Dict[str, Any]:
    """
    Import a CSV that was delivered through the chunked upload protocol.

    Args:
        session_token: Token of a completed upload session
    """
    try:
        summary = get_import_pipeline().import_upload(session_token)
    except CatalogLoaderError as e:
        logger.error(f"Cannot import upload {session_token}: {e}")
        return {"status": "error", "session_token": session_token, "error": e.message}

    return _run_result(summary)


@app.task(bind=True, name="tasks.reclaim_stale_uploads")
def reclaim_stale_uploads(self, retention_hours: Optional[int] = None) -> Dict[str, Any]:
    """
    Fail upload sessions that stopped receiving chunks and delete their remnants.

    Args:
        retention_hours: Idle time before a session is reclaimed (settings default)
    """
    hours = retention_hours if retention_hours is not None else get_settings().upload_retention_hours
    reclaimed = get_upload_engine().reclaim_stale_uploads(timedelta(hours=hours))
    return {"status": "success", "reclaimed": reclaimed, "retention_hours": hours}
