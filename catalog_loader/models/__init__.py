"""
Data Models Package
Validation models and read models for uploads, imports and catalog records.
"""

from .product import (
    ProductRow,
    CatalogRecord,
    RowValidationResult,
    UpsertOutcome,
    validate_row,
    REQUIRED_COLUMNS,
)
from .upload import (
    UploadStatus,
    UploadInitRequest,
    UploadSessionInfo,
    ChunkResult,
    CompletionResult,
    ResumeInfo,
    UploadReport,
)
from .import_run import ImportStatus, ImportRunSummary, RowError, ErrorDisplay

__all__ = [
    "ProductRow",
    "CatalogRecord",
    "RowValidationResult",
    "UpsertOutcome",
    "validate_row",
    "REQUIRED_COLUMNS",
    "UploadStatus",
    "UploadInitRequest",
    "UploadSessionInfo",
    "ChunkResult",
    "CompletionResult",
    "ResumeInfo",
    "UploadReport",
    "ImportStatus",
    "ImportRunSummary",
    "RowError",
    "ErrorDisplay",
]
