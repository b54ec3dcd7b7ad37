"""
Upload session schemas.
Request validation and structured results for the chunked upload engine.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from catalog_loader.errors import CatalogLoaderError


class UploadStatus(str, Enum):
    """Upload session lifecycle states."""

    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadStatus.COMPLETED, UploadStatus.FAILED)


class UploadInitRequest(BaseModel):
    """Parameters declared by a client when starting an upload."""

    model_config = ConfigDict(str_strip_whitespace=True)

    filename: str = Field(min_length=1, max_length=512)
    total_size: int = Field(ge=1)
    mime_type: str = Field(min_length=1, max_length=255)
    total_chunks: int = Field(ge=1)


class UploadSessionInfo(BaseModel):
    """Read model of an upload session."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: int
    token: str
    original_name: str
    stored_filename: str
    size: int
    mime_type: str
    chunk_size: Optional[int] = None
    total_chunks: int
    uploaded_chunks: int
    chunk_indices: List[int] = Field(default_factory=list)
    checksum: Optional[str] = None
    final_path: Optional[str] = None
    status: UploadStatus
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def progress_percent(self) -> float:
        if self.total_chunks <= 0:
            return 0.0
        return round(self.uploaded_chunks / self.total_chunks * 100, 2)


class OperationResult(BaseModel):
    """Success flag plus a message; subclasses add the payload."""

    success: bool
    message: Optional[str] = None
    error_type: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def failure(cls, error: CatalogLoaderError, **payload):
        return cls(
            success=False,
            message=error.message,
            error_type=error.error_type,
            details=error.details,
            **payload,
        )


class ChunkResult(OperationResult):
    accepted: bool = False
    uploaded_chunks: int = 0
    total_chunks: int = 0
    is_complete: bool = False


class CompletionResult(OperationResult):
    upload: Optional[UploadSessionInfo] = None
    path: Optional[str] = None
    already_completed: bool = False
    linked_records: int = 0


class ResumeInfo(BaseModel):
    """What a client needs to continue an interrupted upload."""

    exists: bool
    status: Optional[UploadStatus] = None
    uploaded_chunks: int = 0
    total_chunks: int = 0
    uploaded_chunk_indices: List[int] = Field(default_factory=list)
    missing_chunk_indices: List[int] = Field(default_factory=list)


class UploadReport(BaseModel):
    """Outcome of a client-side upload run."""

    token: str
    success: bool
    delivered_chunks: int = 0
    skipped_chunks: int = 0
    failed_chunks: List[int] = Field(default_factory=list)
    message: Optional[str] = None
    completion: Optional[CompletionResult] = None
