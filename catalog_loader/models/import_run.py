"""
Import run schemas.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ImportStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RowError(BaseModel):
    """Diagnostics for one rejected CSV row (header is row 1)."""

    row: int
    errors: List[str]


class ErrorDisplay(BaseModel):
    shown: List[RowError]
    remaining: int


class ImportRunSummary(BaseModel):
    """Read model of an import run."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: int
    filename: str
    status: ImportStatus
    total_rows: int = 0
    imported: int = 0
    updated: int = 0
    invalid: int = 0
    duplicates: int = 0
    row_errors: List[RowError] = Field(default_factory=list)
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.status == ImportStatus.COMPLETED.value

    def display_errors(self, limit: int = 10) -> ErrorDisplay:
        """First `limit` row errors plus how many were left out."""
        shown = self.row_errors[:limit]
        return ErrorDisplay(shown=shown, remaining=len(self.row_errors) - len(shown))
