"""
Error Types
Exception hierarchy shared by the upload engine and the import pipeline.
"""

from typing import Any, Dict, Optional, Union


class CatalogLoaderError(Exception):
    """Base exception for catalog loader errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def error_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "type": self.error_type, "details": self.details}


class ResourceNotFoundError(CatalogLoaderError):
    """Exception raised when an upload session, import run or record is not found."""

    def __init__(self, resource: str, resource_id: Union[int, str]):
        super().__init__(
            message=f"{resource} not found: {resource_id}",
            details={"resource": resource, "id": resource_id},
        )


class InvalidRequestError(CatalogLoaderError):
    """Exception raised for malformed input. Nothing is persisted."""


class ChecksumMismatchError(CatalogLoaderError):
    """Exception raised when content does not hash to the expected checksum."""


class UploadConflictError(CatalogLoaderError):
    """Exception raised when an upload is not in a state that allows the operation."""


class StorageError(CatalogLoaderError):
    """Exception raised for chunk store I/O failures."""


class ChunkNotFoundError(StorageError):
    """Exception raised when a stored object is missing."""

    def __init__(self, key: str):
        super().__init__(message=f"Stored object not found: {key}", details={"key": key})


class DuplicateRecordError(CatalogLoaderError):
    """Exception raised when a catalog record with the same key already exists."""


class ImportFailedError(CatalogLoaderError):
    """Exception raised when a CSV source cannot be streamed."""


class EmptyCsvError(ImportFailedError):
    """Exception raised when a CSV source has no header row."""

    def __init__(self):
        super().__init__(message="CSV file is empty")
