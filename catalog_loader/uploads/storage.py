"""
Chunk Storage
Byte store for upload chunks and assembled files, addressed by
hierarchical string keys such as ``chunks/{token}/{index}``.
"""

import io
import logging
import os
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Dict, Union

from catalog_loader.errors import ChunkNotFoundError, StorageError

logger = logging.getLogger(__name__)


class ChunkStore(ABC):
    """Storage contract used by the upload engine and the import pipeline."""

    @abstractmethod
    def put(self, key: str, data: bytes) -> None:
        """Write an object, replacing any previous content for the key."""

    @abstractmethod
    def append(self, key: str, data: bytes) -> None:
        """Append to an existing object."""

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Read a whole object. Raises ChunkNotFoundError if absent."""

    @abstractmethod
    def open(self, key: str) -> BinaryIO:
        """Open an object for streaming reads."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    def size(self, key: str) -> int:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete an object. Missing keys are ignored."""

    @abstractmethod
    def delete_all(self, prefix: str) -> None:
        """Delete every object under a key prefix."""


def _validate_key(key: str) -> str:
    key = key.strip("/")
    if not key:
        raise StorageError("Storage key must not be empty")
    parts = key.split("/")
    if any(part in ("", ".", "..") for part in parts):
        raise StorageError(f"Invalid storage key: {key}", details={"key": key})
    return key


class LocalChunkStore(ChunkStore):
    """
    Filesystem-backed store rooted at a directory.

    Writes go to a temporary file that is renamed into place, so readers
    never see a partially written object.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / _validate_key(key)

    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}", details={"key": key}) from e

    def append(self, key: str, data: bytes) -> None:
        path = self._path(key)
        if not path.is_file():
            raise ChunkNotFoundError(key)
        try:
            with open(path, "ab") as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f"Failed to append to {key}: {e}", details={"key": key}) from e

    def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise ChunkNotFoundError(key) from None
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}", details={"key": key}) from e

    def open(self, key: str) -> BinaryIO:
        path = self._path(key)
        try:
            return open(path, "rb")
        except FileNotFoundError:
            raise ChunkNotFoundError(key) from None
        except OSError as e:
            raise StorageError(f"Failed to open {key}: {e}", details={"key": key}) from e

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def size(self, key: str) -> int:
        path = self._path(key)
        try:
            return path.stat().st_size
        except FileNotFoundError:
            raise ChunkNotFoundError(key) from None

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"Failed to delete {key}: {e}", details={"key": key}) from e

    def delete_all(self, prefix: str) -> None:
        path = self._path(prefix)
        try:
            if path.is_dir():
                shutil.rmtree(path)
            elif path.is_file():
                path.unlink()
        except OSError as e:
            raise StorageError(f"Failed to delete {prefix}: {e}", details={"key": prefix}) from e
        logger.debug(f"Deleted stored objects under {prefix}")


class MemoryChunkStore(ChunkStore):
    """In-process store, used for tests and dry runs."""

    def __init__(self):
        self._objects: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, key: str, data: bytes) -> None:
        key = _validate_key(key)
        with self._lock:
            self._objects[key] = bytes(data)

    def append(self, key: str, data: bytes) -> None:
        key = _validate_key(key)
        with self._lock:
            if key not in self._objects:
                raise ChunkNotFoundError(key)
            self._objects[key] += bytes(data)

    def get(self, key: str) -> bytes:
        key = _validate_key(key)
        with self._lock:
            try:
                return self._objects[key]
            except KeyError:
                raise ChunkNotFoundError(key) from None

    def open(self, key: str) -> BinaryIO:
        return io.BytesIO(self.get(key))

    def exists(self, key: str) -> bool:
        key = _validate_key(key)
        with self._lock:
            return key in self._objects

    def size(self, key: str) -> int:
        return len(self.get(key))

    def delete(self, key: str) -> None:
        key = _validate_key(key)
        with self._lock:
            self._objects.pop(key, None)

    def delete_all(self, prefix: str) -> None:
        prefix = _validate_key(prefix)
        with self._lock:
            for key in [k for k in self._objects if k == prefix or k.startswith(prefix + "/")]:
                del self._objects[key]
