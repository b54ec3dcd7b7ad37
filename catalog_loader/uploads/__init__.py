"""
Uploads Package
Resumable chunked upload protocol: storage, engine and client.
"""

from .checksum import compute_checksum, compute_stream_checksum, verify_checksum
from .storage import ChunkStore, LocalChunkStore, MemoryChunkStore
from .engine import ChunkedUploadEngine
from .client import ChunkedUploader

__all__ = [
    "compute_checksum",
    "compute_stream_checksum",
    "verify_checksum",
    "ChunkStore",
    "LocalChunkStore",
    "MemoryChunkStore",
    "ChunkedUploadEngine",
    "ChunkedUploader",
]
