"""
Checksum helpers.
SHA-256 over raw bytes, lower-hex encoded.
"""

import hashlib
from typing import BinaryIO

READ_BLOCK_SIZE = 65536  # 64KB


def compute_checksum(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def compute_stream_checksum(stream: BinaryIO, block_size: int = READ_BLOCK_SIZE) -> str:
    """Hash a binary stream without loading it into memory."""
    digest = hashlib.sha256()
    while True:
        block = stream.read(block_size)
        if not block:
            break
        digest.update(block)
    return digest.hexdigest()


def verify_checksum(data: bytes, expected: str) -> bool:
    """Exact, case-sensitive comparison of the hex digest."""
    return compute_checksum(data) == expected
