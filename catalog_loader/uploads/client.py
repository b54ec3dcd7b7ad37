"""Chunked upload client with parallel workers, bounded retries and resume."""

import logging
import math
import mimetypes
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from catalog_loader.models.upload import ChunkResult, UploadReport
from catalog_loader.uploads.checksum import compute_checksum, compute_stream_checksum
from catalog_loader.uploads.engine import DEFAULT_CHUNK_SIZE, ChunkedUploadEngine

logger = logging.getLogger(__name__)


class ChunkedUploader:
    """
    Drives a ChunkedUploadEngine the way a remote client would.

    Each chunk gets a fixed number of attempts with a fixed delay between
    them; accept_chunk is idempotent so retries need no server coordination.
    """

    def __init__(
        self,
        engine: ChunkedUploadEngine,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_workers: int = 4,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        if retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        self.engine = engine
        self.chunk_size = chunk_size
        self.max_workers = max_workers
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.sleep = sleep

    def upload_file(
        self,
        file_path: Union[str, Path],
        mime_type: Optional[str] = None,
        session_token: Optional[str] = None,
    ) -> UploadReport:
        """
        Upload a file from disk. Pass `session_token` to resume an earlier session.
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        file_size = file_path.stat().st_size
        with open(file_path, "rb") as f:
            file_hash = compute_stream_checksum(f)

        def read_chunk(index: int) -> bytes:
            with open(file_path, "rb") as f:
                f.seek(index * self.chunk_size)
                return f.read(self.chunk_size)

        return self.upload_chunks(
            filename=file_path.name,
            file_size=file_size,
            file_hash=file_hash,
            mime_type=mime_type or mimetypes.guess_type(file_path.name)[0] or "application/octet-stream",
            read_chunk=read_chunk,
            session_token=session_token,
        )

    def upload_bytes(
        self,
        data: bytes,
        filename: str,
        mime_type: str = "application/octet-stream",
        session_token: Optional[str] = None,
    ) -> UploadReport:
        def read_chunk(index: int) -> bytes:
            start = index * self.chunk_size
            return data[start:start + self.chunk_size]

        return self.upload_chunks(
            filename=filename,
            file_size=len(data),
            file_hash=compute_checksum(data),
            mime_type=mime_type,
            read_chunk=read_chunk,
            session_token=session_token,
        )

    def deliver_chunk(self, token: str, index: int, data: bytes) -> ChunkResult:
        """Send one chunk, retrying failed attempts up to the configured limit."""
        checksum = compute_checksum(data)
        result = None
        for attempt in range(1, self.retry_attempts + 1):
            result = self.engine.accept_chunk(token, index, data, checksum)
            if result.success:
                return result

            logger.warning(
                f"Chunk {index} attempt {attempt}/{self.retry_attempts} failed: {result.message}"
            )
            if attempt < self.retry_attempts:
                self.sleep(self.retry_delay)
        return result

    def _read_and_deliver(self, token: str, index: int, read_chunk: Callable[[int], bytes]) -> ChunkResult:
        return self.deliver_chunk(token, index, read_chunk(index))

    def upload_chunks(
        self,
        filename: str,
        file_size: int,
        file_hash: str,
        mime_type: str,
        read_chunk: Callable[[int], bytes],
        session_token: Optional[str] = None,
    ) -> UploadReport:
        """
        Upload any source that can read chunk `index` on demand.

        Chunks are read by the worker that delivers them, so at most
        `max_workers` chunks are held in memory at once.
        """
        total_chunks = max(1, math.ceil(file_size / self.chunk_size))

        if session_token:
            resume = self.engine.resume_info(session_token)
            if not resume.exists:
                raise ValueError(f"Upload session not found: {session_token}")
            token = session_token
            total_chunks = resume.total_chunks
            pending = resume.missing_chunk_indices
            logger.info(
                f"Resuming upload {token}: {resume.uploaded_chunks}/{resume.total_chunks} chunks already delivered"
            )
        else:
            session = self.engine.initialize_upload(filename, file_size, mime_type, total_chunks)
            token = session.token
            pending = list(range(total_chunks))

        skipped = total_chunks - len(pending)
        failed: List[int] = []
        delivered = 0

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures: Dict = {
                executor.submit(self._read_and_deliver, token, index, read_chunk): index
                for index in pending
            }
            for future in as_completed(futures):
                index = futures[future]
                try:
                    result = future.result()
                except Exception as e:
                    logger.error(f"Chunk {index} failed: {e}")
                    failed.append(index)
                    continue

                if result.success:
                    delivered += 1
                else:
                    failed.append(index)

        if failed:
            logger.warning(f"Upload {token} incomplete: {len(failed)} chunks failed; resume with this token")
            return UploadReport(
                token=token,
                success=False,
                delivered_chunks=delivered,
                skipped_chunks=skipped,
                failed_chunks=sorted(failed),
                message=f"{len(failed)} chunks failed",
            )

        completion = self.engine.complete_upload(token, file_hash)
        return UploadReport(
            token=token,
            success=completion.success,
            delivered_chunks=delivered,
            skipped_chunks=skipped,
            message=completion.message,
            completion=completion,
        )
